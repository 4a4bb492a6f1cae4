"""Mapper from decoded ezyVet contacts to local Vetra user accounts.

Accounts created from a VMS contact get a synthesized username and contact
address and a placeholder password that the owner replaces at first login.
"""

import re

import bcrypt
from pydantic import ValidationError

from app.infrastructure.ezyvet.config import EzyVetSettings, ezyvet_settings
from app.infrastructure.ezyvet.exceptions import ValidationFailure
from app.schemas.user import LocalUserCreate
from app.schemas.vms import ExternalRecord

_USERNAME_STRIP = re.compile(r"[^a-z0-9]")


def split_full_name(full_name: str | None) -> tuple[str, str]:
    """Split "Ann Marie Smith" into ("Ann", "Marie Smith")."""
    parts = (full_name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def synthesize_username(first_name: str, last_name: str, suffix: str | None = None) -> str:
    """Lower-cased alphanumeric concatenation of the name, with an optional suffix."""
    base = _USERNAME_STRIP.sub("", f"{first_name}{last_name}".lower())
    if suffix:
        base = f"{base}{_USERNAME_STRIP.sub('', suffix.lower())}"
    return base


def _extract_name(record: ExternalRecord) -> tuple[str, str]:
    first_name = record.first_name.strip()
    last_name = record.last_name.strip()
    if not first_name and not last_name and record.name:
        first_name, last_name = split_full_name(record.name)
    return first_name, last_name


class ContactMapper:
    """Converts ExternalRecord contacts into LocalUserCreate candidates."""

    def __init__(self, config: EzyVetSettings | None = None):
        self.config = config or ezyvet_settings
        self._password_hash: str | None = None

    @property
    def placeholder_password_hash(self) -> str:
        # One bcrypt hash per mapper: hashing per record would dominate the run time
        if self._password_hash is None:
            self._password_hash = bcrypt.hashpw(
                self.config.VMS_DEFAULT_PASSWORD.encode(),
                bcrypt.gensalt(rounds=self.config.BCRYPT_ROUNDS),
            ).decode("utf-8")
        return self._password_hash

    def validate(self, record: ExternalRecord) -> tuple[str, str]:
        """Return the (first, last) name of a record.

        Raises:
            ValidationFailure: If the first name is blank.
        """
        first_name, last_name = _extract_name(record)
        if not first_name:
            raise ValidationFailure(
                f"Contact {record.external_id} has a blank first name",
                external_id=record.external_id,
                field="first_name",
            )
        return first_name, last_name

    def to_local_user(
        self, record: ExternalRecord, disambiguate: bool = False
    ) -> LocalUserCreate:
        """Build the local account candidate for a contact.

        Args:
            record: Decoded ezyVet contact
            disambiguate: Append the external id to the username, used when the
                plain username belongs to another user.

        Raises:
            ValidationFailure: If the first name is blank or a field does not fit
                the local account (e.g. a name longer than 100 characters).
        """
        first_name, last_name = self.validate(record)
        username = synthesize_username(
            first_name, last_name, suffix=record.external_id if disambiguate else None
        )
        if not username:
            # Names made only of non-alphanumeric characters
            username = synthesize_username("contact", "", suffix=record.external_id)

        try:
            return LocalUserCreate(
                username=username,
                first_name=first_name,
                last_name=last_name,
                email=f"{username}@{self.config.VMS_PLACEHOLDER_EMAIL_DOMAIN}",
                password_hash=self.placeholder_password_hash,
                role="client",
            )
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(loc) for loc in error["loc"])
            raise ValidationFailure(
                f"Contact {record.external_id} cannot be stored: {field} {error['msg']}",
                external_id=record.external_id,
                field=field,
            ) from e
