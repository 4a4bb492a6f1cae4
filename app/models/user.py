"""Modèles des comptes Vetra et de leurs identifiants VMS.

Un compte local peut être lié à plusieurs systèmes externes. La paire
(system_name, external_id) est unique: c'est la clé de déduplication de la
synchronisation, garantie au niveau de la base.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


class User(Base):
    """Compte utilisateur Vetra (client, vétérinaire ou administrateur)."""

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
        comment="Identifiant de connexion",
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Hash bcrypt (mot de passe provisoire pour les comptes importés)",
    )
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="client",
        comment="client | doctor | admin",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    vms_identifiers: Mapped[list["VmsIdentifier"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def vms_ids(self) -> dict[str, str]:
        """Identifiants externes indexés par nom de système."""
        return {link.system_name: link.external_id for link in self.vms_identifiers}

    def __repr__(self) -> str:
        return f"<User(username={self.username}, role={self.role})>"


class VmsIdentifier(Base):
    """Lien entre un compte local et un enregistrement d'un VMS externe."""

    __tablename__ = "vms_identifiers"
    __table_args__ = (
        UniqueConstraint("system_name", "external_id", name="uq_vms_identifiers_system_external"),
        UniqueConstraint("username", "system_name", name="uq_vms_identifiers_user_system"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("users.username", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    system_name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Nom du VMS (ex: ezyVet)",
    )
    external_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Clé primaire de l'enregistrement dans le VMS",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    user: Mapped[User] = relationship(back_populates="vms_identifiers")

    def __repr__(self) -> str:
        return (
            f"<VmsIdentifier(username={self.username}, system={self.system_name}, "
            f"external_id={self.external_id})>"
        )
