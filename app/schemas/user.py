"""Schémas Pydantic pour les comptes utilisateurs Vetra provisionnés depuis un VMS."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

UserRole = Literal["client", "doctor", "admin"]


class LocalUserCreate(BaseModel):
    """Compte local candidat, dérivé d'un contact VMS."""

    username: str = Field(..., min_length=1, max_length=100)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field("", max_length=100)
    email: str = Field(..., max_length=255)
    password_hash: str = Field(..., repr=False)
    role: UserRole = "client"


class LocalUserResponse(BaseModel):
    """Compte local avec ses identifiants externes."""

    username: str
    first_name: str
    last_name: str
    email: str
    role: UserRole
    vms_ids: dict[str, str] = Field(
        default_factory=dict,
        description="Identifiants externes indexés par nom de système VMS",
    )
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
