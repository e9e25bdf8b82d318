"""Principals and their weighted authority entries."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PrincipalKind(str, Enum):
    INDIVIDUAL = "individual"   # Owns a signing key
    GROUP = "group"             # Owns an authority graph (a DAO)


class Principal(BaseModel):
    """An account or group-account that can authorize actions."""

    id: str
    kind: PrincipalKind
    public_key: Optional[str] = None        # Hex-encoded PEM, individuals only


class AuthorityEntry(BaseModel):
    """One weighted signer slot in a group's authority."""

    signer: str                             # Principal id (individual or group)
    weight: int = Field(ge=1, default=1)
