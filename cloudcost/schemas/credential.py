"""Credential Pydantic schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CredentialSummary(BaseModel):
    """Credential metadata. Never carries secret material."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    provider: str
    name: str
    created_at: datetime


class CredentialBundle(CredentialSummary):
    """Decrypted credential bundle, only produced inside the vault."""

    credentials: dict[str, Any] = Field(default_factory=dict, repr=False)
