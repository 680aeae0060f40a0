"""
otpauth/models/identity.py

Purpose: Identity document model

- identity_id is allocated by the user directory and never changes
- phone_number is unique across the directory
- deactivation is a flag, never a deletion
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from otpauth.utils.time_utils import utc_now


class Identity(BaseModel):
    identity_id: str
    phone_number: str
    display_name: str
    deactivated: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    deactivated_at: Optional[datetime] = None
    reactivated_at: Optional[datetime] = None
    profile: Dict[str, Any] = Field(default_factory=dict)
    keywords: List[str] = Field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump()

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Identity":
        document = {key: value for key, value in document.items() if key != "_id"}
        return cls(**document)


class IdentityResolution(BaseModel):
    """Outcome of reconciling a verified phone number against the directory."""
    exists: bool
    identity_id: Optional[str] = None
    reactivated: bool = False
