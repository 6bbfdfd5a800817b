"""
Pydantic schemas for directory users, accounts and paged listings.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class DirectoryUser(BaseModel):
    """
    Snapshot of an identity-service user.
    Known fields are typed; anything else the identity service sends is kept in ``extra``.
    """
    id: str = Field(min_length=1, description="Identity-service user id (stable key)")
    email: Optional[str] = None
    name: Optional[str] = None
    email_verified: bool = Field(False, alias="emailVerified")
    extra: Dict[str, Any] = Field(default_factory=dict, description="Open extension map")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _fold_unknown_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        known = {"id", "email", "name", "email_verified", "emailVerified", "extra"}
        folded = {k: v for k, v in data.items() if k in known}
        unknown = {k: v for k, v in data.items() if k not in known}
        if unknown:
            folded["extra"] = {**unknown, **(data.get("extra") or {})}
        if "id" in folded and folded["id"] is not None and not isinstance(folded["id"], str):
            folded["id"] = str(folded["id"])
        return folded


class DirectoryAccount(BaseModel):
    """Credential/provider account linked to an identity user."""
    id: str
    user_id: str = Field(alias="userId")
    provider_id: str = Field(alias="providerId")

    model_config = ConfigDict(populate_by_name=True)


class RecordSummary(BaseModel):
    """Minimal view of a record-store entry used by orphan pruning."""
    id: int
    subject_id: Optional[str] = None


class UsersPage(BaseModel):
    users: List[DirectoryUser]
    total: int = Field(ge=0)


class RecordsPage(BaseModel):
    records: List[RecordSummary]
    total: int = Field(ge=0)
    has_next_page: bool = False
