"""
Pydantic schemas for the reconcile control surface.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class OkResponse(BaseModel):
    ok: bool = True


class EnsureRequest(BaseModel):
    """Body of ``POST /reconcile/ensure``; ``user.id`` is checked by the endpoint (400, not 422)."""
    user: Optional[Dict[str, Any]] = None


class DeleteRequest(BaseModel):
    """Body of ``POST /reconcile/delete``."""
    subject_id: Optional[str] = Field(None, alias="subjectId")

    model_config = ConfigDict(populate_by_name=True)


class QueueStatus(BaseModel):
    """Queue and reconciliation metrics exposed for observability."""
    queue_size: int
    user_operation_tasks: int
    full_reconcile_tasks: int
    processing: bool
    reconciling: bool
    processed: int
    failed: int
    last_error: Optional[str] = None
    last_seed_at: Optional[datetime] = None
    sample_keys: List[str] = Field(default_factory=list, description="First dedup keys in queue order (capped)")
