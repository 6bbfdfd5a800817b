"""
API router initialization and setup.
"""
from fastapi import APIRouter, Depends

from identity_sync.api.deps import require_reconcile_token
from .endpoints import reconcile

api_router = APIRouter()

api_router.include_router(
    reconcile.router,
    prefix="/reconcile",
    tags=["reconcile"],
    dependencies=[Depends(require_reconcile_token)],
)
