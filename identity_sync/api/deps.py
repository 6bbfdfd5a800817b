"""
Dependencies for the reconcile control surface: header token check and queue lookup.
"""
import hmac
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from identity_sync import config
from identity_sync.jobs.queue import ReconcileQueue
from identity_sync.utils import get_logger

logger = get_logger(__name__)


def require_reconcile_token(
    request: Request,
    x_reconcile_token: Optional[str] = Header(None, alias=config.RECONCILE_TOKEN_HEADER),
) -> None:
    """
    Reject the request unless ``X-Reconcile-Token`` matches the configured token.
    An unset token disables the check (local development).

    Raises:
        HTTPException: 401 if the token is missing or wrong
    """
    expected = config.RECONCILE_TOKEN
    if not expected:
        return
    if not x_reconcile_token or not hmac.compare_digest(x_reconcile_token.encode(), expected.encode()):
        logger.warning(
            "Reconcile token rejected",
            path=request.url.path,
            request_id=getattr(request.state, "request_id", None),
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")


def get_sync_queue(request: Request) -> ReconcileQueue:
    """The queue attached at startup; 503 while none is attached."""
    queue = getattr(request.app.state, "sync_queue", None)
    if queue is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Sync queue not available")
    return queue
