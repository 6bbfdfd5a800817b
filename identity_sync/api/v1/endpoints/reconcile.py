"""
Reconcile control endpoints: status, full run, and immediate ensure/delete.
"""
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from identity_sync.api.deps import get_sync_queue
from identity_sync.jobs.queue import ReconcileQueue
from identity_sync.models.db.enums import TaskSource
from identity_sync.models.schemas.reconcile import DeleteRequest, EnsureRequest, OkResponse, QueueStatus
from identity_sync.models.schemas.users import DirectoryUser
from identity_sync.utils import get_logger, log_business_event, log_performance

router = APIRouter()
logger = get_logger(__name__)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID", "unknown")


@router.get(
    "/status",
    response_model=QueueStatus,
    summary="Queue and reconciliation status"
)
def reconcile_status(queue: ReconcileQueue = Depends(get_sync_queue)) -> QueueStatus:
    return QueueStatus(**queue.status())


@router.post(
    "/run",
    response_model=OkResponse,
    summary="Run a full reconciliation pass now"
)
def run_full_reconcile(
    request: Request,
    queue: ReconcileQueue = Depends(get_sync_queue)
) -> OkResponse:
    """Seed a full reconcile synchronously.

    Returns once every identity page has been enqueued; the queue then works
    through the tasks in the background. A run already in progress is not
    restarted.
    """
    start_time = time.time()
    request_id = _request_id(request)
    summary = queue.seed_full_reconcile()
    log_business_event(
        "full_reconcile_triggered",
        {"trigger": "api", "skipped": summary is None},
        request_id=request_id,
        reconcile_run_id=summary.run_id if summary else None,
    )
    log_performance(
        "full_reconcile_seed",
        (time.time() - start_time) * 1000,
        {"request_id": request_id, "ensured": summary.ensured if summary else None, "skipped": summary is None},
    )
    return OkResponse()


@router.post(
    "/ensure",
    response_model=OkResponse,
    summary="Mirror one user immediately"
)
def ensure_now(
    request: Request,
    payload: Optional[EnsureRequest] = None,
    queue: ReconcileQueue = Depends(get_sync_queue)
) -> OkResponse:
    raw_user = payload.user if payload else None
    if not raw_user or not raw_user.get("id"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="missing user")
    try:
        user = DirectoryUser.model_validate(raw_user)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"invalid user: {e.error_count()} error(s)")

    queue.enqueue_ensure(user, priority=True, source=TaskSource.USER_OPERATION)
    logger.info("Ensure enqueued via API", subject_id=user.id, request_id=_request_id(request))
    return OkResponse()


@router.post(
    "/delete",
    response_model=OkResponse,
    summary="Remove one user's record immediately"
)
def delete_now(
    request: Request,
    payload: Optional[DeleteRequest] = None,
    queue: ReconcileQueue = Depends(get_sync_queue)
) -> OkResponse:
    subject_id = payload.subject_id if payload else None
    if not subject_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="missing subjectId")

    queue.enqueue_delete(subject_id, priority=True, source=TaskSource.USER_OPERATION)
    logger.info("Delete enqueued via API", subject_id=subject_id, request_id=_request_id(request))
    return OkResponse()
