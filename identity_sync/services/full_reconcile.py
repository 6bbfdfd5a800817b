"""Paginated full reconciliation: identity directory -> record store.

One pass walks the identity directory page by page and enqueues a
background ``ensure`` for every user it sees, tagged with the run id. With
orphan pruning enabled it also remembers every identity id and then walks the
record store, enqueuing a ``delete`` for each record whose subject id was not
seen.

Paging modes:
  - cursor: the directory exposes ``list_users_after(limit, after_id)``
    (keyset paging by id). Deleting users mid-scan cannot shift the window.
  - offset: fallback on ``list_users_page(limit, offset)``. ``total`` is
    re-read on each page and the walk stops on an empty page, but a deletion
    between two pages shifts later users down and the scan can skip them.
    They are picked up by the next run; live changes are covered by the
    user-operation tasks enqueued from the identity hooks.

Pruning uses the identity snapshot taken during this pass. A user deleted
from the identity directory after it was observed is not pruned until the
next run; pruning never deletes eagerly, since the subject may be recreated.

Listing errors propagate: the run is aborted and the next scheduled run
starts from scratch.
"""
from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator, Optional

from identity_sync.models.db.enums import TaskSource
from identity_sync.models.schemas.users import DirectoryUser, RecordSummary
from identity_sync.utils import get_logger

if TYPE_CHECKING:  # pragma: no cover
    from identity_sync.jobs.queue import ReconcileQueue
    from identity_sync.services.identity_directory import IdentityDirectory
    from identity_sync.services.sources import RecordStoreWriter

logger = get_logger(__name__)

PAGE_MODE_CURSOR = "cursor"
PAGE_MODE_OFFSET = "offset"


@dataclass(slots=True)
class ReconcileSummary:
    run_id: str
    page_mode: str = PAGE_MODE_OFFSET
    identity_pages: int = 0
    ensured: int = 0
    record_pages: int = 0
    orphans: int = 0


def new_reconcile_run_id(now: Optional[float] = None) -> str:
    millis = int((now if now is not None else time.time()) * 1000)
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"reconcile-{millis}-{suffix}"


def page_mode_for(identity: "IdentityDirectory") -> str:
    return PAGE_MODE_CURSOR if callable(getattr(identity, "list_users_after", None)) else PAGE_MODE_OFFSET


def iter_identity_pages(identity: "IdentityDirectory", page_size: int) -> Iterator[list[DirectoryUser]]:
    if page_mode_for(identity) == PAGE_MODE_CURSOR:
        after: Optional[str] = None
        while True:
            users = identity.list_users_after(page_size, after)  # type: ignore[attr-defined]
            if not users:
                return
            yield users
            if len(users) < page_size:
                return
            after = users[-1].id
    else:
        offset = 0
        while True:
            page = identity.list_users_page(page_size, offset)
            if not page.users:
                return
            yield page.users
            offset += len(page.users)
            if offset >= page.total:
                return


def iter_record_pages(records: "RecordStoreWriter", page_size: int) -> Iterator[list[RecordSummary]]:
    page_number = 1
    while True:
        page = records.list_records_page(page_size, page_number)
        yield page.records
        if not page.has_next_page or not page.records:
            return
        page_number += 1


def run_full_reconcile(
    queue: "ReconcileQueue",
    identity: "IdentityDirectory",
    records: "RecordStoreWriter",
    *,
    run_id: str,
    page_size: int,
    prune_orphans: bool = False,
) -> ReconcileSummary:
    """Enqueue corrective background tasks for one reconciliation pass."""
    summary = ReconcileSummary(run_id=run_id, page_mode=page_mode_for(identity))
    seen_ids: Optional[set[str]] = set() if prune_orphans else None

    for users in iter_identity_pages(identity, page_size):
        summary.identity_pages += 1
        for user in users:
            queue.enqueue_ensure(user, priority=False, source=TaskSource.FULL_RECONCILE, reconcile_run_id=run_id)
            if seen_ids is not None:
                seen_ids.add(user.id)
        summary.ensured += len(users)
        logger.debug(
            "Identity page seeded",
            reconcile_run_id=run_id,
            page=summary.identity_pages,
            processed=summary.ensured,
            page_mode=summary.page_mode,
        )

    if seen_ids is not None:
        for page_records in iter_record_pages(records, page_size):
            summary.record_pages += 1
            for record in page_records:
                subject_id = record.subject_id
                if subject_id and subject_id not in seen_ids:
                    queue.enqueue_delete(subject_id, priority=False, source=TaskSource.FULL_RECONCILE, reconcile_run_id=run_id)
                    summary.orphans += 1
            logger.debug("Record page scanned", reconcile_run_id=run_id, page=summary.record_pages, orphans=summary.orphans)

    return summary


__all__ = [
    "ReconcileSummary",
    "new_reconcile_run_id",
    "page_mode_for",
    "iter_identity_pages",
    "iter_record_pages",
    "run_full_reconcile",
    "PAGE_MODE_CURSOR",
    "PAGE_MODE_OFFSET",
]
