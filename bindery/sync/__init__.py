"""Encrypted draft sync: derived keys, payload codec, merge, orchestration."""

from .draft_sync import (
    BOOK_MARKER,
    HISTORY_MARKER,
    SYNC_KIND,
    DraftSyncService,
    RestoreResult,
    RestoreStatus,
    SyncResult,
    SyncStatus,
    history_coordinate,
)
from .keys import DerivedKey, ScopedKeyService, SyncSession
from .merge import MergePlan, merge_snapshot, plan_merge
from .tasks import TaskSupervisor

__all__ = [
    "BOOK_MARKER",
    "HISTORY_MARKER",
    "SYNC_KIND",
    "DraftSyncService",
    "RestoreResult",
    "RestoreStatus",
    "SyncResult",
    "SyncStatus",
    "history_coordinate",
    "DerivedKey",
    "ScopedKeyService",
    "SyncSession",
    "MergePlan",
    "merge_snapshot",
    "plan_merge",
    "TaskSupervisor",
]
