"""
Restore reconciliation engine.

Decides, for every workflow file of a backup, whether it is an existing
remote workflow or a new one, and puts it in the right project and folder.
"""

from n8n_manager.reconcile.folder_sync import FolderSynchronizer, SyncResult
from n8n_manager.reconcile.layout import TargetContext, compute_target_context
from n8n_manager.reconcile.manifest import (
    MAPPING_FILENAME,
    ManifestEntry,
    ManifestStore,
    MappingRecord,
    PriorMapping,
)
from n8n_manager.reconcile.reconciler import PostImportReconciler, ReconcileResult
from n8n_manager.reconcile.snapshot import Snapshot, SnapshotService
from n8n_manager.reconcile.staging import StagingNormalizer, StagingOptions, StagingResult
from n8n_manager.reconcile.state import RemoteStateCache

__all__ = [
    "FolderSynchronizer",
    "SyncResult",
    "TargetContext",
    "compute_target_context",
    "MAPPING_FILENAME",
    "ManifestEntry",
    "ManifestStore",
    "MappingRecord",
    "PriorMapping",
    "PostImportReconciler",
    "ReconcileResult",
    "Snapshot",
    "SnapshotService",
    "StagingNormalizer",
    "StagingOptions",
    "StagingResult",
    "RemoteStateCache",
]
