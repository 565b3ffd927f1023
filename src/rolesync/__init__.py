"""
rolesync: keep Discord member roles in sync with a DynamoDB players table.

The engine reacts to the table's change stream:

- derives the managed roles each record should produce (``compute_desired``)
- diffs them against the member's current roles (``compute_diff``)
- applies removals then additions (``apply_changes``), per member debounced
  and serialized (``ReconciliationScheduler``)
- links unlinked records to members by name (``IdentityLinker``)
- reports records that stay unlinked (``AuditReporter``)

Roles outside the ``ManagedCatalog`` are never touched.

Example:
    from rolesync import ManagedCatalog, RecordStore, DiscordDirectory, SyncService
    from rolesync.stream import StreamReader

    catalog = ManagedCatalog.from_yaml(open("catalog.yaml").read())
    async with RecordStore("players") as store, DiscordDirectory(token, guild) as directory:
        service = SyncService(store, directory, catalog)
        await service.run(StreamReader(stream_arn).events())
"""

from .applier import ApplyResult, apply_changes
from .audit import AuditReport, AuditReporter, SnsAuditSink
from .cache import LastAppliedCache
from .catalog import Category, ManagedCatalog
from .config import Settings, load_catalog
from .desired import compute_desired
from .differ import TagDiff, compute_diff
from .directory import DiscordDirectory
from .directory_protocol import DirectoryProtocol
from .exceptions import (
    ConfigError,
    DirectoryUnavailable,
    EntityNotFoundError,
    MalformedRecordError,
    RecordNotFoundError,
    RoleSyncError,
    StoreUnavailable,
    TagPermissionError,
    TransientAPIError,
)
from .linker import IdentityLinker, SweepResult
from .models import ChangeEvent, ChangeKind, ExternalEntity, Record
from .reconciler import Reconciler, relevant_record
from .scheduler import ReconciliationScheduler, TaskState
from .service import SyncService
from .store import RecordStore
from .store_protocol import RecordStoreProtocol

__version__ = "0.1.0"

__all__ = [
    "ApplyResult",
    "AuditReport",
    "AuditReporter",
    "Category",
    "ChangeEvent",
    "ChangeKind",
    "ConfigError",
    "DirectoryProtocol",
    "DirectoryUnavailable",
    "DiscordDirectory",
    "EntityNotFoundError",
    "ExternalEntity",
    "IdentityLinker",
    "LastAppliedCache",
    "MalformedRecordError",
    "ManagedCatalog",
    "Record",
    "RecordNotFoundError",
    "RecordStore",
    "RecordStoreProtocol",
    "Reconciler",
    "ReconciliationScheduler",
    "RoleSyncError",
    "Settings",
    "SnsAuditSink",
    "StoreUnavailable",
    "SweepResult",
    "SyncService",
    "TagDiff",
    "TagPermissionError",
    "TaskState",
    "TransientAPIError",
    "apply_changes",
    "compute_desired",
    "compute_diff",
    "load_catalog",
    "relevant_record",
]
