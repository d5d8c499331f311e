"""Bot Services Package."""

from .connection import ConnectionState, ConnectionStatus
from .database import DocumentStore, DocumentStoreError, DocumentStoreUnavailable
from .dispatch import DispatchGate, GateOutcome, Invocation
from .logger import get_logger, log_context, setup_logging
from .migrations import SchemaMigrator
from .permissions import DEFAULT_RESTRICTED_COMMANDS, MemberIdentity, PermissionResolver
from .repository import SettingsRepository
from .snapshot import SnapshotRecordError, SnapshotStore, SnapshotStoreError

__all__ = [
    "ConnectionState",
    "ConnectionStatus",
    "DocumentStore",
    "DocumentStoreError",
    "DocumentStoreUnavailable",
    "DispatchGate",
    "GateOutcome",
    "Invocation",
    "get_logger",
    "log_context",
    "setup_logging",
    "SchemaMigrator",
    "DEFAULT_RESTRICTED_COMMANDS",
    "MemberIdentity",
    "PermissionResolver",
    "SettingsRepository",
    "SnapshotStore",
    "SnapshotStoreError",
    "SnapshotRecordError",
]
