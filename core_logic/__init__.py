"""Core business logic - framework-agnostic pairing and check-in engine."""

from .schemas import (
    Mood,
    PromptType,
    Realm,
    RecordKind,
    Couple,
    InviteShare,
    InviteLink,
    DailyEntry,
    EntryDraft,
    PairingState,
    DayEntries,
    WatchStatus,
)

from .errors import (
    CheckinError,
    PermissionDeniedError,
    NotFoundError,
    ConflictError,
    AlreadyClaimedError,
    BackendError,
    NotInitializedError,
    EntryValidationError,
    InvalidInviteLinkError,
    user_message,
)

from .config import CheckinSettings, get_settings
from .identity import IdentityProvider, StaticIdentityProvider
from .record_store import RecordStore
from .state import CheckinState, PersistedState
from .pairing import PairingEngine
from .entry_sync import EntrySyncEngine, deterministic_id, normalize_day
from .pairing_watcher import PairingWatcher
from .notification_service import NotificationService
from .checkin_service import CheckinService

__all__ = [
    # Schemas
    "Mood",
    "PromptType",
    "Realm",
    "RecordKind",
    "Couple",
    "InviteShare",
    "InviteLink",
    "DailyEntry",
    "EntryDraft",
    "PairingState",
    "DayEntries",
    "WatchStatus",
    # Errors
    "CheckinError",
    "PermissionDeniedError",
    "NotFoundError",
    "ConflictError",
    "AlreadyClaimedError",
    "BackendError",
    "NotInitializedError",
    "EntryValidationError",
    "InvalidInviteLinkError",
    "user_message",
    # Engine
    "CheckinSettings",
    "get_settings",
    "IdentityProvider",
    "StaticIdentityProvider",
    "RecordStore",
    "CheckinState",
    "PersistedState",
    "PairingEngine",
    "EntrySyncEngine",
    "deterministic_id",
    "normalize_day",
    "PairingWatcher",
    "NotificationService",
    "CheckinService",
]
