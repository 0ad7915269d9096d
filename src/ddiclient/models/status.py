"""Status enums for deployment actions and DDI feedback."""

from enum import Enum


class ActionStateEnum(str, Enum):
    """Lifecycle of a single deployment action.

    State transitions:
    pending → downloading → verified → installing → closed
       ↓           ↓            ↓           ↓
       └───────────┴──── canceled ──────────┘
    pending → closed (malformed descriptor) | rejected (id mismatch)
    downloading → closed (integrity / transport failure)
    """

    PENDING = "pending"
    DOWNLOADING = "downloading"
    VERIFIED = "verified"
    INSTALLING = "installing"
    CLOSED = "closed"
    CANCELED = "canceled"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ActionStateEnum.CLOSED,
            ActionStateEnum.CANCELED,
            ActionStateEnum.REJECTED,
        )


class Execution(str, Enum):
    """Execution status sent in feedback messages."""

    CLOSED = "closed"
    PROCEEDING = "proceeding"
    CANCELED = "canceled"
    SCHEDULED = "scheduled"
    REJECTED = "rejected"
    RESUMED = "resumed"


class Finished(str, Enum):
    """Result of an action; NONE while still in progress."""

    SUCCESS = "success"
    FAILURE = "failure"
    NONE = "none"


class HandlingType(str, Enum):
    """How the server wants the download or update part processed."""

    SKIP = "skip"
    ATTEMPT = "attempt"
    FORCED = "forced"


class MaintenanceWindow(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class ConfigDataMode(str, Enum):
    """How the server merges uploaded config data with existing attributes."""

    MERGE = "merge"
    REPLACE = "replace"
    REMOVE = "remove"
