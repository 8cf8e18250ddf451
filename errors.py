"""
Error kinds shared by the store adapter, the collaborators and the conversation flow.

Nothing here is fatal to the process: every failure is scoped to the single
conversation turn (or callback) that triggered it.
"""
from enum import Enum


class BotError(Exception):
    """Base class for every error raised on purpose by this service."""


class ConfigurationError(BotError):
    """A required credential or endpoint is not configured."""


class TransientRemoteFailure(BotError):
    """A remote call (store, messaging, generation) failed; the turn is abandoned, no retry."""


class MalformedUpstreamResponse(TransientRemoteFailure):
    """A collaborator answered with a payload we can't use."""


class StoreErrorKind(Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"    # duplicate create, another writer got there first
    TRANSIENT = "transient"
    OTHER = "other"


class StoreError(BotError):
    def __init__(self, kind: StoreErrorKind, message: str = ""):
        self.kind = kind
        super().__init__(message or kind.value)

    @property
    def not_found(self) -> bool:
        return self.kind is StoreErrorKind.NOT_FOUND

    @property
    def conflict(self) -> bool:
        return self.kind is StoreErrorKind.CONFLICT
