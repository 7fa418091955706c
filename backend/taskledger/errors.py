from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from .ledger import Rejection


class LedgerError(Exception):
    """Base class for errors raised by the ledger core."""


class HardValidationError(LedgerError):
    """A new or edited entry failed validation; the whole mutation is aborted."""

    def __init__(self, rejections: Sequence["Rejection"]):
        self.rejections: List["Rejection"] = list(rejections)
        message = "; ".join(rejection.message for rejection in self.rejections) or "Validation failed"
        super().__init__(message)


class NotFoundError(LedgerError):
    def __init__(self, what: str, identifier: object):
        self.what = what
        self.identifier = identifier
        super().__init__(f"{what} {identifier} not found")


class AuthorizationError(LedgerError):
    """Raised by owner-only paths when the requester does not own the entry."""

    def __init__(self, entry_id: str, requester_id: str, action: str = "edit"):
        self.entry_id = entry_id
        self.requester_id = requester_id
        self.action = action
        super().__init__(f"You can only {action} your own time entries")


class StaleLedgerError(LedgerError):
    """The container's ledger version moved between load and write."""

    def __init__(self, level: str, container_id: int, expected_version: int):
        self.level = level
        self.container_id = container_id
        self.expected_version = expected_version
        super().__init__(f"{level} {container_id} changed since version {expected_version}")


class StaleStatusError(LedgerError):
    """Another writer changed the container's status after it was read."""

    def __init__(self, level: str, container_id: int, expected_status: str):
        self.level = level
        self.container_id = container_id
        self.expected_status = expected_status
        super().__init__(f"{level} {container_id} is no longer in status {expected_status!r}")


class ConcurrentModificationError(LedgerError):
    def __init__(self, level: str, container_id: int, attempts: int):
        self.level = level
        self.container_id = container_id
        self.attempts = attempts
        super().__init__(
            f"{level} {container_id} was modified concurrently; gave up after {attempts} attempt(s)"
        )


class PropagationError(LedgerError):
    """Aggregation or notification failed after the mutation was persisted."""

    def __init__(self, stage: str, detail: str, cause: Optional[BaseException] = None):
        self.stage = stage
        self.detail = detail
        self.cause = cause
        super().__init__(f"{stage} failed: {detail}")
