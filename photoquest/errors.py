"""
photoquest.errors — Quest Error Taxonomy
=========================================

Every failure the quest core reports belongs to one :class:`ErrorKind`.
Callers branch on ``exc.kind`` (the API maps each kind to an HTTP status
in one table) instead of matching message strings.

Plain input validation (bad coordinates, oversized uploads, malformed
quest definitions) raises :class:`ValueError`, as elsewhere in the
package.
"""

from __future__ import annotations

import enum
from typing import Any


class ErrorKind(enum.StrEnum):
    NOT_FOUND = "NotFound"
    INELIGIBLE = "Ineligible"
    OUT_OF_RANGE = "OutOfRange"
    ALREADY_SETTLED = "AlreadySettled"
    MODERATION_UNAVAILABLE = "ModerationUnavailable"
    CONTENT_REJECTED = "ContentRejected"
    STORAGE_FAILURE = "StorageFailure"
    PERSISTENCE_CONFLICT = "PersistenceConflict"


class QuestError(Exception):
    """Base class; *details* travel with the error to the API response."""

    kind: ErrorKind

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind.value, "message": self.message, **self.details}


class NotFoundError(QuestError):
    kind = ErrorKind.NOT_FOUND


class IneligibleError(QuestError):
    """Eligibility rule failed; ``reason`` is the first failing rule."""

    kind = ErrorKind.INELIGIBLE

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message, reason=str(reason))
        self.reason = reason


class OutOfRangeError(QuestError):
    kind = ErrorKind.OUT_OF_RANGE

    def __init__(self, distance_m: float, radius_m: float) -> None:
        super().__init__(
            f"You are {distance_m:.0f} m from the quest location "
            f"(must be within {radius_m:.0f} m)",
            distance_m=round(distance_m, 1),
            radius_m=radius_m,
        )
        self.distance_m = distance_m
        self.radius_m = radius_m


class AlreadySettledError(QuestError):
    kind = ErrorKind.ALREADY_SETTLED


class ModerationUnavailableError(QuestError):
    kind = ErrorKind.MODERATION_UNAVAILABLE


class ContentRejectedError(QuestError):
    """Policy block.  The artifact is already gone from storage."""

    kind = ErrorKind.CONTENT_REJECTED

    def __init__(self, submission_id: str, message: str) -> None:
        super().__init__(message, submission_id=submission_id)
        self.submission_id = submission_id


class StorageFailureError(QuestError):
    kind = ErrorKind.STORAGE_FAILURE


class PersistenceConflictError(QuestError):
    kind = ErrorKind.PERSISTENCE_CONFLICT
