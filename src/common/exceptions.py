# src/common/exceptions.py
"""Error taxonomy for the service/queue engine.

Service functions raise these; controllers translate them into HTTP
responses. Every error carries the offending entity id and its current
status so the UI can re-render from fresh state.
"""

from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import status


class QueueEngineError(Exception):
    """Base class for engine errors."""
    code: str = "engine_error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    retryable: bool = False

    def __init__(
        self,
        message: str = "",
        *,
        entity_id: Optional[UUID] = None,
        current_status: Optional[str] = None,
    ) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.entity_id = entity_id
        self.current_status = current_status

    def to_detail(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "current_status": self.current_status,
            "retryable": self.retryable,
        }


class Collision(QueueEngineError):
    """Lost a race for a unique slot (ticket number or attending slot). Safe to retry."""
    code = "collision"
    status_code = status.HTTP_409_CONFLICT
    retryable = True


class AttendingInProgress(QueueEngineError):
    """Another entry for the date is being attended; re-read state before retrying."""
    code = "attending_in_progress"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "", *, entity_id=None, current_status=None, queue_number=None):
        super().__init__(message, entity_id=entity_id, current_status=current_status)
        self.queue_number = queue_number

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["queue_number"] = self.queue_number
        return detail


class AlreadyQueued(QueueEngineError):
    code = "already_queued"
    status_code = status.HTTP_409_CONFLICT


class InvalidTransition(QueueEngineError):
    code = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT


class EntityNotFound(QueueEngineError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class StorageFailure(QueueEngineError):
    """Persistence fault. Surfaced to the user with a retry affordance, never retried here."""
    code = "storage_failure"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
