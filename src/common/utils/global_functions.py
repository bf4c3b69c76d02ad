# common/utils/global_functions.py
from fastapi import HTTPException

from src.common.exceptions import QueueEngineError


def to_http_exception(error: QueueEngineError) -> HTTPException:
    """Translate an engine error into an HTTP error carrying the entity id and current status."""
    return HTTPException(status_code=error.status_code, detail=error.to_detail())
