# src/modules/projections/projections_controller.py
"""Projection snapshots over HTTP and live feeds over WebSocket."""

import asyncio
import logging
from datetime import date
from typing import Dict, Optional, Tuple

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.dependencies import (
    DOCTOR_ROLES, MEDICATION_ROLES, RECEPTION_ROLES, authenticate_token, require_roles,
)
from src.common.database.database import get_db_session, get_session_factory
from src.common.exceptions import QueueEngineError
from src.common.utils.global_functions import to_http_exception
from src.models.models import StaffRole, User

from . import projections_service as service
from .projections_service import ProjectionFeed
from .schemas import DoctorDashboardView, MedicationPendingView, PublicDisplayView, ReceptionQueueView

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projections", tags=["Projections"])

# None means the feed is public
FEED_ROLES: Dict[str, Optional[Tuple[StaffRole, ...]]] = {
    "reception": RECEPTION_ROLES,
    "medication": MEDICATION_ROLES,
    "doctor": DOCTOR_ROLES,
    "public-display": None,
}


# ============================================================================
# SNAPSHOTS
# ============================================================================

@router.get("/reception", response_model=ReceptionQueueView)
async def reception_queue(
    queue_date: Optional[date] = Query(None, description="Defaults to today"),
    db: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_roles(*RECEPTION_ROLES))
):
    """Today's queue for the reception screen."""
    try:
        return await service.get_snapshot(db, "reception", queue_date)
    except QueueEngineError as e:
        raise to_http_exception(e)


@router.get("/medication", response_model=MedicationPendingView)
async def medication_pending(
    db: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_roles(*MEDICATION_ROLES))
):
    """Scheduled services waiting for the medication team."""
    try:
        return await service.get_snapshot(db, "medication")
    except QueueEngineError as e:
        raise to_http_exception(e)


@router.get("/doctor", response_model=DoctorDashboardView)
async def doctor_dashboard(
    service_date: Optional[date] = Query(None, description="Defaults to today"),
    db: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_roles(*DOCTOR_ROLES))
):
    """The selected day's services with line items and totals."""
    try:
        return await service.get_snapshot(db, "doctor", service_date)
    except QueueEngineError as e:
        raise to_http_exception(e)


@router.get("/public-display", response_model=PublicDisplayView)
async def public_display(
    queue_date: Optional[date] = Query(None, description="Defaults to today"),
    db: AsyncSession = Depends(get_db_session),
):
    """Current ticket and the next waiting tickets. No authentication."""
    try:
        return await service.get_snapshot(db, "public-display", queue_date)
    except QueueEngineError as e:
        raise to_http_exception(e)


# ============================================================================
# LIVE FEEDS
# ============================================================================

@router.websocket("/{name}/ws")
async def projection_feed(
    websocket: WebSocket,
    name: str,
    token: Optional[str] = Query(None),
    selected_date: Optional[date] = Query(None),
    session_factory=Depends(get_session_factory),
):
    """
    Send the projection's snapshot, then one refreshed view per change.

    Messages are `{"type": "snapshot" | "update", "view": {...}}`. Sending the
    text `resync` reloads the snapshot. If the view can no longer be loaded the
    feed sends `{"type": "error", "detail": {...}}` and closes.
    """
    if name not in FEED_ROLES:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    roles = FEED_ROLES[name]
    if roles is not None:
        user = await authenticate_token(token, roles, session_factory)
        if user is None:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

    await websocket.accept()
    projection = service.build_projection(name, selected_date)

    try:
        async with ProjectionFeed(projection, session_factory=session_factory) as feed:
            await stream_views(websocket, feed)
    except QueueEngineError as e:
        logger.warning("Projection feed %s failed: %s", name, e.message)
        await websocket.send_json({"type": "error", "detail": e.to_detail()})
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)


async def stream_views(websocket: WebSocket, feed: ProjectionFeed) -> None:
    """Push the snapshot, then updates, answering `resync` requests until either side stops."""
    await websocket.send_json({"type": "snapshot", "view": feed.view().model_dump(mode="json")})

    receive_task = asyncio.create_task(websocket.receive_text())
    update_task = asyncio.create_task(feed.next_view())
    try:
        while True:
            done, _ = await asyncio.wait(
                {receive_task, update_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if receive_task in done:
                message = receive_task.result()
                if message.strip() == "resync":
                    view = await feed.resync()
                    await websocket.send_json({"type": "snapshot", "view": view.model_dump(mode="json")})
                receive_task = asyncio.create_task(websocket.receive_text())
            if update_task in done:
                view = update_task.result()
                if view is None:
                    break
                await websocket.send_json({"type": "update", "view": view.model_dump(mode="json")})
                update_task = asyncio.create_task(feed.next_view())
    except WebSocketDisconnect:
        logger.info("Projection feed %s client disconnected", feed.projection.name)
    finally:
        receive_task.cancel()
        update_task.cancel()
