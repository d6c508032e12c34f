import asyncio
import logging
from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session
from app.database import get_db
from app.api.deps import get_notification_center, user_from_token
from app.schemas.common import ActionResult, ResponseModel
from app.services.auth_service import identity_for
from app.services.notification_center import NotificationCenter

logger = logging.getLogger(__name__)

router = APIRouter()

STREAM_IDLE_CHECK_SECONDS = 5.0


@router.get("", response_model=ResponseModel)
async def get_notifications(center: NotificationCenter = Depends(get_notification_center)):
    """Merged unread notifications and pending invitations, newest first."""
    await center.refresh()
    return ResponseModel(success=True, data=center.to_dict())


@router.put("/read-all", response_model=ResponseModel)
async def mark_all_read(center: NotificationCenter = Depends(get_notification_center)):
    """Mark every notification currently in the feed as read. Invitations are left alone."""
    await center.refresh()
    issued = await center.mark_all_read()
    return ResponseModel(
        success=True,
        data=ActionResult(issued=issued).to_data(),
        message="All notifications marked as read" if issued else "Nothing to mark as read"
    )


@router.put("/{item_id}/read", response_model=ResponseModel)
async def mark_notification_read(
    item_id: str,
    center: NotificationCenter = Depends(get_notification_center)
):
    """Mark one feed item as read. Unknown, busy and invitation items are left untouched."""
    await center.refresh()
    issued = await center.mark_read(item_id)
    return ResponseModel(
        success=True,
        data=ActionResult(issued=issued).to_data(),
        message="Notification marked as read" if issued else "Notification already handled"
    )


@router.get("/{item_id}/busy", response_model=ResponseModel)
async def get_busy_state(
    item_id: str,
    center: NotificationCenter = Depends(get_notification_center)
):
    error = center.coordinator.error_for(item_id)
    return ResponseModel(
        success=True,
        data={"id": item_id, "busy": center.is_busy(item_id), "error": str(error) if error else None}
    )


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass


@router.websocket("/stream")
async def stream_notifications(websocket: WebSocket, token: str = Query(...), db: Session = Depends(get_db)):
    """Push the feed state every time it is recomputed."""
    try:
        identity = identity_for(user_from_token(db, token))
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    hub = websocket.app.state.notification_hub
    center = hub.center_for(identity)
    hub.attach_stream(identity.user_id)
    changed = asyncio.Event()
    unsubscribe = center.aggregator.subscribe(lambda state: changed.set())
    disconnect = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        changed.set()
        while not disconnect.done():
            waiter = asyncio.create_task(changed.wait())
            done, _ = await asyncio.wait(
                {waiter, disconnect},
                timeout=STREAM_IDLE_CHECK_SECONDS,
                return_when=asyncio.FIRST_COMPLETED,
            )
            waiter.cancel()
            if disconnect in done:
                break
            if waiter not in done:
                if center.closed:
                    # Signed out elsewhere
                    await websocket.close()
                    break
                continue
            changed.clear()
            await websocket.send_json(center.to_dict())
        logger.info(f"Notification stream closed for {identity.user_id}")
    finally:
        disconnect.cancel()
        unsubscribe()
        hub.detach_stream(identity.user_id)
