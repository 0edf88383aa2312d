from fastapi import APIRouter, Depends, HTTPException, Query, status, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session
from database import get_db
from auth import resolve_account, resolve_user_from_token
from schemas import NotificationResponse, UnreadCount
from crud import get_notifications, count_unread, mark_notification_read, mark_all_read
from realtime import manager
import json
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])
ws_router = APIRouter(tags=["realtime"])


@router.get("", response_model=list[NotificationResponse])
def get_user_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
    account=Depends(resolve_account)
):
    return get_notifications(db, account.get("id"), limit, unread_only)


@router.get("/unread-count", response_model=UnreadCount)
def get_unread_count(db: Session = Depends(get_db), account=Depends(resolve_account)):
    return {"count": count_unread(db, account.get("id"))}


@router.patch("/read-all")
def mark_all_as_read(db: Session = Depends(get_db), account=Depends(resolve_account)):
    mark_all_read(db, account.get("id"))
    return {"message": "All notifications marked as read"}


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
def mark_read(
    notification_id: int,
    db: Session = Depends(get_db),
    account=Depends(resolve_account)
):
    notification = mark_notification_read(db, notification_id, account.get("id"))
    if not notification:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found or access denied"
        )
    return notification


@ws_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    token = websocket.query_params.get("token")
    try:
        account = resolve_user_from_token(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    user_id = account.get("id")
    await manager.connect(websocket, user_id)
    logger.info("User connected: %s", user_id)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except ValueError:
                continue
            if not isinstance(message, dict):
                continue
            room = message.get("room")
            if not isinstance(room, str) or not room or room.startswith("user:"):
                continue
            if message.get("action") == "join":
                manager.join(websocket, room)
                logger.info("User %s joined room: %s", user_id, room)
            elif message.get("action") == "leave":
                manager.leave(websocket, room)
                logger.info("User %s left room: %s", user_id, room)
    except WebSocketDisconnect:
        manager.disconnect(websocket)
        logger.info("User disconnected: %s", user_id)
