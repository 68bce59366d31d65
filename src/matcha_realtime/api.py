"""REST routes backing the realtime subsystem."""

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket

from ._models import SessionRecord
from .exceptions import AuthenticationError, PersistenceError
from .logging_utils import get_logger
from .manager import RealtimeServer

logger = get_logger(__name__)

router = APIRouter()


def get_server(request: Request) -> RealtimeServer:
    return request.app.state.realtime


async def current_session(
    request: Request, server: RealtimeServer = Depends(get_server)
) -> SessionRecord:
    """Resolve the caller's session cookie or answer 401."""
    try:
        return await server.authenticator.authenticate(request)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=e.reason)


@router.get("/notifications")
async def list_notifications(
    session: SessionRecord = Depends(current_session),
    server: RealtimeServer = Depends(get_server),
) -> dict:
    """All notifications for the caller, newest first."""
    try:
        records = await server.dispatcher.list_for_user(session.user_id)
    except PersistenceError as e:
        logger.error(f"Error fetching notifications: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch notifications")
    return {
        "notifications": [record.to_dict() for record in records],
        "count": len(records),
    }


@router.delete("/notifications/{type}")
async def delete_notifications(
    type: str,
    session: SessionRecord = Depends(current_session),
    server: RealtimeServer = Depends(get_server),
) -> dict:
    """Delete all of the caller's notifications of one type."""
    try:
        deleted = await server.dispatcher.delete_by_type(session.user_id, type)
    except PersistenceError as e:
        logger.error(f"Error deleting notifications: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete notifications")
    return {
        "success": True,
        "message": f"Deleted {deleted} notification(s) of type '{type}'",
        "deletedCount": deleted,
    }


@router.post("/heartbeat")
async def heartbeat(
    session: SessionRecord = Depends(current_session),
    server: RealtimeServer = Depends(get_server),
) -> dict:
    await server.presence.touch(session.user_id)
    return {"success": True}


@router.post("/logout")
async def logout(
    session: SessionRecord = Depends(current_session),
    server: RealtimeServer = Depends(get_server),
) -> dict:
    """Mark the caller offline. Session destruction belongs to the session owner."""
    await server.presence.mark_offline(session.user_id)
    return {"success": True}


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    server: RealtimeServer = websocket.app.state.realtime
    await server.serve(websocket)
