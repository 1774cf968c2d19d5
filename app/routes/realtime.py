import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.database import get_db
from app.dependencies import get_conversation_store, get_hub
from app.errors import Unauthenticated
from app.services.conversation_store import ConversationStore
from app.services.realtime import ConversationHub
from app.utils.auth import user_from_token
from app.utils.objectid import parse_oid

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])

WS_UNAUTHORIZED = 4401


@router.websocket("/ws")
async def conversation_socket(websocket: WebSocket,
                              token: Optional[str] = Query(None),
                              store: ConversationStore = Depends(get_conversation_store),
                              hub: ConversationHub = Depends(get_hub),
                              db: AsyncIOMotorDatabase = Depends(get_db)):
    """
    Client frames:  {"event": "join-conversation" | "leave-conversation", "conversationId": "..."}
    Server frames:  {"event": "joined" | "left" | "new-message" | "error", ...}
    """
    try:
        user = await user_from_token(token or "", db)
    except Unauthenticated:
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    await websocket.accept()
    logger.info("👤 User %s connected", user.id)

    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"event": "error", "message": "Frames must be JSON"})
                continue

            event = frame.get("event") if isinstance(frame, dict) else None
            if event not in ("join-conversation", "leave-conversation"):
                await websocket.send_json({"event": "error", "message": f"Unknown event: {event}"})
                continue

            # channels are keyed by the canonical lower-case id that broadcasts use
            cid = parse_oid(frame.get("conversationId"))
            if cid is None:
                await websocket.send_json({"event": "error", "message": "Invalid conversationId"})
                continue
            conversation_id = str(cid)

            if event == "join-conversation":
                if not await store.is_participant(conversation_id, user.id):
                    await websocket.send_json({"event": "error", "message": "Access denied",
                                               "conversationId": conversation_id})
                    continue
                hub.join(conversation_id, websocket)
                await websocket.send_json({"event": "joined", "conversationId": conversation_id})
                logger.info("✅ User %s joined conversation %s", user.id, conversation_id)

            else:
                hub.leave(conversation_id, websocket)
                await websocket.send_json({"event": "left", "conversationId": conversation_id})
                logger.info("User %s left conversation %s", user.id, conversation_id)
    except WebSocketDisconnect:
        logger.info("👤 User %s disconnected", user.id)
    finally:
        hub.disconnect(websocket)
