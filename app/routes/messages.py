from fastapi import APIRouter, Depends

from app.dependencies import get_conversation_store, get_hub
from app.models.message import ConversationCreate, MessageCreate
from app.services.conversation_store import ConversationStore
from app.services.realtime import ConversationHub
from app.utils.auth import TokenUser, get_current_user

router = APIRouter(prefix="/api", tags=["Messages"])


@router.get("/conversations")
async def get_conversations(user: TokenUser = Depends(get_current_user),
                            store: ConversationStore = Depends(get_conversation_store)):
    return {"success": True, "conversations": await store.list_conversations(user.id)}


@router.post("/conversations")
async def create_conversation(data: ConversationCreate,
                              user: TokenUser = Depends(get_current_user),
                              store: ConversationStore = Depends(get_conversation_store)):
    conversation = await store.get_or_create_conversation(user.id, data.other_user_id)
    return {"success": True, "conversation": conversation}


@router.get("/messages/{conversation_id}")
async def get_messages(conversation_id: str,
                       user: TokenUser = Depends(get_current_user),
                       store: ConversationStore = Depends(get_conversation_store)):
    return {"success": True, "messages": await store.list_messages(conversation_id, user.id)}


@router.post("/messages")
async def send_message(data: MessageCreate,
                       user: TokenUser = Depends(get_current_user),
                       store: ConversationStore = Depends(get_conversation_store),
                       hub: ConversationHub = Depends(get_hub)):
    message = await store.append_message(data.conversation_id, user.id, data.receiver_id, data.message)

    # real-time delivery to sockets viewing this conversation
    await hub.broadcast(message.conversation_id, "new-message", message)

    return {"success": True, "message": message}
