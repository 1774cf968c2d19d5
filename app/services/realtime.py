import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from app import config

logger = logging.getLogger(__name__)


class ConversationHub:
    """In-process broadcast channels, one per conversation id.

    Delivery is best-effort: a socket that fails or stalls on a send is dropped
    from every channel. Nothing is replayed for sockets that join later.
    """

    def __init__(self, send_timeout: Optional[float] = None):
        self.channels: Dict[str, Set[WebSocket]] = defaultdict(set)
        self._locks: Dict[str, asyncio.Lock] = {}
        self.send_timeout = config.WS_SEND_TIMEOUT_SECONDS if send_timeout is None else send_timeout

    def join(self, conversation_id: str, websocket: WebSocket):
        self.channels[conversation_id].add(websocket)
        logger.debug("Socket joined conversation %s (%d members)",
                     conversation_id, len(self.channels[conversation_id]))

    def leave(self, conversation_id: str, websocket: WebSocket):
        members = self.channels.get(conversation_id)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self.channels[conversation_id]
            self._drop_idle_lock(conversation_id)

    def disconnect(self, websocket: WebSocket):
        for conversation_id in [cid for cid, members in self.channels.items() if websocket in members]:
            self.leave(conversation_id, websocket)

    def member_count(self, conversation_id: str) -> int:
        return len(self.channels.get(conversation_id, ()))

    def _drop_idle_lock(self, conversation_id: str):
        # a held lock stays until its broadcast finishes, so later broadcasts queue behind it
        lock = self._locks.get(conversation_id)
        if lock is not None and not lock.locked() and conversation_id not in self.channels:
            del self._locks[conversation_id]

    async def _send(self, conversation_id: str, websocket: WebSocket, payload: dict) -> bool:
        try:
            await asyncio.wait_for(websocket.send_json(payload), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning("Dropping socket from conversation %s after send timed out", conversation_id)
        except Exception as e:
            logger.warning("Dropping socket from conversation %s after failed send: %s",
                           conversation_id, e)
        self.disconnect(websocket)
        return False

    async def broadcast(self, conversation_id: str, event: str, data: Any) -> int:
        """Send ``event`` to every socket joined to the channel; returns deliveries."""
        if not self.channels.get(conversation_id):
            return 0

        payload = {"event": event, "data": jsonable_encoder(data)}
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        delivered = 0
        # serialized per channel so members see messages in append order
        async with lock:
            for websocket in list(self.channels.get(conversation_id, ())):
                if await self._send(conversation_id, websocket, payload):
                    delivered += 1
        self._drop_idle_lock(conversation_id)
        return delivered


hub = ConversationHub()
