import asyncio
import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from threadsync.config import PRESENCE_HEARTBEAT_SECONDS
from threadsync.database.connection import store_dependency
from threadsync.repositories.document_store import DocumentStore, StoreError
from threadsync.repositories.user_repository import UserRepository
from threadsync.schemas.chat import SendMessageIn
from threadsync.services.chat_service import ChatService
from threadsync.utils.websocket_manager import ConnectionManager


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["chat"])
manager = ConnectionManager()


@router.websocket("/ws/chat/{user_id}")
async def chat_socket(websocket: WebSocket, user_id: str, store: DocumentStore = Depends(store_dependency)):
    await manager.connect(user_id, websocket)
    outbox: asyncio.Queue = asyncio.Queue()
    service = ChatService(store, user_id, lambda kind, payload: outbox.put_nowait({"type": kind, **payload}))
    users = UserRepository(store)

    async def _sender():
        while True:
            frame = await outbox.get()
            await websocket.send_text(json.dumps(frame))

    # own presence heartbeat, read back by peers' presence trackers
    async def _presence_heartbeat():
        while True:
            try:
                await users.touch_presence(user_id, online=True)
            except StoreError as exc:
                logger.debug("Presence heartbeat for %s failed: %s", user_id, exc)
            await asyncio.sleep(PRESENCE_HEARTBEAT_SECONDS)

    sender_task = asyncio.create_task(_sender())
    heartbeat_task = asyncio.create_task(_presence_heartbeat())
    service.start()
    peer_id = websocket.query_params.get("peer_id")
    if peer_id:
        service.open_peer(peer_id)

    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg: Dict[str, Any] = json.loads(data)
            except ValueError:
                outbox.put_nowait({"type": "error", "scope": "frame", "message": "Invalid message payload"})
                continue
            if not isinstance(msg, dict):
                outbox.put_nowait({"type": "error", "scope": "frame", "message": "Invalid message payload"})
                continue
            # Expect msg = {"type": "select|open_peer|send|typing_start|typing_stop", ...}
            kind = msg.get("type")

            if kind == "select":
                if not service.select_thread(str(msg.get("thread_id") or "")):
                    outbox.put_nowait({"type": "error", "scope": "select", "message": "Unknown conversation"})
                continue

            if kind == "open_peer":
                service.open_peer(str(msg.get("peer_id") or ""))
                continue

            if kind in ("typing_start", "typing_stop"):
                if msg.get("to"):
                    await manager.send_frame(str(msg["to"]), {"type": kind, "from": user_id})
                continue

            if kind == "send":
                try:
                    message_id = await service.send_message(str(msg.get("content") or ""), msg.get("to"))
                except ValueError as exc:
                    outbox.put_nowait({"type": "error", "scope": "send", "message": str(exc)})
                    continue
                outbox.put_nowait(
                    {
                        "type": "ack",
                        "message_id": message_id,
                        "client_message_id": msg.get("client_message_id"),
                        "ok": message_id is not None,
                    }
                )
                continue

            outbox.put_nowait({"type": "error", "scope": "frame", "message": "Invalid message payload"})
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(user_id, websocket)
        for task in (sender_task, heartbeat_task):
            task.cancel()
        await asyncio.gather(sender_task, heartbeat_task, return_exceptions=True)
        await service.close()
        if not manager.is_connected(user_id):
            try:
                await users.touch_presence(user_id, online=False)
            except StoreError as exc:
                logger.debug("Marking %s offline failed: %s", user_id, exc)


@router.post("/{user_id}/send")
async def send_message(user_id: str, body: SendMessageIn, store: DocumentStore = Depends(store_dependency)):
    """Send without a live session: resolves (or creates) the conversation first."""
    if not body.peer_id:
        raise HTTPException(status_code=400, detail="peer_id is required")
    service = ChatService(store, user_id, lambda kind, payload: None)
    try:
        message_id = await service.send_message(body.content, body.peer_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    finally:
        await service.close()
    if message_id is None:
        raise HTTPException(status_code=503, detail="Failed to send message.")
    return {"message_id": message_id}
