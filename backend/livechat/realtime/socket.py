"""
Socket.IO server for real-time delivery of form events.

Rooms:
- project:{project_id} - agents of a project
- conversation:{conversation_id} - the visitor and any agent watching the conversation

Events:
- form:request - an agent pushed a form to the visitor
- form:submitted - the visitor answered a form
"""
import socketio
from typing import Dict, Optional, Tuple
from jose import JWTError, jwt
from sqlalchemy import select

from livechat.core.config import settings
from livechat.core.logging import realtime_logger
from livechat.db.database import async_session
from livechat.db.models import Conversation, ProjectMember, Visitor

sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=settings.CORS_ORIGINS,
    logger=False,
    engineio_logger=False,
)

# sid -> {"kind": "agent", "user_id": ...} | {"kind": "visitor", "visitor_id": ..., "conversation_id": ...}
connected_clients: Dict[str, dict] = {}


def _as_id(value) -> Optional[int]:
    """Client-sent ids arrive as ints or numeric strings; anything else is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdecimal():
        return int(value)
    return None


async def _authenticate(auth: Optional[dict]) -> Tuple[bool, Optional[dict]]:
    """
    Agents connect with {"token": <jwt>}.
    Visitors connect with {"visitor_uid": ..., "conversation_id": ...}.
    """
    if not auth or not isinstance(auth, dict):
        return False, None

    token = auth.get("token")
    if token:
        try:
            payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        except JWTError:
            return False, None
        if not str(payload.get("sub", "")).isdigit():
            return False, None
        return True, {"kind": "agent", "user_id": int(payload["sub"])}

    visitor_uid = auth.get("visitor_uid")
    conversation_id = _as_id(auth.get("conversation_id"))
    if not visitor_uid or conversation_id is None:
        return False, None

    async with async_session() as db:
        result = await db.execute(
            select(Conversation.id, Visitor.id)
            .join(Visitor, Visitor.id == Conversation.visitor_id)
            .where(Conversation.id == conversation_id, Visitor.visitor_uid == visitor_uid)
        )
        row = result.first()
    if not row:
        return False, None
    return True, {"kind": "visitor", "visitor_id": row[1], "conversation_id": row[0]}


@sio.event
async def connect(sid: str, environ: dict, auth: dict = None):
    is_authenticated, client = await _authenticate(auth)
    if not is_authenticated:
        realtime_logger.warning("Socket connection rejected", sid=sid)
        return False

    connected_clients[sid] = client

    if client["kind"] == "agent":
        async with async_session() as db:
            result = await db.execute(
                select(ProjectMember.project_id).where(ProjectMember.user_id == client["user_id"])
            )
            project_ids = [r[0] for r in result.all()]
        for project_id in project_ids:
            await sio.enter_room(sid, f"project:{project_id}")
    else:
        await sio.enter_room(sid, f"conversation:{client['conversation_id']}")

    realtime_logger.info("Socket connected", sid=sid, kind=client["kind"])
    return True


@sio.on("conversation:join")
async def join_conversation(sid: str, data: dict):
    """Agents opt in to a conversation's room while they have it open."""
    client = connected_clients.get(sid)
    if not client or client["kind"] != "agent":
        return {"ok": False}

    conversation_id = _as_id(data.get("conversation_id")) if isinstance(data, dict) else None
    if conversation_id is None:
        return {"ok": False}
    async with async_session() as db:
        result = await db.execute(
            select(Conversation.id)
            .join(ProjectMember, ProjectMember.project_id == Conversation.project_id)
            .where(Conversation.id == conversation_id, ProjectMember.user_id == client["user_id"])
        )
        allowed = result.first() is not None
    if not allowed:
        return {"ok": False}

    await sio.enter_room(sid, f"conversation:{conversation_id}")
    return {"ok": True}


@sio.event
async def disconnect(sid: str):
    connected_clients.pop(sid, None)
    realtime_logger.debug("Socket disconnected", sid=sid)


# ============================================================
# Emit helpers (called by the engine's notifier)
# ============================================================

async def emit_form_request(conversation_id: int, project_id: int, payload: dict):
    await sio.emit("form:request", payload, room=f"conversation:{conversation_id}")
    await sio.emit("form:request", payload, room=f"project:{project_id}")
    realtime_logger.debug("Emitted form:request", conversation_id=conversation_id)


async def emit_form_submitted(conversation_id: int, payload: dict):
    await sio.emit("form:submitted", payload, room=f"conversation:{conversation_id}")
    realtime_logger.debug("Emitted form:submitted", conversation_id=conversation_id)
