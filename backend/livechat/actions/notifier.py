"""
Fire-and-forget delivery of engine events.

The engine calls these after its transaction has committed. Delivery runs in a
background task so the request never waits on it, and any failure is logged and
dropped: a lost notification must not undo a persisted form request or submission.
"""
import asyncio
from typing import Coroutine, Optional, Protocol, Set

from livechat.actions.schemas import MessageResponse
from livechat.core.config import settings
from livechat.core.logging import realtime_logger


class EventNotifier(Protocol):

    def form_request_sent(
        self,
        conversation_id: int,
        project_id: int,
        visitor_uid: Optional[str],
        message: MessageResponse,
    ) -> None:
        ...

    def form_submitted(
        self,
        conversation_id: int,
        submission_id: str,
        message: MessageResponse,
    ) -> None:
        ...


class NullEventNotifier:
    """Drops every event."""

    def form_request_sent(self, conversation_id, project_id, visitor_uid, message) -> None:
        return None

    def form_submitted(self, conversation_id, submission_id, message) -> None:
        return None


class SocketEventNotifier:
    """Pushes engine events to Socket.IO rooms."""

    def __init__(self):
        # strong refs so pending deliveries are not garbage collected mid-flight
        self._pending: Set[asyncio.Task] = set()

    def _schedule(self, event: str, coro: Coroutine) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(lambda t: self._finish(event, t))

    def _finish(self, event: str, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            realtime_logger.warning(f"Delivery of {event} failed", error=exc)

    def form_request_sent(
        self,
        conversation_id: int,
        project_id: int,
        visitor_uid: Optional[str],
        message: MessageResponse,
    ) -> None:
        # No-op during tests to avoid external sockets
        if settings.TESTING:
            return

        from livechat.realtime.socket import emit_form_request

        payload = {
            "conversation_id": conversation_id,
            "project_id": project_id,
            "visitor_uid": visitor_uid,
            "message": message.model_dump(mode="json"),
        }
        self._schedule("form.request.sent", emit_form_request(conversation_id, project_id, payload))

    def form_submitted(
        self,
        conversation_id: int,
        submission_id: str,
        message: MessageResponse,
    ) -> None:
        if settings.TESTING:
            return

        from livechat.realtime.socket import emit_form_submitted

        payload = {
            "conversation_id": conversation_id,
            "submission_id": submission_id,
            "message": message.model_dump(mode="json"),
        }
        self._schedule("form.submitted", emit_form_submitted(conversation_id, payload))


socket_notifier = SocketEventNotifier()


def notify_safely(call, *args) -> None:
    """Invoke a notifier method, logging instead of raising if it blows up synchronously."""
    try:
        call(*args)
    except Exception as e:
        realtime_logger.warning(f"Notifier {getattr(call, '__name__', call)!s} raised", error=e)
