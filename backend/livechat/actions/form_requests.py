"""
Agent -> visitor form requests.

A form request is a chat message whose metadata carries a snapshot of the
template at send time:

    {"templateId", "templateName", "templateDescription"?, "definition", "expiresAt"?}

Later edits to the template never reach an already-sent request.

A conversation has at most one unanswered request. The message scan in
has_pending_form_request() gives the quick answer; the pending_form_requests
row written in the same transaction as the message is what actually stops two
concurrent senders.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from livechat.actions.exceptions import BadRequestError, ConflictError
from livechat.actions.lookups import get_conversation
from livechat.actions.notifier import EventNotifier, notify_safely, socket_notifier
from livechat.actions.schemas import message_to_response, parse_json_field, serialize_json_field
from livechat.actions.submissions import SubmissionStore
from livechat.actions.templates import TemplateStore
from livechat.core.config import settings
from livechat.core.logging import actions_logger, log_operation
from livechat.db.database import is_unique_violation
from livechat.db.enums import MessageContentType, MessageStatus
from livechat.db.models import ActionTemplate, Message, PendingFormRequest
from livechat.permissions.guards import require_project_member

PENDING_CONFLICT = "A form request is already pending for this conversation"


def to_iso8601(value: datetime) -> str:
    """UTC, millisecond precision, trailing Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_iso8601(value: Optional[str]) -> Optional[datetime]:
    """Inverse of to_iso8601; naive values are taken as UTC. Unparseable values yield None."""
    if not value or not isinstance(value, str):
        return None
    candidate = value.strip()
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_form_request_metadata(template: ActionTemplate, expires_at: Optional[datetime]) -> dict:
    """Snapshot of the template as it is right now."""
    # definition is re-parsed from storage, so the snapshot shares no objects with the template
    metadata = {
        "templateId": template.id,
        "templateName": template.name,
        "definition": parse_json_field(template.definition) or {"fields": []},
    }
    if template.description is not None:
        metadata["templateDescription"] = template.description
    if expires_at is not None:
        metadata["expiresAt"] = to_iso8601(expires_at)
    return metadata


class FormRequestCoordinator:

    def __init__(self, db: AsyncSession, notifier: EventNotifier = socket_notifier):
        self.db = db
        self.notifier = notifier
        self.templates = TemplateStore(db)
        self.submissions = SubmissionStore(db)

    async def latest_form_request(self, conversation_id: int) -> Optional[Message]:
        result = await self.db.execute(
            select(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.content_type == MessageContentType.form_request,
            )
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def has_pending_form_request(self, conversation_id: int) -> bool:
        """
        True if the conversation's most recent form request is still unanswered.

        A request counts as answered once a submission references it, or once its
        metadata records a submissionId (the submission may have been deleted since).
        Expired requests still count as unanswered.
        """
        request_message = await self.latest_form_request(conversation_id)
        if not request_message:
            return False

        metadata = parse_json_field(request_message.meta) or {}
        if metadata.get("submissionId"):
            return False

        submission = await self.submissions.find_by_form_request(request_message.id)
        return submission is None

    def _check_expiry(self, expires_at: Optional[datetime]) -> Optional[datetime]:
        if expires_at is None:
            return None
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        now = datetime.now(timezone.utc)
        if expires_at <= now:
            raise BadRequestError("expires_at must be in the future")
        if settings.FORM_REQUEST_MAX_TTL_HOURS and expires_at - now > timedelta(hours=settings.FORM_REQUEST_MAX_TTL_HOURS):
            raise BadRequestError(
                f"expires_at may be at most {settings.FORM_REQUEST_MAX_TTL_HOURS} hours ahead"
            )
        return expires_at

    @log_operation("send_form_request", actions_logger)
    async def send_form_request(
        self,
        conversation_id: int,
        template_id: int,
        user_id: int,
        expires_at: Optional[datetime] = None,
    ) -> Message:
        """
        Push a template to the conversation's visitor as a form request message.

        Raises:
            NotFoundError: unknown conversation or template
            ForbiddenError: caller is not a member of the conversation's project
            BadRequestError: template disabled, or expires_at not in the future
            ConflictError: the conversation already has an unanswered form request
        """
        conversation = await get_conversation(self.db, conversation_id, with_visitor=True)
        await require_project_member(self.db, user_id, conversation.project_id)

        template = await self.templates.get_enabled_template(conversation.project_id, template_id)
        expires_at = self._check_expiry(expires_at)

        if await self.has_pending_form_request(conversation.id):
            raise ConflictError(PENDING_CONFLICT)

        visitor_uid = conversation.visitor.visitor_uid if conversation.visitor else None
        message = Message(
            conversation_id=conversation.id,
            content=f"Form request: {template.name}",
            content_type=MessageContentType.form_request,
            meta=serialize_json_field(build_form_request_metadata(template, expires_at)),
            sender_id=str(user_id),
            recipient_id=visitor_uid or str(conversation.id),
            from_customer=False,
            status=MessageStatus.sent,
        )
        self.db.add(message)

        try:
            await self.db.flush()
            self.db.add(PendingFormRequest(conversation_id=conversation.id, message_id=message.id))
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if not is_unique_violation(e):
                raise
            actions_logger.warning("Concurrent form request lost the race", conversation_id=conversation_id, error=e)
            raise ConflictError(PENDING_CONFLICT)

        await self.db.refresh(message)
        actions_logger.info(
            "Form request sent",
            conversation_id=conversation.id,
            message_id=message.id,
            template_id=template.id,
        )

        notify_safely(
            self.notifier.form_request_sent,
            conversation.id,
            conversation.project_id,
            visitor_uid,
            message_to_response(message),
        )
        return message
