"""
Visitor answers to form requests.

The visitor's data is always checked against the snapshot stored in the form
request message, never against the live template. The live template is only
looked up to obtain a template_id for the submission row.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from livechat.actions.exceptions import BadRequestError, ConflictError, ForbiddenError, GoneError, NotFoundError
from livechat.actions.form_requests import parse_iso8601
from livechat.actions.lookups import find_message, get_conversation
from livechat.actions.notifier import EventNotifier, notify_safely, socket_notifier
from livechat.actions.schemas import message_to_response, parse_json_field, serialize_json_field
from livechat.actions.submissions import SubmissionStore
from livechat.actions.templates import TemplateStore
from livechat.actions.validator import check_action_data
from livechat.core.logging import actions_logger, log_operation
from livechat.db.database import is_unique_violation
from livechat.db.enums import MessageContentType, MessageStatus
from livechat.db.models import ActionSubmission, Message, PendingFormRequest, Visitor

ALREADY_SUBMITTED = "This form has already been submitted"


class VisitorSubmissionCoordinator:

    def __init__(self, db: AsyncSession, notifier: EventNotifier = socket_notifier):
        self.db = db
        self.notifier = notifier
        self.templates = TemplateStore(db)
        self.submissions = SubmissionStore(db)

    async def _visitor_uid(self, visitor_id: int) -> str:
        result = await self.db.execute(select(Visitor.visitor_uid).where(Visitor.id == visitor_id))
        return result.scalar_one_or_none() or str(visitor_id)

    @log_operation("submit_form_as_visitor", actions_logger)
    async def submit_form_as_visitor(
        self,
        conversation_id: int,
        visitor_id: int,
        form_request_message_id: int,
        data: Dict[str, Any],
    ) -> Tuple[ActionSubmission, Message]:
        """
        Record the visitor's answer to a form request.

        The submission row, the form_submission chat message and the submissionId
        written back onto the request message are committed together.

        Raises:
            NotFoundError: unknown conversation, or the template is gone
            ForbiddenError: the visitor is not the conversation's visitor
            BadRequestError: not a form request of this conversation, already answered, invalid data
            GoneError: the request's expiresAt has passed
            ConflictError: a concurrent submission for the same request won
        """
        conversation = await get_conversation(self.db, conversation_id)
        if conversation.visitor_id != visitor_id:
            raise ForbiddenError("This conversation belongs to another visitor")

        request_message = await find_message(self.db, form_request_message_id)
        if not request_message or request_message.conversation_id != conversation.id:
            raise BadRequestError("Form request not found")
        if request_message.content_type != MessageContentType.form_request:
            raise BadRequestError("Invalid form request message")

        # Fast path only. The unique index on form_request_message_id is the real guard.
        if await self.submissions.find_by_form_request(request_message.id):
            raise BadRequestError(ALREADY_SUBMITTED)

        metadata = parse_json_field(request_message.meta) or {}
        expires_at = parse_iso8601(metadata.get("expiresAt"))
        if expires_at is not None and expires_at < datetime.now(timezone.utc):
            raise GoneError("This form request has expired")

        result = check_action_data(metadata.get("definition") or {}, data)
        if not result.valid:
            raise BadRequestError(f"Data does not match form definition: {result.summary()}")

        template = await self.templates.find_template(conversation.project_id, metadata.get("templateId"))
        if not template:
            raise NotFoundError("Action template no longer exists")

        visitor_uid = await self._visitor_uid(visitor_id)
        template_name = metadata.get("templateName") or template.name

        try:
            submission = self.submissions.add_visitor_submission(
                template_id=template.id,
                conversation_id=conversation.id,
                visitor_id=visitor_id,
                form_request_message_id=request_message.id,
                data=data,
            )
            await self.db.flush()

            submission_message = Message(
                conversation_id=conversation.id,
                content=f"Form submitted: {template_name}",
                content_type=MessageContentType.form_submission,
                meta=serialize_json_field({
                    "formRequestMessageId": request_message.id,
                    "submissionId": submission.id,
                    "templateName": template_name,
                    "data": data,
                }),
                sender_id=visitor_uid,
                recipient_id=request_message.sender_id,
                from_customer=True,
                status=MessageStatus.sent,
            )
            self.db.add(submission_message)

            # Answered requests carry their submissionId so readers need no join
            request_message.meta = serialize_json_field({**metadata, "submissionId": submission.id})

            await self.db.execute(
                delete(PendingFormRequest).where(
                    PendingFormRequest.conversation_id == conversation.id,
                    PendingFormRequest.message_id == request_message.id,
                )
            )
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if not is_unique_violation(e):
                raise
            actions_logger.warning(
                "Concurrent visitor submission lost the race",
                form_request_message_id=form_request_message_id,
                error=e,
            )
            raise ConflictError(ALREADY_SUBMITTED)

        await self.db.refresh(submission)
        await self.db.refresh(submission_message)
        actions_logger.info(
            "Form submitted by visitor",
            conversation_id=conversation.id,
            submission_id=submission.id,
            form_request_message_id=request_message.id,
        )

        notify_safely(
            self.notifier.form_submitted,
            conversation.id,
            submission.id,
            message_to_response(submission_message),
        )
        return submission, submission_message
