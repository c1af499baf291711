"""
Action submission store.

Submissions are owned by exactly one agent (creator_id) or one visitor
(visitor_id). Agents record submissions directly against the live template;
visitor submissions are written by the visitor coordinator through
add_visitor_submission() inside its own transaction.

Deleting a submission removes the row. There is no soft delete here.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from livechat.actions.exceptions import BadRequestError, ForbiddenError, NotFoundError
from livechat.actions.lookups import get_conversation
from livechat.actions.schemas import ActionSubmissionCreate, parse_json_field, serialize_json_field
from livechat.actions.templates import TemplateStore
from livechat.actions.validator import check_action_data
from livechat.core.logging import actions_logger, log_operation
from livechat.db.enums import ActionSubmissionStatus
from livechat.db.models import ActionSubmission, ActionTemplate
from livechat.permissions.guards import require_project_member


class SubmissionStore:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.templates = TemplateStore(db)

    async def find_submission(self, submission_id: str) -> Optional[ActionSubmission]:
        result = await self.db.execute(select(ActionSubmission).where(ActionSubmission.id == submission_id))
        return result.scalar_one_or_none()

    async def find_by_form_request(self, form_request_message_id: int) -> Optional[ActionSubmission]:
        result = await self.db.execute(
            select(ActionSubmission).where(ActionSubmission.form_request_message_id == form_request_message_id)
        )
        return result.scalar_one_or_none()

    async def _require_submission(self, submission_id: str, conversation_id: Optional[int]) -> ActionSubmission:
        submission = await self.find_submission(submission_id)
        if not submission or (conversation_id is not None and submission.conversation_id != conversation_id):
            raise NotFoundError("Submission not found")
        return submission

    @log_operation("create_submission", actions_logger)
    async def create_submission(
        self,
        conversation_id: int,
        payload: ActionSubmissionCreate,
        user_id: int,
    ) -> ActionSubmission:
        """Agent records structured data against the live template."""
        conversation = await get_conversation(self.db, conversation_id)
        await require_project_member(self.db, user_id, conversation.project_id)

        template = await self.templates.get_enabled_template(conversation.project_id, payload.template_id)

        result = check_action_data(parse_json_field(template.definition) or {}, payload.data)
        if not result.valid:
            raise BadRequestError(f"Data does not match template definition: {result.summary()}")

        submission = ActionSubmission(
            template_id=template.id,
            conversation_id=conversation.id,
            creator_id=user_id,
            visitor_id=None,
            data=serialize_json_field(payload.data),
            status=ActionSubmissionStatus.submitted,
        )
        self.db.add(submission)
        await self.db.commit()
        await self.db.refresh(submission)
        return submission

    def add_visitor_submission(
        self,
        template_id: int,
        conversation_id: int,
        visitor_id: int,
        form_request_message_id: int,
        data: Dict[str, Any],
    ) -> ActionSubmission:
        """Stage a visitor submission. The caller flushes and commits."""
        submission = ActionSubmission(
            template_id=template_id,
            conversation_id=conversation_id,
            creator_id=None,
            visitor_id=visitor_id,
            form_request_message_id=form_request_message_id,
            data=serialize_json_field(data),
            status=ActionSubmissionStatus.submitted,
        )
        self.db.add(submission)
        return submission

    async def list_submissions(self, conversation_id: int, user_id: int) -> List[ActionSubmission]:
        """Submissions of a conversation, newest first."""
        conversation = await get_conversation(self.db, conversation_id)
        await require_project_member(self.db, user_id, conversation.project_id)

        result = await self.db.execute(
            select(ActionSubmission)
            .where(ActionSubmission.conversation_id == conversation_id)
            .order_by(ActionSubmission.created_at.desc(), ActionSubmission.id)
        )
        return list(result.scalars().all())

    @log_operation("update_submission", actions_logger)
    async def update_submission(
        self,
        submission_id: str,
        data: Dict[str, Any],
        user_id: Optional[int] = None,
        visitor_id: Optional[int] = None,
        conversation_id: Optional[int] = None,
    ) -> ActionSubmission:
        """
        Replace a submission's data.

        Only the agent who created it or the visitor who submitted it may do so.
        The new data is checked against the template's current definition.
        """
        submission = await self._require_submission(submission_id, conversation_id)

        is_owner = (
            (user_id is not None and submission.creator_id == user_id)
            or (visitor_id is not None and submission.visitor_id == visitor_id)
        )
        if not is_owner:
            raise ForbiddenError("You can only update your own submissions")

        result = await self.db.execute(
            select(ActionTemplate).where(
                ActionTemplate.id == submission.template_id,
                ActionTemplate.deleted_at.is_(None),
            )
        )
        template = result.scalar_one_or_none()
        if not template:
            raise NotFoundError("Template not found for validation")

        check = check_action_data(parse_json_field(template.definition) or {}, data)
        if not check.valid:
            raise BadRequestError(f"Data does not match template definition: {check.summary()}")

        submission.data = serialize_json_field(data)
        await self.db.commit()
        await self.db.refresh(submission)
        return submission

    @log_operation("delete_submission", actions_logger)
    async def delete_submission(
        self,
        submission_id: str,
        user_id: Optional[int] = None,
        visitor_id: Optional[int] = None,
        conversation_id: Optional[int] = None,
    ) -> None:
        """
        Hard delete.

        Agents may delete any submission in a project they belong to;
        visitors only their own.
        """
        submission = await self._require_submission(submission_id, conversation_id)

        if user_id is not None:
            conversation = await get_conversation(self.db, submission.conversation_id)
            await require_project_member(self.db, user_id, conversation.project_id)
        elif visitor_id is not None:
            if submission.visitor_id != visitor_id:
                raise ForbiddenError("You can only delete your own submissions")
        else:
            raise ForbiddenError("Authentication required")

        await self.db.delete(submission)
        await self.db.commit()
