"""
Widget-facing routes. The visitor is identified by the X-Visitor-Id header and
may only act inside their own conversation.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from livechat.actions.exceptions import ForbiddenError
from livechat.actions.lookups import get_conversation
from livechat.actions.schemas import (
    ActionSubmissionResponse,
    SubmissionUpdate,
    VisitorFormSubmission,
    VisitorSubmissionResponse,
    message_to_response,
    submission_to_response,
)
from livechat.actions.submissions import SubmissionStore
from livechat.actions.visitor_submissions import VisitorSubmissionCoordinator
from livechat.api.deps import get_current_visitor
from livechat.db.database import get_db
from livechat.db.models import Visitor

router = APIRouter()


async def _require_own_conversation(db: AsyncSession, conversation_id: int, visitor: Visitor) -> None:
    conversation = await get_conversation(db, conversation_id)
    if conversation.visitor_id != visitor.id:
        raise ForbiddenError("This conversation belongs to another visitor")


@router.post(
    "/conversations/{conversation_id}/form-submissions",
    response_model=VisitorSubmissionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_form(
    conversation_id: int,
    payload: VisitorFormSubmission,
    db: AsyncSession = Depends(get_db),
    visitor: Visitor = Depends(get_current_visitor),
):
    submission, message = await VisitorSubmissionCoordinator(db).submit_form_as_visitor(
        conversation_id,
        visitor.id,
        payload.form_request_message_id,
        payload.data,
    )
    return VisitorSubmissionResponse(
        submission=submission_to_response(submission),
        message=message_to_response(message),
    )


@router.put("/conversations/{conversation_id}/submissions/{submission_id}", response_model=ActionSubmissionResponse)
async def update_submission(
    conversation_id: int,
    submission_id: str,
    payload: SubmissionUpdate,
    db: AsyncSession = Depends(get_db),
    visitor: Visitor = Depends(get_current_visitor),
):
    await _require_own_conversation(db, conversation_id, visitor)
    submission = await SubmissionStore(db).update_submission(
        submission_id, payload.data, visitor_id=visitor.id, conversation_id=conversation_id
    )
    return submission_to_response(submission)


@router.delete("/conversations/{conversation_id}/submissions/{submission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_submission(
    conversation_id: int,
    submission_id: str,
    db: AsyncSession = Depends(get_db),
    visitor: Visitor = Depends(get_current_visitor),
):
    await _require_own_conversation(db, conversation_id, visitor)
    await SubmissionStore(db).delete_submission(
        submission_id, visitor_id=visitor.id, conversation_id=conversation_id
    )
