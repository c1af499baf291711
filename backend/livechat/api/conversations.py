"""
Agent-side actions inside a conversation: recording submissions and pushing
form requests to the visitor.
"""
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from livechat.actions.form_requests import FormRequestCoordinator
from livechat.actions.schemas import (
    ActionSubmissionCreate,
    ActionSubmissionResponse,
    MessageResponse,
    SendFormRequest,
    message_to_response,
    submission_to_response,
)
from livechat.actions.submissions import SubmissionStore
from livechat.core.security import get_current_user
from livechat.db.database import get_db

router = APIRouter()


@router.post("/{conversation_id}/actions", response_model=ActionSubmissionResponse, status_code=status.HTTP_201_CREATED)
async def create_submission(
    conversation_id: int,
    payload: ActionSubmissionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    submission = await SubmissionStore(db).create_submission(conversation_id, payload, current_user["user_id"])
    return submission_to_response(submission)


@router.get("/{conversation_id}/actions", response_model=List[ActionSubmissionResponse])
async def list_submissions(
    conversation_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    submissions = await SubmissionStore(db).list_submissions(conversation_id, current_user["user_id"])
    return [submission_to_response(s) for s in submissions]


@router.post("/{conversation_id}/form-request", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_form_request(
    conversation_id: int,
    payload: SendFormRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    message = await FormRequestCoordinator(db).send_form_request(
        conversation_id,
        payload.template_id,
        current_user["user_id"],
        expires_at=payload.expires_at,
    )
    return message_to_response(message)
