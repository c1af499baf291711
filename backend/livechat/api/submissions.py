from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from livechat.actions.schemas import ActionSubmissionResponse, SubmissionUpdate, submission_to_response
from livechat.actions.submissions import SubmissionStore
from livechat.core.security import get_current_user
from livechat.db.database import get_db

router = APIRouter()


@router.put("/{submission_id}", response_model=ActionSubmissionResponse)
async def update_submission(
    submission_id: str,
    payload: SubmissionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    submission = await SubmissionStore(db).update_submission(
        submission_id, payload.data, user_id=current_user["user_id"]
    )
    return submission_to_response(submission)


@router.delete("/{submission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_submission(
    submission_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    await SubmissionStore(db).delete_submission(submission_id, user_id=current_user["user_id"])
