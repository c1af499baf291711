from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from livechat.db.models import ProjectMember
from livechat.db.enums import ProjectRole


async def get_project_roles(
    db: AsyncSession,
    user_id: int,
    project_id: int,
) -> list[ProjectRole]:
    result = await db.execute(
        select(ProjectMember.role)
        .where(ProjectMember.user_id == user_id)
        .where(ProjectMember.project_id == project_id)
    )
    return [ProjectRole(r[0]) for r in result.all()]
