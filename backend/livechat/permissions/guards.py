from sqlalchemy.ext.asyncio import AsyncSession

from livechat.actions.exceptions import ForbiddenError
from livechat.core.logging import api_logger
from livechat.db.enums import ProjectRole
from livechat.permissions.service import permission_service


async def require_project_member(
    db: AsyncSession,
    user_id: int,
    project_id: int,
    detail: str = "You do not have access to this project",
) -> None:
    """Raise 403 unless the user belongs to the project in any role."""
    if not await permission_service.is_project_member(db, user_id, project_id):
        api_logger.info(f"[PERMS_DENIED] user_id={user_id} project_id={project_id} need=member")
        raise ForbiddenError(detail)


async def require_project_role(
    db: AsyncSession,
    user_id: int,
    project_id: int,
    role: ProjectRole,
    detail: str = "Only managers can manage action templates",
) -> None:
    """Raise 403 unless the user holds `role` (or a role implying it) in the project."""
    if not await permission_service.has_project_role(db, user_id, project_id, role):
        api_logger.info(f"[PERMS_DENIED] user_id={user_id} project_id={project_id} need={role.value}")
        raise ForbiddenError(detail)
