from sqlalchemy.ext.asyncio import AsyncSession

from livechat.db.enums import ProjectRole
from livechat.permissions.repository import get_project_roles

# A role grants itself plus everything listed here
ROLE_IMPLIES: dict[ProjectRole, set[ProjectRole]] = {
    ProjectRole.manager: {ProjectRole.manager, ProjectRole.agent},
    ProjectRole.agent: {ProjectRole.agent},
}


class ProjectPermissionService:
    """Resolve a user's standing in a project. This is the engine's role-check collaborator."""

    @staticmethod
    async def is_project_member(db: AsyncSession, user_id: int, project_id: int) -> bool:
        roles = await get_project_roles(db, user_id, project_id)
        return bool(roles)

    @staticmethod
    async def has_project_role(
        db: AsyncSession,
        user_id: int,
        project_id: int,
        role: ProjectRole,
    ) -> bool:
        """
        True if ANY of the user's roles in the project grants `role`.
        Managers satisfy agent checks.
        """
        granted: set[ProjectRole] = set()
        for r in await get_project_roles(db, user_id, project_id):
            granted |= ROLE_IMPLIES.get(r, set())
        return role in granted


permission_service = ProjectPermissionService()
