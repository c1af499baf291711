"""
Action template store.

Templates are scoped to a project, written only by project managers and read
by any project member. Deleting a template is a soft delete: the row stays so
historical submissions keep a valid template_id, but every lookup here ignores it.
"""
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from livechat.actions.exceptions import BadRequestError, NotFoundError
from livechat.actions.schemas import (
    ActionDefinition,
    ActionTemplateCreate,
    ActionTemplateUpdate,
    serialize_json_field,
)
from livechat.actions.validator import duplicate_keys
from livechat.core.logging import actions_logger
from livechat.db.enums import ProjectRole
from livechat.db.models import ActionTemplate
from livechat.permissions.guards import require_project_member, require_project_role


def _serialize_definition(definition: ActionDefinition) -> str:
    stored = definition.to_storage()
    dupes = duplicate_keys(stored["fields"])
    if dupes:
        raise BadRequestError(f"Duplicate field keys: {', '.join(dupes)}")
    return serialize_json_field(stored)


class TemplateStore:

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Lookups (no permission checks, used by the coordinators)
    # ------------------------------------------------------------------

    async def find_template(self, project_id: int, template_id: int) -> Optional[ActionTemplate]:
        result = await self.db.execute(
            select(ActionTemplate).where(
                ActionTemplate.id == template_id,
                ActionTemplate.project_id == project_id,
                ActionTemplate.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def require_template(self, project_id: int, template_id: int) -> ActionTemplate:
        template = await self.find_template(project_id, template_id)
        if not template:
            raise NotFoundError("Action template not found")
        return template

    async def get_enabled_template(self, project_id: int, template_id: int) -> ActionTemplate:
        """The template must exist in the project and be enabled before anything new is built on it."""
        template = await self.require_template(project_id, template_id)
        if not template.is_enabled:
            raise BadRequestError("This action template is disabled")
        return template

    # ------------------------------------------------------------------
    # Manager / member operations
    # ------------------------------------------------------------------

    async def create_template(self, project_id: int, payload: ActionTemplateCreate, user_id: int) -> ActionTemplate:
        await require_project_role(self.db, user_id, project_id, ProjectRole.manager)

        template = ActionTemplate(
            project_id=project_id,
            name=payload.name,
            description=payload.description,
            definition=_serialize_definition(payload.definition),
            is_enabled=payload.is_enabled,
        )
        self.db.add(template)
        await self.db.commit()
        await self.db.refresh(template)

        actions_logger.info("Action template created", template_id=template.id, project_id=project_id, user_id=user_id)
        return template

    async def list_templates(self, project_id: int, user_id: int) -> List[ActionTemplate]:
        """Non-deleted templates, newest first."""
        await require_project_member(self.db, user_id, project_id)

        result = await self.db.execute(
            select(ActionTemplate)
            .where(ActionTemplate.project_id == project_id, ActionTemplate.deleted_at.is_(None))
            .order_by(ActionTemplate.created_at.desc(), ActionTemplate.id.desc())
        )
        return list(result.scalars().all())

    async def get_template(self, project_id: int, template_id: int, user_id: int) -> ActionTemplate:
        await require_project_member(self.db, user_id, project_id)
        return await self.require_template(project_id, template_id)

    async def update_template(
        self,
        project_id: int,
        template_id: int,
        payload: ActionTemplateUpdate,
        user_id: int,
    ) -> ActionTemplate:
        """Apply only the fields present in the request."""
        await require_project_role(self.db, user_id, project_id, ProjectRole.manager)
        template = await self.require_template(project_id, template_id)

        provided = payload.model_fields_set
        if "name" in provided and payload.name is not None:
            template.name = payload.name
        if "description" in provided:
            template.description = payload.description
        if "definition" in provided and payload.definition is not None:
            template.definition = _serialize_definition(payload.definition)
        if "is_enabled" in provided and payload.is_enabled is not None:
            template.is_enabled = payload.is_enabled

        await self.db.commit()
        await self.db.refresh(template)

        actions_logger.info("Action template updated", template_id=template.id, fields=sorted(provided))
        return template

    async def delete_template(self, project_id: int, template_id: int, user_id: int) -> None:
        """Soft delete. Templates are never removed from storage."""
        await require_project_role(self.db, user_id, project_id, ProjectRole.manager)
        template = await self.require_template(project_id, template_id)

        template.deleted_at = datetime.now(timezone.utc)
        await self.db.commit()

        actions_logger.info("Action template soft-deleted", template_id=template.id, project_id=project_id)

    async def toggle_template(self, project_id: int, template_id: int, user_id: int) -> ActionTemplate:
        await require_project_role(self.db, user_id, project_id, ProjectRole.manager)
        template = await self.require_template(project_id, template_id)

        template.is_enabled = not template.is_enabled
        await self.db.commit()
        await self.db.refresh(template)

        actions_logger.info("Action template toggled", template_id=template.id, is_enabled=template.is_enabled)
        return template
