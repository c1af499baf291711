"""
Action template management for a project.

Managers create, edit, toggle and delete templates; any project member can list
and read them.
"""
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from livechat.actions.schemas import (
    ActionTemplateCreate,
    ActionTemplateResponse,
    ActionTemplateUpdate,
    template_to_response,
)
from livechat.actions.templates import TemplateStore
from livechat.core.security import get_current_user
from livechat.db.database import get_db

router = APIRouter()


@router.post("/{project_id}/action-templates", response_model=ActionTemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    project_id: int,
    payload: ActionTemplateCreate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    template = await TemplateStore(db).create_template(project_id, payload, current_user["user_id"])
    return template_to_response(template)


@router.get("/{project_id}/action-templates", response_model=List[ActionTemplateResponse])
async def list_templates(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    templates = await TemplateStore(db).list_templates(project_id, current_user["user_id"])
    return [template_to_response(t) for t in templates]


@router.get("/{project_id}/action-templates/{template_id}", response_model=ActionTemplateResponse)
async def get_template(
    project_id: int,
    template_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    template = await TemplateStore(db).get_template(project_id, template_id, current_user["user_id"])
    return template_to_response(template)


@router.put("/{project_id}/action-templates/{template_id}", response_model=ActionTemplateResponse)
async def update_template(
    project_id: int,
    template_id: int,
    payload: ActionTemplateUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    template = await TemplateStore(db).update_template(project_id, template_id, payload, current_user["user_id"])
    return template_to_response(template)


@router.delete("/{project_id}/action-templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    project_id: int,
    template_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    await TemplateStore(db).delete_template(project_id, template_id, current_user["user_id"])


@router.patch("/{project_id}/action-templates/{template_id}/toggle", response_model=ActionTemplateResponse)
async def toggle_template(
    project_id: int,
    template_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    template = await TemplateStore(db).toggle_template(project_id, template_id, current_user["user_id"])
    return template_to_response(template)
