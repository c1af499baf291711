"""
Request/response models for the action engine and the JSON helpers used to
store definitions, data and message metadata in Text columns.
"""
import json
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from livechat.db.enums import ActionFieldType
from livechat.db.models import ActionTemplate, ActionSubmission, Message


# ============================================================================
# JSON helpers
# ============================================================================

def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def parse_json_field(value: Optional[str]) -> Optional[Any]:
    """Parse JSON string field, return None if empty or invalid."""
    if not value:
        return None
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return None


def serialize_json_field(value: Optional[Any]) -> Optional[str]:
    """Serialize value to JSON string."""
    if value is None:
        return None
    return json.dumps(value, default=_json_default)


# ============================================================================
# Template definition
# ============================================================================

class ActionFieldDefinition(BaseModel):
    key: str = Field(..., min_length=1, max_length=100)
    label: str = Field(..., min_length=1, max_length=255)
    type: ActionFieldType
    required: bool
    options: Optional[List[str]] = None  # SELECT only


class ActionDefinition(BaseModel):
    fields: List[ActionFieldDefinition]

    def to_storage(self) -> dict:
        """The persisted shape: {"fields": [{key, label, type, required, options?}]}."""
        return {
            "fields": [f.model_dump(mode="json", exclude_none=True) for f in self.fields]
        }


# ============================================================================
# Templates
# ============================================================================

class ActionTemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    definition: ActionDefinition
    is_enabled: bool = True


class ActionTemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    definition: Optional[ActionDefinition] = None
    is_enabled: Optional[bool] = None


class ActionTemplateResponse(BaseModel):
    id: int
    project_id: int
    name: str
    description: Optional[str]
    definition: dict
    is_enabled: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


def template_to_response(template: ActionTemplate) -> ActionTemplateResponse:
    return ActionTemplateResponse(
        id=template.id,
        project_id=template.project_id,
        name=template.name,
        description=template.description,
        definition=parse_json_field(template.definition) or {"fields": []},
        is_enabled=template.is_enabled,
        created_at=template.created_at,
        updated_at=template.updated_at,
    )


# ============================================================================
# Submissions
# ============================================================================

class ActionSubmissionCreate(BaseModel):
    template_id: int
    data: Dict[str, Any] = Field(..., description="Field values keyed by field key")


class SubmissionUpdate(BaseModel):
    data: Dict[str, Any]


class ActionSubmissionResponse(BaseModel):
    id: str
    template_id: int
    conversation_id: int
    creator_id: Optional[int]
    visitor_id: Optional[int]
    form_request_message_id: Optional[int]
    data: dict
    status: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


def submission_to_response(submission: ActionSubmission) -> ActionSubmissionResponse:
    return ActionSubmissionResponse(
        id=submission.id,
        template_id=submission.template_id,
        conversation_id=submission.conversation_id,
        creator_id=submission.creator_id,
        visitor_id=submission.visitor_id,
        form_request_message_id=submission.form_request_message_id,
        data=parse_json_field(submission.data) or {},
        status=submission.status.value if hasattr(submission.status, "value") else submission.status,
        created_at=submission.created_at,
        updated_at=submission.updated_at,
    )


# ============================================================================
# Chat forms
# ============================================================================

class SendFormRequest(BaseModel):
    template_id: int
    expires_at: Optional[datetime] = None


class VisitorFormSubmission(BaseModel):
    form_request_message_id: int
    data: Dict[str, Any]


class MessageResponse(BaseModel):
    id: int
    conversation_id: int
    content: Optional[str]
    content_type: str
    metadata: Optional[dict]
    sender_id: str
    recipient_id: str
    from_customer: bool
    status: str
    created_at: Optional[datetime]


def message_to_response(message: Message) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        conversation_id=message.conversation_id,
        content=message.content,
        content_type=message.content_type.value if hasattr(message.content_type, "value") else message.content_type,
        metadata=parse_json_field(message.meta),
        sender_id=message.sender_id,
        recipient_id=message.recipient_id,
        from_customer=message.from_customer,
        status=message.status.value if hasattr(message.status, "value") else message.status,
        created_at=message.created_at,
    )


class VisitorSubmissionResponse(BaseModel):
    submission: ActionSubmissionResponse
    message: MessageResponse
