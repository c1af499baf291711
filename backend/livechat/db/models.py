import uuid

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Index,
    UniqueConstraint, CheckConstraint, text,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from livechat.db.database import Base
from livechat.db.enums import (
    ProjectRole, ConversationStatus, MessageContentType, MessageStatus,
    ActionSubmissionStatus,
)


def _enum_column_type(enum_cls, name: str) -> SAEnum:
    # VARCHAR + CHECK on every backend; values (not member names) are persisted
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=lambda members: [m.value for m in members],
    )


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    members = relationship("ProjectMember", back_populates="project")


class User(Base):
    """Agent account. Authentication lives elsewhere; the engine only needs identity."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    display_name = Column(String(100))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    project_memberships = relationship("ProjectMember", back_populates="user")


class ProjectMember(Base):
    __tablename__ = "project_members"
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_member"),
    )

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(_enum_column_type(ProjectRole, "projectrole"), default=ProjectRole.agent, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    project = relationship("Project", back_populates="members")
    user = relationship("User", back_populates="project_memberships")


class Visitor(Base):
    __tablename__ = "visitors"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    visitor_uid = Column(String(100), unique=True, index=True, nullable=False)
    display_name = Column(String(100))
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        Index("ix_conversations_project_id", "project_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    visitor_id = Column(Integer, ForeignKey("visitors.id", ondelete="CASCADE"), nullable=False)
    status = Column(_enum_column_type(ConversationStatus, "conversationstatus"), default=ConversationStatus.open, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    visitor = relationship("Visitor")


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_content_type", "conversation_id", "content_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=True)
    content_type = Column(_enum_column_type(MessageContentType, "messagecontenttype"), default=MessageContentType.text, nullable=False)
    # JSON document; named `meta` on the class because `metadata` is reserved by declarative
    meta = Column("metadata", Text, nullable=True)
    sender_id = Column(String(100), nullable=False)
    recipient_id = Column(String(100), nullable=False)
    from_customer = Column(Boolean, default=False, nullable=False)
    status = Column(_enum_column_type(MessageStatus, "messagestatus"), default=MessageStatus.sending, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    conversation = relationship("Conversation")


class ActionTemplate(Base):
    __tablename__ = "action_templates"
    __table_args__ = (
        Index("ix_action_templates_project_id", "project_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    definition = Column(Text, nullable=False)  # JSON {"fields": [...]}
    is_enabled = Column(Boolean, default=True, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)  # soft delete
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ActionSubmission(Base):
    """
    A filled action template.

    Exactly one of creator_id (agent) or visitor_id is set; the CHECK constraint
    enforces it because agent and visitor submissions are written by separate paths.
    form_request_message_id is unique among non-null values: one submission per form request.
    """
    __tablename__ = "action_submissions"
    __table_args__ = (
        CheckConstraint(
            "(creator_id IS NOT NULL AND visitor_id IS NULL) OR "
            "(creator_id IS NULL AND visitor_id IS NOT NULL)",
            name="ck_action_submissions_single_owner",
        ),
        Index(
            "uq_action_submissions_form_request_message",
            "form_request_message_id",
            unique=True,
            postgresql_where=text("form_request_message_id IS NOT NULL"),
            sqlite_where=text("form_request_message_id IS NOT NULL"),
        ),
        Index("ix_action_submissions_conversation_id", "conversation_id"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    template_id = Column(Integer, ForeignKey("action_templates.id"), nullable=False)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    creator_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    visitor_id = Column(Integer, ForeignKey("visitors.id", ondelete="CASCADE"), nullable=True)
    form_request_message_id = Column(Integer, ForeignKey("messages.id", ondelete="SET NULL"), nullable=True)
    data = Column(Text, nullable=False)  # JSON
    status = Column(
        _enum_column_type(ActionSubmissionStatus, "actionsubmissionstatus"),
        default=ActionSubmissionStatus.submitted,
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    template = relationship("ActionTemplate")


class PendingFormRequest(Base):
    """
    The unanswered form request of a conversation, if any.
    The primary key on conversation_id is what keeps concurrent senders from
    both leaving a request open; the row is removed when a visitor answers.
    """
    __tablename__ = "pending_form_requests"

    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), primary_key=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
