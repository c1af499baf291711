import enum


class ProjectRole(str, enum.Enum):
    manager = "manager"
    agent = "agent"


class ConversationStatus(str, enum.Enum):
    open = "open"
    pending = "pending"
    closed = "closed"


class MessageContentType(str, enum.Enum):
    text = "text"
    form_request = "form_request"
    form_submission = "form_submission"


class MessageStatus(str, enum.Enum):
    sending = "sending"
    sent = "sent"
    delivered = "delivered"
    read = "read"
    failed = "failed"


class ActionFieldType(str, enum.Enum):
    text = "text"
    number = "number"
    date = "date"
    boolean = "boolean"
    select = "select"


class ActionSubmissionStatus(str, enum.Enum):
    submitted = "submitted"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"
