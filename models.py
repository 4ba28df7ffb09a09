"""
Read models for API payloads.

The portal owns no data: every object here is built from a JSON document
returned by the help-desk API. Both snake_case and camelCase keys are
accepted since the API has used both.
"""

from dataclasses import dataclass, field, asdict
from typing import List, Optional
from flask_login import UserMixin

from recurrence import RecurrenceSpec, decode
from workflow import Role, TicketStatus


def _get(data, *keys, default=None):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _id(value):
    return str(value) if value is not None else None


@dataclass
class User(UserMixin):
    id: str
    name: str = ''
    email: str = ''
    role: str = Role.USER

    @classmethod
    def from_api(cls, data):
        return cls(
            id=_id(data.get('id')),
            name=data.get('name') or '',
            email=data.get('email') or '',
            role=Role.normalize(data.get('role')),
        )

    @property
    def is_admin(self):
        return self.role == Role.ADMIN

    @property
    def is_staff(self):
        return self.role in (Role.ADMIN, Role.STAFF)

    def to_session(self):
        return asdict(self)


def _assignee(data):
    user = _get(data, 'assigned_to_user', 'assignedTo', 'assigned_to')
    if user:
        return User.from_api(user)
    user_id = _get(data, 'assigned_to_user_id', 'assignedToId')
    return User(id=_id(user_id)) if user_id else None


@dataclass
class Tag:
    id: Optional[str]
    name: str

    @classmethod
    def from_api(cls, data):
        if isinstance(data, str):
            return cls(id=None, name=data)
        return cls(id=_id(data.get('id')), name=data.get('name') or '')


@dataclass
class Attachment:
    id: str
    filename: str
    mime_type: str = ''
    size: int = 0
    url: str = ''
    uploaded_by_role: str = ''
    uploaded_at: str = ''

    @classmethod
    def from_api(cls, data):
        return cls(
            id=_id(data.get('id')),
            filename=data.get('filename') or '',
            mime_type=_get(data, 'mime_type', 'mimeType', default=''),
            size=int(_get(data, 'size', default=0)),
            url=data.get('url') or '',
            uploaded_by_role=_get(data, 'uploaded_by_role', 'uploadedByRole', default=''),
            uploaded_at=_get(data, 'uploaded_at', 'uploadedAt', default=''),
        )


@dataclass
class TicketUpdate:
    id: str
    content: str
    author_name: str = ''
    created_at: str = ''
    is_internal_note: bool = False
    is_system_update: bool = False

    @classmethod
    def from_api(cls, data):
        author = _get(data, 'user', 'author', default={})
        return cls(
            id=_id(data.get('id')),
            content=_get(data, 'content', 'comment', default=''),
            author_name=author.get('name') or '',
            created_at=_get(data, 'created_at', 'createdAt', default=''),
            is_internal_note=bool(_get(data, 'is_internal_note', 'isInternalNote', default=False)),
            is_system_update=bool(_get(data, 'is_system_update', 'isSystemUpdate', default=False)),
        )


@dataclass
class Ticket:
    id: str
    ticket_number: int
    subject: str
    description: str = ''
    status: str = TicketStatus.OPEN
    urgency: str = 'Medium'
    issue_type: str = ''
    submitter_name: str = ''
    submitter_email: str = ''
    assignee: Optional[User] = None
    resolution_notes: str = ''
    tags: List[Tag] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)
    updates: List[TicketUpdate] = field(default_factory=list)
    created_at: str = ''
    updated_at: str = ''
    closed_at: Optional[str] = None

    @classmethod
    def from_api(cls, data):
        submitter = data.get('submitter') or {}
        updates = [TicketUpdate.from_api(u) for u in data.get('updates') or []]
        # newest first; ISO timestamps sort lexically
        updates.sort(key=lambda u: u.created_at, reverse=True)
        return cls(
            id=_id(data.get('id')),
            ticket_number=int(_get(data, 'ticket_number', 'ticketNumber', default=0)),
            subject=data.get('subject') or '',
            description=data.get('description') or '',
            status=TicketStatus.normalize(data.get('status') or TicketStatus.OPEN),
            urgency=data.get('urgency') or 'Medium',
            issue_type=_get(data, 'issue_type', 'issueType', default=''),
            submitter_name=_get(data, 'submitter_name', 'submitterName', default=submitter.get('name', '')),
            submitter_email=_get(data, 'end_user_email', 'endUserEmail', 'submitter_email',
                                 default=submitter.get('email', '')),
            assignee=_assignee(data),
            resolution_notes=_get(data, 'resolution_notes', 'resolutionNotes', default=''),
            tags=[Tag.from_api(t) for t in data.get('tags') or []],
            attachments=[Attachment.from_api(a) for a in data.get('attachments') or []],
            updates=updates,
            created_at=_get(data, 'created_at', 'createdAt', default=''),
            updated_at=_get(data, 'updated_at', 'updatedAt', default=''),
            closed_at=_get(data, 'closed_at', 'closedAt'),
        )

    @property
    def assigned_to_id(self):
        return self.assignee.id if self.assignee else ''

    @property
    def is_closed(self):
        return self.status == TicketStatus.CLOSED

    def visible_updates(self, user):
        if user is not None and getattr(user, 'is_staff', False):
            return self.updates
        return [u for u in self.updates if not u.is_internal_note]


@dataclass
class Task:
    id: str
    task_number: int
    title: str
    description: str = ''
    status: str = 'Open'
    due_date: Optional[str] = None
    assignee: Optional[User] = None
    ticket_id: Optional[str] = None
    is_recurring: bool = False
    recurrence_rule: Optional[str] = None
    created_at: str = ''
    completed_at: Optional[str] = None

    @classmethod
    def from_api(cls, data):
        rule = _get(data, 'recurrence_rule', 'recurrenceRule')
        return cls(
            id=_id(data.get('id')),
            task_number=int(_get(data, 'task_number', 'taskNumber', default=0)),
            title=data.get('title') or '',
            description=data.get('description') or '',
            status=data.get('status') or 'Open',
            due_date=_get(data, 'due_date', 'dueDate'),
            assignee=_assignee(data),
            ticket_id=_id(_get(data, 'ticket_id', 'ticketId')),
            is_recurring=bool(_get(data, 'is_recurring', 'isRecurring', default=bool(rule))),
            recurrence_rule=rule,
            created_at=_get(data, 'created_at', 'createdAt', default=''),
            completed_at=_get(data, 'completed_at', 'completedAt'),
        )

    @property
    def recurrence(self) -> Optional[RecurrenceSpec]:
        if not self.recurrence_rule:
            return None
        return decode(self.recurrence_rule)

    @property
    def due_date_value(self):
        """Date part of ``due_date`` as used by <input type=date>."""
        return self.due_date[:10] if self.due_date else ''


@dataclass
class Page:
    items: list
    total: int = 0
    page: int = 1
    limit: int = 15
    total_pages: int = 0

    @property
    def has_more(self):
        return self.page < self.total_pages
