"""
Ticket lifecycle rules.

Status changes are permissive: a ticket may move between any two statuses,
including back out of Closed. The only guard is that closing a ticket needs
resolution notes. Everything here runs before a request is sent to the API.
"""

from dataclasses import dataclass
from typing import Optional


class TicketStatus:
    OPEN        = 'Open'
    IN_PROGRESS = 'In Progress'
    CLOSED      = 'Closed'

    ALL = (OPEN, IN_PROGRESS, CLOSED)
    # Older API revisions report a four-state lifecycle
    LEGACY = {'Unassigned': OPEN, 'Assigned': OPEN}

    @classmethod
    def normalize(cls, value):
        if value in cls.ALL:
            return value
        return cls.LEGACY.get(value, value)


class TicketUrgency:
    LOW      = 'Low'
    MEDIUM   = 'Medium'
    HIGH     = 'High'
    CRITICAL = 'Critical'

    ALL = (LOW, MEDIUM, HIGH, CRITICAL)


class TaskStatus:
    OPEN        = 'Open'
    IN_PROGRESS = 'In Progress'
    COMPLETED   = 'Completed'

    ALL = (OPEN, IN_PROGRESS, COMPLETED)


class Role:
    ADMIN = 'Admin'
    STAFF = 'Staff'
    USER  = 'User'

    ALL = (ADMIN, STAFF, USER)

    @classmethod
    def normalize(cls, value):
        for role in cls.ALL:
            if (value or '').lower() == role.lower():
                return role
        return cls.USER


RESOLUTION_NOTES_REQUIRED = 'resolution notes required to close'
COMMENT_REQUIRED = 'comment cannot be empty'
INTERNAL_NOTE_FORBIDDEN = 'only staff can add internal notes'


class TransitionRejected(Exception):
    def __init__(self, reason):
        super().__init__(reason)
        self.reason = reason


@dataclass
class StatusUpdate:
    status: str
    assigned_to_id: Optional[str]
    resolution_notes: Optional[str] = None

    def to_payload(self) -> dict:
        payload = {'status': self.status, 'assignedToId': self.assigned_to_id}
        if self.status == TicketStatus.CLOSED:
            payload['resolutionNotes'] = self.resolution_notes
        return payload


def requires_resolution_notes(status) -> bool:
    return status == TicketStatus.CLOSED


def validate_transition(ticket, requested_status, resolution_notes, assigned_to_id='') -> StatusUpdate:
    """
    Check a status change against the lifecycle rules and build the update.

    ``ticket`` is the ticket as last returned by the API; it is not used to
    restrict the move (any status may follow any other), but is kept in the
    signature so callers always validate against a concrete ticket.

    ``assigned_to_id`` uses '' (or None) for "unassigned", which the API
    expects as null.

    Raises TransitionRejected when the status is unknown or when closing
    without non-blank resolution notes.
    """
    status = TicketStatus.normalize(requested_status)
    if status not in TicketStatus.ALL:
        raise TransitionRejected(f'unknown status {requested_status!r}')

    notes = (resolution_notes or '').strip()
    if requires_resolution_notes(status) and not notes:
        raise TransitionRejected(RESOLUTION_NOTES_REQUIRED)

    return StatusUpdate(
        status=status,
        assigned_to_id=assigned_to_id or None,
        resolution_notes=resolution_notes if requires_resolution_notes(status) else None,
    )


def validate_comment(content, is_internal_note, user) -> dict:
    if not (content or '').strip():
        raise TransitionRejected(COMMENT_REQUIRED)
    if is_internal_note and not (user is not None and user.is_staff):
        raise TransitionRejected(INTERNAL_NOTE_FORBIDDEN)
    return {'content': content, 'isInternalNote': bool(is_internal_note)}
