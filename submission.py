"""
Turning form input into API requests.

Drafts hold what the user typed. They are validated locally first; nothing
is sent unless every required field is present. A draft is cleared only
after the API confirms the write, so a failed request can be corrected and
resubmitted without retyping.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from api_client import APIError
from recurrence import RecurrenceSpec, encode, normalize
from workflow import TaskStatus, TicketUrgency

logger = logging.getLogger(__name__)


class SubmissionRejected(Exception):
    def __init__(self, message, fields=()):
        super().__init__(message)
        self.message = message
        self.fields = list(fields)


@dataclass
class TicketDraft:
    submitter_name: str = ''
    submitter_email: str = ''
    subject: str = ''
    description: str = ''
    urgency: str = TicketUrgency.MEDIUM
    issue_type: str = ''
    tags: List[str] = field(default_factory=list)
    files: list = field(default_factory=list)

    def clear(self):
        self.submitter_name = ''
        self.submitter_email = ''
        self.subject = ''
        self.description = ''
        self.urgency = TicketUrgency.MEDIUM
        self.issue_type = ''
        self.tags = []
        self.files = []


TICKET_REQUIRED_FIELDS = ('submitter_email', 'subject', 'description')


def missing_required_fields(draft: TicketDraft) -> List[str]:
    return [name for name in TICKET_REQUIRED_FIELDS if not (getattr(draft, name) or '').strip()]


def build_ticket_multipart(draft: TicketDraft):
    """Return ``(data, files)`` lists ready for ``requests``.

    Tags and attachments are repeated entries under the same name; each
    attachment keeps its original filename.
    """
    data = [
        ('submitterName', draft.submitter_name),
        ('endUserEmail', draft.submitter_email),
        ('subject', draft.subject),
        ('description', draft.description),
        ('urgency', draft.urgency),
    ]
    if draft.issue_type:
        data.append(('issueType', draft.issue_type))
    for tag in draft.tags:
        data.append(('tags', tag))

    files = []
    for f in draft.files:
        if not getattr(f, 'filename', None):
            continue
        files.append(('attachments', (f.filename, f.stream, f.mimetype or 'application/octet-stream')))
    return data, files


def submit_ticket(draft: TicketDraft, api):
    missing = missing_required_fields(draft)
    if missing:
        raise SubmissionRejected('Please fill in all required fields.', missing)

    data, files = build_ticket_multipart(draft)
    ticket = api.create_ticket(data, files)
    logger.info('Created ticket #%s with %d attachment(s)', ticket.ticket_number, len(files))
    draft.clear()
    return ticket


@dataclass
class TaskDraft:
    title: str = ''
    description: str = ''
    status: str = TaskStatus.OPEN
    due_date: str = ''
    assigned_to_id: str = ''
    recurrence: RecurrenceSpec = field(default_factory=RecurrenceSpec)


def build_task_payload(draft: TaskDraft, ticket_id=None) -> dict:
    if not (draft.title or '').strip():
        raise SubmissionRejected('Title is required.', ['title'])

    recurrence = normalize(draft.recurrence)
    payload = {
        'title': draft.title,
        'status': draft.status,
        'dueDate': draft.due_date or None,
        'assignedToId': draft.assigned_to_id or None,
        'ticketId': ticket_id or None,
        'isRecurring': recurrence.is_recurring,
        'recurrenceRule': encode(recurrence),
    }
    if draft.description:
        payload['description'] = draft.description
    return payload


class FormSubmitter:
    """
    Runs one API call on behalf of a form.

    Only one submission may be in flight at a time; the flag is what the
    templates use to disable the submit button. On failure the message is
    kept in ``error`` and the caller's field state is left alone. An expired
    session (401) is not a form error and propagates.
    """

    def __init__(self, submit_fn: Callable, on_success: Optional[Callable] = None,
                 on_error: Optional[Callable] = None):
        self.submit_fn = submit_fn
        self.on_success = on_success
        self.on_error = on_error
        self.is_submitting = False
        self.error = None
        self.result = None
        self.completed = False

    def submit(self, payload):
        if self.is_submitting:
            raise SubmissionRejected('A submission is already in progress.')

        self.is_submitting = True
        self.error = None
        self.completed = False
        try:
            self.result = self.submit_fn(payload)
        except APIError as e:
            if e.is_unauthorized:
                raise
            self.error = e.message or 'An unexpected error occurred.'
            if self.on_error:
                self.on_error(e)
            return None
        finally:
            self.is_submitting = False

        self.completed = True
        if self.on_success:
            self.on_success(self.result)
        return self.result

    def clear_error(self):
        self.error = None
