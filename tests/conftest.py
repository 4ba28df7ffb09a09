import io
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import jwt
import pytest
from werkzeug.datastructures import FileStorage

import app as portal
from api_client import HelpdeskAPI
from config import TestingConfig
from models import Page, Tag, Task, Ticket, User


TICKET_JSON = {
    'id': 'a1b2',
    'ticket_number': 42,
    'subject': 'Printer on 3rd floor jams',
    'description': 'Paper jams every other page.',
    'status': 'Open',
    'urgency': 'High',
    'issue_type': 'Hardware Issue',
    'submitter_name': 'Maria Gonzalez',
    'end_user_email': 'maria@example.com',
    'submitter': {'id': 'u9', 'name': 'Maria Gonzalez', 'email': 'maria@example.com', 'role': 'User'},
    'tags': [{'id': 't1', 'name': 'printer'}, {'id': 't2', 'name': 'urgent'}],
    'attachments': [{'id': 'f1', 'filename': 'jam.jpg', 'mime_type': 'image/jpeg',
                     'size': 2048, 'url': '/files/jam.jpg', 'uploaded_by_role': 'User'}],
    'updates': [
        {'id': 'c1', 'ticket_id': 'a1b2', 'comment': 'Looking into it', 'user_id': 's1',
         'user': {'id': 's1', 'name': 'Sam Staff', 'role': 'Staff'},
         'created_at': '2024-03-01T10:00:00Z', 'is_internal_note': False},
        {'id': 'c2', 'ticket_id': 'a1b2', 'comment': 'Toner vendor contract expired', 'user_id': 's1',
         'user': {'id': 's1', 'name': 'Sam Staff', 'role': 'Staff'},
         'created_at': '2024-03-02T09:00:00Z', 'is_internal_note': True},
    ],
    'created_at': '2024-03-01T09:00:00Z',
    'updated_at': '2024-03-02T09:00:00Z',
}

# as the API sends it once a staff member owns the ticket
ASSIGNED_TICKET_JSON = dict(
    TICKET_JSON,
    status='In Progress',
    assigned_to_user_id='s9',
    assigned_to_user={'id': 's9', 'name': 'Priya Patel', 'email': 'priya@example.com', 'role': 'Staff'},
)

TASK_JSON = {
    'id': 'k7',
    'task_number': 12,
    'title': 'Replace toner',
    'description': 'Order and install new toner.',
    'status': 'Open',
    'due_date': '2024-03-08T00:00:00Z',
    'assignedTo': {'id': 's1', 'name': 'Sam Staff', 'role': 'Staff'},
    'ticket_id': 'a1b2',
    'is_recurring': True,
    'recurrence_rule': 'FREQ=WEEKLY;BYDAY=MO,WE,FR',
}

STAFF = User(id='s1', name='Sam Staff', email='sam@example.com', role='Staff')
ADMIN = User(id='a1', name='Ada Admin', email='ada@example.com', role='Admin')
END_USER = User(id='u9', name='Maria Gonzalez', email='maria@example.com', role='User')


def make_token(expires_in=3600):
    payload = {'sub': 's1', 'exp': datetime.now(timezone.utc) + timedelta(seconds=expires_in)}
    return jwt.encode(payload, 'api-signing-secret-used-only-in-tests', algorithm='HS256')


def make_upload(filename='screenshot.png', content=b'\x89PNG fake', content_type='image/png'):
    return FileStorage(stream=io.BytesIO(content), filename=filename, content_type=content_type)


@pytest.fixture
def app():
    portal.app.config.from_object(TestingConfig)
    yield portal.app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def api(monkeypatch):
    """Stand-in for the help-desk REST API, shared by every route in a test."""
    fake = MagicMock(spec=HelpdeskAPI)
    fake.fetch_ticket.return_value = Ticket.from_api(TICKET_JSON)
    fake.fetch_task.return_value = Task.from_api(TASK_JSON)
    fake.fetch_tickets.return_value = Page(items=[Ticket.from_api(TICKET_JSON)], total=1, total_pages=1)
    fake.fetch_tasks.return_value = Page(items=[Task.from_api(TASK_JSON)], total=1, total_pages=1)
    fake.fetch_users.return_value = Page(items=[STAFF, ADMIN, END_USER], total=3, total_pages=1)
    fake.fetch_assignable_users.return_value = [STAFF, ADMIN]
    fake.fetch_tags.return_value = [Tag(id='t1', name='printer'), Tag(id='t2', name='urgent')]
    monkeypatch.setattr(portal, 'get_api', lambda: fake)
    return fake


def login_as(client, user, token=None):
    with client.session_transaction() as sess:
        sess['user'] = user.to_session()
        sess['api_token'] = token or make_token()
        sess['_user_id'] = user.id
        sess['_fresh'] = True


@pytest.fixture
def staff_client(client):
    login_as(client, STAFF)
    return client


@pytest.fixture
def user_client(client):
    login_as(client, END_USER)
    return client
