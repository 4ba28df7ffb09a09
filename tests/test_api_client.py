import json
from unittest.mock import MagicMock

import jwt
import pytest
import requests

from api_client import APIError, HelpdeskAPI, token_expired

from conftest import TICKET_JSON, TASK_JSON, make_token, make_upload


def make_response(status=200, body=None, reason='OK'):
    response = requests.Response()
    response.status_code = status
    response.reason = reason
    response.url = 'http://api.test/api'
    response._content = json.dumps(body).encode() if body is not None else b''
    return response


@pytest.fixture
def client():
    client = HelpdeskAPI('http://api.test/api/', token='tok', timeout=5)
    client.session.request = MagicMock(return_value=make_response(body={}))
    return client


def sent(client):
    args, kwargs = client.session.request.call_args
    return args[0], args[1], kwargs


class TestRequest:

    def test_bearer_token_and_timeout(self, client):
        client.session.request.return_value = make_response(body=TICKET_JSON)
        client.fetch_ticket('a1b2')
        method, url, kwargs = sent(client)
        assert (method, url) == ('GET', 'http://api.test/api/tickets/a1b2')
        assert kwargs['headers'] == {'Authorization': 'Bearer tok'}
        assert kwargs['timeout'] == 5

    def test_no_auth_header_without_token(self, client):
        client.token = None
        client.fetch_tags()
        assert sent(client)[2]['headers'] == {}

    def test_success_envelope_is_unwrapped(self, client):
        client.session.request.return_value = make_response(body={'success': True, 'data': TICKET_JSON})
        assert client.fetch_ticket('a1b2').ticket_number == 42

    def test_error_message_from_body(self, client):
        client.session.request.return_value = make_response(
            400, {'success': False, 'message': 'Subject is required'}, reason='Bad Request')
        with pytest.raises(APIError) as exc:
            client.create_task({'title': ''})
        assert exc.value.message == 'Subject is required'
        assert exc.value.status_code == 400

    def test_error_message_falls_back_to_reason(self, client):
        client.session.request.return_value = make_response(502, reason='Bad Gateway')
        with pytest.raises(APIError) as exc:
            client.fetch_task('k7')
        assert exc.value.message == 'Bad Gateway'

    def test_unauthorized(self, client):
        client.session.request.return_value = make_response(401, {'error': 'token expired'}, 'Unauthorized')
        with pytest.raises(APIError) as exc:
            client.fetch_tickets()
        assert exc.value.is_unauthorized
        assert exc.value.message == 'token expired'

    def test_network_failure_is_wrapped(self, client):
        client.session.request.side_effect = requests.ConnectionError('refused')
        with pytest.raises(APIError) as exc:
            client.fetch_ticket('a1b2')
        assert exc.value.status_code is None

    def test_no_retry(self, client):
        client.session.request.return_value = make_response(503, reason='Service Unavailable')
        with pytest.raises(APIError):
            client.fetch_ticket('a1b2')
        assert client.session.request.call_count == 1

    def test_empty_body_returns_none(self, client):
        client.session.request.return_value = make_response(204, reason='No Content')
        assert client.delete_task('k7') is None
        assert sent(client)[:2] == ('DELETE', 'http://api.test/api/tasks/k7')


class TestTickets:

    def test_list_drops_blank_filters(self, client):
        client.session.request.return_value = make_response(body={
            'data': [TICKET_JSON], 'total': 31, 'page': 2, 'limit': 15, 'total_pages': 3})
        page = client.fetch_tickets(page=2, limit=15, status='Open', urgency='', search=None)
        assert sent(client)[2]['params'] == {'page': 2, 'limit': 15, 'status': 'Open'}
        assert page.total == 31
        assert page.has_more
        assert page.items[0].subject == 'Printer on 3rd floor jams'

    def test_enveloped_page_keeps_totals(self, client):
        client.session.request.return_value = make_response(body={
            'success': True, 'message': 'Tickets retrieved successfully.', 'data': [TICKET_JSON],
            'total': 37, 'page': 1, 'limit': 1, 'total_pages': 37, 'has_more': True})
        page = client.fetch_tickets(status='Open', limit=1)
        assert page.total == 37
        assert page.total_pages == 37
        assert page.has_more
        assert page.items[0].ticket_number == 42

    def test_malformed_list_is_empty_page(self, client):
        client.session.request.return_value = make_response(body={'unexpected': True})
        page = client.fetch_tickets(page=3)
        assert page.items == []
        assert page.page == 3

    def test_create_sends_multipart(self, client):
        client.session.request.return_value = make_response(201, {'success': True, 'data': TICKET_JSON})
        data = [('subject', 'Printer jams'), ('tags', 'printer'), ('tags', 'urgent')]
        files = [('attachments', ('jam.jpg', b'...', 'image/jpeg'))]
        ticket = client.create_ticket(data, files)
        method, url, kwargs = sent(client)
        assert (method, url) == ('POST', 'http://api.test/api/tickets')
        assert kwargs['data'] == data
        assert kwargs['files'] == files
        assert ticket.id == 'a1b2'

    def test_status_update_returns_server_ticket(self, client):
        closed = dict(TICKET_JSON, status='Closed', resolution_notes='Replaced roller')
        client.session.request.return_value = make_response(body=closed)
        payload = {'status': 'Closed', 'assignedToId': None, 'resolutionNotes': 'Replaced roller'}
        ticket = client.update_ticket_status('a1b2', payload)
        method, url, kwargs = sent(client)
        assert (method, url) == ('PUT', 'http://api.test/api/tickets/a1b2')
        assert kwargs['json'] == payload
        assert ticket.is_closed
        assert ticket.resolution_notes == 'Replaced roller'

    def test_upload_attachment(self, client):
        client.session.request.return_value = make_response(201, {'id': 'f2', 'filename': 'screen.png'})
        attachment = client.upload_ticket_attachment('a1b2', make_upload('screen.png'))
        name, (filename, _, mimetype) = list(sent(client)[2]['files'].items())[0]
        assert (name, filename, mimetype) == ('file', 'screen.png', 'image/png')
        assert attachment.filename == 'screen.png'

    def test_comment(self, client):
        client.session.request.return_value = make_response(201, {
            'id': 'c3', 'content': 'On it', 'is_internal_note': True})
        update = client.add_ticket_comment('a1b2', {'content': 'On it', 'isInternalNote': True})
        assert sent(client)[1] == 'http://api.test/api/tickets/a1b2/comments'
        assert update.is_internal_note


class TestAuthAndUsers:

    def test_login_stores_token(self, client):
        client.token = None
        client.session.request.return_value = make_response(body={
            'token': 'new-token', 'user': {'id': 7, 'name': 'Sam', 'email': 'sam@example.com', 'role': 'staff'}})
        token, user = client.login('sam@example.com', 'pw')
        assert token == client.token == 'new-token'
        assert user.id == '7'
        assert user.is_staff

    def test_login_without_token_fails(self, client):
        client.session.request.return_value = make_response(body={'user': {}})
        with pytest.raises(APIError):
            client.login('sam@example.com', 'pw')

    def test_login_with_empty_reply(self, client):
        client.session.request.return_value = make_response(204, reason='No Content')
        with pytest.raises(APIError):
            client.login('sam@example.com', 'pw')

    def test_assignable_users_span_pages(self, client):
        client.session.request.side_effect = [
            make_response(body={'success': True, 'data': [{'id': 1, 'name': 'Ada', 'role': 'Admin'}],
                                'total': 2, 'page': 1, 'limit': 100, 'total_pages': 2}),
            make_response(body={'success': True, 'data': [{'id': 205, 'name': 'Zed', 'role': 'Staff'}],
                                'total': 2, 'page': 2, 'limit': 100, 'total_pages': 2}),
        ]
        assert [u.name for u in client.fetch_assignable_users()] == ['Ada', 'Zed']
        pages = [c.kwargs['params']['page'] for c in client.session.request.call_args_list]
        assert pages == [1, 2]

    def test_update_user_leaves_out_blank_password(self, client):
        client.session.request.return_value = make_response(body={'id': 's1', 'name': 'Sam', 'role': 'Admin'})
        user = client.update_user('s1', {'name': 'Sam', 'role': 'Admin', 'password': ''})
        method, url, kwargs = sent(client)
        assert (method, url) == ('PUT', 'http://api.test/api/users/s1')
        assert kwargs['json'] == {'name': 'Sam', 'role': 'Admin'}
        assert user.is_admin

    def test_update_user_sends_new_password(self, client):
        client.update_user('s1', {'name': 'Sam', 'password': 'n3w-secret'})
        assert sent(client)[2]['json']['password'] == 'n3w-secret'

    def test_delete_user(self, client):
        client.session.request.return_value = make_response(204, reason='No Content')
        client.delete_user('u9')
        assert sent(client)[:2] == ('DELETE', 'http://api.test/api/users/u9')

    def test_assignable_users_are_staff_and_admins(self, client):
        client.session.request.return_value = make_response(body={'data': [
            {'id': 1, 'name': 'Ada', 'role': 'Admin'},
            {'id': 2, 'name': 'Sam', 'role': 'Staff'},
            {'id': 3, 'name': 'Maria', 'role': 'User'},
        ], 'total': 3, 'page': 1, 'limit': 100, 'total_pages': 1})
        assert [u.name for u in client.fetch_assignable_users()] == ['Ada', 'Sam']

    def test_tags_accept_plain_names(self, client):
        client.session.request.return_value = make_response(body=['printer', {'id': 't2', 'name': 'urgent'}])
        assert [t.name for t in client.fetch_tags()] == ['printer', 'urgent']

    def test_task_recurrence_is_decoded(self, client):
        client.session.request.return_value = make_response(body=TASK_JSON)
        task = client.fetch_task('k7')
        assert task.recurrence.days_of_week == ['MO', 'WE', 'FR']
        assert task.due_date_value == '2024-03-08'


class TestTokenExpired:

    def test_valid_token(self):
        assert not token_expired(make_token())

    def test_expired_token(self):
        assert token_expired(make_token(expires_in=-60))

    def test_missing_token(self):
        assert token_expired(None)

    def test_opaque_token_is_left_to_the_api(self):
        assert not token_expired('not-a-jwt')

    def test_token_without_exp(self):
        assert not token_expired(jwt.encode({'sub': '1'}, 'api-signing-secret-used-only-in-tests', algorithm='HS256'))
