"""
Client for the help-desk REST API.

Thin wrapper over ``requests.Session``: adds the bearer token, unwraps the
``{"success": ..., "data": ...}`` envelope and turns any non-2xx reply into
an APIError carrying the message the API sent. Nothing is retried.
"""

import logging

import jwt
import requests

from models import Attachment, Page, Tag, Task, Ticket, TicketUpdate, User

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 15
ASSIGNEE_PAGE_SIZE = 100


class APIError(Exception):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def is_unauthorized(self):
        return self.status_code == 401

    @property
    def is_not_found(self):
        return self.status_code == 404

    @property
    def is_forbidden(self):
        return self.status_code == 403


def token_expired(token) -> bool:
    """True when the token's ``exp`` claim is in the past or it cannot be read.

    The signature is not checked: the secret belongs to the API, which
    verifies every request anyway.
    """
    if not token:
        return True
    try:
        jwt.decode(token, options={'verify_signature': False, 'verify_exp': True})
    except jwt.ExpiredSignatureError:
        return True
    except jwt.InvalidTokenError:
        # opaque (non-JWT) tokens are left for the API to judge
        return False
    return False


def _error_message(response):
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get('message') or body.get('error')
        if message:
            return str(message)
    return response.reason or f'Request failed ({response.status_code})'


def _unwrap(body):
    # paginated replies keep their envelope: the totals sit beside the data
    if isinstance(body, dict) and 'success' in body and 'data' in body and 'total' not in body:
        return body['data']
    return body


def _clean_params(params):
    return {k: v for k, v in params.items() if v not in (None, '')}


class HelpdeskAPI:

    def __init__(self, base_url, token=None, timeout=10):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.session = requests.Session()

    def _url(self, path):
        return f'{self.base_url}{path}'

    def _headers(self):
        headers = {}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        return headers

    def _request(self, method, path, **kwargs):
        try:
            response = self.session.request(
                method, self._url(path),
                headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.warning('%s %s failed: %s', method, path, e)
            raise APIError('Could not reach the help-desk service.') from e

        if not response.ok:
            message = _error_message(response)
            logger.warning('%s %s returned %s: %s', method, path, response.status_code, message)
            raise APIError(message, status_code=response.status_code)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return _unwrap(response.json())
        except ValueError as e:
            raise APIError('The help-desk service sent an invalid response.',
                           status_code=response.status_code) from e

    def _page(self, body, model, params):
        if isinstance(body, list):
            return Page(items=[model.from_api(item) for item in body], total=len(body),
                        limit=len(body) or DEFAULT_LIMIT, total_pages=1)
        if not isinstance(body, dict) or not isinstance(body.get('data'), list):
            logger.warning('Invalid paginated response: %r', body)
            return Page(items=[], page=int(params.get('page') or 1),
                        limit=int(params.get('limit') or DEFAULT_LIMIT))
        return Page(
            items=[model.from_api(item) for item in body['data']],
            total=int(body.get('total') or 0),
            page=int(body.get('page') or 1),
            limit=int(body.get('limit') or DEFAULT_LIMIT),
            total_pages=int(body.get('total_pages') or body.get('totalPages') or 0),
        )

    def _list(self, path, model, params):
        params = _clean_params(params)
        body = self._request('GET', path, params=params)
        return self._page(body, model, params)

    # --- Auth ---

    def login(self, email, password):
        data = self._request('POST', '/auth/login', json={'email': email, 'password': password}) or {}
        token = data.get('token') or data.get('access_token')
        if not token:
            raise APIError('Login response did not include a token.')
        self.token = token
        return token, User.from_api(data.get('user') or {})

    def register(self, name, email, password):
        data = self._request('POST', '/auth/register',
                             json={'name': name, 'email': email, 'password': password}) or {}
        return User.from_api(data.get('user') or data)

    def request_password_reset(self, email):
        self._request('POST', '/auth/forgot-password', json={'email': email})

    def reset_password(self, reset_token, password):
        self._request('POST', '/auth/reset-password',
                      json={'token': reset_token, 'password': password})

    # --- Tickets ---

    def fetch_tickets(self, **filters) -> Page:
        return self._list('/tickets', Ticket, filters)

    def fetch_ticket(self, ticket_id) -> Ticket:
        return Ticket.from_api(self._request('GET', f'/tickets/{ticket_id}'))

    def create_ticket(self, data, files) -> Ticket:
        # requests builds the multipart body from the (name, value) lists
        return Ticket.from_api(self._request('POST', '/tickets', data=data, files=files))

    def update_ticket_status(self, ticket_id, payload) -> Ticket:
        return Ticket.from_api(self._request('PUT', f'/tickets/{ticket_id}', json=payload))

    def add_ticket_comment(self, ticket_id, payload) -> TicketUpdate:
        return TicketUpdate.from_api(
            self._request('POST', f'/tickets/{ticket_id}/comments', json=payload))

    def upload_ticket_attachment(self, ticket_id, file) -> Attachment:
        files = {'file': (file.filename, file.stream, file.mimetype or 'application/octet-stream')}
        return Attachment.from_api(
            self._request('POST', f'/tickets/{ticket_id}/attachments', files=files))

    def delete_ticket_attachment(self, ticket_id, attachment_id):
        self._request('DELETE', f'/tickets/{ticket_id}/attachments/{attachment_id}')

    # --- Tasks ---

    def fetch_tasks(self, **filters) -> Page:
        return self._list('/tasks', Task, filters)

    def fetch_task(self, task_id) -> Task:
        return Task.from_api(self._request('GET', f'/tasks/{task_id}'))

    def create_task(self, payload) -> Task:
        return Task.from_api(self._request('POST', '/tasks', json=payload))

    def update_task(self, task_id, payload) -> Task:
        return Task.from_api(self._request('PUT', f'/tasks/{task_id}', json=payload))

    def delete_task(self, task_id):
        self._request('DELETE', f'/tasks/{task_id}')

    # --- Users ---

    def fetch_users(self, **filters) -> Page:
        return self._list('/users', User, filters)

    def fetch_assignable_users(self):
        users, page = [], 1
        while True:
            batch = self.fetch_users(page=page, limit=ASSIGNEE_PAGE_SIZE)
            users.extend(u for u in batch.items if u.is_staff)
            if not batch.has_more or not batch.items:
                return users
            page += 1

    def fetch_user(self, user_id) -> User:
        return User.from_api(self._request('GET', f'/users/{user_id}'))

    def create_user(self, payload) -> User:
        return User.from_api(self._request('POST', '/users', json=payload))

    def update_user(self, user_id, payload) -> User:
        payload = dict(payload)
        if not payload.get('password'):
            payload.pop('password', None)
        return User.from_api(self._request('PUT', f'/users/{user_id}', json=payload))

    def delete_user(self, user_id):
        self._request('DELETE', f'/users/{user_id}')

    # --- Tags ---

    def fetch_tags(self):
        data = self._request('GET', '/tags') or []
        return [Tag.from_api(t) for t in data]
