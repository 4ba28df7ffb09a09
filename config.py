import os
from dotenv import load_dotenv
load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


def _csv(value):
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'change-this-to-a-strong-secret'
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'

    # Help-desk REST API
    HELPDESK_API_URL = os.environ.get('HELPDESK_API_URL') or 'http://localhost:8080/api'
    HELPDESK_API_TIMEOUT = float(os.environ.get('HELPDESK_API_TIMEOUT') or 10)

    # Tickets
    ALLOW_PUBLIC_SUBMISSION = bool(int(os.environ.get('ALLOW_PUBLIC_SUBMISSION') or 1))
    ISSUE_TYPES = _csv(os.environ.get('ISSUE_TYPES') or
                       'General Inquiry,Bug Report,Feature Request,Password Reset,Hardware Issue')
    AVAILABLE_TAGS = _csv(os.environ.get('AVAILABLE_TAGS') or 'urgent,billing,account,software,printer')
    TICKETS_PER_PAGE = int(os.environ.get('TICKETS_PER_PAGE') or 15)

    # Uploads
    MAX_ATTACHMENTS = int(os.environ.get('MAX_ATTACHMENTS') or 5)
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16 MB


class TestingConfig(Config):
    TESTING = True
    WTF_CSRF_ENABLED = False
    SECRET_KEY = 'testing'
    HELPDESK_API_URL = 'http://api.test/api'
