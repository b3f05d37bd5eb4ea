import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    db_url = os.environ.get('DATABASE_URL', 'sqlite:///clubhouse.db')
    if db_url.startswith("postgres://"):
        db_url = db_url.replace("postgres://", "postgresql://", 1)

    SQLALCHEMY_DATABASE_URI = db_url
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.environ.get('SECRET_KEY', 'a-very-secret-key')

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    BABEL_DEFAULT_LOCALE = 'en'
    BABEL_SUPPORTED_LOCALES = ['en', 'ko']
    BABEL_TRANSLATION_DIRECTORIES = 'translations'

    PUBLIC_PAGE_SIZE = 20
    DASHBOARD_PAGE_SIZE = 10
    MAX_PAGE_SIZE = 100

    # CSV uploads (matches, members)
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024

    # Render sets IS_PULL_REQUEST; only require SSL there
    is_render_env = 'IS_PULL_REQUEST' in os.environ

    if is_render_env:
        SQLALCHEMY_ENGINE_OPTIONS = {
            'connect_args': {
                'sslmode': 'require'
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SECRET_KEY = 'test-secret-key'
    LOG_LEVEL = 'WARNING'
