import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from auth_session.config import AuthConfig

TOTP_SECRET = "JBSWY3DPEHPK3PXP"

TEST_ENV = {
    'ADMIN_USERNAME': 'admin@example.com',
    'ADMIN_PASSWORD': 'correct-horse-battery-staple',
    'ADMIN_TOTP_SECRET': TOTP_SECRET,
    'VIEWER_USERNAME': 'viewer@example.com',
    'VIEWER_PASSWORD': 'viewer-pass',
}


class FakeClock:
    """Settable wall clock returning aware datetimes."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_config_data(**oidc_overrides):
    """Minimal camelCase configuration, as it would come from YAML."""
    oidc = {
        'loginUrl': 'https://app.example.com/login',
        'provider': 'auto',
        'success': {'url': '**/dashboard**', 'timeoutMs': 300},
    }
    oidc.update(oidc_overrides)
    return {
        'environment': 'staging',
        'oidc': oidc,
        'roles': {
            'admin': {'usernameEnv': 'ADMIN_USERNAME', 'passwordEnv': 'ADMIN_PASSWORD'},
            'viewer': {'usernameEnv': 'VIEWER_USERNAME', 'passwordEnv': 'VIEWER_PASSWORD'},
        },
        'retry': {'maxAttempts': 3, 'baseDelayMs': 0},
    }


@pytest.fixture
def env():
    return dict(TEST_ENV)


@pytest.fixture
def config_data():
    return make_config_data()


@pytest.fixture
def config(config_data, env):
    return AuthConfig.from_dict(config_data, env=env)


@pytest.fixture
def clock():
    return FakeClock()
