"""
Tests for the credential resolver.
"""

import pytest

from auth_session.config import AuthConfig
from auth_session.credentials import CredentialResolver, format_missing
from auth_session.errors import MissingCredentials


def test_resolve_returns_credentials(config, env):
    credentials = CredentialResolver(config, env=env).resolve('admin')

    assert credentials.username == 'admin@example.com'
    assert credentials.password == 'correct-horse-battery-staple'
    assert credentials.extra_factors == {}


def test_repr_masks_secrets(config, env):
    credentials = CredentialResolver(config, env=env).resolve('admin')

    text = repr(credentials)
    assert 'admin@example.com' in text
    assert 'correct-horse-battery-staple' not in text


def test_resolve_reports_every_missing_variable(config_data, env):
    config_data['roles']['admin']['extraEnv'] = {'pin': 'ADMIN_PIN'}
    config = AuthConfig.from_dict(config_data, env=env)
    del env['ADMIN_USERNAME']
    env['ADMIN_PASSWORD'] = ''

    with pytest.raises(MissingCredentials) as exc_info:
        CredentialResolver(config, env=env).resolve('admin')

    error = exc_info.value
    assert error.role == 'admin'
    assert [item.type for item in error.missing] == ['username', 'password', 'pin']
    assert error.env_vars == ['ADMIN_USERNAME', 'ADMIN_PASSWORD', 'ADMIN_PIN']
    assert 'export ADMIN_USERNAME="<value>"' in str(error)
    assert 'export ADMIN_PIN="<value>"' in str(error)


def test_extra_factors_resolved(config_data, env):
    config_data['roles']['admin']['extraEnv'] = {'pin': 'ADMIN_PIN'}
    config = AuthConfig.from_dict(config_data, env=env)
    env['ADMIN_PIN'] = '4321'

    credentials = CredentialResolver(config, env=env).resolve('admin')
    assert credentials.extra_factors == {'pin': '4321'}
    assert '4321' not in repr(credentials)


def test_unknown_role(config, env):
    with pytest.raises(MissingCredentials) as exc_info:
        CredentialResolver(config, env=env).resolve('auditor')

    assert exc_info.value.missing[0].type == 'role'
    assert 'Role "auditor" not found in configuration' in str(exc_info.value)


def test_missing_audits_all_roles(config, env):
    del env['ADMIN_PASSWORD']
    del env['VIEWER_USERNAME']
    resolver = CredentialResolver(config, env=env)

    missing = resolver.missing()

    assert [(m.role, m.env_var) for m in missing] == [
        ('admin', 'ADMIN_PASSWORD'),
        ('viewer', 'VIEWER_USERNAME'),
    ]
    assert not resolver.has_credentials('admin')
    assert resolver.missing(['viewer']) == [missing[1]]


def test_has_credentials(config, env):
    assert CredentialResolver(config, env=env).has_credentials('viewer')


def test_format_missing_groups_by_role_and_dedupes_exports(config, env):
    env.clear()
    report = format_missing(CredentialResolver(config, env=env).missing())

    lines = report.splitlines()
    assert lines[0] == 'Missing credentials:'
    assert '  Role "admin":' in lines
    assert '  Role "viewer":' in lines
    assert report.count('export ADMIN_USERNAME="<value>"') == 1
    assert lines[-1] == '  export VIEWER_PASSWORD="<value>"'


def test_format_missing_empty():
    assert format_missing([]) == ''
