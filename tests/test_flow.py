"""
Tests for the OIDC flow executor, driven against scripted login pages.

Covers:
1. Single-step and two-step credential forms
2. TOTP challenges (configured, unconfigured, missing secret)
3. Forced interrupts and provider error scraping
4. Navigation failures
5. Session refresh and logout
"""

import pyotp
import pytest

from auth_session.config import AuthConfig
from auth_session.errors import (
    AuthError,
    AuthPhase,
    BrowserActionError,
    ForcedInterruptError,
    MfaConfigurationError,
    MissingCredentials,
)
from auth_session.flow import REMEDIATION, OidcFlowExecutor, OidcFlowResult

from conftest import TOTP_SECRET, make_config_data
from fake_page import (
    APP_LOGIN_URL,
    DASHBOARD_URL,
    FakePage,
    Screen,
    azure_ad_pages,
    bad_password_pages,
    email_verification_pages,
    forced_password_change_pages,
    mfa_pages,
    single_step_pages,
    totp_enrollment_pages,
    two_step_pages,
)

pytestmark = pytest.mark.asyncio

WINDOW_START = 1_700_000_010


def executor_for(env, **oidc_overrides):
    config = AuthConfig.from_dict(make_config_data(**oidc_overrides), env=env)
    return OidcFlowExecutor(config, env=env, clock=lambda: WINDOW_START)


async def test_single_step_login(env):
    page = FakePage(single_step_pages())

    result = await executor_for(env).execute(page, 'admin')

    assert isinstance(result, OidcFlowResult)
    assert result.success
    assert result.phase_reached is AuthPhase.CALLBACK
    assert result.role == 'admin'
    assert result.provider == 'keycloak'
    assert result.final_url == DASHBOARD_URL
    assert result.attempts == 1
    assert result.session_artifact['cookies'][0]['name'] == 'session'
    assert page.navigations == ['https://app.example.com/login']
    assert page.fills == [
        ('#username', 'admin@example.com'),
        ('#password', 'correct-horse-battery-staple'),
    ]
    assert page.clicks == ['#kc-login']


async def test_two_step_fills_password_only_after_it_appears(env):
    page = FakePage(two_step_pages())

    result = await executor_for(env).execute(page, 'admin')

    assert result.success
    # FakePage rejects fills on hidden fields, so reaching here means the
    # password was never typed into the first step
    assert page.fills == [
        ('#username', 'admin@example.com'),
        ('#password', 'correct-horse-battery-staple'),
    ]
    assert page.clicks == ['#kc-login', '#kc-login']


async def test_azure_two_step_with_stay_signed_in_prompt(env):
    page = FakePage(azure_ad_pages())

    result = await executor_for(env).execute(page, 'viewer')

    assert result.provider == 'azure-ad'
    assert result.final_url == DASHBOARD_URL
    assert page.fills == [
        ('input[name="loginfmt"]', 'viewer@example.com'),
        ('input[name="passwd"]', 'viewer-pass'),
    ]
    assert page.clicks == ['#idSIButton9', '#idSIButton9', '#idBtn_Back']


async def test_explicit_provider_wins_over_detection(env):
    page = FakePage(single_step_pages())

    result = await executor_for(env, provider='generic', selectors={
        'username': '#username', 'password': '#password', 'submit': '#kc-login',
    }).execute(page, 'admin')

    assert result.provider == 'generic'


async def test_totp_challenge_is_answered(env):
    page = FakePage(mfa_pages())
    executor = executor_for(env, mfa={'type': 'totp', 'secretEnvVar': 'ADMIN_TOTP_SECRET'})

    result = await executor.execute(page, 'admin')

    assert result.success
    assert ('#otp', pyotp.TOTP(TOTP_SECRET).at(WINDOW_START)) in page.fills
    assert page.clicks == ['#kc-login', '#kc-login']


async def test_unconfigured_mfa_challenge_fails_in_mfa_phase(env):
    page = FakePage(mfa_pages())

    with pytest.raises(MfaConfigurationError) as exc_info:
        await executor_for(env).execute(page, 'admin')

    assert exc_info.value.phase is AuthPhase.MFA
    assert exc_info.value.role == 'admin'
    assert not exc_info.value.transient
    assert all(selector != '#otp' for selector, _ in page.fills)


async def test_missing_totp_secret_names_variable(env):
    del env['ADMIN_TOTP_SECRET']
    page = FakePage(mfa_pages())
    executor = executor_for(env, mfa={'type': 'totp', 'secretEnvVar': 'ADMIN_TOTP_SECRET'})

    with pytest.raises(MfaConfigurationError, match='ADMIN_TOTP_SECRET'):
        await executor.execute(page, 'admin')

    assert all(selector != '#otp' for selector, _ in page.fills)


async def test_push_mfa_cannot_be_automated(env):
    page = FakePage(mfa_pages())
    executor = executor_for(env, mfa={'type': 'push'})

    with pytest.raises(MfaConfigurationError, match='cannot be automated'):
        await executor.execute(page, 'admin')


async def test_forced_password_change_aborts_without_interacting(env):
    page = FakePage(forced_password_change_pages())

    with pytest.raises(ForcedInterruptError) as exc_info:
        await executor_for(env).execute(page, 'admin')

    error = exc_info.value
    assert error.kind == 'password_change'
    assert error.phase is AuthPhase.CALLBACK
    assert not error.transient
    assert "'admin'" in error.remediation
    # nothing typed or clicked on the password update form
    assert page.clicks == ['#kc-login']
    assert len(page.fills) == 2


async def test_totp_enrollment_page_aborts_instead_of_waiting_for_otp(env):
    page = FakePage(totp_enrollment_pages())
    executor = executor_for(env, mfa={'type': 'totp', 'secretEnvVar': 'ADMIN_TOTP_SECRET'})

    with pytest.raises(ForcedInterruptError) as exc_info:
        await executor.execute(page, 'admin')

    error = exc_info.value
    assert error.kind == 'mfa_enrollment'
    assert error.role == 'admin'
    assert not error.transient
    assert 'CONFIGURE_TOTP' in str(error)
    assert page.clicks == ['#kc-login']
    assert len(page.fills) == 2


async def test_email_verification_code_box_is_not_taken_for_mfa(env):
    page = FakePage(email_verification_pages())

    with pytest.raises(ForcedInterruptError) as exc_info:
        await executor_for(env, provider='generic').execute(page, 'admin')

    assert exc_info.value.kind == 'email_verification'
    # the code box was never filled with an OTP
    assert [value for _, value in page.fills] == ['admin@example.com', 'correct-horse-battery-staple']


async def test_configured_totp_without_challenge_times_out_in_mfa_phase(env):
    page = FakePage(single_step_pages())
    executor = executor_for(env, mfa={'type': 'totp', 'secretEnvVar': 'ADMIN_TOTP_SECRET'},
                            timeouts={'mfaMs': 1})

    with pytest.raises(AuthError) as exc_info:
        await executor.execute(page, 'admin')

    assert exc_info.value.phase is AuthPhase.MFA
    assert isinstance(exc_info.value.__cause__, BrowserActionError)
    assert exc_info.value.__cause__.timeout


async def test_rejected_password_attaches_provider_message(env):
    page = FakePage(bad_password_pages())

    with pytest.raises(AuthError) as exc_info:
        await executor_for(env).execute(page, 'admin')

    error = exc_info.value
    assert error.phase is AuthPhase.CALLBACK
    assert error.idp_response == 'Invalid username or password.'
    assert not error.transient
    assert 'Identity provider said: Invalid username or password.' in str(error)


async def test_navigation_failure_is_tagged_and_transient(env):
    page = FakePage(single_step_pages(), navigation_error='net::ERR_CONNECTION_REFUSED')

    with pytest.raises(AuthError) as exc_info:
        await executor_for(env).execute(page, 'admin')

    error = exc_info.value
    assert error.phase is AuthPhase.NAVIGATION
    assert error.transient
    assert error.remediation == REMEDIATION[AuthPhase.NAVIGATION]
    assert 'ERR_CONNECTION_REFUSED' in str(error)
    assert isinstance(error.__cause__, BrowserActionError)
    assert page.fills == []


async def test_idp_redirect_is_awaited(env):
    page = FakePage(single_step_pages())

    result = await executor_for(env, idpLoginUrl='https://sso.example.com/realms/test').execute(page, 'admin')

    assert result.success


async def test_missing_idp_redirect_fails_navigation(env):
    page = FakePage(single_step_pages())

    with pytest.raises(AuthError) as exc_info:
        await executor_for(env, idpLoginUrl='https://login.example.org/').execute(page, 'admin')

    assert exc_info.value.phase is AuthPhase.NAVIGATION


async def test_missing_credentials_abort_before_browser(env):
    del env['ADMIN_PASSWORD']
    page = FakePage(single_step_pages())

    with pytest.raises(MissingCredentials):
        await executor_for(env).execute(page, 'admin')

    assert page.navigations == []


async def test_success_selector_only(env):
    page = FakePage(single_step_pages())

    result = await executor_for(env, success={'selector': '#user-menu'}).execute(page, 'admin')

    assert result.success


async def test_is_session_valid(env):
    executor = executor_for(env)
    page = FakePage(single_step_pages())

    await page.navigate('https://app.example.com/login')
    assert not await executor.is_session_valid(page)

    await executor.execute(page, 'admin')
    assert await executor.is_session_valid(page)


async def test_failure_result_from_error():
    error = AuthError('boom', AuthPhase.NAVIGATION, role='viewer')

    result = OidcFlowResult.failure(error, attempts=3)

    assert not result.success
    assert result.phase_reached is AuthPhase.NAVIGATION
    assert result.role == 'viewer'
    assert result.attempts == 3
    assert result.error_detail.startswith('[navigation] role=viewer')
    assert result.session_artifact is None


async def test_refresh_session_keeps_live_session(env):
    executor = executor_for(env)
    page = FakePage(single_step_pages())
    await executor.execute(page, 'admin')

    assert await executor.refresh_session(page)
    assert page.reloads == 1


async def test_refresh_session_redirected_to_login_is_invalid(env):
    executor = executor_for(env)
    pages = single_step_pages()
    # matches the success glob, so only the login redirect check rejects it
    pages['expired'] = Screen(url=f'{APP_LOGIN_URL}?next=/dashboard', visible={'#user-menu'})
    page = FakePage(pages, reload_to='expired')
    await executor.execute(page, 'admin')

    assert not await executor.refresh_session(page)


async def test_refresh_session_reload_failure_is_invalid(env):
    executor = executor_for(env)
    page = FakePage(single_step_pages())
    await executor.execute(page, 'admin')
    page.navigation_error = 'net::ERR_INTERNET_DISCONNECTED'

    assert not await executor.refresh_session(page)


async def test_logout_uses_configured_url(env):
    executor = executor_for(env, logout={'url': 'https://app.example.com/signout', 'idpLogout': True})
    page = FakePage(single_step_pages())

    await executor.logout(page)

    assert page.navigations == ['https://app.example.com/signout']
    assert not page.cookies_cleared


async def test_logout_probes_common_endpoints(env):
    executor = executor_for(env)
    page = FakePage(single_step_pages(), statuses={'https://app.example.com/logout': 404})

    await executor.logout(page)

    assert page.navigations == ['https://app.example.com/logout', 'https://app.example.com/api/logout']
    assert not page.cookies_cleared


async def test_logout_clears_cookies_when_no_endpoint_answers(env):
    executor = executor_for(env)
    page = FakePage(single_step_pages(), statuses={
        'https://app.example.com/logout': 404,
        'https://app.example.com/api/logout': 404,
        'https://app.example.com/auth/logout': 500,
    })

    await executor.logout(page)

    assert len(page.navigations) == 3
    assert page.cookies_cleared
    assert (await page.storage_state())['cookies'] == []


async def test_logout_clears_cookies_when_configured_url_fails(env):
    executor = executor_for(env, logout={'url': 'https://app.example.com/signout'})
    page = FakePage(single_step_pages(), navigation_error='net::ERR_CONNECTION_RESET')

    await executor.logout(page)

    assert page.cookies_cleared
