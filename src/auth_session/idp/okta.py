"""Okta sign-in widget (Identity Engine, with Classic fallbacks)."""
from ..config import SelectorSet
from .base import IdpHandler, InterruptIndicator

# Identity Engine reuses credentials.passcode for both the password and the
# OTP step, so the two are told apart by input type.
OKTA_SELECTORS = SelectorSet(
    username='input[name="identifier"], #okta-signin-username',
    password='input[name="credentials.passcode"][type="password"], #okta-signin-password',
    submit='input[type="submit"], #okta-signin-submit',
    totp_input='input[name="credentials.passcode"]:not([type="password"]), input[name="answer"]',
    totp_submit='input[type="submit"]',
    error='.o-form-error-container, [data-se="o-form-error-container"]',
)

OKTA_INTERRUPTS = (
    InterruptIndicator(
        kind="password_change",
        description="password has expired and must be changed",
        selector='input[name="credentials.newPassword"]',
        url_marker="/signin/password-expired",
    ),
    InterruptIndicator(
        kind="mfa_enrollment",
        description="an authenticator must be enrolled",
        selector='[data-se="authenticator-enroll-list"]',
        url_marker="/signin/enroll",
    ),
    InterruptIndicator(
        kind="email_verification",
        description="email verification required",
        selector='[data-se="email-verify"]',
    ),
)

OKTA = IdpHandler(
    name="okta",
    selectors=OKTA_SELECTORS,
    url_markers=(".okta.com", ".oktapreview.com", ".okta-emea.com"),
    interrupts=OKTA_INTERRUPTS,
    mfa_method_selectors=('[data-se="google_otp"] [data-se="button"]',),
)
