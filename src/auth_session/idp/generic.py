"""Fallback handler built from broadly applicable form heuristics."""
from ..config import SelectorSet
from .base import IdpHandler, InterruptIndicator

GENERIC_SELECTORS = SelectorSet(
    username=", ".join([
        'input[type="email"]',
        'input[name="username"]',
        'input[name="email"]',
        'input[id*="username"]',
        'input[id*="email"]',
        'input[autocomplete="username"]',
    ]),
    password=", ".join([
        'input[type="password"]',
        'input[name="password"]',
        'input[id*="password"]',
        'input[autocomplete="current-password"]',
    ]),
    submit=", ".join([
        'button[type="submit"]',
        'input[type="submit"]',
        'button:has-text("Sign in")',
        'button:has-text("Log in")',
        'button:has-text("Login")',
    ]),
    totp_input=", ".join([
        'input[autocomplete="one-time-code"]',
        'input[name*="otp"]',
        'input[name*="totp"]',
        'input[name*="code"]',
        'input[type="tel"][maxlength="6"]',
    ]),
    totp_submit=", ".join([
        'button[type="submit"]',
        'input[type="submit"]',
        'button:has-text("Verify")',
    ]),
)

GENERIC_INTERRUPTS = (
    InterruptIndicator(
        kind="required_action",
        description="the page flags a required account action",
        selector="[data-required-action]",
        url_marker="required-action",
    ),
    InterruptIndicator(
        kind="password_change",
        description="a new password must be chosen",
        selector='input[autocomplete="new-password"]',
        url_marker="change-password",
    ),
    InterruptIndicator(
        kind="password_change",
        description="password has expired",
        url_marker="password-expired",
    ),
    InterruptIndicator(
        kind="email_verification",
        description="email address must be verified",
        url_marker="verify-email",
    ),
    InterruptIndicator(
        kind="mfa_enrollment",
        description="a second factor must be enrolled",
        url_marker="mfa/enroll",
    ),
)

GENERIC = IdpHandler(
    name="generic",
    selectors=GENERIC_SELECTORS,
    interrupts=GENERIC_INTERRUPTS,
    fallback=True,
)
