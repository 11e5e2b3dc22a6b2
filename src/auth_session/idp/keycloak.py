"""Keycloak, the primary enterprise identity provider."""
from ..config import SelectorSet
from .base import IdpHandler, InterruptIndicator

KEYCLOAK_SELECTORS = SelectorSet(
    username="#username",
    password="#password",
    submit="#kc-login",
    totp_input="#otp",
    totp_submit="#kc-login",
    error="#input-error, .kc-feedback-text, .alert-error",
)

# Keycloak "required actions" all route through /login-actions/required-action
# with the action name in the execution parameter.
KEYCLOAK_INTERRUPTS = (
    InterruptIndicator(
        kind="password_change",
        description="password update required (UPDATE_PASSWORD)",
        selector="#kc-passwd-update-form",
        url_marker="execution=UPDATE_PASSWORD",
    ),
    InterruptIndicator(
        kind="email_verification",
        description="email verification required (VERIFY_EMAIL)",
        url_marker="execution=VERIFY_EMAIL",
    ),
    InterruptIndicator(
        kind="mfa_enrollment",
        description="OTP enrollment required (CONFIGURE_TOTP)",
        selector="#kc-totp-settings",
        url_marker="execution=CONFIGURE_TOTP",
    ),
    InterruptIndicator(
        kind="profile_update",
        description="profile update required (UPDATE_PROFILE)",
        url_marker="execution=UPDATE_PROFILE",
    ),
    InterruptIndicator(
        kind="terms_acceptance",
        description="terms and conditions must be accepted",
        selector="#kc-terms-text",
        url_marker="execution=TERMS_AND_CONDITIONS",
    ),
)

KEYCLOAK = IdpHandler(
    name="keycloak",
    selectors=KEYCLOAK_SELECTORS,
    url_markers=("/realms/", "keycloak", "/protocol/openid-connect/"),
    interrupts=KEYCLOAK_INTERRUPTS,
)
