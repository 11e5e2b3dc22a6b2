"""Microsoft Entra ID (Azure AD) sign-in pages."""
from ..config import SelectorSet
from .base import DismissiblePrompt, IdpHandler, InterruptIndicator

AZURE_AD_SELECTORS = SelectorSet(
    username='input[name="loginfmt"]',
    password='input[name="passwd"]',
    submit="#idSIButton9",
    totp_input='input[name="otc"]',
    totp_submit="#idSubmit_SAOTCC_Continue",
    error="#usernameError, #passwordError, #idTD_Error",
)

AZURE_AD_INTERRUPTS = (
    InterruptIndicator(
        kind="password_change",
        description="password has expired and must be updated",
        selector='input[name="newPassword"]',
        url_marker="/changepassword",
    ),
    InterruptIndicator(
        kind="mfa_enrollment",
        description="'More information required': security info registration",
        selector="#idDiv_SAOTCS_ProofUpRedirect",
        url_marker="mysignins.microsoft.com/register",
    ),
    InterruptIndicator(
        kind="mfa_enrollment",
        description="security info registration (proof-up) required",
        url_marker="/proofup",
    ),
)

# "Stay signed in?" is answered "No" so the stored session matches a normal login
AZURE_AD_PROMPTS = (
    DismissiblePrompt(name="stay_signed_in", indicator="#KmsiCheckboxField", action="#idBtn_Back"),
)

AZURE_AD = IdpHandler(
    name="azure-ad",
    selectors=AZURE_AD_SELECTORS,
    url_markers=("login.microsoftonline.com", "login.live.com", "login.windows.net"),
    interrupts=AZURE_AD_INTERRUPTS,
    prompts=AZURE_AD_PROMPTS,
    mfa_method_selectors=('div[data-value="PhoneAppOTP"]',),
)
