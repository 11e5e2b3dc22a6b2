"""
Authentication and session persistence for end-to-end test suites.

Logs a test role in through an OIDC identity provider once, caches the
resulting browser storage state on disk, and hands the cached file to every
test that needs that role.

Supported identity providers:
- keycloak: Keycloak login theme (single and two-step forms)
- azure-ad: Microsoft Entra ID / Azure AD
- okta: Okta Identity Engine sign-in widget
- generic: heuristic fallback (also used for Auth0)

Usage:
    from auth_session import (
        OidcFlowExecutor, PlaywrightClient, RetryingAuthenticator,
        SessionProvisioner, StorageStateManager, load_config,
    )

    config = load_config("auth-session.yaml")
    authenticator = RetryingAuthenticator(OidcFlowExecutor(config))
    storage = StorageStateManager(config.storage_state)

    async with PlaywrightClient() as client:
        provisioner = SessionProvisioner(config, storage, authenticator, client.session)
        path = await provisioner.ensure("admin")
"""

from .browser import PageSession, PlaywrightClient, PlaywrightPageSession
from .config import (
    AuthConfig,
    MfaConfig,
    OidcConfig,
    RetryConfig,
    RoleConfig,
    SelectorSet,
    StorageStateConfig,
    SuccessIndicator,
    TimeoutConfig,
    load_config,
)
from .credentials import CredentialResolver, Credentials, MissingCredential, format_missing
from .errors import (
    AuthError,
    AuthPhase,
    AuthSessionError,
    BrowserActionError,
    ConfigError,
    ForcedInterruptError,
    MfaConfigurationError,
    MissingCredentials,
    StorageStateCause,
    StorageStateError,
    is_transient,
)
from .flow import OidcFlowExecutor, OidcFlowResult
from .idp import IdpHandler, get_handler, select_handler
from .otp import OtpCode, TotpGenerator
from .provisioning import SessionProvisioner
from .retry import RetryingAuthenticator
from .storage import StorageState, StorageStateManager, StorageStateMetadata

__version__ = "1.0.0"

__all__ = [
    'AuthConfig',
    'AuthError',
    'AuthPhase',
    'AuthSessionError',
    'BrowserActionError',
    'ConfigError',
    'CredentialResolver',
    'Credentials',
    'ForcedInterruptError',
    'IdpHandler',
    'MfaConfig',
    'MfaConfigurationError',
    'MissingCredential',
    'MissingCredentials',
    'OidcConfig',
    'OidcFlowExecutor',
    'OidcFlowResult',
    'OtpCode',
    'PageSession',
    'PlaywrightClient',
    'PlaywrightPageSession',
    'RetryConfig',
    'RetryingAuthenticator',
    'RoleConfig',
    'SelectorSet',
    'SessionProvisioner',
    'StorageState',
    'StorageStateCause',
    'StorageStateConfig',
    'StorageStateError',
    'StorageStateManager',
    'StorageStateMetadata',
    'SuccessIndicator',
    'TimeoutConfig',
    'TotpGenerator',
    'format_missing',
    'get_handler',
    'is_transient',
    'load_config',
    'select_handler',
]
