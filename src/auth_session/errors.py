"""
Error taxonomy for authentication setup.

Every failure raised by this package derives from ``AuthSessionError`` so a
test-run bootstrap can catch one type and still print the phase and
remediation text of the specific failure.
"""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional


class AuthPhase(str, Enum):
    """Stage of the login state machine an error originated in."""

    NAVIGATION = "navigation"
    CREDENTIALS = "credentials"
    MFA = "mfa"
    CALLBACK = "callback"


class StorageStateCause(str, Enum):
    """Why a cached storage state could not be used."""

    MISSING = "missing"
    EXPIRED = "expired"
    CORRUPTED = "corrupted"
    INVALID = "invalid"


class AuthSessionError(Exception):
    """Base class for all auth-session failures."""


class ConfigError(AuthSessionError):
    """Raised when the auth configuration is structurally invalid."""

    def __init__(self, problems: Iterable[str]):
        self.problems: List[str] = list(problems)
        lines = ["Invalid auth configuration:"]
        lines.extend(f"  - {problem}" for problem in self.problems)
        super().__init__("\n".join(lines))


class MissingCredentials(AuthSessionError):
    """Raised when one or more credential environment variables are absent.

    ``missing`` always holds every absent item for the role, never just the
    first one found.
    """

    def __init__(self, role: str, missing: list, report: str):
        self.role = role
        self.missing = list(missing)
        super().__init__(report)

    @property
    def env_vars(self) -> List[str]:
        return [item.env_var for item in self.missing if item.env_var]


class AuthError(AuthSessionError):
    """Login flow failed at a specific phase."""

    def __init__(
        self,
        message: str,
        phase: AuthPhase,
        role: str = "unknown",
        idp_response: Optional[str] = None,
        remediation: Optional[str] = None,
    ):
        self.message = message
        self.phase = AuthPhase(phase)
        self.role = role
        self.idp_response = idp_response
        self.remediation = remediation
        super().__init__(message)

    @property
    def transient(self) -> bool:
        """Whether retrying the whole flow may succeed.

        Navigation failures are environment problems. Callback failures are
        too, unless the provider put an error message on the page, which
        means it rejected the login.
        """
        if self.phase is AuthPhase.NAVIGATION:
            return True
        if self.phase is AuthPhase.CALLBACK:
            return not self.idp_response
        return False

    def __str__(self) -> str:
        text = f"[{self.phase.value}] role={self.role}: {self.message}"
        if self.idp_response:
            text += f"\n  Identity provider said: {self.idp_response.strip()}"
        if self.remediation:
            text += f"\n  Remediation: {self.remediation}"
        return text


class MfaConfigurationError(AuthError):
    """MFA is required but cannot be automated with the current configuration."""

    def __init__(self, message: str, role: str = "unknown", remediation: Optional[str] = None):
        super().__init__(message, AuthPhase.MFA, role=role, remediation=remediation)

    @property
    def transient(self) -> bool:
        return False


class ForcedInterruptError(AuthError):
    """The identity provider demands a human action before login completes."""

    def __init__(
        self,
        kind: str,
        message: str,
        role: str = "unknown",
        idp_response: Optional[str] = None,
    ):
        self.kind = kind
        super().__init__(
            message,
            AuthPhase.CALLBACK,
            role=role,
            idp_response=idp_response,
            remediation=(
                f"Log in manually as the '{role}' test user and complete the "
                f"required action ({kind}), then re-run the test suite."
            ),
        )

    @property
    def transient(self) -> bool:
        return False


class StorageStateError(AuthSessionError):
    """A cached session file is unusable."""

    def __init__(
        self,
        message: str,
        role: str,
        path: Optional[Path],
        cause: StorageStateCause,
    ):
        self.role = role
        self.path = path
        self.cause = StorageStateCause(cause)
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.args[0]} (cause={self.cause.value}, path={self.path})"


class BrowserActionError(AuthSessionError):
    """Raised when a browser operation fails."""

    def __init__(self, action: str, selector: Optional[str], message: str, timeout: bool = False):
        self.action = action
        self.selector = selector
        self.timeout = timeout
        super().__init__(message)

    def __str__(self) -> str:
        target = f" on {self.selector!r}" if self.selector else ""
        kind = "timed out" if self.timeout else "failed"
        return f"{self.action}{target} {kind}: {self.args[0]}"


def is_transient(error: BaseException) -> bool:
    """Classify an error for the retry wrapper.

    Only ``AuthError`` instances can be transient; anything else propagates
    to the caller untouched.
    """
    if isinstance(error, AuthError):
        return error.transient
    return False
