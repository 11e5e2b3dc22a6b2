"""
Time-based one-time passwords for MFA challenges.

Codes are a pure function of (secret, window index). The generator never
sleeps: when the current window is about to close it hands back the next
window's code together with how long the caller has to wait before that
code becomes valid. ``wait_for_code_window`` is the suspension point the
caller owns.
"""
from __future__ import annotations

import binascii
import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

import anyio
import pyotp

from .errors import MfaConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 30
DEFAULT_DIGITS = 6
DEFAULT_MARGIN_SECONDS = 5


@dataclass(frozen=True)
class OtpCode:
    code: str = ""
    window: int = 0
    remaining_seconds: float = 0.0  # validity left once the code's window is open
    wait_seconds: float = 0.0  # time until the code's window opens

    def __repr__(self) -> str:
        return (
            f"OtpCode(code='******', window={self.window}, "
            f"remaining_seconds={self.remaining_seconds:.1f}, wait_seconds={self.wait_seconds:.1f})"
        )


def resolve_secret(env_var: Optional[str], env: Mapping[str, str], role: str = "unknown") -> str:
    """Read a TOTP secret lazily, only once MFA is actually required.

    Raises:
        MfaConfigurationError: If no variable is configured or it is unset
    """
    if not env_var:
        raise MfaConfigurationError(
            "MFA is required but no TOTP secret environment variable is configured",
            role=role,
            remediation="Set mfa.secretEnvVar in the auth configuration",
        )
    secret = env.get(env_var)
    if not secret:
        raise MfaConfigurationError(
            f'TOTP secret environment variable "{env_var}" is not set',
            role=role,
            remediation=f"Set the {env_var} environment variable with the base32 TOTP secret",
        )
    return secret


class TotpGenerator:
    """RFC 6238 code generator bound to one shared secret.

    Args:
        secret: Base32 shared secret (spaces and case are normalised)
        interval: Window length in seconds
        digits: Code length
        clock: Returns the current UNIX time in seconds
    """

    def __init__(
        self,
        secret: str,
        interval: int = DEFAULT_INTERVAL,
        digits: int = DEFAULT_DIGITS,
        clock: Callable[[], float] = time.time,
    ):
        self.interval = interval
        self.clock = clock
        normalised = "".join(secret.split()).upper()
        self._totp = pyotp.TOTP(normalised, digits=digits, interval=interval)
        try:
            self._totp.at(0)
        except (binascii.Error, ValueError) as exc:
            raise MfaConfigurationError(
                f"TOTP secret is not valid base32: {exc}",
                remediation="Verify the configured secret is the base32 key shown at MFA enrollment",
            ) from exc

    def window_index(self, now: Optional[float] = None) -> int:
        now = self.clock() if now is None else now
        return int(now // self.interval)

    def seconds_remaining(self, now: Optional[float] = None) -> float:
        now = self.clock() if now is None else now
        return self.interval - (now % self.interval)

    def code_at(self, now: Optional[float] = None) -> str:
        return self._code_for_window(self.window_index(now))

    def generate(self, now: Optional[float] = None, margin_seconds: float = DEFAULT_MARGIN_SECONDS) -> OtpCode:
        """Return a code that will still be valid when the provider checks it.

        If fewer than ``margin_seconds`` remain in the current window, the
        next window's code is returned with ``wait_seconds`` set to the time
        until it becomes valid.
        """
        now = self.clock() if now is None else now
        window = self.window_index(now)
        remaining = self.seconds_remaining(now)

        if remaining < margin_seconds:
            logger.debug(f"TOTP window closes in {remaining:.1f}s, using next window")
            return OtpCode(
                code=self._code_for_window(window + 1),
                window=window + 1,
                remaining_seconds=float(self.interval),
                wait_seconds=remaining,
            )
        return OtpCode(code=self._code_for_window(window), window=window, remaining_seconds=remaining)

    def verify(self, code: str, now: Optional[float] = None) -> bool:
        """Check a code, tolerating one window of clock drift."""
        now = self.clock() if now is None else now
        return self._totp.verify(code, for_time=int(now), valid_window=1)

    def _code_for_window(self, window: int) -> str:
        return self._totp.at(window * self.interval)


async def wait_for_code_window(otp: OtpCode) -> None:
    """Sleep until ``otp``'s window has opened (no-op for current-window codes)."""
    if otp.wait_seconds > 0:
        # small pad so the provider's clock is inside the new window too
        delay = otp.wait_seconds + 0.5
        logger.debug(f"Waiting {delay:.1f}s for next TOTP window")
        await anyio.sleep(delay)
