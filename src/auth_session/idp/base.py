"""
Identity-provider handler capability set.

A handler is a plain value describing one provider's page structure
(selectors, URL markers, interrupt indicators). The interaction routines are
shared; providers differ only in the data they carry. Handlers hold no
per-login state, so one instance serves every flow.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Tuple

import anyio

from ..browser import PageSession
from ..config import MfaConfig, SelectorSet
from ..credentials import Credentials
from ..errors import BrowserActionError, ForcedInterruptError, MfaConfigurationError
from ..otp import TotpGenerator, resolve_secret, wait_for_code_window

logger = logging.getLogger(__name__)

COMMON_ERROR_SELECTORS: Tuple[str, ...] = (
    ".error-message",
    ".alert-danger",
    ".alert-error",
    ".login-error",
    "#error-message",
    '[role="alert"]',
)

# Time allowed for a second (password) step to render after the first submit
TWO_STEP_PROBE_MS = 2000

# Poll interval while waiting for the OTP input or an interrupt page
MFA_POLL_INTERVAL = 0.25


@dataclass(frozen=True)
class InterruptIndicator:
    """Sign that the provider is forcing a human-only action."""

    kind: str
    description: str
    selector: Optional[str] = None
    url_marker: Optional[str] = None


@dataclass(frozen=True)
class DismissiblePrompt:
    """Optional post-login prompt that can safely be clicked through."""

    name: str
    indicator: str
    action: str


@dataclass(frozen=True)
class IdpHandler:
    name: str
    selectors: SelectorSet
    url_markers: Tuple[str, ...] = ()
    interrupts: Tuple[InterruptIndicator, ...] = ()
    prompts: Tuple[DismissiblePrompt, ...] = ()
    mfa_method_selectors: Tuple[str, ...] = field(default=())
    fallback: bool = False

    # ---- detection ------------------------------------------------------------
    def detect(self, current_url: str) -> bool:
        """Cheap URL heuristic used when no provider is configured."""
        if self.fallback:
            return True
        url = current_url.lower()
        return any(marker in url for marker in self.url_markers)

    def default_selectors(self) -> SelectorSet:
        return self.selectors

    def effective_selectors(self, overrides: Optional[SelectorSet]) -> SelectorSet:
        if overrides is None:
            return self.selectors
        return overrides.merged_over(self.selectors)

    # ---- credentials ------------------------------------------------------------
    async def fill_credentials(
        self,
        session: PageSession,
        credentials: Credentials,
        overrides: Optional[SelectorSet] = None,
        timeout_ms: int = 10000,
    ) -> bool:
        """Fill the login form.

        The layout is probed, not assumed: the password is only filled when
        its field is already visible (single-page form). Otherwise only the
        username is filled and ``submit_form`` completes the second step.

        Returns:
            True if the password was filled as well
        """
        selectors = self.effective_selectors(overrides)
        await session.wait_for_element(selectors.username, state="visible", timeout_ms=timeout_ms)
        await session.fill(selectors.username, credentials.username)

        if await session.is_visible(selectors.password):
            await session.fill(selectors.password, credentials.password)
            logger.debug(f"[{self.name}] Filled username and password (single-page form)")
            return True

        logger.debug(f"[{self.name}] Filled username only (password field not visible yet)")
        return False

    async def submit_form(
        self,
        session: PageSession,
        credentials: Credentials,
        overrides: Optional[SelectorSet] = None,
        timeout_ms: int = 10000,
    ) -> None:
        """Submit the login form, completing a two-step layout if one appears."""
        selectors = self.effective_selectors(overrides)

        password_pending = not await self._password_filled(session, selectors)
        await session.click(selectors.submit)
        await session.wait_for_load()

        if not password_pending:
            logger.debug(f"[{self.name}] Login form submitted")
            return

        if not await session.is_visible(selectors.password, timeout_ms=TWO_STEP_PROBE_MS):
            logger.debug(f"[{self.name}] No password step appeared after username submit")
            return

        logger.debug(f"[{self.name}] Two-step form detected, filling password")
        await session.fill(selectors.password, credentials.password)
        await session.click(selectors.submit)
        await session.wait_for_load()

    async def _password_filled(self, session: PageSession, selectors: SelectorSet) -> bool:
        if not await session.is_visible(selectors.password):
            return False
        return bool(await session.input_value(selectors.password))

    # ---- MFA ----------------------------------------------------------------------
    async def mfa_challenge_visible(self, session: PageSession, overrides: Optional[SelectorSet] = None) -> bool:
        selectors = self.effective_selectors(overrides)
        if await session.is_visible(selectors.totp_input):
            return True
        return any([await session.is_visible(selector) for selector in self.mfa_method_selectors])

    async def handle_mfa(
        self,
        session: PageSession,
        mfa: Optional[MfaConfig],
        env: Mapping[str, str],
        overrides: Optional[SelectorSet] = None,
        role: str = "unknown",
        timeout_ms: int = 10000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Answer a TOTP challenge.

        An enrollment or verification page shown where the challenge was
        expected aborts the login instead of waiting for an OTP input.

        Raises:
            ForcedInterruptError: If the provider demands a human action
            MfaConfigurationError: If MFA is not configured for TOTP or the
                secret is missing; this is never skipped silently
        """
        await self.check_interrupts(session, overrides, role=role)

        if mfa is None or not mfa.enabled:
            raise MfaConfigurationError(
                "The identity provider requested MFA but no MFA is configured for this role",
                role=role,
                remediation="Add an mfa block (type: totp, secretEnvVar: ...) to the auth configuration",
            )
        if mfa.type != "totp":
            raise MfaConfigurationError(
                f"MFA type '{mfa.type}' cannot be automated",
                role=role,
                remediation="Configure TOTP-based MFA for the test account instead",
            )

        secret = resolve_secret(mfa.secret_env_var, env, role=role)
        generator = TotpGenerator(secret, clock=clock)

        selectors = self.effective_selectors(overrides)
        totp_input = mfa.input_selector or selectors.totp_input
        totp_submit = mfa.submit_selector or selectors.totp_submit or selectors.submit

        # Some providers show a method picker before the code input
        for selector in self.mfa_method_selectors:
            if await session.is_visible(selector):
                logger.debug(f"[{self.name}] Selecting TOTP method via {selector!r}")
                await session.click(selector)
                break

        await self._wait_for_totp_input(session, totp_input, overrides, role, timeout_ms)

        otp = generator.generate()
        await wait_for_code_window(otp)
        await session.fill(totp_input, otp.code)
        await session.click(totp_submit)
        await session.wait_for_load()
        logger.info(f"[{self.name}] TOTP code submitted for role '{role}'")

    async def _wait_for_totp_input(
        self,
        session: PageSession,
        totp_input: str,
        overrides: Optional[SelectorSet],
        role: str,
        timeout_ms: int,
    ) -> None:
        """Wait until the OTP input or an interrupt page shows up, whichever is first."""
        deadline = anyio.current_time() + timeout_ms / 1000
        while True:
            await self.check_interrupts(session, overrides, role=role)
            if await session.is_visible(totp_input):
                return
            if anyio.current_time() >= deadline:
                raise BrowserActionError(
                    "wait_for_element", totp_input, f"Timeout {timeout_ms}ms exceeded", timeout=True
                )
            await anyio.sleep(MFA_POLL_INTERVAL)

    # ---- interrupts -----------------------------------------------------------------
    async def find_interrupt(self, session: PageSession) -> Optional[InterruptIndicator]:
        """Return the first interrupt indicator present on the page, if any."""
        url = session.current_url().lower()
        for indicator in self.interrupts:
            if indicator.url_marker and indicator.url_marker.lower() in url:
                return indicator
            if indicator.selector and await session.is_visible(indicator.selector):
                return indicator
        return None

    async def check_interrupts(
        self,
        session: PageSession,
        overrides: Optional[SelectorSet] = None,
        role: str = "unknown",
    ) -> None:
        """
        Raises:
            ForcedInterruptError: If the provider demands a human action
        """
        indicator = await self.find_interrupt(session)
        if indicator is None:
            return
        logger.error(f"[{self.name}] Forced interrupt '{indicator.kind}' for role '{role}'")
        raise ForcedInterruptError(
            indicator.kind,
            f"{self.name} requires a manual action: {indicator.description}",
            role=role,
            idp_response=await self.read_error(session, overrides),
        )

    # ---- post-login -----------------------------------------------------------------
    async def handle_post_login_prompts(
        self,
        session: PageSession,
        overrides: Optional[SelectorSet] = None,
        role: str = "unknown",
    ) -> None:
        """Abort on forced interrupts, click through harmless prompts.

        Raises:
            ForcedInterruptError: If the provider demands a human action
        """
        await self.check_interrupts(session, overrides, role=role)

        for prompt in self.prompts:
            if await session.is_visible(prompt.indicator):
                logger.debug(f"[{self.name}] Dismissing '{prompt.name}' prompt")
                await session.click(prompt.action)
                await session.wait_for_load()

    async def read_error(self, session: PageSession, overrides: Optional[SelectorSet] = None) -> Optional[str]:
        """Scrape any error text the provider shows, if there is one."""
        selectors = self.effective_selectors(overrides)
        candidates = ([selectors.error] if selectors.error else []) + list(COMMON_ERROR_SELECTORS)
        for selector in candidates:
            if not await session.is_visible(selector):
                continue
            try:
                text = await session.text_content(selector)
            except BrowserActionError as exc:
                logger.debug(f"[{self.name}] Error element {selector!r} vanished: {exc}")
                continue
            if text and text.strip():
                return text.strip()
        return None
