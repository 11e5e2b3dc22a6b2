"""
OIDC login flow executor.

Drives one login through its phases:

1. navigation  - load the login URL, follow the redirect, pick the handler
2. credentials - fill and submit the identity provider form
3. mfa         - answer a TOTP challenge (only when configured or observed);
                 an interrupt page shown instead of the challenge aborts here
4. callback    - reject forced interrupts, then wait for the success indicator

Any failure inside a phase is re-raised as ``AuthError`` tagged with that
phase. Nothing is persisted here: a successful run returns the session
snapshot and the caller decides where it goes.
"""
from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Mapping, Optional
from urllib.parse import urlparse

import anyio

from .browser import PageSession
from .config import AuthConfig
from .credentials import CredentialResolver
from .errors import AuthError, AuthPhase, BrowserActionError
from .idp import IdpHandler, select_handler

logger = logging.getLogger(__name__)

SUCCESS_POLL_INTERVAL = 0.25

# Tried in order when no logout URL is configured
LOGOUT_PATHS = ("/logout", "/api/logout", "/auth/logout")
LOGOUT_PROBE_TIMEOUT_MS = 5000

REMEDIATION = {
    AuthPhase.NAVIGATION: "Verify the login URL is reachable from this machine and the identity provider is up",
    AuthPhase.CREDENTIALS: "Check the username/password selectors for the identity provider login page",
    AuthPhase.MFA: "Check the TOTP input selector and verify the configured secret is correct",
    AuthPhase.CALLBACK: "Verify the credentials and the success URL/selector configuration",
}


@dataclass
class OidcFlowResult:
    """Outcome of one flow execution (or of a retried login)."""

    success: bool
    phase_reached: AuthPhase
    role: str
    session_artifact: Optional[Dict[str, Any]] = None
    error_detail: Optional[str] = None
    provider: Optional[str] = None
    final_url: Optional[str] = None
    duration_ms: int = 0
    attempts: int = 1

    @classmethod
    def failure(cls, error: AuthError, attempts: int = 1) -> "OidcFlowResult":
        return cls(
            success=False,
            phase_reached=error.phase,
            role=error.role,
            error_detail=str(error),
            attempts=attempts,
        )


class OidcFlowExecutor:
    """Run the OIDC login state machine for a role.

    Args:
        config: Auth configuration
        resolver: Credential resolver (built from ``config`` if omitted)
        env: Environment used for lazily resolved MFA secrets
        clock: Wall clock used for TOTP windows
    """

    def __init__(
        self,
        config: AuthConfig,
        resolver: Optional[CredentialResolver] = None,
        env: Optional[Mapping[str, str]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.env = os.environ if env is None else env
        self.resolver = resolver or CredentialResolver(config, env=self.env)
        self.clock = clock

    async def execute(self, session: PageSession, role: str) -> OidcFlowResult:
        """Log in as ``role`` and return the resulting session snapshot.

        Raises:
            MissingCredentials: Before any browser interaction
            AuthError: Tagged with the phase that failed
        """
        oidc = self.config.oidc
        started = time.monotonic()
        credentials = self.resolver.resolve(role)
        selectors = self.config.selectors_for(role)
        mfa = self.config.mfa_for(role)

        logger.info(f"Starting OIDC login for role '{role}' ({oidc.login_url})")

        async with self._phase(AuthPhase.NAVIGATION, role, "Failed to reach the identity provider login page"):
            handler = await self._navigate(session)

        async with self._phase(AuthPhase.CREDENTIALS, role, f"Failed to enter credentials on {handler.name} login page"):
            await handler.fill_credentials(session, credentials, selectors, timeout_ms=oidc.timeouts.element_ms)
            await handler.submit_form(session, credentials, selectors, timeout_ms=oidc.timeouts.element_ms)

        async with self._phase(AuthPhase.MFA, role, "Failed to complete the TOTP challenge"):
            if mfa is not None and mfa.enabled:
                await self._handle_mfa(session, handler, role)
            elif not await self._success_reached(session):
                # Code boxes on verification pages look like an OTP challenge
                await handler.check_interrupts(session, selectors, role=role)
                if await handler.mfa_challenge_visible(session, selectors):
                    logger.warning(f"[{handler.name}] MFA challenge shown but MFA is not configured for '{role}'")
                    await self._handle_mfa(session, handler, role)

        async with self._phase(AuthPhase.CALLBACK, role, "Authentication callback failed"):
            await handler.handle_post_login_prompts(session, selectors, role=role)
            await self._wait_for_success(session, handler, role)
            artifact = await session.storage_state()

        duration_ms = int((time.monotonic() - started) * 1000)
        final_url = session.current_url()
        logger.info(f"OIDC login for role '{role}' succeeded via {handler.name} in {duration_ms}ms")
        return OidcFlowResult(
            success=True,
            phase_reached=AuthPhase.CALLBACK,
            role=role,
            session_artifact=artifact,
            provider=handler.name,
            final_url=final_url,
            duration_ms=duration_ms,
        )

    async def is_session_valid(self, session: PageSession) -> bool:
        """Check the current page for the configured success indicators."""
        success = self.config.oidc.success
        if not success.url_matches(session.current_url()):
            return False
        if success.selector:
            return await session.is_visible(success.selector, timeout_ms=1000)
        return True

    async def refresh_session(self, session: PageSession) -> bool:
        """Reload the current page and report whether the session survived.

        Landing back on the login URL, or a reload that fails, means the
        session is gone.
        """
        oidc = self.config.oidc
        logger.debug("Attempting session refresh")
        try:
            await session.reload(timeout_ms=oidc.timeouts.navigation_ms)
        except BrowserActionError as exc:
            logger.warning(f"Session refresh error: {exc}")
            return False

        if oidc.login_url in session.current_url():
            logger.debug("Session refresh failed - redirected to login")
            return False

        valid = await self.is_session_valid(session)
        logger.debug(f"Session refresh result: valid={valid}")
        return valid

    async def logout(self, session: PageSession) -> None:
        """End the session in the browser.

        Uses the configured logout URL, otherwise probes the usual logout
        endpoints on the application origin. Cookies are cleared when no
        endpoint answers successfully or the logout navigation fails.
        """
        oidc = self.config.oidc
        try:
            if oidc.logout and oidc.logout.url:
                await session.navigate(oidc.logout.url, timeout_ms=oidc.timeouts.navigation_ms)
                if oidc.logout.idp_logout:
                    await session.wait_for_load(timeout_ms=oidc.timeouts.idp_redirect_ms)
                logger.info(f"Logged out via {oidc.logout.url}")
                return

            parsed = urlparse(oidc.login_url)
            for path in LOGOUT_PATHS:
                url = f"{parsed.scheme}://{parsed.netloc}{path}"
                try:
                    status = await session.navigate(url, timeout_ms=LOGOUT_PROBE_TIMEOUT_MS)
                except BrowserActionError as exc:
                    logger.debug(f"Logout probe {url} failed: {exc}")
                    continue
                if status is not None and 200 <= status < 300:
                    logger.info(f"Logged out via {url}")
                    return
        except BrowserActionError as exc:
            logger.warning(f"Logout error: {exc}")

        await session.clear_cookies()
        logger.debug("Cleared cookies as logout fallback")

    # ---- phases -------------------------------------------------------------------

    @asynccontextmanager
    async def _phase(self, phase: AuthPhase, role: str, failure: str) -> AsyncIterator[None]:
        logger.debug(f"Entering {phase.value} phase for role '{role}'")
        try:
            yield
        except AuthError:
            raise
        except Exception as exc:
            logger.error(f"{failure} (role={role}, phase={phase.value}): {exc}")
            raise AuthError(
                f"{failure}: {exc}",
                phase,
                role=role,
                remediation=REMEDIATION[phase],
            ) from exc

    async def _navigate(self, session: PageSession) -> IdpHandler:
        oidc = self.config.oidc
        await session.navigate(oidc.login_url, timeout_ms=oidc.timeouts.navigation_ms)

        if oidc.idp_login_url and oidc.idp_login_url != oidc.login_url:
            idp_host = urlparse(oidc.idp_login_url).netloc
            logger.debug(f"Waiting for redirect to {idp_host}")
            await session.wait_for_url(lambda url: idp_host in url, timeout_ms=oidc.timeouts.idp_redirect_ms)
        else:
            await session.wait_for_load()

        return select_handler(oidc.provider, session.current_url())

    async def _handle_mfa(self, session: PageSession, handler: IdpHandler, role: str) -> None:
        await handler.handle_mfa(
            session,
            self.config.mfa_for(role),
            self.env,
            self.config.selectors_for(role),
            role=role,
            timeout_ms=self.config.oidc.timeouts.mfa_ms,
            clock=self.clock,
        )

    async def _success_reached(self, session: PageSession) -> bool:
        success = self.config.oidc.success
        if success.url and success.url_matches(session.current_url()):
            return True
        if success.selector:
            return await session.is_visible(success.selector)
        return False

    async def _wait_for_success(self, session: PageSession, handler: IdpHandler, role: str) -> None:
        success = self.config.oidc.success
        if not success.url and not success.selector:
            await session.wait_for_load(timeout_ms=success.timeout_ms)
            return

        deadline = anyio.current_time() + success.timeout_ms / 1000
        while True:
            if await self._success_reached(session):
                return
            if anyio.current_time() >= deadline:
                break
            await anyio.sleep(SUCCESS_POLL_INTERVAL)

        idp_response = await handler.read_error(session, self.config.selectors_for(role))
        raise AuthError(
            f"Success indicator not reached within {success.timeout_ms}ms (last URL: {session.current_url()})",
            AuthPhase.CALLBACK,
            role=role,
            idp_response=idp_response,
            remediation=REMEDIATION[AuthPhase.CALLBACK],
        )

