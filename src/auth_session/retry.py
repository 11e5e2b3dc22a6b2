"""
Retry wrapper around the OIDC flow executor.

Each attempt gets a brand-new browser session so nothing from a failed
attempt (cookies, half-filled forms) leaks into the next one. Only errors
classified as transient are retried; a rejected password or an MFA
misconfiguration fails on the first attempt.
"""
from __future__ import annotations

import logging
from typing import AsyncContextManager, Callable, Optional

import anyio

from .browser import PageSession
from .config import RetryConfig
from .errors import AuthError, is_transient
from .flow import OidcFlowExecutor, OidcFlowResult

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncContextManager[PageSession]]


class RetryingAuthenticator:
    """Run ``OidcFlowExecutor.execute`` with bounded, phase-aware retries.

    Args:
        executor: Flow executor performing a single login
        retry_config: Attempt cap and base delay (defaults to 3 attempts, 1s)
    """

    def __init__(self, executor: OidcFlowExecutor, retry_config: Optional[RetryConfig] = None):
        self.executor = executor
        self.retry_config = retry_config or executor.config.retry

    @property
    def max_attempts(self) -> int:
        return max(1, int(self.retry_config.max_attempts))

    async def authenticate(
        self,
        session_factory: SessionFactory,
        role: str,
        raise_on_failure: bool = True,
    ) -> OidcFlowResult:
        """Log in as ``role``, retrying transient failures.

        Args:
            session_factory: Returns an async context manager yielding a
                fresh ``PageSession`` (e.g. ``PlaywrightClient.session``)
            role: Role to log in as
            raise_on_failure: Re-raise the final ``AuthError`` (default) or
                return a failed ``OidcFlowResult`` instead

        Returns:
            OidcFlowResult with ``attempts`` set

        Raises:
            AuthError: The last error, unchanged, once retries are exhausted
                or the error is not transient
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                async with session_factory() as session:
                    result = await self.executor.execute(session, role)
            except AuthError as exc:
                if not is_transient(exc) or attempt >= self.max_attempts:
                    if is_transient(exc):
                        logger.error(f"Login for role '{role}' failed after {attempt} attempt(s): {exc.message}")
                    else:
                        logger.error(f"Login for role '{role}' failed with non-retryable {exc.phase.value} error")
                    if raise_on_failure:
                        raise
                    return OidcFlowResult.failure(exc, attempts=attempt)

                delay = self.retry_config.base_delay_ms * attempt / 1000
                logger.warning(
                    f"Login attempt {attempt}/{self.max_attempts} for role '{role}' failed in "
                    f"{exc.phase.value} phase ({exc.message}), retrying in {delay:.1f}s"
                )
                if delay > 0:
                    await anyio.sleep(delay)
                continue

            result.attempts = attempt
            return result
