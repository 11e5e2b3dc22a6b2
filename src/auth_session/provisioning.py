"""
Cache-first session provisioning.

The storage-state cache is consulted before any login: a valid file for
(role, environment) short-circuits the browser flow entirely. Parallel
workers may both decide to log in for the same role; each saves atomically
and whichever save lands last wins.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, Optional

from .config import AuthConfig
from .retry import RetryingAuthenticator, SessionFactory
from .storage import StorageStateManager

logger = logging.getLogger(__name__)


class SessionProvisioner:
    """Hand out a storage-state file per role, logging in only when needed.

    Args:
        config: Auth configuration (its ``environment`` keys the cache)
        storage: Storage-state manager
        authenticator: Retry wrapper performing the actual logins
        session_factory: Opens a fresh ``PageSession`` per login attempt
    """

    def __init__(
        self,
        config: AuthConfig,
        storage: StorageStateManager,
        authenticator: RetryingAuthenticator,
        session_factory: SessionFactory,
    ):
        self.config = config
        self.storage = storage
        self.authenticator = authenticator
        self.session_factory = session_factory
        self._cleaned = False

    @property
    def environment(self) -> str:
        return self.config.environment

    async def ensure(self, role: str, force: bool = False) -> Path:
        """Return a valid storage-state path for ``role``.

        Args:
            role: Role to provision
            force: Log in even if a valid cached state exists

        Raises:
            MissingCredentials: If the role's credentials are not set
            AuthError: If the login failed after retries
            StorageStateError: If the captured state could not be saved
        """
        self._cleanup_once()

        if not force and self.storage.is_valid(role, self.environment):
            path = self.storage.path_for(role, self.environment)
            logger.info(f"Reusing cached storage state for role '{role}' ({path})")
            return path

        logger.info(f"No usable storage state for role '{role}' (env={self.environment}), logging in")
        result = await self.authenticator.authenticate(self.session_factory, role)
        return self.storage.save(role, self.environment, result.session_artifact)

    async def ensure_all(self, roles: Optional[Iterable[str]] = None) -> Dict[str, Path]:
        """Provision several roles one after another, stopping at the first failure."""
        names = list(roles) if roles is not None else list(self.config.roles)
        paths: Dict[str, Path] = {}
        for role in names:
            paths[role] = await self.ensure(role)
        return paths

    def _cleanup_once(self) -> None:
        if self._cleaned:
            return
        self._cleaned = True
        self.storage.cleanup_expired()
