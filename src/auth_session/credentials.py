"""
Credential resolution for test roles.

Maps a role name to the username/password (and extra factors) held in the
process environment. Credentials live for one flow execution only and are
never written to disk.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from .config import AuthConfig
from .errors import MissingCredentials

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str = field(repr=False)
    extra_factors: Dict[str, str] = field(default_factory=dict, repr=False)

    def __repr__(self) -> str:
        extras = ", ".join(sorted(self.extra_factors))
        return f"Credentials(username={self.username!r}, password='***', extra_factors=[{extras}])"


@dataclass(frozen=True)
class MissingCredential:
    """One absent item found while resolving a role."""

    role: str
    type: str  # 'role', 'username', 'password' or an extra factor name
    env_var: Optional[str] = None

    @property
    def message(self) -> str:
        if self.type == "role":
            return f'Role "{self.role}" not found in configuration'
        return f'Environment variable "{self.env_var}" not set'


class CredentialResolver:
    """Resolve role credentials from environment variables.

    Args:
        config: Auth configuration holding the role -> env var mapping
        env: Environment mapping (defaults to ``os.environ``)
    """

    def __init__(self, config: AuthConfig, env: Optional[Mapping[str, str]] = None):
        self.config = config
        self.env = os.environ if env is None else env

    def resolve(self, role: str) -> Credentials:
        """Return credentials for ``role``.

        Raises:
            MissingCredentials: Listing every absent variable for the role
        """
        missing = self._missing_for(role)
        if missing:
            logger.error(
                f"Credentials incomplete for role '{role}': "
                f"{', '.join(m.env_var or m.type for m in missing)}"
            )
            raise MissingCredentials(role, missing, format_missing(missing))

        role_config = self.config.roles[role]
        credentials = Credentials(
            username=self.env[role_config.username_env],
            password=self.env[role_config.password_env],
            extra_factors={name: self.env[var] for name, var in role_config.extra_env.items()},
        )
        logger.info(f"Credentials loaded for role '{role}' (username={credentials.username})")
        return credentials

    def missing(self, roles: Optional[Iterable[str]] = None) -> List[MissingCredential]:
        """Audit several roles at once (all configured roles by default)."""
        roles = list(self.config.roles) if roles is None else list(roles)
        result: List[MissingCredential] = []
        for role in roles:
            result.extend(self._missing_for(role))
        return result

    def has_credentials(self, role: str) -> bool:
        return not self._missing_for(role)

    def _missing_for(self, role: str) -> List[MissingCredential]:
        role_config = self.config.role(role)
        if role_config is None:
            return [MissingCredential(role=role, type="role")]

        required = [("username", role_config.username_env), ("password", role_config.password_env)]
        required.extend(role_config.extra_env.items())
        return [
            MissingCredential(role=role, type=kind, env_var=var)
            for kind, var in required
            if not self.env.get(var)
        ]


def format_missing(missing: Iterable[MissingCredential]) -> str:
    """Render a report that lets an operator fix every gap in one pass."""
    missing = list(missing)
    if not missing:
        return ""

    lines = ["Missing credentials:"]
    by_role: Dict[str, List[MissingCredential]] = {}
    for item in missing:
        by_role.setdefault(item.role, []).append(item)

    for role, items in by_role.items():
        lines.append(f'  Role "{role}":')
        for item in items:
            if item.type == "role":
                lines.append(f"    - {item.message}")
            else:
                lines.append(f"    - {item.type}: {item.env_var} ({item.message})")

    env_vars = list(dict.fromkeys(item.env_var for item in missing if item.env_var))
    if env_vars:
        lines.append("")
        lines.append("To fix, set the required environment variables:")
        lines.extend(f'  export {var}="<value>"' for var in env_vars)
    return "\n".join(lines)
