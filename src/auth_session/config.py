"""Explicit configuration for authentication setup.

The configuration tree is built once by the caller (from a mapping or a YAML
file) and passed by value into the resolver, executor and storage manager.
Nothing in this package caches it at module level.

Example YAML::

    environment: staging
    oidc:
      loginUrl: https://app.example.com/login
      provider: auto
      success:
        url: "**/dashboard**"
      logout:
        url: https://app.example.com/logout
      mfa:
        type: totp
        secretEnvVar: ADMIN_TOTP_SECRET
    roles:
      admin:
        usernameEnv: ADMIN_USERNAME
        passwordEnv: ADMIN_PASSWORD
    storageState:
      directory: .auth-states
      maxAgeMinutes: 30
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .errors import ConfigError

MAX_CONFIG_BYTES = 1024 * 1024

SUPPORTED_MFA_TYPES = ("totp", "none", "sms", "push")


@dataclass(frozen=True)
class SelectorSet:
    """Element-location hints for one identity provider page.

    Any field left as ``None`` falls back to the handler's defaults.
    """

    username: Optional[str] = None
    password: Optional[str] = None
    submit: Optional[str] = None
    totp_input: Optional[str] = None
    totp_submit: Optional[str] = None
    error: Optional[str] = None

    def merged_over(self, base: "SelectorSet") -> "SelectorSet":
        """Return ``base`` with every field set here taking precedence."""
        overrides = {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name)}
        return replace(base, **overrides)


@dataclass(frozen=True)
class MfaConfig:
    type: str = "totp"
    secret_env_var: Optional[str] = None
    input_selector: Optional[str] = None
    submit_selector: Optional[str] = None
    required: bool = True

    @property
    def enabled(self) -> bool:
        return self.type != "none" and self.required


@dataclass(frozen=True)
class SuccessIndicator:
    """How to recognise a completed login.

    ``url`` is a substring, a glob (``**/dashboard**``) or a regex prefixed
    with ``re:``.
    """

    url: Optional[str] = None
    selector: Optional[str] = None
    timeout_ms: int = 10000

    def url_matches(self, current_url: str) -> bool:
        if not self.url:
            return True
        return url_pattern_matches(self.url, current_url)


@dataclass(frozen=True)
class TimeoutConfig:
    navigation_ms: int = 30000
    idp_redirect_ms: int = 10000
    element_ms: int = 10000
    mfa_ms: int = 10000


@dataclass(frozen=True)
class LogoutConfig:
    url: Optional[str] = None
    # Wait for the identity provider round-trip after the app logout URL
    idp_logout: bool = False


@dataclass(frozen=True)
class OidcConfig:
    login_url: str
    provider: str = "auto"
    idp_login_url: Optional[str] = None
    selectors: SelectorSet = field(default_factory=SelectorSet)
    mfa: Optional[MfaConfig] = None
    success: SuccessIndicator = field(default_factory=SuccessIndicator)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    logout: Optional[LogoutConfig] = None


@dataclass(frozen=True)
class RoleConfig:
    """Environment variable names holding one role's secrets."""

    name: str
    username_env: str
    password_env: str
    extra_env: Dict[str, str] = field(default_factory=dict)
    mfa: Optional[MfaConfig] = None
    selectors: Optional[SelectorSet] = None


@dataclass(frozen=True)
class StorageStateConfig:
    directory: Path = Path(".auth-states")
    file_pattern: str = "{role}.json"
    max_age_minutes: float = 60
    cleanup_max_age_hours: float = 24

    @property
    def max_age_seconds(self) -> float:
        return self.max_age_minutes * 60

    @property
    def cleanup_max_age_seconds(self) -> float:
        return self.cleanup_max_age_hours * 3600


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay_ms: int = 1000


@dataclass(frozen=True)
class AuthConfig:
    """Root of the configuration tree."""

    environment: str
    oidc: OidcConfig
    roles: Dict[str, RoleConfig]
    storage_state: StorageStateConfig = field(default_factory=StorageStateConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)

    def role(self, name: str) -> Optional[RoleConfig]:
        return self.roles.get(name)

    def mfa_for(self, role: str) -> Optional[MfaConfig]:
        """Per-role MFA settings win over the provider-level block."""
        role_config = self.roles.get(role)
        if role_config and role_config.mfa is not None:
            return role_config.mfa
        return self.oidc.mfa

    def selectors_for(self, role: str) -> SelectorSet:
        role_config = self.roles.get(role)
        if role_config and role_config.selectors is not None:
            return role_config.selectors.merged_over(self.oidc.selectors)
        return self.oidc.selectors

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], env: Optional[Mapping[str, str]] = None) -> "AuthConfig":
        """Build the configuration tree from a plain mapping.

        Keys may be camelCase or snake_case. Every problem found is collected
        and reported together in a single ``ConfigError``.

        Args:
            data: Parsed configuration (e.g. from YAML)
            env: Environment used for the ``AUTH_ENVIRONMENT`` override
                (defaults to ``os.environ``)

        Returns:
            AuthConfig instance

        Raises:
            ConfigError: If required keys are missing or values are invalid
        """
        env = os.environ if env is None else env
        problems: List[str] = []

        if not isinstance(data, Mapping):
            raise ConfigError(["configuration root must be a mapping"])
        data = _normalise_keys(data)

        environment = env.get("AUTH_ENVIRONMENT") or data.get("environment") or "default"

        oidc_data = data.get("oidc")
        oidc: Optional[OidcConfig] = None
        if not isinstance(oidc_data, Mapping):
            problems.append("oidc: section is required")
        else:
            oidc = _parse_oidc(oidc_data, problems)

        roles: Dict[str, RoleConfig] = {}
        roles_data = data.get("roles")
        if not isinstance(roles_data, Mapping) or not roles_data:
            problems.append("roles: at least one role is required")
        else:
            for name, role_data in roles_data.items():
                role = _parse_role(str(name), role_data, problems)
                if role is not None:
                    roles[role.name] = role

        storage = _parse_storage(data.get("storage_state") or {}, problems)
        retry = _parse_retry(data.get("retry") or {}, problems)

        if problems or oidc is None:
            raise ConfigError(problems)

        return cls(
            environment=str(environment),
            oidc=oidc,
            roles=roles,
            storage_state=storage,
            retry=retry,
        )


def load_config(path: str | Path, env: Optional[Mapping[str, str]] = None) -> AuthConfig:
    """Load configuration from a YAML file.

    Raises:
        ConfigError: If the file is missing, too large, not YAML or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError([f"configuration file not found: {path}"])
    if path.stat().st_size > MAX_CONFIG_BYTES:
        raise ConfigError([f"configuration file too large (limit {MAX_CONFIG_BYTES} bytes): {path}"])

    try:
        with open(path, encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigError([f"{path}: invalid YAML: {exc}"]) from exc

    if data is None:
        raise ConfigError([f"{path}: file is empty"])
    return AuthConfig.from_dict(data, env=env)


def url_pattern_matches(pattern: str, url: str) -> bool:
    """Match a URL against a substring, ``**`` glob or ``re:`` regex pattern."""
    if pattern.startswith("re:"):
        return re.search(pattern[3:], url) is not None
    if "*" in pattern:
        return re.fullmatch(_glob_to_regex(pattern), url) is not None
    return pattern in url


def _glob_to_regex(pattern: str) -> str:
    # '**' spans path separators, '*' stays inside one segment
    parts = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return "".join(parts)


# ---- parsing helpers ---------------------------------------------------------

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL.sub("_", key).lower()


def _normalise_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {_snake(str(key)): value for key, value in data.items()}


def _positive_number(value: Any, name: str, problems: List[str], default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        problems.append(f"{name}: must be a positive number (got {value!r})")
        return default
    return value


def _parse_selectors(data: Any, where: str, problems: List[str]) -> SelectorSet:
    if data is None:
        return SelectorSet()
    if not isinstance(data, Mapping):
        problems.append(f"{where}: must be a mapping")
        return SelectorSet()
    data = _normalise_keys(data)
    known = {f.name for f in fields(SelectorSet)}
    values = {}
    for key, value in data.items():
        if key not in known:
            problems.append(f"{where}.{key}: unknown selector name")
            continue
        if value is not None and not isinstance(value, str):
            problems.append(f"{where}.{key}: must be a string")
            continue
        values[key] = value
    return SelectorSet(**values)


def _parse_mfa(data: Any, where: str, problems: List[str]) -> Optional[MfaConfig]:
    if data is None:
        return None
    if not isinstance(data, Mapping):
        problems.append(f"{where}: must be a mapping")
        return None
    data = _normalise_keys(data)
    mfa_type = str(data.get("type", "totp")).lower()
    if mfa_type not in SUPPORTED_MFA_TYPES:
        problems.append(f"{where}.type: unsupported MFA type {mfa_type!r}")
    secret_env = data.get("secret_env_var") or data.get("totp_secret_env")
    return MfaConfig(
        type=mfa_type,
        secret_env_var=secret_env,
        input_selector=data.get("input_selector") or data.get("totp_input_selector"),
        submit_selector=data.get("submit_selector") or data.get("totp_submit_selector"),
        required=bool(data.get("required", data.get("enabled", True))),
    )


def _parse_oidc(data: Mapping[str, Any], problems: List[str]) -> Optional[OidcConfig]:
    data = _normalise_keys(data)
    login_url = data.get("login_url")
    if not login_url or not isinstance(login_url, str):
        problems.append("oidc.login_url: is required")

    provider = str(data.get("provider") or data.get("idp_type") or "auto").lower()

    success_data = data.get("success") or {}
    if not isinstance(success_data, Mapping):
        problems.append("oidc.success: must be a mapping")
        success_data = {}
    success_data = _normalise_keys(success_data)
    success = SuccessIndicator(
        url=success_data.get("url"),
        selector=success_data.get("selector"),
        timeout_ms=int(_positive_number(success_data.get("timeout_ms") or success_data.get("timeout"),
                                        "oidc.success.timeout_ms", problems, 10000)),
    )

    timeouts_data = _normalise_keys(data.get("timeouts") or {})
    timeouts = TimeoutConfig(
        navigation_ms=int(_positive_number(timeouts_data.get("navigation_ms") or timeouts_data.get("login_flow_ms"),
                                           "oidc.timeouts.navigation_ms", problems, 30000)),
        idp_redirect_ms=int(_positive_number(timeouts_data.get("idp_redirect_ms"),
                                             "oidc.timeouts.idp_redirect_ms", problems, 10000)),
        element_ms=int(_positive_number(timeouts_data.get("element_ms"),
                                        "oidc.timeouts.element_ms", problems, 10000)),
        mfa_ms=int(_positive_number(timeouts_data.get("mfa_ms"), "oidc.timeouts.mfa_ms", problems, 10000)),
    )

    if not login_url or not isinstance(login_url, str):
        return None
    return OidcConfig(
        login_url=login_url,
        provider=provider,
        idp_login_url=data.get("idp_login_url"),
        selectors=_parse_selectors(data.get("selectors") or data.get("idp_selectors"), "oidc.selectors", problems),
        mfa=_parse_mfa(data.get("mfa"), "oidc.mfa", problems),
        success=success,
        timeouts=timeouts,
        logout=_parse_logout(data.get("logout"), problems),
    )


def _parse_logout(data: Any, problems: List[str]) -> Optional[LogoutConfig]:
    if data is None:
        return None
    if not isinstance(data, Mapping):
        problems.append("oidc.logout: must be a mapping")
        return None
    data = _normalise_keys(data)
    url = data.get("url")
    if url is not None and not isinstance(url, str):
        problems.append("oidc.logout.url: must be a string")
        url = None
    return LogoutConfig(url=url, idp_logout=bool(data.get("idp_logout", False)))

def _parse_role(name: str, data: Any, problems: List[str]) -> Optional[RoleConfig]:
    where = f"roles.{name}"
    if not isinstance(data, Mapping):
        problems.append(f"{where}: must be a mapping")
        return None
    data = _normalise_keys(data)

    # Names may also be nested under credentialsEnv: {username, password}
    nested = data.get("credentials_env")
    if isinstance(nested, Mapping):
        nested = _normalise_keys(nested)
        username_env = nested.get("username")
        password_env = nested.get("password")
    else:
        username_env = data.get("username_env")
        password_env = data.get("password_env")

    if not username_env:
        problems.append(f"{where}.username_env: is required")
    if not password_env:
        problems.append(f"{where}.password_env: is required")

    extra_env = data.get("extra_env") or {}
    if not isinstance(extra_env, Mapping):
        problems.append(f"{where}.extra_env: must be a mapping of factor name to env var")
        extra_env = {}

    mfa = _parse_mfa(data.get("mfa"), f"{where}.mfa", problems)
    selectors = None
    if data.get("selectors") is not None:
        selectors = _parse_selectors(data.get("selectors"), f"{where}.selectors", problems)

    if not username_env or not password_env:
        return None
    return RoleConfig(
        name=name,
        username_env=str(username_env),
        password_env=str(password_env),
        extra_env={str(k): str(v) for k, v in extra_env.items()},
        mfa=mfa,
        selectors=selectors,
    )


def _parse_storage(data: Any, problems: List[str]) -> StorageStateConfig:
    if not isinstance(data, Mapping):
        problems.append("storage_state: must be a mapping")
        return StorageStateConfig()
    data = _normalise_keys(data)
    pattern = data.get("file_pattern", "{role}.json")
    if "{role}" not in str(pattern):
        problems.append("storage_state.file_pattern: must contain '{role}'")
    return StorageStateConfig(
        directory=Path(data.get("directory", ".auth-states")),
        file_pattern=str(pattern),
        max_age_minutes=_positive_number(data.get("max_age_minutes"), "storage_state.max_age_minutes", problems, 60),
        cleanup_max_age_hours=_positive_number(
            data.get("cleanup_max_age_hours"), "storage_state.cleanup_max_age_hours", problems, 24
        ),
    )


def _parse_retry(data: Any, problems: List[str]) -> RetryConfig:
    if not isinstance(data, Mapping):
        problems.append("retry: must be a mapping")
        return RetryConfig()
    data = _normalise_keys(data)
    attempts = data.get("max_attempts", 3)
    if isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 1:
        problems.append(f"retry.max_attempts: must be an integer >= 1 (got {attempts!r})")
        attempts = 3
    delay = data.get("base_delay_ms", 1000)
    if isinstance(delay, bool) or not isinstance(delay, (int, float)) or delay < 0:
        problems.append(f"retry.base_delay_ms: must be a non-negative number (got {delay!r})")
        delay = 1000
    return RetryConfig(max_attempts=attempts, base_delay_ms=int(delay))
