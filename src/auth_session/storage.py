"""
Storage-state persistence for authenticated sessions.

One JSON file per (role, environment) holds the browser cookies, the
per-origin localStorage and a metadata block. The file layout is the one
Playwright's ``storage_state`` produces, so the file can be handed straight
to ``browser.new_context(storage_state=path)``.

Writers always replace the whole file (write temp, then rename); readers
never partially trust a file: any structural problem makes it unusable.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .config import StorageStateConfig
from .errors import StorageStateCause, StorageStateError

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class StorageStateMetadata:
    role: str
    environment: str
    created_at: datetime
    source: str = "login"  # 'login' or 'cache'

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "environment": self.environment,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class StorageState:
    cookies: List[Dict[str, Any]]
    origins: List[Dict[str, Any]]
    metadata: StorageStateMetadata
    path: Optional[Path] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cookies": self.cookies,
            "origins": self.origins,
            "metadata": self.metadata.to_dict(),
        }

    @property
    def artifact(self) -> Dict[str, Any]:
        """The browser snapshot without metadata."""
        return {"cookies": self.cookies, "origins": self.origins}


@dataclass(frozen=True)
class StateInfo:
    """Summary of one file in the cache directory."""

    path: Path
    role: Optional[str]
    environment: Optional[str]
    created_at: Optional[datetime]
    age_seconds: Optional[float]
    valid: bool
    problem: Optional[str] = None


@dataclass
class CleanupResult:
    deleted: List[Path] = field(default_factory=list)
    vanished: List[Path] = field(default_factory=list)  # removed by someone else mid-sweep
    errors: List[Tuple[Path, str]] = field(default_factory=list)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)


def validate_artifact(data: Any) -> List[str]:
    """Return every structural problem in a cookies/origins snapshot."""
    if not isinstance(data, dict):
        return ["root is not an object"]

    problems: List[str] = []
    cookies = data.get("cookies")
    if not isinstance(cookies, list):
        problems.append("cookies is not a list")
    else:
        for index, cookie in enumerate(cookies):
            if not isinstance(cookie, dict):
                problems.append(f"cookies[{index}] is not an object")
                continue
            for key in ("name", "value", "domain", "path"):
                if not isinstance(cookie.get(key), str):
                    problems.append(f"cookies[{index}].{key} is missing or not a string")

    origins = data.get("origins")
    if not isinstance(origins, list):
        problems.append("origins is not a list")
    else:
        for index, origin in enumerate(origins):
            if not isinstance(origin, dict) or not isinstance(origin.get("origin"), str):
                problems.append(f"origins[{index}].origin is missing or not a string")
                continue
            entries = origin.get("localStorage")
            if not isinstance(entries, list):
                problems.append(f"origins[{index}].localStorage is not a list")
                continue
            for entry_index, entry in enumerate(entries):
                if not (
                    isinstance(entry, dict)
                    and isinstance(entry.get("name"), str)
                    and isinstance(entry.get("value"), str)
                ):
                    problems.append(f"origins[{index}].localStorage[{entry_index}] is not a {{name, value}} pair")
    return problems


def _parse_metadata(data: Any) -> Tuple[Optional[StorageStateMetadata], List[str]]:
    """Read the metadata block on its own, so a broken artifact still reports its owner."""
    problems: List[str] = []
    metadata = data.get("metadata") if isinstance(data, dict) else None
    if not isinstance(metadata, dict):
        problems.append("metadata is missing")
        return None, problems
    role = metadata.get("role")
    environment = metadata.get("environment")
    created_at = parse_timestamp(metadata.get("createdAt"))
    if not isinstance(role, str) or not role:
        problems.append("metadata.role is missing")
    if not isinstance(environment, str) or not environment:
        problems.append("metadata.environment is missing")
    if created_at is None:
        problems.append("metadata.createdAt is missing or not ISO 8601")
    if problems:
        return None, problems
    return StorageStateMetadata(role=role, environment=environment, created_at=created_at, source="cache"), problems


class StorageStateManager:
    """Save, load, validate and sweep cached storage states.

    Args:
        config: Directory, file pattern and age limits
        clock: Returns the current time as an aware datetime
    """

    def __init__(self, config: Optional[StorageStateConfig] = None, clock: Callable[[], datetime] = _utcnow):
        self.config = config or StorageStateConfig()
        self.clock = clock

    @property
    def directory(self) -> Path:
        return Path(self.config.directory)

    @property
    def max_age(self) -> timedelta:
        return timedelta(seconds=self.config.max_age_seconds)

    def path_for(self, role: str, env: str) -> Path:
        """Return the cache file for (role, env) per the configured pattern."""
        filename = self.config.file_pattern.replace("{role}", _safe_name(role)).replace("{env}", _safe_name(env))
        if not filename.endswith(".json"):
            filename += ".json"
        return self.directory / filename

    # ---- write ----------------------------------------------------------------------

    def save(self, role: str, env: str, artifact: Dict[str, Any]) -> Path:
        """Persist a fresh session snapshot atomically.

        Returns:
            Path of the written file

        Raises:
            StorageStateError: If the snapshot is structurally invalid
        """
        path = self.path_for(role, env)
        problems = validate_artifact(artifact)
        if problems:
            raise StorageStateError(
                f"Refusing to save invalid storage state for role '{role}': {'; '.join(problems)}",
                role,
                path,
                StorageStateCause.INVALID,
            )

        metadata = StorageStateMetadata(role=role, environment=env, created_at=self.clock(), source="login")
        payload = {
            "cookies": artifact["cookies"],
            "origins": artifact["origins"],
            "metadata": {**metadata.to_dict(), "source": "login"},
        }

        path.parent.mkdir(parents=True, exist_ok=True)
        # Unique temp name per writer: parallel workers may save the same role
        fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=TEMP_SUFFIX, dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
            os.replace(temp_name, path)
        except BaseException:
            try:
                os.unlink(temp_name)
            except FileNotFoundError:
                pass
            raise

        logger.info(f"Saved storage state for role '{role}' (env={env}, cookies={len(payload['cookies'])}) to {path}")
        return path

    # ---- read -----------------------------------------------------------------------

    def load(self, role: str, env: str) -> StorageState:
        """Read and fully validate the cached state for (role, env).

        Raises:
            StorageStateError: cause missing, corrupted, invalid or expired
        """
        path, data, metadata = self._checked(role, env)
        return StorageState(cookies=data["cookies"], origins=data["origins"], metadata=metadata, path=path)

    def _checked(self, role: str, env: str) -> Tuple[Path, Dict[str, Any], StorageStateMetadata]:
        path = self.path_for(role, env)
        try:
            with open(path, encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError:
            raise StorageStateError(
                f"No storage state for role '{role}'", role, path, StorageStateCause.MISSING
            ) from None
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise StorageStateError(
                f"Storage state for role '{role}' is corrupted: {exc}", role, path, StorageStateCause.CORRUPTED
            ) from exc

        metadata, metadata_problems = _parse_metadata(data)
        problems = validate_artifact(data) + metadata_problems
        if problems or metadata is None:
            raise StorageStateError(
                f"Storage state for role '{role}' is invalid: {'; '.join(problems)}",
                role,
                path,
                StorageStateCause.INVALID,
            )

        if metadata.role != role or metadata.environment != env:
            raise StorageStateError(
                f"Storage state at {path.name} belongs to role '{metadata.role}' "
                f"env '{metadata.environment}', not role '{role}' env '{env}'",
                role,
                path,
                StorageStateCause.INVALID,
            )

        age = self.clock() - metadata.created_at
        if age > self.max_age:
            raise StorageStateError(
                f"Storage state for role '{role}' expired "
                f"({int(age.total_seconds() // 60)}min old, limit {self.config.max_age_minutes}min)",
                role,
                path,
                StorageStateCause.EXPIRED,
            )

        return path, data, metadata

    def is_valid(self, role: str, env: str) -> bool:
        """Fast pre-flight gate; never raises.

        Runs every check ``load`` runs (structure, owner, age) but does not
        build the ``StorageState``. Cached files are small, so the structural
        check reads the whole file rather than sampling it.
        """
        try:
            self._checked(role, env)
        except StorageStateError as exc:
            logger.debug(f"Storage state for '{role}' not usable: {exc.cause.value}")
            return False
        except OSError as exc:
            logger.warning(f"Could not read storage state for '{role}': {exc}")
            return False
        return True

    def metadata(self, role: str, env: str) -> Optional[StateInfo]:
        path = self.path_for(role, env)
        if not path.exists():
            return None
        return self._inspect(path)

    def list_states(self) -> List[StateInfo]:
        if not self.directory.is_dir():
            return []
        return [self._inspect(path) for path in sorted(self.directory.glob("*.json"))]

    def _inspect(self, path: Path) -> StateInfo:
        try:
            with open(path, encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            return StateInfo(path, None, None, None, None, False, problem=f"unreadable: {exc}")

        problems = validate_artifact(data)
        metadata, metadata_problems = _parse_metadata(data)
        if metadata is None:
            return StateInfo(path, None, None, None, None, False, problem="; ".join(problems + metadata_problems))

        age = self.clock() - metadata.created_at
        problem = "; ".join(problems) or None
        if problem is None and age > self.max_age:
            problem = "expired"
        return StateInfo(
            path=path,
            role=metadata.role,
            environment=metadata.environment,
            created_at=metadata.created_at,
            age_seconds=age.total_seconds(),
            valid=problem is None,
            problem=problem,
        )

    # ---- delete ---------------------------------------------------------------------

    def clear(self, role: Optional[str] = None, env: Optional[str] = None) -> int:
        """Delete cached states, optionally only those of one role/environment.

        Returns:
            Number of files deleted
        """
        deleted = 0
        for info in self.list_states():
            if role is not None and info.role != role:
                continue
            if env is not None and info.environment != env:
                continue
            if _unlink(info.path):
                deleted += 1
        logger.info(f"Cleared {deleted} storage state file(s) (role={role or '*'}, env={env or '*'})")
        return deleted

    def cleanup_older_than(self, max_age: Union[timedelta, float]) -> CleanupResult:
        """Sweep files older than ``max_age`` (a timedelta or seconds).

        Age comes from the metadata ``createdAt``; files without readable
        metadata (and temp files left by crashed writers) use their mtime.
        """
        if not isinstance(max_age, timedelta):
            max_age = timedelta(seconds=max_age)

        result = CleanupResult()
        if not self.directory.is_dir():
            logger.debug(f"Storage state directory {self.directory} does not exist, nothing to clean up")
            return result

        now = self.clock()
        candidates = list(self.directory.glob("*.json")) + list(self.directory.glob(f".*{TEMP_SUFFIX}"))
        for path in candidates:
            try:
                created_at = self._created_at(path)
                if now - created_at <= max_age:
                    continue
                path.unlink()
                result.deleted.append(path)
                logger.debug(f"Deleted stale storage state {path}")
            except FileNotFoundError:
                result.vanished.append(path)
            except OSError as exc:
                result.errors.append((path, str(exc)))
                logger.warning(f"Failed to clean up {path}: {exc}")

        logger.info(
            f"Storage state cleanup: deleted={len(result.deleted)} "
            f"already_gone={len(result.vanished)} errors={len(result.errors)}"
        )
        return result

    def cleanup_expired(self) -> CleanupResult:
        return self.cleanup_older_than(timedelta(seconds=self.config.cleanup_max_age_seconds))

    def _created_at(self, path: Path) -> datetime:
        if path.suffix == ".json":
            try:
                with open(path, encoding="utf-8") as handle:
                    data = json.load(handle)
                metadata = data.get("metadata") if isinstance(data, dict) else None
                created_at = parse_timestamp(metadata.get("createdAt")) if isinstance(metadata, dict) else None
                if created_at is not None:
                    return created_at
            except (json.JSONDecodeError, UnicodeDecodeError):
                pass
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)


def _safe_name(value: str) -> str:
    return value.replace("/", "_").replace("\\", "_")


def _unlink(path: Path) -> bool:
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
