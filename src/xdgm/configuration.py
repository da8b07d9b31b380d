"""Helpers to load monitor configuration from ``pyproject.toml`` files."""

from __future__ import annotations

import math
import os
from collections.abc import Iterable, Mapping as ABCMapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python < 3.11 fallback
    import tomli as tomllib  # type: ignore

from .monitor.alerts import DEFAULT_ALERT_LOG_CAPACITY
from .monitor.registry import DEFAULT_CAPACITY
from .monitor.service import DEFAULT_TICK_INTERVAL
from .monitor.state import ALERT_THROTTLE, LIVENESS_TIMEOUT, AlertPolicy
from .telemetry.layouts import LayoutVersion, parse_layout_version
from .telemetry.udp import DEFAULT_PORT

__all__ = [
    "CONFIG_ENV_VAR",
    "MonitorSettings",
    "PROJECT_CONFIG_FILENAME",
    "load_config",
    "load_project_config",
]


CONFIG_ENV_VAR = "XDGM_CONFIG"
PROJECT_CONFIG_FILENAME = "pyproject.toml"
_TOOL_SECTION = "xdgm"


def _as_dict(payload: ABCMapping[str, Any]) -> dict[str, Any]:
    """Recursively coerce TOML mappings into regular dictionaries."""

    result: dict[str, Any] = {}
    for key, value in payload.items():
        key_str = str(key)
        if isinstance(value, ABCMapping):
            result[key_str] = _as_dict(value)
        elif isinstance(value, list):
            result[key_str] = [
                _as_dict(item) if isinstance(item, ABCMapping) else item for item in value
            ]
        else:
            result[key_str] = value
    return result


def _resolve_pyproject_path(candidate: Path) -> Path | None:
    """Return the concrete ``pyproject.toml`` path for ``candidate`` if possible."""

    candidate = candidate.expanduser()
    if candidate.name == PROJECT_CONFIG_FILENAME:
        return candidate
    if candidate.suffix:
        return None
    return candidate / PROJECT_CONFIG_FILENAME


def _iter_unique_paths(paths: Iterable[Path]) -> list[Path]:
    seen: dict[Path, None] = {}
    ordered: list[Path] = []
    for path in paths:
        resolved = path.expanduser().resolve(strict=False)
        if resolved in seen:
            continue
        seen[resolved] = None
        ordered.append(resolved)
    return ordered


def _load_toml_mapping(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    with path.open("rb") as handle:
        data = tomllib.load(handle)
    if isinstance(data, ABCMapping):
        return _as_dict(data)
    return None


def load_project_config(path: Path) -> tuple[dict[str, Any], Path] | None:
    """Load the ``[tool.xdgm]`` section from ``pyproject.toml``."""

    pyproject_path = _resolve_pyproject_path(path)
    if pyproject_path is None:
        return None

    pyproject_path = pyproject_path.expanduser().resolve(strict=False)
    pyproject_payload = _load_toml_mapping(pyproject_path)
    if not pyproject_payload:
        return None

    tool_section = pyproject_payload.get("tool")
    if not isinstance(tool_section, ABCMapping):
        return None

    section = tool_section.get(_TOOL_SECTION)
    if not isinstance(section, ABCMapping):
        return None

    return _as_dict(section), pyproject_path


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load monitor defaults.

    ``path`` wins over :data:`CONFIG_ENV_VAR`, which wins over the current
    working directory.  The returned mapping always carries ``_config_path``
    (``None`` when nothing was found).
    """

    env_config = os.environ.get(CONFIG_ENV_VAR)
    env_path = Path(env_config) if env_config else None

    bases: list[Path] = []
    if path is not None:
        bases.append(path)
    if env_path is not None:
        bases.append(env_path)
    bases.append(Path.cwd())

    candidates = [
        candidate
        for candidate in (_resolve_pyproject_path(base) for base in bases)
        if candidate is not None
    ]
    for candidate in _iter_unique_paths(candidates):
        loaded = load_project_config(candidate)
        if not loaded:
            continue
        payload, resolved = loaded
        payload["_config_path"] = str(resolved)
        return payload

    return {"_config_path": None}


def _coerce_port(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Invalid port: {value!r}")
    try:
        port = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid port: {value!r}") from exc
    if not 0 <= port <= 65535:
        raise ValueError(f"Port out of range: {port}")
    return port


def _coerce_positive_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Invalid {name}: {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid {name}: {value!r}") from exc
    if not math.isfinite(number) or number <= 0:
        raise ValueError(f"{name} must be a positive number, got {value!r}")
    return number


def _coerce_positive_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Invalid {name}: {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid {name}: {value!r}") from exc
    if number <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value!r}")
    return number


@dataclass(frozen=True, slots=True)
class MonitorSettings:
    """Resolved runtime settings for the monitor service."""

    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    layout: LayoutVersion = LayoutVersion.XDGM_V1
    tick_interval: float = DEFAULT_TICK_INTERVAL
    capacity: int = DEFAULT_CAPACITY
    liveness_timeout: float = LIVENESS_TIMEOUT
    alert_throttle: float = ALERT_THROTTLE
    alert_log_capacity: int = DEFAULT_ALERT_LOG_CAPACITY

    @classmethod
    def from_mapping(cls, payload: ABCMapping[str, Any] | None) -> "MonitorSettings":
        """Build settings from the ``monitor`` table of a loaded configuration.

        Unknown keys are ignored; malformed values raise :class:`ValueError`.
        """

        defaults = cls()
        data = dict(payload or {})
        host = data.get("host", defaults.host)
        if not isinstance(host, str) or not host:
            raise ValueError(f"Invalid host: {host!r}")
        return cls(
            host=host,
            port=_coerce_port(data.get("port", defaults.port)),
            layout=parse_layout_version(data.get("layout", defaults.layout)),
            tick_interval=_coerce_positive_float(
                "tick_interval", data.get("tick_interval", defaults.tick_interval)
            ),
            capacity=_coerce_positive_int("capacity", data.get("capacity", defaults.capacity)),
            liveness_timeout=_coerce_positive_float(
                "liveness_timeout", data.get("liveness_timeout", defaults.liveness_timeout)
            ),
            alert_throttle=_coerce_positive_float(
                "alert_throttle", data.get("alert_throttle", defaults.alert_throttle)
            ),
            alert_log_capacity=_coerce_positive_int(
                "alert_log_capacity",
                data.get("alert_log_capacity", defaults.alert_log_capacity),
            ),
        )

    @property
    def policy(self) -> AlertPolicy:
        return AlertPolicy(
            liveness_timeout=self.liveness_timeout,
            alert_throttle=self.alert_throttle,
        )
