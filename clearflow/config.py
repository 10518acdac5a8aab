# Copyright 2025 Ralph Lemke
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""clearflow configuration management.

Provides configuration dataclasses for the workflow engine API connection
and the clear flow behaviour, and a loader that reads from config files or
environment variables.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

_TRUE_VALUES = ("true", "1", "yes")


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.lower() in _TRUE_VALUES


@dataclass
class ApiConfig:
    """Workflow engine REST API connection configuration.

    Attributes:
        base_url: Root URL of the engine's API server
        api_prefix: Path prefix of the versioned REST API
        timeout_s: Per-request timeout in seconds
        verify_ssl: Verify TLS certificates
    """

    base_url: str = "http://localhost:8080"
    api_prefix: str = "/api/v2"
    timeout_s: float = 30.0
    verify_ssl: bool = True

    def endpoint(self, path: str) -> str:
        """Build the absolute URL of an API *path*."""
        return f"{self.base_url.rstrip('/')}{self.api_prefix}{path}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApiConfig:
        """Create from a dictionary.

        Keys may use either snake_case (``base_url``) or
        camelCase (``baseUrl``).
        """
        return cls(
            base_url=data.get("base_url", data.get("baseUrl", cls.base_url)),
            api_prefix=data.get("api_prefix", data.get("apiPrefix", cls.api_prefix)),
            timeout_s=float(data.get("timeout_s", data.get("timeoutS", cls.timeout_s))),
            verify_ssl=bool(data.get("verify_ssl", data.get("verifySsl", cls.verify_ssl))),
        )

    @classmethod
    def from_env(cls) -> ApiConfig:
        """Create from environment variables.

        Recognised variables (all optional – defaults apply for missing vars):
            CLEARFLOW_API_URL
            CLEARFLOW_API_PREFIX
            CLEARFLOW_API_TIMEOUT
            CLEARFLOW_VERIFY_SSL  ("false"/"0" to disable)
        """
        defaults = cls()
        return cls(
            base_url=os.environ.get("CLEARFLOW_API_URL", defaults.base_url),
            api_prefix=os.environ.get("CLEARFLOW_API_PREFIX", defaults.api_prefix),
            timeout_s=float(os.environ.get("CLEARFLOW_API_TIMEOUT", defaults.timeout_s)),
            verify_ssl=_env_bool("CLEARFLOW_VERIFY_SSL", defaults.verify_ssl),
        )


@dataclass
class FlowConfig:
    """Clear flow behaviour configuration.

    Attributes:
        auto_refresh_interval_ms: Dry-run polling interval while instances
            are pending; 0 disables polling
        prevent_running_task: Default of the prevent-running-task checkbox
        hotkey: Keyboard shortcut that opens the flow from an entry point
        max_workers: Worker threads used to dispatch requests
    """

    auto_refresh_interval_ms: int = 3000
    prevent_running_task: bool = True
    hotkey: str = "shift+c"
    max_workers: int = 4

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlowConfig:
        """Create from a dictionary."""
        return cls(
            auto_refresh_interval_ms=int(
                data.get("auto_refresh_interval_ms", cls.auto_refresh_interval_ms)
            ),
            prevent_running_task=bool(data.get("prevent_running_task", cls.prevent_running_task)),
            hotkey=data.get("hotkey", cls.hotkey),
            max_workers=int(data.get("max_workers", cls.max_workers)),
        )

    @classmethod
    def from_env(cls) -> FlowConfig:
        """Create from environment variables.

        Recognised variables (all optional):
            CLEARFLOW_AUTO_REFRESH_INTERVAL_MS
            CLEARFLOW_PREVENT_RUNNING_TASK  ("false"/"0" to disable)
            CLEARFLOW_HOTKEY
            CLEARFLOW_MAX_WORKERS
        """
        defaults = cls()
        return cls(
            auto_refresh_interval_ms=int(
                os.environ.get(
                    "CLEARFLOW_AUTO_REFRESH_INTERVAL_MS", defaults.auto_refresh_interval_ms
                )
            ),
            prevent_running_task=_env_bool(
                "CLEARFLOW_PREVENT_RUNNING_TASK", defaults.prevent_running_task
            ),
            hotkey=os.environ.get("CLEARFLOW_HOTKEY", defaults.hotkey),
            max_workers=int(os.environ.get("CLEARFLOW_MAX_WORKERS", defaults.max_workers)),
        )


@dataclass
class ClearFlowConfig:
    """Top-level clearflow configuration.

    Attributes:
        api: Workflow engine API settings
        flow: Clear flow settings
    """

    api: ApiConfig = field(default_factory=ApiConfig)
    flow: FlowConfig = field(default_factory=FlowConfig)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dictionary."""
        return {
            "api": self.api.to_dict(),
            "flow": self.flow.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClearFlowConfig:
        """Create from a dictionary (e.g. parsed JSON)."""
        return cls(
            api=ApiConfig.from_dict(data.get("api", {})),
            flow=FlowConfig.from_dict(data.get("flow", {})),
        )

    @classmethod
    def from_env(cls) -> ClearFlowConfig:
        """Create from environment variables."""
        return cls(
            api=ApiConfig.from_env(),
            flow=FlowConfig.from_env(),
        )


# -- Config file loading -----------------------------------------------------

DEFAULT_CONFIG_FILENAME = "clearflow.config.json"

_SEARCH_PATHS = [
    Path.cwd,  # current directory
    lambda: Path.home() / ".clearflow",  # user home
    lambda: Path("/etc/clearflow"),  # system-wide
]


def _find_config_file(filename: str = DEFAULT_CONFIG_FILENAME) -> Path | None:
    """Search well-known locations for a config file.

    Search order:
        1. ``$CLEARFLOW_CONFIG`` environment variable (explicit path)
        2. Current working directory
        3. ``~/.clearflow/``
        4. ``/etc/clearflow/``

    Returns:
        Path to the first config file found, or ``None``.
    """
    explicit = os.environ.get("CLEARFLOW_CONFIG")
    if explicit:
        path = Path(explicit)
        if path.is_file():
            return path
        return None

    for path_fn in _SEARCH_PATHS:
        candidate = path_fn() / filename
        if candidate.is_file():
            return candidate
    return None


def load_config(path: str | Path | None = None) -> ClearFlowConfig:
    """Load clearflow configuration.

    Resolution order:
        1. Explicit *path* argument
        2. Config file found via :func:`_find_config_file`
        3. Environment variables (``CLEARFLOW_*``)
        4. Built-in defaults

    Args:
        path: Optional explicit path to a JSON config file.

    Returns:
        Populated :class:`ClearFlowConfig` instance.
    """
    config_path: Path | None = Path(path) if path else _find_config_file()

    if config_path and config_path.is_file():
        data = json.loads(config_path.read_text())
        return ClearFlowConfig.from_dict(data)

    # Fall back to env vars / defaults
    return ClearFlowConfig.from_env()
