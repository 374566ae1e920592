"""
Configuration for defib

Typed, immutable configuration assembled once at startup and passed by
parameter into every component.

Precedence: CLI > environment > JSON file > defaults. Unknown or
malformed fields are rejected rather than ignored.
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from defib.errors import ConfigurationError
from defib.models import ActionMode
from defib.validation import validate_path, validate_patterns

__all__ = [
    "ActionConfig",
    "AIConfig",
    "ComposeTarget",
    "ContainerConfig",
    "DefibConfig",
    "ProcessConfig",
    "SystemConfig",
    "check_config_safety",
    "default_state_file",
    "load_config",
    "load_config_file",
    "merge_layers",
]

ContainerRuntime = Literal["docker", "podman"]
AIProvider = Literal["none", "anthropic", "openai", "ollama"]

# Environment variable -> config path (document keys)
ENV_VARS: Dict[str, Tuple[str, ...]] = {
    "DEFIB_HEALTH_URL": ("container", "healthUrl"),
    "DEFIB_COMPOSE_DIR": ("container", "composeDir"),
    "DEFIB_SERVICE": ("container", "serviceName"),
    "DEFIB_TIMEOUT": ("container", "timeoutSeconds"),
    "DEFIB_MAX_RESPONSE": ("container", "maxResponseSeconds"),
    "DEFIB_BACKOFF": ("container", "backoffMinutes"),
    "DEFIB_WEBHOOK_URL": ("webhookUrl",),
    "DEFIB_STATE_FILE": ("stateFile",),
    "DEFIB_AI_PROVIDER": ("ai", "provider"),
    "DEFIB_AI_API_KEY": ("ai", "apiKey"),
    "DEFIB_AI_MODEL": ("ai", "model"),
    "DEFIB_LOG_LEVEL": ("logLevel",),
}


def default_state_file() -> str:
    """State file under XDG_STATE_HOME, ~/.local/state, or a per-user /tmp dir"""
    xdg_state = os.environ.get("XDG_STATE_HOME")
    if xdg_state:
        return str(Path(xdg_state) / "defib" / "state.json")
    home = os.environ.get("HOME")
    if home:
        return str(Path(home) / ".local" / "state" / "defib" / "state.json")
    uid = os.getuid() if hasattr(os, "getuid") else "unknown"
    return f"/tmp/defib-{uid}/state.json"


class _Section(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ActionConfig(_Section):
    """Action mode per remediation class. Defaults are conservative."""

    restart_container: ActionMode = Field(
        default=ActionMode.AUTO,
        description="Restart unhealthy containers",
    )
    kill_runaway: ActionMode = Field(
        default=ActionMode.AUTO,
        description="Kill high-CPU processes matching safe-to-kill patterns",
    )
    kill_unknown: ActionMode = Field(
        default=ActionMode.ASK,
        description="Kill high-CPU processes not matching any safe pattern",
    )
    kill_swap_hog: ActionMode = Field(
        default=ActionMode.ASK,
        description="Kill swap-kill pattern matches when swap is critical",
    )
    restart_for_swap: ActionMode = Field(
        default=ActionMode.ASK,
        description="Restart the compose target when swap is critical",
    )


class ContainerConfig(_Section):
    health_url: str
    compose_dir: str
    timeout_seconds: float = Field(default=10.0, gt=0)
    max_response_seconds: float = Field(default=15.0, gt=0)
    backoff_minutes: float = Field(default=10.0, ge=0)
    container_runtime: Optional[ContainerRuntime] = None
    service_name: Optional[str] = None


class ProcessConfig(_Section):
    cpu_threshold: float = Field(default=90.0, ge=0, description="CPU % considered high")
    memory_threshold_mb: float = Field(
        default=4096.0,
        ge=0,
        alias="memoryThresholdMB",
        description="Resident memory (MB) considered high",
    )
    max_runtime_hours: float = Field(
        default=2.0,
        ge=0,
        description="Hours at high CPU before a process is flagged",
    )
    safe_to_kill_patterns: List[str] = Field(default_factory=list)
    ignore_patterns: List[str] = Field(default_factory=list)


class ComposeTarget(_Section):
    compose_dir: str
    service_name: Optional[str] = None


class SystemConfig(_Section):
    swap_threshold: float = Field(default=80.0, ge=0, le=100, description="Swap % to alert")
    check_d_state: bool = Field(default=True, description="Monitor D-state processes")
    swap_kill_patterns: List[str] = Field(default_factory=list)
    swap_restart_compose: Optional[ComposeTarget] = None


class AIConfig(_Section):
    provider: AIProvider = "none"
    api_key: Optional[str] = None
    model: Optional[str] = None
    ollama_url: str = "http://localhost:11434"


class DefibConfig(_Section):
    webhook_url: Optional[str] = None
    state_file: str = Field(default_factory=default_state_file)
    container: Optional[ContainerConfig] = None
    processes: Optional[ProcessConfig] = None
    system: Optional[SystemConfig] = None
    actions: ActionConfig = Field(default_factory=ActionConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    log_level: str = "INFO"
    log_file: Optional[str] = None


def load_config_file(config_file: str) -> Dict[str, Any]:
    """Read a JSON config document. A missing file is an error."""
    path = Path(config_file)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {config_file}")
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not read config file {config_file}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_file} must contain a JSON object")
    return data


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Collect DEFIB_* environment variables into a config layer"""
    environ = os.environ if environ is None else environ
    layer: Dict[str, Any] = {}
    for var, path in ENV_VARS.items():
        value = environ.get(var)
        if value:
            _set_path(layer, path, value)
    return layer


def _set_path(target: Dict[str, Any], path: Tuple[str, ...], value: Any) -> None:
    current = target
    for part in path[:-1]:
        current = current.setdefault(part, {})
    current[path[-1]] = value


def merge_layers(*layers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Deep-merge config layers, later layers winning

    Nested objects merge key by key; lists and scalars are replaced.
    """
    merged: Dict[str, Any] = {}
    for layer in layers:
        if not layer:
            continue
        _deep_merge(merged, layer)
    return merged


def _deep_merge(target: Dict[str, Any], overlay: Mapping[str, Any]) -> None:
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


def load_config(
    config_file: Optional[str] = None,
    cli_overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> DefibConfig:
    """
    Load configuration with hierarchy: CLI > environment > file > defaults.

    Raises:
        ConfigurationError: If any layer is unreadable or the merged
            document fails validation
    """
    file_layer = load_config_file(config_file) if config_file else {}
    merged = merge_layers(file_layer, env_overrides(environ), cli_overrides)

    try:
        return DefibConfig.model_validate(merged)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"Configuration validation failed: {problems}") from e


def check_config_safety(config: DefibConfig) -> None:
    """
    Validate every pattern and path that feeds a kill or a command.

    ignore_patterns are exempt: they only suppress detection.
    """
    validate_path(config.state_file, "state file")
    if config.container:
        validate_path(config.container.compose_dir, "compose directory")
    if config.processes:
        validate_patterns(config.processes.safe_to_kill_patterns, "safe-to-kill")
    if config.system:
        validate_patterns(config.system.swap_kill_patterns, "swap-kill")
        if config.system.swap_restart_compose:
            validate_path(config.system.swap_restart_compose.compose_dir, "swap restart compose directory")
