from __future__ import annotations

import os
import re
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv

from .builder import DEFAULT_GROUPS, DEFAULT_UNASSIGNED
from .errors import ConfigError
from .keys import DEFAULT_TRANSFORM


# ---------- Typed sections ----------

@dataclass
class AppSection:
    run_id: Optional[str] = None
    dry_run: bool = False


@dataclass
class ProvisioningSection:
    groups: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_GROUPS))
    unassigned_group: str = DEFAULT_UNASSIGNED
    console_access: bool = True
    key_transform: str = DEFAULT_TRANSFORM


@dataclass
class ReconcileSection:
    concurrency: int = 4
    call_timeout_sec: float = 30.0
    max_attempts: int = 3
    backoff_base_sec: float = 0.2
    backoff_max_sec: float = 5.0


@dataclass
class AwsSection:
    region: str = ""
    profile: str = ""
    path: str = "/"
    password_reset_required: bool = True


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"   # INFO..CRITICAL
    file_level: str = "DEBUG"     # DEBUG..CRITICAL


@dataclass
class InputsSection:
    records_path: str = "./users.csv"


@dataclass
class AppConfig:
    """Typed configuration object built by `load_config`."""
    app: AppSection
    provisioning: ProvisioningSection
    reconcile: ReconcileSection
    aws: AwsSection
    logging: LoggingSection
    inputs: InputsSection

    @property
    def run_id(self) -> str:
        """
        Return a stable run identifier for this process.
        Generated lazily when first accessed if not provided.
        """
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id

# ---------- Defaults ----------

_DEFAULT_FILES: Tuple[str, ...] = (
    "./iamsync.yml",
    os.path.expanduser("~/.config/iamsync/config.yml"),
    "/etc/iamsync/config.yml",
)

_SECTIONS: Dict[str, type] = {
    "app": AppSection,
    "provisioning": ProvisioningSection,
    "reconcile": ReconcileSection,
    "aws": AwsSection,
    "logging": LoggingSection,
    "inputs": InputsSection,
}

# Keys whose values arrive as strings from env / CLI and need a real type.
_KINDS: Dict[str, type] = {
    "dry_run": bool,
    "console_access": bool,
    "password_reset_required": bool,
    "concurrency": int,
    "max_attempts": int,
    "call_timeout_sec": float,
    "backoff_base_sec": float,
    "backoff_max_sec": float,
}

# Replaced wholesale on merge; a configured table never inherits defaults.
_OPAQUE_KEYS = {"groups"}

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_TRUE = {"1", "true", "yes", "y", "on"}


def _defaults() -> Dict[str, Any]:
    return {name: asdict(cls()) for name, cls in _SECTIONS.items()}


# ---------- Utilities ----------

def _deep_merge(base: Dict[str, Any], ext: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Return ``base`` overlaid with ``ext``; nested mappings merge, everything else is replaced."""
    out: Dict[str, Any] = dict(base)
    for key, value in (ext or {}).items():
        nested = isinstance(value, dict) and isinstance(out.get(key), dict)
        out[key] = _deep_merge(out[key], value) if nested and key not in _OPAQUE_KEYS else value
    return out


def _read_yaml(files: Tuple[str, ...]) -> Dict[str, Any]:
    """Parse the first file of ``files`` that exists; {} when none does."""
    path = next((p for p in files if os.path.exists(p)), None)
    if path is None:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML must be a mapping: {path}")
    return data


def _env_overlay(prefix: str) -> Dict[str, Any]:
    """IAMSYNC_AWS__REGION=x -> {"aws": {"region": "x"}}."""
    overlay: Dict[str, Any] = {}
    for name, value in os.environ.items():
        if not name.startswith(prefix):
            continue
        *parents, leaf = name[len(prefix):].lower().split("__")
        node = overlay
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
    return overlay


def _resolve(obj: Any, key: str = "", opaque: bool = False) -> Any:
    """Expand ${VAR} references and coerce known keys to their type."""
    if isinstance(obj, dict):
        return {k: _resolve(v, k, opaque or k in _OPAQUE_KEYS) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_resolve(v, key, opaque) for v in obj]
    if isinstance(obj, str):
        obj = _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), obj)
    kind = None if opaque else _KINDS.get(key)
    if kind is None or obj is None or isinstance(obj, kind) and not (kind is int and isinstance(obj, bool)):
        return obj
    if kind is bool:
        return str(obj).strip().lower() in _TRUE
    try:
        return kind(obj)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for '{key}': {obj!r}") from e


_RECONCILE_LIMITS: Tuple[Tuple[str, Callable[[float], bool], str], ...] = (
    ("concurrency", lambda v: v >= 1, ">= 1"),
    ("max_attempts", lambda v: v >= 1, ">= 1"),
    ("call_timeout_sec", lambda v: v > 0, "> 0"),
    ("backoff_base_sec", lambda v: v >= 0, ">= 0"),
    ("backoff_max_sec", lambda v: v >= 0, ">= 0"),
)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate(cfg: Dict[str, Any]) -> None:
    problems = []
    prov = cfg.get("provisioning", {})
    groups = prov.get("groups")
    if not isinstance(groups, dict):
        problems.append("provisioning.groups must be a mapping of department -> group")
    elif any(not str(g or "").strip() for g in groups.values()):
        problems.append("provisioning.groups has an empty group name")
    if not str(prov.get("unassigned_group") or "").strip():
        problems.append("provisioning.unassigned_group must not be empty")

    rec = cfg.get("reconcile") or {}
    if not isinstance(rec, dict):
        problems.append("reconcile must be a mapping")
        rec = {}
    for key, ok, rule in _RECONCILE_LIMITS:
        # An absent key falls back to its default; an explicit null does not.
        if key in rec and not (_is_number(rec[key]) and ok(rec[key])):
            problems.append(f"reconcile.{key} must be a number {rule}")
    if problems:
        raise ConfigError("Invalid configuration: " + "; ".join(problems))


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "IAMSYNC_",
    use_dotenv: bool = True,
) -> AppConfig:
    """
    Build an AppConfig. Later layers win:

      built-in defaults <- first existing YAML file <- IAMSYNC_* environment
      (a .env file found from the cwd is loaded first, without overriding)
      <- CLI overrides

    ${VAR} references are expanded, known keys coerced, and the result
    validated; any problem raises ConfigError.
    """
    if use_dotenv:
        env_file = find_dotenv(usecwd=True)
        if env_file:
            load_dotenv(env_file, override=False)

    merged = _defaults()
    for layer in (_read_yaml(files), _env_overlay(env_prefix), cli_overrides):
        merged = _deep_merge(merged, layer)
    merged = _resolve(merged)
    _validate(merged)

    try:
        sections = {name: cls(**(merged.get(name) or {})) for name, cls in _SECTIONS.items()}
    except TypeError as e:
        raise ConfigError(f"Unknown configuration key: {e}") from e
    return AppConfig(**sections)
