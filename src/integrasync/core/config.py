from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv


# ---------- Typed sections ----------

@dataclass
class AppSection:
    run_id: Optional[str] = None
    dry_run: bool = False
    concurrency: int = 4


@dataclass
class SchedulerSection:
    interval_sec: float = 2.0


@dataclass
class RemoteSection:
    token: str = ""          # secret – never log in clear text
    verify_tls: bool = True
    timeout_sec: float = 10.0
    retries: int = 2
    backoff_base_sec: float = 0.2


@dataclass
class TreeSection:
    path: str = "./board.json"


@dataclass
class StatusSection:
    error_marker: str = "\U0001F534"


@dataclass
class LayoutSection:
    child_width: int = 300
    child_height: int = 42


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"   # INFO..CRITICAL
    file_level: str = "DEBUG"     # DEBUG..CRITICAL


@dataclass
class AppConfig:
    """Typed configuration object built by `load_config`."""
    app: AppSection
    scheduler: SchedulerSection
    remote: RemoteSection
    tree: TreeSection
    status: StatusSection
    layout: LayoutSection
    logging: LoggingSection

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
    "./integrasync.yml",
    os.path.expanduser("~/.config/integrasync/config.yml"),
    "/etc/integrasync/config.yml",
)

_DEFAULTS: Dict[str, Any] = {
    "app": {"run_id": None, "dry_run": False, "concurrency": 4},
    "scheduler": {"interval_sec": 2.0},
    "remote": {
        "token": "",
        "verify_tls": True,
        "timeout_sec": 10.0,
        "retries": 2,
        "backoff_base_sec": 0.2,
    },
    "tree": {"path": "./board.json"},
    "status": {"error_marker": "\U0001F534"},
    "layout": {"child_width": 300, "child_height": 42},
    "logging": {"base_dir": "logs", "console_level": "INFO", "file_level": "DEBUG"},
}

_BOOL_KEYS = {"verify_tls", "dry_run"}
_INT_KEYS = {"retries", "concurrency", "child_width", "child_height"}
_FLOAT_KEYS = {"interval_sec", "timeout_sec", "backoff_base_sec"}


# ---------- Utilities ----------

def _deep_merge(base: Dict[str, Any], ext: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Deep-merge for dicts: maps merge recursively, lists/scalars override.
    `ext` wins over `base`. Returns a new dict.
    """
    if not ext:
        return dict(base)
    out: Dict[str, Any] = dict(base)
    for k, v in ext.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _read_yaml_file(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML must be a mapping: {path}")
    return data


def _load_first_existing(files: Tuple[str, ...]) -> Dict[str, Any]:
    for p in files:
        if os.path.exists(p):
            return _read_yaml_file(p)
    return {}


def _load_dotenv() -> None:
    """Load a .env found from the cwd; real environment variables win."""
    env_path = find_dotenv(usecwd=True)
    if env_path:
        load_dotenv(env_path, override=False)


def _env_to_dict(prefix: str = "ISYNC_") -> Dict[str, Any]:
    """
    Convert ISYNC_FOO__BAR=val to {"foo": {"bar": "val"}} (lowercased keys).
    """
    out: Dict[str, Any] = {}
    plen = len(prefix)
    for key, val in os.environ.items():
        if not key.startswith(prefix):
            continue
        path = key[plen:].lower().split("__")
        cursor = out
        for part in path[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[path[-1]] = val
    return out


def _interpolate_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Replace values like "${VAR}" with os.environ["VAR"] when present.
    """
    def repl(v: Any) -> Any:
        if isinstance(v, str) and v.startswith("${") and v.endswith("}"):
            return os.environ.get(v[2:-1], "")
        return v

    def walk(obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: walk(repl(v)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(x) for x in obj]
        return repl(obj)

    return walk(cfg)


def _coerce_types(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Minimal type coercion for booleans and numbers in known keys.
    """
    def to_bool(x: Any) -> bool:
        return str(x).strip().lower() in {"1", "true", "yes", "y", "on"}

    def walk(obj: Any, key_path: Tuple[str, ...] = ()) -> Any:
        if isinstance(obj, dict):
            return {k: walk(v, key_path + (k,)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(v, key_path) for v in obj]
        key = key_path[-1] if key_path else ""
        try:
            if key in _BOOL_KEYS:
                return to_bool(obj)
            if key in _INT_KEYS:
                return int(obj)
            if key in _FLOAT_KEYS:
                return float(obj)
        except (TypeError, ValueError):
            return obj
        return obj

    return walk(cfg)


def _validate(cfg: Dict[str, Any]) -> None:
    """
    Collect every problem and raise once.
    """
    problems = []
    if not cfg.get("tree", {}).get("path"):
        problems.append("tree.path is required")

    def positive(section: str, key: str, kind: type) -> None:
        value = cfg.get(section, {}).get(key)
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
            problems.append(f"{section}.{key} must be a positive {kind.__name__}")

    positive("app", "concurrency", int)
    positive("scheduler", "interval_sec", float)
    positive("remote", "timeout_sec", float)
    positive("layout", "child_width", int)
    positive("layout", "child_height", int)

    retries = cfg.get("remote", {}).get("retries")
    if not isinstance(retries, int) or retries < 0:
        problems.append("remote.retries must be an integer >= 0")

    # The marker must stay a single short chunk so decorated labels parse back.
    marker = str(cfg.get("status", {}).get("error_marker") or "")
    if not marker or len(marker) >= 5 or marker.split() != [marker]:
        problems.append("status.error_marker must be 1-4 characters without spaces")

    if problems:
        raise ValueError("Invalid configuration: " + "; ".join(problems))


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "ISYNC_",
) -> AppConfig:
    """
    Build an AppConfig from (in precedence order):
      1) CLI overrides
      2) Environment variables (prefix ISYNC_, nested via __; .env honoured)
      3) YAML file (first existing)
      4) Built-in defaults

    Also performs:
      - ${ENV_VAR} interpolation
      - basic type coercion (bool/int/float)
      - validation (ValueError listing every problem)
    """
    _load_dotenv()

    # Load file first (low precedence)
    file_cfg = _load_first_existing(files)

    # Env overlay
    env_cfg = _env_to_dict(env_prefix)

    # Combine: defaults <- file <- env <- cli
    merged = _deep_merge(_DEFAULTS, file_cfg)
    merged = _deep_merge(merged, env_cfg)
    merged = _deep_merge(merged, cli_overrides or {})

    # Interpolate and coerce
    merged = _interpolate_env(merged)
    merged = _coerce_types(merged)

    _validate(merged)

    return AppConfig(
        app=AppSection(**merged.get("app", {})),
        scheduler=SchedulerSection(**merged.get("scheduler", {})),
        remote=RemoteSection(**merged.get("remote", {})),
        tree=TreeSection(**merged.get("tree", {})),
        status=StatusSection(**merged.get("status", {})),
        layout=LayoutSection(**merged.get("layout", {})),
        logging=LoggingSection(**merged.get("logging", {})),
    )
