import logging
import os
from typing import Any, Dict, Optional, Tuple

import toml
import yaml
from dotenv import dotenv_values

from storyclip.core.clip_types import DEFAULT_CLIP_TYPES
from storyclip.core.models import ClipType, ClipTypeDescriptor, Modality, ModelDescriptor

logger = logging.getLogger(__name__)

CONFIG_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(os.path.dirname(CONFIG_DIR))

DEFAULT_CONFIG_FILE = os.path.join(CONFIG_DIR, "config.toml")
DEFAULT_REGISTRY_FILE = os.path.join(CONFIG_DIR, "registry.yaml")

SECRET_KEYS = ("WAVESPEED_API_KEY", "SUPABASE_URL", "SUPABASE_SERVICE_KEY")

# env var -> (config key, cast)
ENV_OVERRIDES = {
    "STORYCLIP_MAX_FRAME": ("max_frame", int),
    "STORYCLIP_MAX_SLOTS": ("max_slots", int),
    "STORYCLIP_POLL_INTERVAL_MS": ("poll_interval_ms", int),
    "STORYCLIP_POLL_TIMEOUT_MS": ("poll_timeout_ms", int),
    "STORYCLIP_RESULT_BUCKET": ("result_bucket", str),
    "STORYCLIP_JOB_STORE": ("job_store_path", str),
    "STORYCLIP_LOG_FILE": ("log_file", str),
}


def get_default_config() -> Dict[str, Any]:
    """Get default configuration"""
    return {
        # Timeline
        "max_frame": 160,
        "frame_step": 8,
        "max_slots": 10,

        # Job tracking
        "poll_interval_ms": 5000,
        "poll_timeout_ms": 120000,

        # Signed URL cache
        "sign_ttl_seconds": {"user-library": 86400, "workspace-temp": 3600},
        "safety_margin_seconds": {"user-library": 600, "workspace-temp": 120},
        "default_sign_ttl_seconds": 3600,
        "default_safety_margin_seconds": 600,
        "sweep_interval_seconds": 240,
        "max_concurrent_signs": 4,
        "result_bucket": "workspace-temp",

        # Files
        "registry_file": DEFAULT_REGISTRY_FILE,
        "job_store_path": None,
        "log_file": "logs/storyclip.log",

        # Secrets, filled from .env / environment
        "secrets": {},
    }


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _find_env_file() -> Optional[str]:
    candidates = [
        os.path.join(os.getcwd(), ".env"),
        os.path.join(PROJECT_ROOT, ".env"),
    ]
    return next((p for p in candidates if os.path.exists(p)), None)


def load_config(config_file: Optional[str] = None, env_file: Optional[str] = None) -> Dict[str, Any]:
    """
    Build the runtime config.

    Layers, later wins: built-in defaults, the TOML file, the .env file,
    then the process environment.
    """
    config = get_default_config()

    config_file = config_file or DEFAULT_CONFIG_FILE
    if os.path.exists(config_file):
        with open(config_file, "r", encoding="utf-8") as f:
            config = _merge(config, toml.load(f))
    else:
        logger.warning(f"Config file {config_file} not found, using defaults")

    env_file = env_file or _find_env_file()
    env_vars: Dict[str, str] = {}
    if env_file and os.path.exists(env_file):
        env_vars.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    env_vars.update(os.environ)

    for env_key, (config_key, cast) in ENV_OVERRIDES.items():
        raw = env_vars.get(env_key, "").strip()
        if not raw:
            continue
        try:
            config[config_key] = cast(raw)
        except ValueError as e:
            raise ValueError(f"{env_key} must be {cast.__name__}, got {raw!r}") from e

    config["secrets"] = {k: env_vars[k].strip() for k in SECRET_KEYS if env_vars.get(k, "").strip()}
    return config


def get_secret(config: Dict[str, Any], name: str) -> str:
    value = (config.get("secrets") or {}).get(name) or os.environ.get(name, "").strip()
    if not value:
        raise RuntimeError(f"{name} is not set. Add it to .env or the environment.")
    return value


def _clip_type_from_dict(item: Dict[str, Any]) -> ClipTypeDescriptor:
    return ClipTypeDescriptor(
        clip_type=ClipType(item["clip_type"]),
        task=str(item["task"]),
        default_duration_seconds=float(item["default_duration_seconds"]),
        requires_start_reference=bool(item.get("requires_start_reference", False)),
        requires_end_reference=bool(item.get("requires_end_reference", False)),
        label=item.get("label", ""),
        description=item.get("description", ""),
        duration_options=tuple(float(d) for d in item.get("duration_options") or ()),
        prompt_max_length=int(item.get("prompt_max_length", 500)),
        generation_seconds_per_second=float(item.get("generation_seconds_per_second", 30)),
    )


def _model_from_dict(item: Dict[str, Any]) -> ModelDescriptor:
    return ModelDescriptor(
        id=str(item["id"]),
        modality=Modality(item.get("modality", "video")),
        tasks=frozenset(item.get("tasks") or ()),
        provider_id=str(item.get("provider_id", "wavespeed")),
        family_tag=item.get("family_tag"),
        is_default=bool(item.get("is_default", False)),
        priority=item.get("priority", 0),
        display_name=item.get("display_name", ""),
        is_active=bool(item.get("is_active", True)),
        endpoint_path=item.get("endpoint_path"),
        input_defaults=dict(item.get("input_defaults") or {}),
    )


def load_registry(path: Optional[str] = None) -> Tuple[Tuple[ClipTypeDescriptor, ...], Tuple[ModelDescriptor, ...]]:
    """
    Load clip types and models from a YAML registry.

    Clip types fall back to the built-in table when the file has none.
    A file that lists clip types must cover each one exactly once.
    """
    path = path or DEFAULT_REGISTRY_FILE
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    raw_types = data.get("clip_types")
    if raw_types:
        clip_types = tuple(_clip_type_from_dict(item) for item in raw_types)
        seen = [d.clip_type for d in clip_types]
        duplicates = sorted({c.value for c in seen if seen.count(c) > 1})
        if duplicates:
            raise ValueError(f"Duplicate clip types in {path}: {', '.join(duplicates)}")
        missing = [c.value for c in ClipType if c not in seen]
        if missing:
            raise ValueError(f"Clip types missing from {path}: {', '.join(missing)}")
    else:
        clip_types = DEFAULT_CLIP_TYPES

    models = tuple(_model_from_dict(item) for item in data.get("models") or ())
    ids = [m.id for m in models]
    duplicate_ids = sorted({i for i in ids if ids.count(i) > 1})
    if duplicate_ids:
        raise ValueError(f"Duplicate model ids in {path}: {', '.join(duplicate_ids)}")
    return clip_types, models
