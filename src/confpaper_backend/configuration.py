from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

load_dotenv()

_HERE = Path(__file__).resolve()
_CANDIDATE_CONFIG_PATHS = [parent / "config/config.yaml" for parent in _HERE.parents[:5]]

if os.environ.get("CONFPAPER_CONFIG"):
    _CANDIDATE_CONFIG_PATHS.insert(0, Path(os.environ["CONFPAPER_CONFIG"]))

CONFIG_PATH = next((path for path in _CANDIDATE_CONFIG_PATHS if path.exists()), None)
if CONFIG_PATH is None:  # pragma: no cover - fail fast in misconfigured environments
    raise FileNotFoundError("Default config.yaml could not be located; set CONFPAPER_CONFIG or reinstall the package.")

# Environment variable -> dotted config key
ENV_OVERRIDES: Dict[str, str] = {
    "CONFPAPER_DB_PATH": "storage.db_path",
    "CONFPAPER_DOCSTORE_DIR": "storage.docstore_dir",
    "S3_BUCKET_NAME": "storage.s3_bucket",
    "CONFPAPER_LOG_LEVEL": "logging.level",
}


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def environment_overrides() -> Dict[str, Any]:
    """Collect config overrides from the process environment."""
    dotted = {key: os.environ[env] for env, key in ENV_OVERRIDES.items() if os.environ.get(env)}
    return OmegaConf.to_container(OmegaConf.from_dotlist([f"{k}={v}" for k, v in dotted.items()]))  # type: ignore[return-value]


def make_runtime_config(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """
    Merge the packaged defaults, environment overrides and explicit overrides.

    The base is struct-locked, so overriding a key that does not exist in
    config.yaml raises instead of silently creating a new setting.
    """
    base_container = OmegaConf.to_container(_load_default_config(), resolve=False)
    base = OmegaConf.create(base_container)
    OmegaConf.set_struct(base, True)

    merged = OmegaConf.merge(base, OmegaConf.create(environment_overrides()))
    if overrides:
        merged = OmegaConf.merge(merged, OmegaConf.create(overrides))
    return DictConfig(merged)
