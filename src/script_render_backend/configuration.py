from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

CONFIG_PATH = Path(__file__).resolve().with_name("config.yaml")

@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():  # pragma: no cover - packaging error
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    # Environment interpolations read from os.environ, so .env must be loaded first
    load_dotenv()
    return OmegaConf.load(CONFIG_PATH)


def get_default_config_container(resolve: bool = False) -> Dict[str, Any]:
    config = _load_default_config()
    return OmegaConf.to_container(config, resolve=resolve, enum_to_str=True)  # type: ignore[return-value]


def make_runtime_config(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """
    Merge user overrides onto the packaged defaults.

    The base config is put in struct mode so that misspelled override keys fail
    loudly instead of being silently ignored.

    Args:
        overrides: Nested mapping, e.g. ``{"worker": {"concurrency": 4}}``

    Returns:
        The merged configuration with all interpolations resolved

    Raises:
        omegaconf.errors.ConfigKeyError: If an override names an unknown key
    """
    base_container = OmegaConf.to_container(_load_default_config(), resolve=False)
    base = OmegaConf.create(base_container)
    OmegaConf.set_struct(base, True)

    override_config = OmegaConf.create(overrides or {})
    merged = DictConfig(OmegaConf.merge(base, override_config))
    OmegaConf.resolve(merged)
    return merged
