from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel

CONFIG_PATH = Path(__file__).resolve().parent / "config" / "config.yaml"


class ServerSettings(BaseModel):
    host: str
    port: int
    log_level: str


class RateLimitSettings(BaseModel):
    points: int
    duration: float


class SignerSettings(BaseModel):
    module: str
    launch_args: List[str]


class ProxySettings(BaseModel):
    fallback_url: Optional[str] = None
    timeout: float


class CrashRecoverySettings(BaseModel):
    patterns: List[str]


class GatewaySettings(BaseModel):
    server: ServerSettings
    rate_limit: RateLimitSettings
    signer: SignerSettings
    proxy: ProxySettings
    crash_recovery: CrashRecoverySettings


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def make_runtime_config(overrides: Dict[str, Any] | None = None) -> DictConfig:
    # Unresolved copy so oc.env lookups happen against the current environment.
    base_container = OmegaConf.to_container(_load_default_config(), resolve=False)
    base = OmegaConf.create(base_container)
    OmegaConf.set_struct(base, True)

    cli_config = OmegaConf.create(overrides or {})
    return DictConfig(OmegaConf.merge(base, cli_config))


def load_settings(overrides: Dict[str, Any] | None = None) -> GatewaySettings:
    """
    Build validated settings from the packaged defaults.

    Values come, in increasing priority, from config.yaml, the process
    environment (a .env file in the working directory is loaded first,
    without replacing variables that are already set), and ``overrides``.

    Args:
        overrides: Nested mapping merged over the defaults, e.g.
            ``{"rate_limit": {"points": 5}}``

    Raises:
        omegaconf.errors.ConfigKeyError: If an override names an unknown key
        pydantic.ValidationError: If a value cannot be coerced
    """
    load_dotenv()
    runtime_config = make_runtime_config(overrides)
    resolved = OmegaConf.to_container(runtime_config, resolve=True)
    return GatewaySettings.model_validate(resolved)
