from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from . import __version__
from .types import DEFAULT_BRIDGE_URL, validate_bridge_url


DEFAULT_CONNECT_BASE_URL = "https://worldcoin.org/verify"
DEFAULT_VERIFY_BASE_URL = "https://developer.worldcoin.org"

ENV_PREFIX = "IDKIT_"


class Settings(BaseModel):
    bridge_url: str = DEFAULT_BRIDGE_URL
    connect_base_url: str = DEFAULT_CONNECT_BASE_URL
    verify_base_url: str = DEFAULT_VERIFY_BASE_URL
    request_timeout_s: float = Field(10.0, gt=0.0, le=120.0)
    poll_interval_s: float = Field(3.0, ge=0.1, le=60.0)
    poll_timeout_s: float = Field(300.0, ge=1.0, le=3600.0)
    user_agent: str = f"idkit-py/{__version__}"

    @field_validator("bridge_url")
    @classmethod
    def _check_bridge_url(cls, v: str) -> str:
        return validate_bridge_url(v)

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "Settings":
        """
        Build settings from IDKIT_* variables, e.g. IDKIT_BRIDGE_URL or
        IDKIT_POLL_INTERVAL_S. Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is not None and raw != "":
                values[name] = raw
        return cls(**values)
