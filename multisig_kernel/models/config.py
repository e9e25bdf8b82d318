"""Coordinator configuration."""

import os
from typing import Optional

from pydantic import BaseModel, Field


class CoordinatorConfig(BaseModel):
    """Configuration for the Proposal Coordinator and its expiry sweeper."""

    wait_for_inclusion: bool = False
    inclusion_timeout_seconds: float = Field(gt=0, default=60.0)
    default_ttl_seconds: int = Field(ge=1, default=3000)
    sweep_interval_seconds: float = Field(gt=0, default=30.0)
    sweep_schedule: Optional[str] = None    # Cron expression, overrides the interval
    ledger_path: str = ":memory:"

    @classmethod
    def from_env(cls, prefix: str = "MULTISIG_") -> "CoordinatorConfig":
        """Build a config from environment variables, falling back to defaults."""
        values = {}
        env = os.environ
        if f"{prefix}WAIT_FOR_INCLUSION" in env:
            values["wait_for_inclusion"] = env[f"{prefix}WAIT_FOR_INCLUSION"].lower() in (
                "1", "true", "yes", "on",
            )
        if f"{prefix}INCLUSION_TIMEOUT_SECONDS" in env:
            values["inclusion_timeout_seconds"] = float(env[f"{prefix}INCLUSION_TIMEOUT_SECONDS"])
        if f"{prefix}DEFAULT_TTL_SECONDS" in env:
            values["default_ttl_seconds"] = int(env[f"{prefix}DEFAULT_TTL_SECONDS"])
        if f"{prefix}SWEEP_INTERVAL_SECONDS" in env:
            values["sweep_interval_seconds"] = float(env[f"{prefix}SWEEP_INTERVAL_SECONDS"])
        values["sweep_schedule"] = env.get(f"{prefix}SWEEP_SCHEDULE") or None
        values["ledger_path"] = env.get(f"{prefix}LEDGER_PATH", ":memory:")
        return cls(**values)
