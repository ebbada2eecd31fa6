"""Engine configuration.

All thresholds used by the decision pipeline live in one validated
``EngineConfig`` tree. Values come from the defaults below, optionally
overridden by a TOML file and then by a handful of environment variables.
Cross-field invariants are checked once at startup; a violation raises
:class:`ConfigError` before any event is processed.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .paths import DEFAULT_LOG_DIR, default_config_path

PUMP_FUN_PROGRAM_ID = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"

__all__ = [
    "ConfigError",
    "EngineConfig",
    "EntryConfig",
    "ExitConfig",
    "FilterConfig",
    "KillSwitchConfig",
    "LifecycleConfig",
    "PUMP_FUN_PROGRAM_ID",
    "RuntimeConfig",
    "ScoringConfig",
    "SignalConfig",
    "WindowConfig",
    "load_config",
    "validate_config",
]


class ConfigError(RuntimeError):
    """Raised when configuration is malformed or violates an invariant."""


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class LifecycleConfig(_Section):
    max_token_age: float = Field(20 * 60.0, description="seconds a token is tracked")
    inactivity_check_age: float = 5 * 60.0
    min_buyers_after_check: int = 2


class WindowConfig(_Section):
    short: float = Field(30.0, gt=0)
    medium: float = Field(60.0, gt=0)
    long: float = Field(180.0, gt=0)
    buyers: float = Field(300.0, gt=0)
    retention: float = Field(300.0, gt=0)

    @model_validator(mode="after")
    def _retention_covers_windows(self) -> "WindowConfig":
        needed = max(self.short, self.long, self.buyers, 2 * self.medium)
        if self.retention < needed:
            raise ValueError(
                f"windows.retention ({self.retention}) must cover the longest window ({needed})"
            )
        return self


class FilterConfig(_Section):
    max_largest_buy: float = 2.0
    max_avg_buy_size: float = 0.8
    min_avg_buy_size: float = 0.03
    # whale noise ceiling, independent from the signal stage's low-variance ceiling
    max_buy_size_std: float = 0.5
    max_dev_buys: int = 1
    max_metadata_edits: int = 1
    whale_noise_cv: float = 1.5


class SignalConfig(_Section):
    min_buyers_5m: int = 6
    max_tx_interval_mean: float = 20.0
    min_avg_buy_size: float = 0.05
    max_avg_buy_size: float = 0.5
    max_buy_size_std: float = 0.3
    max_largest_buy: float = 2.0
    min_tx_count_60s: int = 5


class ScoringConfig(_Section):
    buyers_weight: float = 2.0
    acceleration_weight: float = 3.0
    repeat_buyers_weight: float = 2.0
    large_buy_threshold: float = 1.0
    large_buy_penalty: float = 5.0
    no_activity_penalty: float = 10.0
    recalc_interval: float = Field(10.0, gt=0)


class EntryConfig(_Section):
    min_score: float = 18.0
    min_token_age: float = 2 * 60.0
    max_token_age: float = 12 * 60.0
    min_valuation: float = 20.0
    max_valuation: float = 100.0
    valuation_multiplier: float = 30.0
    position_size: float = Field(1.0, gt=0)
    missed_runner_history: int = Field(1000, ge=1)


class ExitConfig(_Section):
    partial_exit_pct: float = 120.0
    full_exit_pct: float = 220.0
    partial_exit_fraction: float = 50.0
    no_activity_seconds: float = 60.0
    tx_decrease_threshold: int = Field(2, ge=1)
    spike_ratio: float = 1.5
    stagnation_ratio: float = 0.5


class KillSwitchConfig(_Section):
    no_tx_seconds: float = 60.0
    whale_buy_threshold: float = 3.0


class RuntimeConfig(_Section):
    sweep_interval: float = Field(30.0, gt=0)
    status_interval: float = Field(30.0, gt=0)
    health_host: str = "0.0.0.0"
    health_port: int = Field(3000, ge=0, le=65535)
    log_dir: Path = DEFAULT_LOG_DIR
    rpc_http_url: str = "https://api.mainnet-beta.solana.com"
    rpc_ws_url: str = "wss://api.mainnet-beta.solana.com"
    program_id: str = PUMP_FUN_PROGRAM_ID
    feed_max_reconnect_attempts: int = Field(10, ge=1)
    feed_backoff_base: float = Field(1.0, gt=0)
    feed_tx_timeout: float = Field(10.0, gt=0)
    feed_min_buy_amount: float = 0.001


class EngineConfig(_Section):
    """Complete configuration for the engine and its collaborators."""

    lifecycle: LifecycleConfig = LifecycleConfig()
    windows: WindowConfig = WindowConfig()
    filters: FilterConfig = FilterConfig()
    signals: SignalConfig = SignalConfig()
    scoring: ScoringConfig = ScoringConfig()
    entry: EntryConfig = EntryConfig()
    exit: ExitConfig = ExitConfig()
    kill_switch: KillSwitchConfig = KillSwitchConfig()
    runtime: RuntimeConfig = RuntimeConfig()

    @model_validator(mode="after")
    def _check_invariants(self) -> "EngineConfig":
        problems = []
        if self.lifecycle.max_token_age <= 0:
            problems.append("lifecycle.max_token_age must be positive")
        if self.entry.min_score <= 0:
            problems.append("entry.min_score must be positive")
        if self.entry.min_token_age >= self.entry.max_token_age:
            problems.append("entry.min_token_age must be below entry.max_token_age")
        if self.entry.min_valuation >= self.entry.max_valuation:
            problems.append("entry.min_valuation must be below entry.max_valuation")
        if self.exit.partial_exit_pct >= self.exit.full_exit_pct:
            problems.append("exit.partial_exit_pct must be below exit.full_exit_pct")
        if not 0 < self.exit.partial_exit_fraction <= 100:
            problems.append("exit.partial_exit_fraction must be within (0, 100]")
        if problems:
            raise ValueError("; ".join(problems))
        return self


def validate_config(data: Mapping[str, Any] | None = None) -> EngineConfig:
    """Validate ``data`` against :class:`EngineConfig`.

    Raises :class:`ConfigError` on validation errors.
    """
    try:
        return EngineConfig.model_validate(dict(data or {}))
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc


# environment variable -> (section, field)
_ENV_OVERRIDES: Dict[str, tuple[str, str]] = {
    "SOLANA_RPC_HTTP": ("runtime", "rpc_http_url"),
    "SOLANA_RPC_WS": ("runtime", "rpc_ws_url"),
    "LOG_DIR": ("runtime", "log_dir"),
    "PORT": ("runtime", "health_port"),
    "HEALTH_PORT": ("runtime", "health_port"),
    "HEALTH_HOST": ("runtime", "health_host"),
}


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("rb") as fh:
            return tomllib.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid TOML in {path}: {exc}") from exc


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> EngineConfig:
    """Build the engine configuration from defaults, ``path`` and ``env``."""

    env = os.environ if env is None else env
    if path is None:
        path = default_config_path(env)
    data: Dict[str, Any] = _read_toml(Path(path)) if path else {}

    for name, (section, field) in _ENV_OVERRIDES.items():
        value = env.get(name)
        if value is None or not value.strip():
            continue
        target = data.setdefault(section, {})
        if not isinstance(target, dict):
            raise ConfigError(f"config section [{section}] must be a table")
        target[field] = value.strip()

    return validate_config(data)
