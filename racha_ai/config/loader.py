"""
Configuration management and loading.

Handles engine settings from a YAML file and environment variables.
Every section is optional; anything not given falls back to defaults.
Environment variables win over the file.
"""

import os
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from ..core.guardrails import DEFAULT_ALERT_THRESHOLD_PCT, DEFAULT_DAILY_BUDGET_BRL
from ..core.pricing import DEFAULT_EXCHANGE_RATE, DEFAULT_TIERS, LatencyClass, ModelTier, TierProfile
from ..storage.db import DEFAULT_DB_PATH

ENV_DAILY_BUDGET = "RACHA_DAILY_BUDGET_BRL"
ENV_DB_PATH = "RACHA_DB_PATH"
ENV_EXCHANGE_RATE = "USD_TO_BRL_EXCHANGE_RATE"


@dataclass(frozen=True)
class BudgetConfig:
    """Daily spending cap for paid model calls."""
    daily_brl: Decimal = DEFAULT_DAILY_BUDGET_BRL
    alert_threshold_pct: float = DEFAULT_ALERT_THRESHOLD_PCT

    def __post_init__(self):
        """Validate budget values are positive."""
        if self.daily_brl <= 0:
            raise ValueError("daily budget must be > 0")
        if not 0 < self.alert_threshold_pct <= 100:
            raise ValueError("alert_threshold_pct must be within (0, 100]")


@dataclass(frozen=True)
class RoutingConfig:
    """When and how far to escalate to model tiers."""
    confidence_threshold: float = 0.8
    max_model_calls: int = 2
    timeout_seconds: float = 5.0

    def __post_init__(self):
        """Validate routing values."""
        if not 0.0 < self.confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be within (0, 1]")
        if self.max_model_calls not in (1, 2):
            raise ValueError("max_model_calls must be 1 or 2")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")


@dataclass(frozen=True)
class CacheConfig:
    ttl_hours: float = 24

    def __post_init__(self):
        if self.ttl_hours <= 0:
            raise ValueError("ttl_hours must be > 0")


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration."""
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    tiers: Dict[ModelTier, TierProfile] = field(default_factory=lambda: dict(DEFAULT_TIERS))
    exchange_rate_usd_brl: Decimal = DEFAULT_EXCHANGE_RATE
    db_path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        if self.exchange_rate_usd_brl <= 0:
            raise ValueError("exchange_rate_usd_brl must be > 0")
        missing = set(ModelTier) - set(self.tiers)
        if missing:
            raise ValueError(f"Missing tiers: {sorted(t.value for t in missing)}")


def load_engine_config(
    path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None
) -> EngineConfig:
    """Load and validate engine configuration.

    Strict validation ensures no silent misconfigurations that could
    lead to unexpected spend.

    Args:
        path: Optional path to a YAML configuration file
        env: Environment mapping (defaults to ``os.environ``)

    Returns:
        Validated EngineConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    raw_config: Dict[str, Any] = {}
    if path is not None:
        raw_config = _read_yaml(path)

    config = _parse_config(raw_config)
    return _apply_env_overrides(config, os.environ if env is None else env)


def _read_yaml(path: str) -> Dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")
    return raw_config


def _parse_config(raw_config: Dict[str, Any]) -> EngineConfig:
    allowed_top_keys = {'budget', 'routing', 'cache', 'tiers', 'exchange_rate_usd_brl', 'db_path'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    budget_data = _section(raw_config, 'budget', {'daily_brl', 'alert_threshold_pct'})
    budget = BudgetConfig(
        daily_brl=_decimal(budget_data.get('daily_brl', DEFAULT_DAILY_BUDGET_BRL), 'budget.daily_brl'),
        alert_threshold_pct=_number(
            budget_data.get('alert_threshold_pct', DEFAULT_ALERT_THRESHOLD_PCT),
            'budget.alert_threshold_pct'
        ),
    )

    routing_data = _section(
        raw_config, 'routing', {'confidence_threshold', 'max_model_calls', 'timeout_seconds'}
    )
    routing_defaults = RoutingConfig()
    max_calls = routing_data.get('max_model_calls', routing_defaults.max_model_calls)
    if not isinstance(max_calls, int) or isinstance(max_calls, bool):
        raise ValueError("'routing.max_model_calls' must be an integer")
    routing = RoutingConfig(
        confidence_threshold=_number(
            routing_data.get('confidence_threshold', routing_defaults.confidence_threshold),
            'routing.confidence_threshold'
        ),
        max_model_calls=max_calls,
        timeout_seconds=_number(
            routing_data.get('timeout_seconds', routing_defaults.timeout_seconds),
            'routing.timeout_seconds'
        ),
    )

    cache_data = _section(raw_config, 'cache', {'ttl_hours'})
    cache = CacheConfig(ttl_hours=_number(cache_data.get('ttl_hours', 24), 'cache.ttl_hours'))

    tiers_data = _section(raw_config, 'tiers', {t.value for t in ModelTier})
    tiers = dict(DEFAULT_TIERS)
    for tier_name, tier_data in tiers_data.items():
        tier = ModelTier(tier_name)
        if not isinstance(tier_data, dict):
            raise ValueError(f"Tier '{tier_name}' must be a dictionary")
        tiers[tier] = _parse_tier(tier, tier_data, f"tiers.{tier_name}")

    db_path = raw_config.get('db_path', DEFAULT_DB_PATH)
    if not isinstance(db_path, str) or not db_path.strip():
        raise ValueError("'db_path' must be a non-empty string")

    return EngineConfig(
        budget=budget,
        routing=routing,
        cache=cache,
        tiers=tiers,
        exchange_rate_usd_brl=_decimal(
            raw_config.get('exchange_rate_usd_brl', DEFAULT_EXCHANGE_RATE),
            'exchange_rate_usd_brl'
        ),
        db_path=db_path,
    )


def _section(raw_config: Dict[str, Any], name: str, allowed_keys: set) -> Dict[str, Any]:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return data


def _parse_tier(tier: ModelTier, data: Dict, path: str) -> TierProfile:
    """Parse and validate one tier, filling gaps from the built-in tier.

    Args:
        tier: Tier being configured
        data: Tier configuration data
        path: Path for error messages

    Returns:
        Validated TierProfile

    Raises:
        ValueError: If configuration is invalid
    """
    allowed_keys = {'model', 'cost_per_call_brl', 'latency', 'baseline_confidence'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    base = DEFAULT_TIERS[tier]
    model = data.get('model', base.model)
    if not isinstance(model, str) or not model.strip():
        raise ValueError(f"'model' in {path} must be a non-empty string")

    latency_str = data.get('latency', base.latency.value)
    try:
        latency = LatencyClass(str(latency_str).lower())
    except ValueError:
        valid = [l.value for l in LatencyClass]
        raise ValueError(f"'latency' in {path} must be one of: {valid}")

    return TierProfile(
        tier=tier,
        model=model.strip(),
        cost_per_call_brl=_decimal(data.get('cost_per_call_brl', base.cost_per_call_brl),
                                   f"{path}.cost_per_call_brl"),
        latency=latency,
        baseline_confidence=_number(data.get('baseline_confidence', base.baseline_confidence),
                                    f"{path}.baseline_confidence"),
    )


def _apply_env_overrides(config: EngineConfig, env: Mapping[str, str]) -> EngineConfig:
    if env.get(ENV_DAILY_BUDGET):
        budget = replace(config.budget, daily_brl=_decimal(env[ENV_DAILY_BUDGET], ENV_DAILY_BUDGET))
        config = replace(config, budget=budget)
    if env.get(ENV_EXCHANGE_RATE):
        config = replace(
            config,
            exchange_rate_usd_brl=_decimal(env[ENV_EXCHANGE_RATE], ENV_EXCHANGE_RATE)
        )
    if env.get(ENV_DB_PATH):
        config = replace(config, db_path=env[ENV_DB_PATH])
    return config


def _decimal(value: Any, path: str) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"'{path}' must be a number")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"'{path}' must be a number")


def _number(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{path}' must be a number")
    return float(value)
