"""
Simulation Settings

Tunable constants of the simulation engine. Every threshold, warm-up
length and scaling factor used by the tick passes lives here so that
scenarios can be calibrated without touching the passes themselves.

Settings can be loaded from environment variables (``ARCHSIM_<FIELD>``)
or from a YAML file whose keys are the field names.
"""

import logging
import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "ARCHSIM_"


@dataclass
class SimulationSettings:
    """Simulation engine settings."""

    # --- Clock ---
    tick_interval_s: float = 0.1          # 10 ticks per simulated second
    max_ticks: int = 300                  # auto-complete after this many ticks
    seed: int = 42

    # --- Traffic ---
    default_base_rps: float = 1000.0      # when no constraint targets are given
    traffic_pattern: str = "steady"       # steady | diurnal
    diurnal_period_ticks: int = 300
    diurnal_amplitude: float = 0.3
    traffic_noise: float = 0.05

    # --- Behavior ---
    latency_knee: float = 0.7             # utilization where latency starts to climb
    latency_k: float = 10.0
    max_latency_utilization: float = 3.0
    overload_threshold: float = 1.0
    overload_error_slope: float = 0.5
    background_error_rate: float = 0.0005
    retry_attempts: int = 3
    circuit_breaker_trip_ticks: int = 5
    circuit_open_accept_ratio: float = 0.7
    crash_after_overload_ticks: int = 50
    crash_recovery_ticks: int = 30
    max_cache_hit_rate: float = 0.95
    cache_ttl_scale_s: float = 300.0
    max_queue_depth: float = 100000.0
    connections_per_instance: int = 100
    replication_latency_ms: float = 5.0
    cross_region_latency_ms: float = 100.0
    slow_node_probability: float = 0.0
    slow_node_min_factor: float = 2.0
    slow_node_max_factor: float = 10.0

    # --- Autoscaler ---
    scale_up_threshold: float = 0.7
    scale_up_window_ticks: int = 3
    scale_up_factor: float = 1.5
    scale_up_delay_ticks: int = 5
    cold_start_ticks: int = 10
    scale_down_threshold: float = 0.3
    scale_down_window_ticks: int = 20

    # --- Failure detection ---
    traffic_overflow_ratio: float = 0.2
    queue_overflow_depth: float = 5000.0
    consumer_lag_ticks: int = 10
    connection_exhaustion_threshold: float = 0.9
    upstream_timeout_ms: float = 1000.0
    disk_io_threshold: float = 0.9
    cache_stampede_hit_rate: float = 0.3
    cache_stampede_min_rps: float = 1000.0
    eviction_alert_rate: float = 500.0
    retry_storm_amplification: float = 1.5
    replication_lag_threshold_ms: float = 500.0
    stale_read_threshold_ms: float = 1000.0
    duplicate_delivery_error_rate: float = 0.05
    cascade_min_severity: float = 0.6
    cascade_share_threshold: float = 0.3
    cascade_utilization_threshold: float = 0.7
    cascade_decay: float = 0.8
    max_cascade_depth: int = 10

    # --- Run policy ---
    halt_on_mass_crash: bool = True
    mass_crash_fraction: float = 0.5

    # --- Scoring ---
    overload_penalty: float = 5.0
    max_overload_penalty: float = 40.0
    spof_penalty: float = 10.0
    data_loss_penalty: float = 10.0
    cascade_penalty: float = 5.0
    cost_score_floor: float = 10.0
    simplicity_baseline: float = 8.0

    @property
    def ticks_per_second(self) -> float:
        return 1.0 / self.tick_interval_s

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SimulationSettings":
        """Build settings from a mapping, ignoring unknown keys."""
        known = {f.name: f for f in fields(cls)}
        values = {}
        for key, value in (data or {}).items():
            if key not in known:
                logger.warning(f"Ignoring unknown setting '{key}'")
                continue
            values[key] = _coerce(value, known[key].default)
        return cls(**values)

    @classmethod
    def from_env(cls) -> "SimulationSettings":
        """Load settings from ARCHSIM_* environment variables."""
        values = {}
        for f in fields(cls):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is not None:
                values[f.name] = raw
        return cls.from_dict(values)

    @classmethod
    def from_yaml(cls, path: str) -> "SimulationSettings":
        """Load settings from a YAML file (``simulation:`` section or top level)."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        if "simulation" in data and isinstance(data["simulation"], dict):
            data = data["simulation"]
        return cls.from_dict(data)


def _coerce(value: Any, default: Any) -> Any:
    """Convert env/YAML values to the type of the field default."""
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value)
