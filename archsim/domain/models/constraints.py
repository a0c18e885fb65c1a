"""
Constraint Targets

Requirements a design is evaluated against, supplied by the scenario
catalog.
"""
from __future__ import annotations
import math
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional, Tuple

# Traffic model used to derive QPS from daily active users
REQUESTS_PER_USER_PER_DAY = 10
PEAK_FACTOR = 0.8
ACTIVE_SECONDS_PER_DAY = 8 * 3600

_JSON_KEYS = {
    "dau": "dau",
    "qps": "qps",
    "readWriteRatio": "read_write_ratio",
    "latencySlaMsP50": "latency_sla_ms_p50",
    "latencySlaMsP95": "latency_sla_ms_p95",
    "availabilityTarget": "availability_target",
    "budgetPerMonth": "budget_per_month",
    "dataStorageGb": "data_storage_gb",
    "regions": "regions",
    "optimalComponentCount": "optimal_component_count",
}


@dataclass(frozen=True)
class ConstraintTargets:
    """Scale, latency, availability and budget targets of a scenario."""
    dau: int = 0
    qps: int = 0
    read_write_ratio: float = 10.0
    latency_sla_ms_p50: float = 50.0
    latency_sla_ms_p95: float = 200.0
    availability_target: float = 0.999
    budget_per_month: float = 10000.0
    data_storage_gb: float = 100.0
    regions: Tuple[str, ...] = ("us-east-1",)
    optimal_component_count: Optional[int] = None

    @property
    def effective_qps(self) -> int:
        """Explicit QPS, or QPS derived from DAU when none is given."""
        if self.qps > 0:
            return self.qps
        derived = self.dau * REQUESTS_PER_USER_PER_DAY * PEAK_FACTOR / ACTIVE_SECONDS_PER_DAY
        return max(1, math.ceil(derived))

    @property
    def is_read_heavy(self) -> bool:
        return self.read_write_ratio >= 10

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["regions"] = list(self.regions)
        data["effective_qps"] = self.effective_qps
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ConstraintTargets":
        """Accept snake_case field names or camelCase catalog keys."""
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            attr = _JSON_KEYS.get(key, key)
            if attr not in known:
                continue
            values[attr] = tuple(value) if attr == "regions" else value
        return cls(**values)
