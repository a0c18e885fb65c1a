"""
Pydantic models for API requests and responses.
"""

from pydantic import BaseModel, Field
from typing import Dict, Any, List, Optional

from archsim.domain.models.constraints import ConstraintTargets


class TargetsModel(BaseModel):
    dau: int = Field(default=0, description="Daily active users")
    qps: int = Field(default=0, description="Target queries per second (derived from DAU when 0)")
    read_write_ratio: float = Field(default=10.0, description="Reads per write")
    latency_sla_ms_p50: float = Field(default=50.0, description="P50 latency SLA in ms")
    latency_sla_ms_p95: float = Field(default=200.0, description="P95 latency SLA in ms")
    availability_target: float = Field(default=0.999, description="Availability target (0-1)")
    budget_per_month: float = Field(default=10000.0, description="Monthly budget in USD")
    data_storage_gb: float = Field(default=100.0, description="Stored data volume in GB")
    regions: List[str] = Field(default=["us-east-1"], description="Regions to serve")
    optimal_component_count: Optional[int] = Field(default=None, description="Reference design size")

    def to_targets(self) -> ConstraintTargets:
        return ConstraintTargets(
            dau=self.dau,
            qps=self.qps,
            read_write_ratio=self.read_write_ratio,
            latency_sla_ms_p50=self.latency_sla_ms_p50,
            latency_sla_ms_p95=self.latency_sla_ms_p95,
            availability_target=self.availability_target,
            budget_per_month=self.budget_per_month,
            data_storage_gb=self.data_storage_gb,
            regions=tuple(self.regions),
            optimal_component_count=self.optimal_component_count,
        )


class DesignRequest(BaseModel):
    blueprint: Dict[str, Any] = Field(..., description="Design blueprint (components and connections)")
    targets: Optional[TargetsModel] = Field(default=None, description="Scenario targets")


class ChaosEventModel(BaseModel):
    id: str = Field(..., description="Unique chaos event id")
    type: str = Field(..., description="Chaos type, e.g. traffic_spike or component_crash")
    duration: float = Field(..., description="Duration in simulated seconds")
    start_time: Optional[float] = Field(default=None, description="Start in simulated seconds (default: now)")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Type-specific parameters")

    def to_event_dict(self) -> Dict[str, Any]:
        data = {"id": self.id, "type": self.type, "duration": self.duration,
                "parameters": dict(self.parameters)}
        if self.start_time is not None:
            data["start_time"] = self.start_time
        return data


class FixModel(BaseModel):
    fix_type: str = Field(..., description="Fix to apply, e.g. enable_autoscaling")
    component_id: str = Field(..., description="Component to fix")
    tick: int = Field(default=0, description="Apply before this tick (batch runs only)")


class RunRequest(DesignRequest):
    ticks: Optional[int] = Field(default=None, description="Ticks to run (default: max_ticks)")
    traffic_level: float = Field(default=1.0, ge=0, description="Traffic multiplier")
    chaos: List[ChaosEventModel] = Field(default_factory=list, description="Chaos schedule")
    fixes: List[FixModel] = Field(default_factory=list, description="Fixes applied during the run")
    settings: Dict[str, Any] = Field(default_factory=dict, description="Simulation setting overrides")
    include_timeline: bool = Field(default=True, description="Include sampled global metrics")


class SessionCreateRequest(DesignRequest):
    settings: Dict[str, Any] = Field(default_factory=dict, description="Simulation setting overrides")


class TrafficRequest(BaseModel):
    level: float = Field(..., description="Traffic multiplier (>= 0)")


class StepRequest(BaseModel):
    ticks: int = Field(default=1, ge=1, le=10000, description="Ticks to advance")


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    active_sessions: int = 0
    message: Optional[str] = None
