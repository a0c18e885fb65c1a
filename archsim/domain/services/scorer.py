"""
Scorer

Final five-dimension evaluation of a run. ``Scorer.score`` is a pure
function of its arguments: identical inputs always give an identical
Score.
"""

from __future__ import annotations
from typing import Iterable, List, Optional, Set

from archsim.config.settings import SimulationSettings
from archsim.domain.models.constraints import ConstraintTargets
from archsim.domain.models.failures import FailureEvent, FailureKind
from archsim.domain.models.metrics import GlobalMetrics
from archsim.domain.models.score import Score
from archsim.domain.services.behavior_model import clamp


def _pct(value: float) -> float:
    return clamp(value, 0.0, 100.0)


def _components_with(log: Iterable[FailureEvent], *kinds: FailureKind) -> Set[str]:
    return {e.component_id for e in log if e.kind in kinds}


class Scorer:
    """Scores a finished run against its constraint targets."""

    def __init__(self, settings: Optional[SimulationSettings] = None):
        self.settings = settings or SimulationSettings()

    def score(
        self,
        metrics: GlobalMetrics,
        failure_log: Iterable[FailureEvent],
        targets: ConstraintTargets,
        component_count: int,
        connection_count: int,
    ) -> Score:
        """
        Score the final state of a run.

        Args:
            metrics: Global metrics of the terminal tick
            failure_log: Every failure event logged during the run
            targets: Scenario targets
            component_count: Active components in the design
            connection_count: Connections in the design
        """
        log = list(failure_log)
        feedback: List[str] = []

        scalability = self._scalability(metrics, log, targets, feedback)
        reliability = self._reliability(metrics, log, targets, feedback)
        performance = self._performance(metrics, targets, feedback)
        cost = self._cost(metrics, targets, feedback)
        simplicity = self._simplicity(component_count, connection_count, targets, feedback)

        return Score(
            scalability=scalability,
            reliability=reliability,
            performance=performance,
            cost=cost,
            simplicity=simplicity,
            feedback=tuple(feedback),
        )

    # =========================================================================
    # Dimensions
    # =========================================================================

    def _scalability(self, metrics: GlobalMetrics, log: List[FailureEvent],
                     targets: ConstraintTargets, feedback: List[str]) -> float:
        s = self.settings
        achieved = metrics.total_rps * (1.0 - metrics.error_rate)
        target = max(1, targets.effective_qps)
        score = min(100.0, achieved / target * 100.0)
        if score < 100.0:
            feedback.append(f"Served {achieved:.0f} of {target} target QPS successfully")

        overloaded = _components_with(log, FailureKind.OVERLOAD, FailureKind.TRAFFIC_OVERFLOW)
        if overloaded:
            score -= min(s.max_overload_penalty, s.overload_penalty * len(overloaded))
            feedback.append(f"{len(overloaded)} component(s) overloaded: {', '.join(sorted(overloaded))}")
        return _pct(score)

    def _reliability(self, metrics: GlobalMetrics, log: List[FailureEvent],
                     targets: ConstraintTargets, feedback: List[str]) -> float:
        s = self.settings
        allowed = max(1e-9, 1.0 - targets.availability_target)
        score = 100.0 - (1.0 - metrics.availability) / allowed * 50.0
        if metrics.availability < targets.availability_target:
            feedback.append(f"Availability {metrics.availability * 100:.3f}% is below "
                            f"the {targets.availability_target * 100:.3f}% target")

        spofs = _components_with(log, FailureKind.SPOF)
        data_loss = _components_with(log, FailureKind.DATA_LOSS_RISK)
        cascade_roots = {e.root_component for e in log
                         if e.kind == FailureKind.CASCADING_FAILURE and e.root_component}
        score -= s.spof_penalty * len(spofs)
        score -= s.data_loss_penalty * len(data_loss)
        score -= s.cascade_penalty * len(cascade_roots)
        if spofs:
            feedback.append(f"Single points of failure: {', '.join(sorted(spofs))}")
        if data_loss:
            feedback.append(f"Unreplicated data stores: {', '.join(sorted(data_loss))}")
        if cascade_roots:
            feedback.append(f"Failures cascaded from: {', '.join(sorted(cascade_roots))}")
        return _pct(score)

    def _performance(self, metrics: GlobalMetrics, targets: ConstraintTargets,
                     feedback: List[str]) -> float:
        """Scaled down by the worst overrun of the P50 and P95 latency SLAs."""
        worst = 1.0
        for label, latency, sla in (("P50", metrics.p50_latency_ms, targets.latency_sla_ms_p50),
                                    ("P95", metrics.p95_latency_ms, targets.latency_sla_ms_p95)):
            if sla <= 0 or latency <= sla:
                continue
            feedback.append(f"{label} latency {latency:.0f}ms exceeds the {sla:.0f}ms SLA")
            worst = max(worst, latency / sla)
        return _pct(100.0 / worst)

    def _cost(self, metrics: GlobalMetrics, targets: ConstraintTargets, feedback: List[str]) -> float:
        budget = targets.budget_per_month
        monthly = metrics.monthly_cost
        if budget <= 0:
            return 100.0 if monthly <= 0 else self.settings.cost_score_floor
        if monthly <= budget:
            return _pct(100.0 - monthly / budget * 20.0)
        feedback.append(f"Monthly cost ${monthly:,.0f} is over the ${budget:,.0f} budget")
        return _pct(max(self.settings.cost_score_floor, budget / monthly * 100.0))

    def _simplicity(self, component_count: int, connection_count: int,
                    targets: ConstraintTargets, feedback: List[str]) -> float:
        optimal = targets.optimal_component_count
        if optimal:
            if component_count < optimal * 0.5:
                feedback.append("Design looks incomplete for this problem")
                return 50.0
            if component_count <= optimal * 1.5:
                return 100.0
            feedback.append(f"{component_count} components where about {optimal} would do")
            return _pct(optimal / component_count * 100.0)

        baseline = self.settings.simplicity_baseline
        complexity = component_count + 0.5 * connection_count
        if complexity <= baseline:
            return 100.0
        return _pct(baseline / complexity * 100.0)
