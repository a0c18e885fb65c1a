"""
Score Model

Five-dimension evaluation of a finished run.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Tuple

#: Dimension weights of the overall score.
SCORE_WEIGHTS: Dict[str, float] = {
    "scalability": 0.25,
    "reliability": 0.25,
    "performance": 0.25,
    "cost": 0.15,
    "simplicity": 0.10,
}

PASS_THRESHOLD = 60.0

_GRADES: Tuple[Tuple[float, str], ...] = ((90, "S"), (80, "A"), (70, "B"), (60, "C"), (50, "D"))
_STARS: Tuple[Tuple[float, int], ...] = ((90, 5), (75, 4), (60, 3), (40, 2))


@dataclass(frozen=True)
class Score:
    """Final score, every dimension in [0, 100]."""
    scalability: float
    reliability: float
    performance: float
    cost: float
    simplicity: float
    feedback: Tuple[str, ...] = ()

    @property
    def overall(self) -> float:
        return (
            SCORE_WEIGHTS["scalability"] * self.scalability
            + SCORE_WEIGHTS["reliability"] * self.reliability
            + SCORE_WEIGHTS["performance"] * self.performance
            + SCORE_WEIGHTS["cost"] * self.cost
            + SCORE_WEIGHTS["simplicity"] * self.simplicity
        )

    @property
    def grade(self) -> str:
        overall = self.overall
        for threshold, grade in _GRADES:
            if overall >= threshold:
                return grade
        return "F"

    @property
    def stars(self) -> int:
        overall = self.overall
        for threshold, stars in _STARS:
            if overall >= threshold:
                return stars
        return 1

    @property
    def passed(self) -> bool:
        return self.overall >= PASS_THRESHOLD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scalability": round(self.scalability, 2),
            "reliability": round(self.reliability, 2),
            "performance": round(self.performance, 2),
            "cost": round(self.cost, 2),
            "simplicity": round(self.simplicity, 2),
            "overall": round(self.overall, 2),
            "grade": self.grade,
            "stars": self.stars,
            "passed": self.passed,
            "feedback": list(self.feedback),
        }
