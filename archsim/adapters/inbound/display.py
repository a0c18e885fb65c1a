"""
Console Display

Terminal rendering of validation results, run results and the component
type catalog. All presentation metadata (colors, labels) lives here.
"""
from typing import TYPE_CHECKING, Dict, List

from archsim.core.component_types import PROFILES
from archsim.domain.models.failures import FailureCategory

if TYPE_CHECKING:
    from archsim.application.services.simulation_service import SimulationRunResult
    from archsim.domain.services.design_validator import ValidationResult


class Colors:
    """ANSI color codes for terminal output."""
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    WHITE = "\033[97m"
    GRAY = "\033[90m"
    BOLD = "\033[1m"
    RESET = "\033[0m"


CATEGORY_COLORS: Dict[FailureCategory, str] = {
    FailureCategory.CAPACITY: Colors.RED,
    FailureCategory.NETWORK: Colors.MAGENTA,
    FailureCategory.CASCADING: Colors.RED,
    FailureCategory.AUTOSCALING: Colors.BLUE,
    FailureCategory.CONSISTENCY: Colors.YELLOW,
    FailureCategory.OPERATIONAL: Colors.YELLOW,
    FailureCategory.DIFFERENTIATED: Colors.CYAN,
}

GRADE_COLORS: Dict[str, str] = {
    "S": Colors.MAGENTA,
    "A": Colors.GREEN,
    "B": Colors.GREEN,
    "C": Colors.YELLOW,
    "D": Colors.YELLOW,
    "F": Colors.RED,
}


def colored(text: str, color: str, bold: bool = False) -> str:
    """Apply color to text."""
    style = Colors.BOLD if bold else ""
    return f"{style}{color}{text}{Colors.RESET}"


class ConsoleDisplay:
    """Formats simulation output for the terminal."""
    Colors = Colors
    colored = staticmethod(colored)

    def print_header(self, title: str, char: str = "=", width: int = 78) -> None:
        print(f"\n{colored(char * width, Colors.CYAN)}")
        print(f"{colored(f' {title} '.center(width), Colors.CYAN, bold=True)}")
        print(f"{colored(char * width, Colors.CYAN)}")

    def print_subheader(self, title: str, char: str = "-", width: int = 78) -> None:
        print(f"\n{colored(f' {title} ', Colors.WHITE, bold=True)}")
        print(f"{colored(char * width, Colors.GRAY)}")

    # --- Validation ---

    def display_validation(self, result: "ValidationResult") -> None:
        self.print_header("Design Validation")
        status = colored("VALID", Colors.GREEN, bold=True) if result.is_valid \
            else colored("INVALID", Colors.RED, bold=True)
        print(f"\n  {'Status:':<14} {status}")
        self._print_list("Errors", result.reasons, Colors.RED)
        self._print_list("Warnings", result.warnings, Colors.YELLOW)
        self._print_list("Suggestions", result.suggestions, Colors.CYAN)

    def _print_list(self, title: str, items: List[str], color: str) -> None:
        if not items:
            return
        self.print_subheader(f"{title} ({len(items)})")
        for item in items:
            print(f"  {colored('•', color)} {item}")

    # --- Run results ---

    def display_run(self, result: "SimulationRunResult", max_failures: int = 20) -> None:
        context = result.context
        gm = context.global_metrics
        self.print_header("Simulation Results")
        print(f"\n  {'Ticks:':<18} {result.ticks_run} ({context.time:.1f}s simulated)")
        if context.halt_reason:
            print(f"  {'Halted:':<18} {colored(context.halt_reason, Colors.RED)}")

        self.print_subheader("Global Metrics")
        print(f"  {'Throughput:':<18} {gm.total_rps:,.0f} rps")
        err_color = Colors.RED if gm.error_rate > 0.01 else Colors.GREEN
        print(f"  {'Error rate:':<18} {colored(f'{gm.error_rate * 100:.2f}%', err_color)}")
        print(f"  {'Availability:':<18} {gm.availability * 100:.3f}%")
        print(f"  {'Latency p50/p95:':<18} {gm.p50_latency_ms:.0f}ms / {gm.p95_latency_ms:.0f}ms")
        print(f"  {'Latency p99:':<18} {gm.p99_latency_ms:.0f}ms")
        print(f"  {'Cost:':<18} ${gm.total_cost_per_hour:.2f}/h (${gm.monthly_cost:,.0f}/month)")

        log = context.failure_log
        if log:
            self.print_subheader(f"Failure Log ({len(log)})")
            for event in log[:max_failures]:
                color = CATEGORY_COLORS.get(event.category, Colors.RESET)
                print(f"  {colored(f'{event.timestamp:6.1f}s', Colors.GRAY)} "
                      f"{colored(event.kind.value, color):<32} {event.component_id}: {event.message}")
            if len(log) > max_failures:
                print(colored(f"  ... and {len(log) - max_failures} more", Colors.GRAY))

        score = context.score
        if score:
            self.print_subheader("Score")
            for name in ("scalability", "reliability", "performance", "cost", "simplicity"):
                value = getattr(score, name)
                print(f"  {name.capitalize() + ':':<18} {self._bar(value)} {value:5.1f}")
            grade_color = GRADE_COLORS.get(score.grade, Colors.RESET)
            verdict = colored("PASSED", Colors.GREEN, bold=True) if score.passed \
                else colored("FAILED", Colors.RED, bold=True)
            print(f"\n  {'Overall:':<18} {score.overall:.1f}  "
                  f"{colored(score.grade, grade_color, bold=True)}  {'*' * score.stars}  {verdict}")
            for note in score.feedback:
                print(f"  {colored('-', Colors.GRAY)} {note}")

    @staticmethod
    def _bar(value: float, width: int = 20) -> str:
        filled = int(round(value / 100 * width))
        color = Colors.GREEN if value >= 70 else Colors.YELLOW if value >= 50 else Colors.RED
        return colored("█" * filled, color) + colored("░" * (width - filled), Colors.GRAY)

    # --- Catalog ---

    def display_types(self) -> None:
        self.print_header("Component Types")
        print(f"\n  {'Type':<18} {'Category':<12} {'Latency':>8} {'Capacity':>10} {'$/h':>8}  Traits")
        for ctype, profile in PROFILES.items():
            traits = [name for name in ("critical_path", "persistent", "buffered", "fanout",
                                        "caching", "is_origin", "inert")
                      if getattr(profile, name)]
            print(f"  {ctype.value:<18} {profile.category.value:<12} "
                  f"{profile.base_latency_ms:>6.0f}ms {profile.defaults.capacity:>10,} "
                  f"{profile.defaults.cost_per_hour:>8.4f}  {', '.join(traits)}")
