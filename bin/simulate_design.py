#!/usr/bin/env python3
"""
Design Simulation CLI

Validates a system design blueprint and runs it through the tick-driven
traffic and failure simulation.

Usage Examples:
    # Pre-run gate only
    python simulate_design.py validate design.json

    # Full run against scenario targets
    python simulate_design.py run design.json --targets scenario.json

    # Short run at double traffic with a chaos schedule and a fix at tick 50
    python simulate_design.py run design.json --ticks 120 --traffic-level 2 \\
        --chaos chaos.json --fix enable_autoscaling:app-1@50

    # Custom engine settings, JSON result to a file
    python simulate_design.py run design.json --settings sim.yaml -o result.json

    # Component type catalog
    python simulate_design.py types
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import argparse
import json
import logging
from typing import Any, Dict, List, Optional

from archsim.config.container import Container
from archsim.core.component_types import PROFILES
from archsim.domain.models.constraints import ConstraintTargets


# =============================================================================
# Argument Parsing
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser with subcommands."""
    common_parser = argparse.ArgumentParser(add_help=False)

    config_group = common_parser.add_argument_group("Configuration")
    config_group.add_argument("--settings", "-s", metavar="YAML",
                              help="Simulation settings file (default: ARCHSIM_* environment)")

    output_group = common_parser.add_argument_group("Output")
    output_group.add_argument("--output", "-o", metavar="FILE", help="Export results to JSON")
    output_group.add_argument("--json", action="store_true", help="Print JSON to stdout")
    output_group.add_argument("--quiet", "-q", action="store_true", help="Minimal output")
    output_group.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    parser = argparse.ArgumentParser(
        prog="simulate_design.py",
        description="Traffic and failure simulation for system design blueprints.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subs = parser.add_subparsers(dest="command", help="Simulation command")

    # validate
    va = subs.add_parser("validate", help="Run the pre-simulation gate on a design", parents=[common_parser])
    va.add_argument("blueprint", help="Blueprint JSON file")
    va.add_argument("--targets", "-t", metavar="FILE", help="Scenario targets JSON file")

    # run
    rn = subs.add_parser("run", help="Simulate a design", parents=[common_parser])
    rn.add_argument("blueprint", help="Blueprint JSON file")
    rn.add_argument("--targets", "-t", metavar="FILE", help="Scenario targets JSON file")
    rn.add_argument("--ticks", "-n", type=int, default=None, help="Ticks to run (default: max_ticks)")
    rn.add_argument("--traffic-level", "-l", type=float, default=1.0, help="Traffic multiplier")
    rn.add_argument("--chaos", "-c", metavar="FILE", help="Chaos schedule JSON file (list of events)")
    rn.add_argument("--fix", "-f", action="append", default=[], metavar="TYPE:COMPONENT[@TICK]",
                    help="Apply a fix during the run (repeatable)")
    rn.add_argument("--sample-every", type=int, default=10, help="Timeline sampling interval in ticks")
    rn.add_argument("--max-failures", type=int, default=20, help="Failure log entries to display")

    # types
    subs.add_parser("types", help="List component types and their defaults", parents=[common_parser])

    return parser


# =============================================================================
# Input Helpers
# =============================================================================

def _read_json(path: str) -> Any:
    with open(path, "r") as f:
        return json.load(f)


def load_targets(path: Optional[str]) -> Optional[ConstraintTargets]:
    """Targets file: a targets object, or a scenario with a ``constraints`` key."""
    if not path:
        return None
    data = _read_json(path)
    if isinstance(data, dict) and isinstance(data.get("constraints"), dict):
        data = data["constraints"]
    return ConstraintTargets.from_dict(data)


def load_chaos(path: Optional[str]) -> List[Dict[str, Any]]:
    if not path:
        return []
    data = _read_json(path)
    if isinstance(data, dict):
        data = data.get("events", [])
    if not isinstance(data, list):
        raise ValueError(f"Chaos file '{path}' must hold a list of events")
    if not all(isinstance(event, dict) for event in data):
        raise ValueError(f"Chaos file '{path}' must hold event objects")
    return data


def parse_fix(value: str) -> Dict[str, Any]:
    """Parse ``fix_type:component_id[@tick]``."""
    head, _, tick = value.partition("@")
    fix_type, sep, component_id = head.partition(":")
    if not sep or not fix_type or not component_id:
        raise ValueError(f"Invalid fix '{value}', expected TYPE:COMPONENT[@TICK]")
    return {"fix_type": fix_type, "component_id": component_id, "tick": int(tick) if tick else 0}


# =============================================================================
# Command Handlers
# =============================================================================

def handle_validate(args, service, display) -> dict:
    """Handle the 'validate' subcommand."""
    topology = service.load_topology(args.blueprint)
    result = service.validate(topology, load_targets(args.targets))
    if not args.quiet:
        display.display_validation(result)
    return result.to_dict()


def handle_run(args, service, display) -> dict:
    """Handle the 'run' subcommand."""
    result = service.run_blueprint(
        args.blueprint,
        load_targets(args.targets),
        ticks=args.ticks,
        traffic_level=args.traffic_level,
        chaos_events=load_chaos(args.chaos),
        fixes=[parse_fix(f) for f in args.fix],
        sample_every=args.sample_every,
    )
    if not args.quiet:
        if not result.validation.is_valid:
            display.display_validation(result.validation)
        else:
            display.display_run(result, max_failures=args.max_failures)
    return result.to_dict()


def handle_types(args, service, display) -> dict:
    """Handle the 'types' subcommand."""
    if not args.quiet:
        display.display_types()
    return {
        ctype.value: {
            "category": profile.category.value,
            "base_latency_ms": profile.base_latency_ms,
            "default_config": profile.defaults.to_dict(),
        }
        for ctype, profile in PROFILES.items()
    }


# =============================================================================
# Main Entry Point
# =============================================================================

def main(argv=None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    log_level = (
        logging.WARNING if args.quiet
        else logging.DEBUG if args.verbose
        else logging.INFO
    )
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    container = Container.from_yaml(args.settings) if args.settings else Container.from_env()
    display = container.display_service()

    try:
        service = container.simulation_service()

        handlers = {
            "validate": handle_validate,
            "run": handle_run,
            "types": handle_types,
        }
        handler = handlers[args.command]
        result_data = handler(args, service, display)

        if args.json:
            print(json.dumps(result_data, indent=2))

        if args.output:
            container.file_store().write_json(args.output, result_data)
            if not args.quiet:
                print(f"\n{display.colored(f'Results saved to: {args.output}', display.Colors.GREEN)}")

        if args.command in ("validate", "run"):
            valid = result_data.get("is_valid", result_data.get("validation", {}).get("is_valid"))
            return 0 if valid else 2
        return 0

    except KeyboardInterrupt:
        print("\nSimulation interrupted.")
        return 130
    except Exception as e:
        print(display.colored(f"Error: {e}", display.Colors.RED), file=sys.stderr)
        if args.verbose:
            logging.exception("Simulation failed")
        return 1


if __name__ == "__main__":
    sys.exit(main())
