#!/usr/bin/env python3
"""
Run a marketclear scenario.

Loads a YAML scenario, solves every period in order and writes the solver
trace log and its market key.

Usage:
    python run_scenario.py examples/scenarios/two_market.yaml
    python run_scenario.py scenario.yaml --method broyden --trace output/trace.csv
"""

import argparse
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from marketclear.core.errors import ConfigurationError, DivergenceError
from marketclear.scenario import ScenarioRunner, load_scenario_config


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


def main():
    parser = argparse.ArgumentParser(
        description="Solve a multi-market scenario period by period",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with the settings in the file
  python run_scenario.py examples/scenarios/two_market.yaml

  # Override the step strategy and the trace location
  python run_scenario.py scenario.yaml --method secant --trace output/trace.csv
        """,
    )
    parser.add_argument("config", type=Path, help="Scenario YAML file")
    parser.add_argument(
        "--method",
        choices=["newton", "broyden", "secant"],
        default=None,
        help="Step strategy (overrides the scenario's solver.method)",
    )
    parser.add_argument("--max-iterations", type=int, default=None, help="Iteration budget per period")
    parser.add_argument(
        "--trace", type=Path, default=None, help="Trace log output path (overrides output.trace_path)"
    )
    parser.add_argument(
        "--trace-key", type=Path, default=None, help="Market key output path (overrides output.key_path)"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()
    setup_logging(args.verbose)

    if not args.config.exists():
        print(f"Error: scenario file not found: {args.config}")
        return 1

    try:
        config = load_scenario_config(args.config)
    except ConfigurationError as e:
        print(f"✗ {e}")
        return 1

    solver_overrides = {}
    if args.method:
        solver_overrides["method"] = args.method
    if args.max_iterations:
        solver_overrides["max_iterations"] = args.max_iterations
    updates = {}
    if solver_overrides:
        updates["solver"] = config.solver.model_validate(
            {**config.solver.model_dump(), **solver_overrides}
        )
    output_overrides = {}
    if args.trace:
        output_overrides["trace_path"] = args.trace.resolve()
    if args.trace_key:
        output_overrides["key_path"] = args.trace_key.resolve()
    if output_overrides:
        updates["output"] = config.output.model_copy(update=output_overrides)
    if updates:
        config = config.model_copy(update=updates)

    print("=" * 70)
    print(f"SCENARIO: {config.name}")
    print("=" * 70)

    runner = ScenarioRunner(config)
    try:
        solutions = runner.run()
    except DivergenceError as e:
        print(f"\n✗ Period {e.period} diverged: {e}")
        if config.output.trace_path:
            print(f"  Trace log written to: {config.output.trace_path}")
        return 2

    for period, solution in solutions.items():
        year = runner.calendar.period_to_year(period)
        mark = "✓" if solution.converged else "⚠"
        print(
            f"{mark} period {period:>3} ({year}): {solution.status.value:<10} "
            f"iterations={solution.iterations:<4} max|fx|={solution.fx_norm:.2e}"
        )

    if config.output.trace_path:
        print(f"\n✓ Trace log written to: {config.output.trace_path}")

    print("=" * 70)
    return 0 if all(s.converged for s in solutions.values()) else 3


if __name__ == "__main__":
    sys.exit(main())
