#!/usr/bin/env python3
"""CLI entry point for the optimization engine."""

import argparse
import sys
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import TypeAdapter, ValidationError

from .engine import OptimizationEngine
from .exceptions import OptimizationError, ProblemValidationError
from .models.allocation import AllocationDemand, AllocationResource
from .models.problem import PARAMETER_MODELS, Algorithm, Problem, ProblemType
from .models.routing import RouteOptimizationProblem
from .models.scheduling import SchedulingProblem
from .solvers.factory import SolverFactory
from .utils.config_manager import ConfigManager
from .utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

_PROBLEM_MODELS: dict[str, type[Problem]] = {
    ProblemType.ROUTE_OPTIMIZATION.value: RouteOptimizationProblem,
    ProblemType.SCHEDULING.value: SchedulingProblem,
}


def load_problem_file(path: Path) -> tuple[Problem, Optional[tuple[list, list]]]:
    """Read a YAML or JSON problem document.

    Returns:
        The problem, plus (resources, demands) when the document is an
        allocation problem carrying them
    """
    with open(path, "r", encoding="utf-8") as f:
        data: dict[str, Any] = yaml.safe_load(f) or {}

    allocation = None
    if "resources" in data and "demands" in data and data.get("problem_type") in (
        None,
        ProblemType.RESOURCE_ALLOCATION.value,
    ):
        resources = TypeAdapter(list[AllocationResource]).validate_python(data.pop("resources"))
        demands = TypeAdapter(list[AllocationDemand]).validate_python(data.pop("demands"))
        data["problem_type"] = ProblemType.RESOURCE_ALLOCATION.value
        allocation = (resources, demands)

    model = _PROBLEM_MODELS.get(data.get("problem_type"), Problem)
    return model.model_validate(data), allocation


def _with_seed(problem: Problem, algorithm: Algorithm, seed: int) -> Problem:
    if problem.parameters is not None and problem.parameters.algorithm == algorithm.value:
        parameters = problem.parameters.model_copy(update={"seed": seed})
    else:
        parameters = PARAMETER_MODELS[algorithm.value](seed=seed)
    return problem.model_copy(update={"parameters": parameters})


def solve_command(args: argparse.Namespace, engine: OptimizationEngine) -> int:
    try:
        problem, allocation = load_problem_file(Path(args.problem))
    except (OSError, yaml.YAMLError, ValidationError) as e:
        print(f"❌ Could not load {args.problem}: {e}", file=sys.stderr)
        return 2

    try:
        if allocation is not None:
            if args.seed is not None:
                problem = _with_seed(problem, Algorithm.LINEAR_PROGRAMMING, args.seed)
            solution = engine.solve_allocation(problem, *allocation)
        else:
            if args.seed is not None:
                selected = engine.select_algorithm(problem, args.algorithm)
                problem = _with_seed(problem, selected, args.seed)
            solution = engine.solve(problem, algorithm=args.algorithm)
    except ProblemValidationError as e:
        print("❌ Invalid problem:", file=sys.stderr)
        for issue in e.issues:
            print(f"   - {issue}", file=sys.stderr)
        return 2
    except OptimizationError as e:
        logger.error(f"Solve failed: {e}")
        print(f"❌ Solve failed: {e}", file=sys.stderr)
        return 1

    document = solution.model_dump_json(indent=2)
    if args.output:
        Path(args.output).write_text(document, encoding="utf-8")
        print(f"✅ {solution.status.value}: solution written to {args.output}")
    else:
        print(document)
    return 0


def algorithms_command(args: argparse.Namespace, engine: OptimizationEngine) -> int:
    info = engine.get_solver_info()
    for name in SolverFactory.get_available_solvers():
        marker = " (default)" if name == info["default"] else ""
        print(f"{name}{marker}: {info['solvers'][name]['description']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="opt-engine", description="Generic optimization engine")
    parser.add_argument("--config", help="Configuration directory or file")
    subcommands = parser.add_subparsers(dest="command", required=True)

    solve = subcommands.add_parser("solve", help="Solve a problem file (YAML or JSON)")
    solve.add_argument("problem", help="Path to the problem document")
    solve.add_argument(
        "--algorithm", choices=[a.value for a in Algorithm], help="Override strategy selection"
    )
    solve.add_argument("--seed", type=int, help="Seed for stochastic strategies")
    solve.add_argument("--output", "-o", help="Write the solution JSON here instead of stdout")
    solve.set_defaults(handler=solve_command)

    listing = subcommands.add_parser("algorithms", help="List available strategies")
    listing.set_defaults(handler=algorithms_command)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    config_manager = ConfigManager(args.config)
    setup_logging(config_manager)
    engine = OptimizationEngine(config_manager)
    return args.handler(args, engine)


def cli():
    """CLI entry point for the console script."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n👋 Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    cli()
