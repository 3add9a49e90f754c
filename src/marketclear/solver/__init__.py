"""Equilibrium solver, step strategies and trace log."""

from marketclear.solver.equilibrium import EquilibriumSolver
from marketclear.solver.settings import SolverMethod, SolverSettings
from marketclear.solver.state import IterationSnapshot, PeriodSolution, SolverStatus
from marketclear.solver.steps import (
    BroydenStep,
    NewtonStep,
    SecantStep,
    StepProposal,
    StepStrategy,
    apply_step,
    fallback_step,
    limit_step,
    make_step_strategy,
)
from marketclear.solver.trace import MarketKey, TraceLog, TraceRow, TraceVariable

__all__ = [
    "EquilibriumSolver",
    "SolverMethod",
    "SolverSettings",
    "IterationSnapshot",
    "PeriodSolution",
    "SolverStatus",
    "StepProposal",
    "StepStrategy",
    "NewtonStep",
    "BroydenStep",
    "SecantStep",
    "make_step_strategy",
    "fallback_step",
    "limit_step",
    "apply_step",
    "TraceLog",
    "TraceRow",
    "TraceVariable",
    "MarketKey",
]
