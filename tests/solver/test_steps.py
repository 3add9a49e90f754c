"""Tests for step strategies, solver settings and iteration snapshots."""

from dataclasses import replace

import numpy as np
import pytest
from pydantic import ValidationError

from marketclear.solver import (
    BroydenStep,
    IterationSnapshot,
    NewtonStep,
    PeriodSolution,
    SecantStep,
    SolverMethod,
    SolverSettings,
    SolverStatus,
    apply_step,
    fallback_step,
    limit_step,
    make_step_strategy,
)


def snapshot_for(prices, fx, iteration=0, deltax=None, deltafx=None, active=None):
    prices = np.asarray(prices, dtype=float)
    fx = np.asarray(fx, dtype=float)
    return IterationSnapshot(
        iteration=iteration,
        prices=prices,
        supply=np.ones_like(prices),
        demand=np.ones_like(prices) + fx,
        fx=fx,
        deltax=np.zeros_like(prices) if deltax is None else np.asarray(deltax, dtype=float),
        deltafx=np.zeros_like(prices) if deltafx is None else np.asarray(deltafx, dtype=float),
        solvable=np.ones(prices.shape, dtype=bool),
        active=np.ones(prices.shape, dtype=bool) if active is None else np.asarray(active),
    )


def linear_system(matrix, target):
    """Excess demand ``target - matrix @ p``."""
    matrix = np.asarray(matrix, dtype=float)
    target = np.asarray(target, dtype=float)
    return lambda prices: target - matrix @ prices


class TestSettings:
    def test_defaults(self):
        settings = SolverSettings()
        assert settings.method == SolverMethod.NEWTON
        assert settings.max_iterations == 100
        assert settings.ftol == 1e-6
        assert settings.xtol is None
        assert settings.workers == 1
        assert settings.fallback_methods == []

    def test_method_aliases(self):
        assert SolverSettings(method="Newton-Raphson").method == SolverMethod.NEWTON
        assert SolverSettings(method="quasi-newton").method == SolverMethod.BROYDEN
        settings = SolverSettings(fallback_methods="secant")
        assert settings.fallback_methods == [SolverMethod.SECANT]

    def test_invalid_values(self):
        with pytest.raises(ValidationError):
            SolverSettings(method="bisection")
        with pytest.raises(ValidationError):
            SolverSettings(max_iterations=0)
        with pytest.raises(ValidationError):
            SolverSettings(ftol=-1.0)

    def test_frozen(self):
        settings = SolverSettings()
        with pytest.raises(ValidationError):
            settings.ftol = 1.0


class TestSnapshot:
    def test_norms_cover_active_markets(self):
        snap = snapshot_for([1.0, 2.0], [0.5, -3.0], deltax=[0.1, -2.0], active=[True, False])
        assert snap.fx_norm() == 0.5
        assert snap.dx_norm() == 0.1

    def test_relative_norm(self):
        snap = snapshot_for([1.0], [4.0])
        # demand = 5, supply = 1
        assert snap.fx_norm(relative=True) == pytest.approx(0.8)

    def test_empty_active_set(self):
        snap = snapshot_for([1.0], [4.0], active=[False])
        assert snap.fx_norm() == 0.0
        assert snap.dx_norm() == 0.0

    def test_is_finite(self):
        assert snapshot_for([1.0], [0.0]).is_finite()
        assert not snapshot_for([np.inf], [0.0]).is_finite()


class TestPeriodSolution:
    def test_status_flags(self):
        assert PeriodSolution(period=1, status=SolverStatus.CONVERGED).usable
        assert PeriodSolution(period=1, status=SolverStatus.EXHAUSTED).usable
        assert not PeriodSolution(period=1, status=SolverStatus.DIVERGED).usable
        assert SolverStatus.DIVERGED.is_terminal
        assert not SolverStatus.ITERATING.is_terminal

    def test_summary(self):
        solution = PeriodSolution(period=3, status=SolverStatus.CONVERGED, prices={"USAcoal": 2.5})
        text = solution.summary()
        assert "PERIOD 3 SOLUTION" in text
        assert "USAcoal" in text


class TestStepHelpers:
    def test_fallback_step(self):
        dx = fallback_step(np.array([2.0, -1.0, 0.0]), np.array([10.0, 0.5, 3.0]), 0.1)
        np.testing.assert_allclose(dx, [1.0, -0.1, 0.0])

    def test_limit_step(self):
        dx = limit_step(np.array([5.0, -5.0]), np.array([2.0, 0.1]), 0.5)
        np.testing.assert_allclose(dx, [1.0, -0.5])
        np.testing.assert_allclose(limit_step(np.array([5.0]), np.array([1.0]), None), [5.0])

    def test_apply_step_clips_negative(self):
        np.testing.assert_allclose(apply_step(np.array([1.0, 2.0]), np.array([-3.0, 1.0])), [0.0, 3.0])

    def test_make_step_strategy(self):
        settings = SolverSettings(method="broyden")
        assert isinstance(make_step_strategy(settings), BroydenStep)
        assert isinstance(make_step_strategy(settings, "newton"), NewtonStep)
        assert isinstance(make_step_strategy(settings, SolverMethod.SECANT), SecantStep)


class TestStrategies:
    """One step from a linear system lands on its root."""

    matrix = [[3.0, -1.0], [-0.5, 2.0]]
    target = [4.0, 6.0]

    def root(self):
        return np.linalg.solve(np.asarray(self.matrix), np.asarray(self.target))

    def test_newton_step_hits_root(self):
        evaluate = linear_system(self.matrix, self.target)
        prices = np.array([1.0, 1.0])
        proposal = NewtonStep(SolverSettings()).propose(snapshot_for(prices, evaluate(prices)), None, evaluate)
        assert not proposal.fallback
        np.testing.assert_allclose(prices + proposal.dx, self.root(), rtol=1e-6)
        np.testing.assert_allclose(proposal.jacobian, -np.asarray(self.matrix), rtol=1e-5)

    def test_broyden_first_step_matches_newton(self):
        evaluate = linear_system(self.matrix, self.target)
        prices = np.array([1.0, 1.0])
        proposal = BroydenStep(SolverSettings()).propose(snapshot_for(prices, evaluate(prices)), None, evaluate)
        np.testing.assert_allclose(prices + proposal.dx, self.root(), rtol=1e-6)

    def test_broyden_update_satisfies_secant_condition(self):
        evaluate = linear_system(self.matrix, self.target)
        strategy = BroydenStep(SolverSettings())
        p0 = np.array([1.0, 1.0])
        previous = snapshot_for(p0, evaluate(p0))
        previous = replace(previous, jacobian=-np.eye(2))

        p1 = np.array([2.0, 3.0])
        fx1 = evaluate(p1)
        calls = []

        def counting(prices):
            calls.append(prices)
            return evaluate(prices)

        snap = snapshot_for(p1, fx1, iteration=1, deltax=p1 - p0, deltafx=fx1 - previous.fx)
        assert snap.fx_norm() < previous.fx_norm()
        proposal = strategy.propose(snap, previous, counting)
        assert calls == []
        np.testing.assert_allclose(proposal.jacobian @ (p1 - p0), fx1 - previous.fx)

    def test_secant_uses_previous_iterate(self):
        # Single market, fx = 6 - 3p
        evaluate = linear_system([[3.0]], [6.0])
        calls = []

        def counting(prices):
            calls.append(prices)
            return evaluate(prices)

        p0, p1 = np.array([1.0]), np.array([1.5])
        snap = snapshot_for(p1, evaluate(p1), iteration=1, deltax=p1 - p0, deltafx=evaluate(p1) - evaluate(p0))
        proposal = SecantStep(SolverSettings()).propose(snap, None, counting)
        assert calls == []
        np.testing.assert_allclose(p1 + proposal.dx, [2.0])

    def test_singular_jacobian_falls_back(self):
        evaluate = lambda prices: np.array([1.0, -1.0])  # noqa: E731
        prices = np.array([2.0, 0.5])
        settings = SolverSettings(fallback_step=0.25)
        proposal = NewtonStep(settings).propose(snapshot_for(prices, evaluate(prices)), None, evaluate)
        assert proposal.fallback
        np.testing.assert_allclose(proposal.dx, [0.5, -0.25])

    def test_inactive_markets_do_not_move(self):
        evaluate = linear_system(self.matrix, self.target)
        prices = np.array([1.0, 1.0])
        snap = snapshot_for(prices, evaluate(prices), active=np.array([True, False]))
        proposal = NewtonStep(SolverSettings()).propose(snap, None, evaluate)
        assert proposal.dx[1] == 0.0
        assert proposal.jacobian.shape == (1, 1)
