"""Solver configuration."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator


class SolverMethod(str, Enum):
    """Price-step strategies accepted by the equilibrium solver."""

    NEWTON = "newton"
    BROYDEN = "broyden"
    SECANT = "secant"

    @classmethod
    def from_alias(cls, value: str | SolverMethod) -> SolverMethod:
        """Normalize method aliases into one canonical ``SolverMethod`` value."""
        if isinstance(value, SolverMethod):
            return value
        normalized = str(value).strip().lower()
        aliases: dict[str, SolverMethod] = {
            "newton": cls.NEWTON,
            "newton-raphson": cls.NEWTON,
            "nr": cls.NEWTON,
            "broyden": cls.BROYDEN,
            "quasi-newton": cls.BROYDEN,
            "secant": cls.SECANT,
            "diagonal": cls.SECANT,
        }
        if normalized not in aliases:
            raise ValueError(f"Unsupported solver method: {value}")
        return aliases[normalized]


class SolverSettings(BaseModel):
    """Tolerances, budgets and step controls for one period solve."""

    method: SolverMethod = Field(default=SolverMethod.NEWTON, description="Step strategy")
    max_iterations: int = Field(default=100, ge=1, description="Iteration budget")
    ftol: float = Field(default=1e-6, gt=0, description="Excess-demand tolerance")
    xtol: float | None = Field(default=None, gt=0, description="Optional step tolerance")
    relative_tolerance: bool = Field(
        default=False, description="Scale excess demand by max(|demand|, |supply|, 1)"
    )
    trivial_threshold: float = Field(
        default=1e-10, ge=0, description="Markets with |supply|+|demand| below this are solved"
    )
    fd_step: float = Field(default=1e-6, gt=0, description="Relative finite-difference step")
    fallback_step: float = Field(
        default=0.1, gt=0, description="Relative price step used when the derivative is zero"
    )
    max_relative_step: float | None = Field(
        default=None, gt=0, description="Optional cap on |deltax| relative to max(|p|, 1)"
    )
    max_price: float = Field(default=1e12, gt=0, description="Prices above this count as divergence")
    workers: int = Field(default=1, ge=1, description="Threads used to evaluate contributors")
    log_every: int = Field(default=10, ge=1, description="Progress logging interval")
    fallback_methods: list[SolverMethod] = Field(
        default_factory=list, description="Methods retried in order after divergence"
    )

    model_config = {"frozen": True}

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v: object) -> SolverMethod:  # noqa: N805
        return SolverMethod.from_alias(v)

    @field_validator("fallback_methods", mode="before")
    @classmethod
    def normalize_fallbacks(cls, v: object) -> list[SolverMethod]:  # noqa: N805
        if v is None:
            return []
        if isinstance(v, (str, SolverMethod)):
            v = [v]
        return [SolverMethod.from_alias(item) for item in v]
