"""Input-output coefficient variants.

A technology reads its input requirement either as an efficiency (output
per unit of input) or as an intensity (input per unit of output). Both
expose the same :meth:`coefficient` accessor, which always returns input
per unit of output.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class Efficiency(BaseModel):
    """Output produced per unit of input."""

    kind: Literal["efficiency"] = "efficiency"
    value: float = Field(..., gt=0, description="Output per unit of input")

    model_config = {"frozen": True}

    def coefficient(self) -> float:
        """Return input per unit of output."""
        return 1.0 / self.value


class Intensity(BaseModel):
    """Input required per unit of output."""

    kind: Literal["intensity"] = "intensity"
    value: float = Field(..., gt=0, description="Input per unit of output")

    model_config = {"frozen": True}

    def coefficient(self) -> float:
        """Return input per unit of output."""
        return self.value


Coefficient = Annotated[Union[Efficiency, Intensity], Field(discriminator="kind")]
