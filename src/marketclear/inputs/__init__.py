"""Technology inputs and market contributors."""

from marketclear.inputs.coefficients import Coefficient, Efficiency, Intensity
from marketclear.inputs.contributors import LeontiefTechnology, LinearCurve, MarketContributor
from marketclear.inputs.energy_input import EnergyInput

__all__ = [
    "Coefficient",
    "Efficiency",
    "Intensity",
    "EnergyInput",
    "MarketContributor",
    "LinearCurve",
    "LeontiefTechnology",
]
