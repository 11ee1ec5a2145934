"""Unit conversion utilities using pint.

All stored data is metric:
- Mass: kilograms (kg)
- Area: hectares (ha)
- Stocking density: kilograms per hectare (kg/ha)

Display units are controlled by settings.display_units:
- "metric": Display as stored
- "imperial": Convert to lb, acres and lb/ac
"""

import pint

from rebanho.core.config import settings

# Create a unit registry (lazily initialized)
_ureg: pint.UnitRegistry | None = None


def get_ureg() -> pint.UnitRegistry:
    """Get the pint unit registry (lazily initialized)."""
    global _ureg
    if _ureg is None:
        _ureg = pint.UnitRegistry()
    return _ureg


def is_imperial() -> bool:
    return settings.display_units == "imperial"


# =============================================================================
# Conversions
# =============================================================================


def weight_kg_to_display(kg: float) -> tuple[float, str]:
    """Convert kilograms to display units.

    Returns:
        Tuple of (value, unit_symbol) in display units
    """
    if is_imperial():
        ureg = get_ureg()
        return ((kg * ureg.kilogram).to(ureg.pound).magnitude, "lb")
    return (kg, "kg")


def area_ha_to_display(ha: float) -> tuple[float, str]:
    """Convert hectares to display units."""
    if is_imperial():
        ureg = get_ureg()
        return ((ha * ureg.hectare).to(ureg.acre).magnitude, "ac")
    return (ha, "ha")


def density_to_display(kg_per_ha: float) -> tuple[float, str]:
    """Convert a kg/ha stocking density to display units."""
    if is_imperial():
        ureg = get_ureg()
        value = (kg_per_ha * ureg.kilogram / ureg.hectare).to(ureg.pound / ureg.acre).magnitude
        return (value, "lb/ac")
    return (kg_per_ha, "kg/ha")


# =============================================================================
# Formatting
# =============================================================================


def format_weight(kg: float, decimals: int = 1) -> str:
    """Format a weight, e.g. "450.0 kg" or "992.1 lb"."""
    value, unit = weight_kg_to_display(kg)
    return f"{value:.{decimals}f} {unit}"


def format_area(ha: float, decimals: int = 2) -> str:
    value, unit = area_ha_to_display(ha)
    return f"{value:.{decimals}f} {unit}"


def format_density(kg_per_ha: float, decimals: int = 0) -> str:
    value, unit = density_to_display(kg_per_ha)
    return f"{value:.{decimals}f} {unit}"
