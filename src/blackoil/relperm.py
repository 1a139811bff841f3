"""Relative permeability models and three-phase oil mixing rules."""

import typing

import attrs
import numba

from blackoil.types import RelativePermeabilities
from blackoil.utils import clip_scalar


__all__ = [
    "MixingRule",
    "min_rule",
    "stone_II_rule",
    "saturation_weighted_interpolation_rule",
    "compute_corey_three_phase_relative_permeabilities",
    "CoreyThreePhaseRelPermModel",
]

MixingRule = typing.Callable[[float, float, float, float, float], float]
"""
Combines the oil relative permeability of the oil-water system (kro_w) and of the
oil-gas system (kro_g) into the three-phase value. Called as
`rule(kro_w, kro_g, water_saturation, oil_saturation, gas_saturation)`.
"""


@numba.njit(cache=True)
def min_rule(
    kro_w: float,
    kro_g: float,
    water_saturation: float,
    oil_saturation: float,
    gas_saturation: float,
) -> float:
    """
    Conservative rule for 3-phase oil relative permeability.
    kro = min(kro_w, kro_g)
    """
    return min(kro_w, kro_g)


@numba.njit(cache=True)
def stone_II_rule(
    kro_w: float,
    kro_g: float,
    water_saturation: float,
    oil_saturation: float,
    gas_saturation: float,
) -> float:
    """
    Stone II rule (1973) for 3-phase oil relative permeability.

    kro = kro_w * (So / (So + Sg)) + kro_g * (So / (So + Sw))

    If denominators vanish (e.g., So=0), the corresponding term is 0.0.
    """
    term_1 = 0.0
    denom_1 = oil_saturation + gas_saturation
    if denom_1 > 0.0:
        term_1 = kro_w * (oil_saturation / denom_1)

    term_2 = 0.0
    denom_2 = oil_saturation + water_saturation
    if denom_2 > 0.0:
        term_2 = kro_g * (oil_saturation / denom_2)
    return term_1 + term_2


@numba.njit(cache=True)
def saturation_weighted_interpolation_rule(
    kro_w: float,
    kro_g: float,
    water_saturation: float,
    oil_saturation: float,
    gas_saturation: float,
) -> float:
    """
    Saturation-weighted interpolation between oil-water and oil-gas systems.

    kro = kro_w * (Sw / (Sw + Sg)) + kro_g * (Sg / (Sw + Sg))

    Notes:
        - Reduces to kro_w when Sg=0 (oil-water system)
        - Reduces to kro_g when Sw=0 (oil-gas system)
        - Returns max(kro_w, kro_g) for pure oil
    """
    total_displacing_phase = water_saturation + gas_saturation
    if total_displacing_phase <= 0.0:
        return max(kro_w, kro_g)
    return (
        kro_w * water_saturation + kro_g * gas_saturation
    ) / total_displacing_phase


@numba.njit(cache=True)
def _corey_curve(saturation: float, lower: float, span: float, exponent: float) -> float:
    if span <= 1e-6:
        return 0.0
    return clip_scalar((saturation - lower) / span, 0.0, 1.0) ** exponent


def compute_corey_three_phase_relative_permeabilities(
    water_saturation: float,
    oil_saturation: float,
    gas_saturation: float,
    irreducible_water_saturation: float,
    residual_oil_saturation_water: float,
    residual_oil_saturation_gas: float,
    residual_gas_saturation: float,
    water_exponent: float,
    oil_exponent: float,
    gas_exponent: float,
    mixing_rule: MixingRule = saturation_weighted_interpolation_rule,
) -> typing.Tuple[float, float, float]:
    """
    Computes relative permeability for water, oil, and gas in a water-wet three-phase cell.

    Uses Corey-type curves for krw, krg and the two-phase oil curves kro_w(Sw), kro_g(Sg),
    then combines the oil curves with `mixing_rule`.

    :param water_saturation: Water saturation (fraction).
    :param oil_saturation: Oil saturation (fraction).
    :param gas_saturation: Gas saturation (fraction).
    :param irreducible_water_saturation: Irreducible water saturation (Swc).
    :param residual_oil_saturation_water: Residual oil saturation after water flood (Sorw).
    :param residual_oil_saturation_gas: Residual oil saturation after gas flood (Sorg).
    :param residual_gas_saturation: Residual gas saturation (Sgr).
    :param water_exponent: Corey exponent for water relative permeability.
    :param oil_exponent: Corey exponent for the two-phase oil curves.
    :param gas_exponent: Corey exponent for gas relative permeability.
    :param mixing_rule: Three-phase oil mixing rule.
    :return: (water_relative_permeability, oil_relative_permeability, gas_relative_permeability)
    """
    swc = irreducible_water_saturation
    sorw = residual_oil_saturation_water
    sorg = residual_oil_saturation_gas
    sgr = residual_gas_saturation

    krw = _corey_curve(water_saturation, swc, 1.0 - swc - sorw, water_exponent)
    krg = _corey_curve(gas_saturation, sgr, 1.0 - swc - sorg - sgr, gas_exponent)

    # Oil curves of the two-phase systems, in terms of the oil saturation each would see
    kro_w = _corey_curve(1.0 - water_saturation, sorw, 1.0 - swc - sorw, oil_exponent)
    kro_g = _corey_curve(
        1.0 - swc - gas_saturation, sorg, 1.0 - swc - sorg - sgr, oil_exponent
    )
    kro = mixing_rule(
        kro_w,
        kro_g,
        max(water_saturation - swc, 0.0),
        max(oil_saturation, 0.0),
        max(gas_saturation, 0.0),
    )
    return (
        clip_scalar(krw, 0.0, 1.0),
        clip_scalar(kro, 0.0, 1.0),
        clip_scalar(krg, 0.0, 1.0),
    )


@attrs.frozen
class CoreyThreePhaseRelPermModel:
    """
    Corey-type three-phase relative permeability model for water-wet rock.

    Relative permeabilities are scaled by their end-point values.
    """

    irreducible_water_saturation: float = 0.0
    """Irreducible water saturation (Swc)."""
    residual_oil_saturation_water: float = 0.0
    """Residual oil saturation after water flood (Sorw)."""
    residual_oil_saturation_gas: float = 0.0
    """Residual oil saturation after gas flood (Sorg)."""
    residual_gas_saturation: float = 0.0
    """Residual gas saturation (Sgr)."""
    water_exponent: float = attrs.field(default=2.0, validator=attrs.validators.gt(0))
    """Corey exponent for water relative permeability."""
    oil_exponent: float = attrs.field(default=2.0, validator=attrs.validators.gt(0))
    """Corey exponent for oil relative permeability."""
    gas_exponent: float = attrs.field(default=2.0, validator=attrs.validators.gt(0))
    """Corey exponent for gas relative permeability."""
    water_end_point: float = attrs.field(default=1.0, validator=attrs.validators.ge(0))
    """Water relative permeability at residual oil."""
    oil_end_point: float = attrs.field(default=1.0, validator=attrs.validators.ge(0))
    """Oil relative permeability at irreducible water."""
    gas_end_point: float = attrs.field(default=1.0, validator=attrs.validators.ge(0))
    """Gas relative permeability at maximum gas saturation."""
    mixing_rule: MixingRule = saturation_weighted_interpolation_rule
    """
    Mixing rule function to compute oil relative permeability in three-phase system.

    The function should take the following parameters in order:
    - kro_w: Oil relative permeability from oil-water curve
    - kro_g: Oil relative permeability from oil-gas curve
    - Sw: Mobile water saturation (Sw - Swc)
    - So: Oil saturation
    - Sg: Gas saturation
    and return the mixed oil relative permeability.
    """

    def get_relative_permeabilities(
        self, water_saturation: float, oil_saturation: float, gas_saturation: float
    ) -> RelativePermeabilities:
        """
        Compute relative permeabilities for water, oil, and gas.

        :param water_saturation: Water saturation (fraction).
        :param oil_saturation: Oil saturation (fraction).
        :param gas_saturation: Gas saturation (fraction).
        :return: A dictionary with relative permeabilities for water, oil, and gas.
        """
        krw, kro, krg = compute_corey_three_phase_relative_permeabilities(
            water_saturation=float(water_saturation),
            oil_saturation=float(oil_saturation),
            gas_saturation=float(gas_saturation),
            irreducible_water_saturation=self.irreducible_water_saturation,
            residual_oil_saturation_water=self.residual_oil_saturation_water,
            residual_oil_saturation_gas=self.residual_oil_saturation_gas,
            residual_gas_saturation=self.residual_gas_saturation,
            water_exponent=self.water_exponent,
            oil_exponent=self.oil_exponent,
            gas_exponent=self.gas_exponent,
            mixing_rule=self.mixing_rule,
        )
        return RelativePermeabilities(
            water=krw * self.water_end_point,
            oil=kro * self.oil_end_point,
            gas=krg * self.gas_end_point,
        )

    def __call__(
        self,
        *,
        water_saturation: float,
        oil_saturation: float,
        gas_saturation: float,
        **kwargs: typing.Any,
    ) -> RelativePermeabilities:
        return self.get_relative_permeabilities(
            water_saturation, oil_saturation, gas_saturation
        )
