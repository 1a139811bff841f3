"""
Optional physics modules plugged into the storage, flux and source terms.

Each extension receives the component vectors of the core terms (indexed by canonical
component index, salt at index 3) and adds its own contributions in place. The extensions
used by a model are chosen when the model is built and applied in order.
"""

import typing

import attrs
import numpy as np
import numpy.typing as npt

from blackoil.constants import c
from blackoil.errors import ValidationError
from blackoil.types import SALT_INDEX, WATER_INDEX

if typing.TYPE_CHECKING:
    from blackoil.fluid_state import FluidState

__all__ = ["Extension", "NoExtension", "BrineExtension", "CombinedExtension"]


@typing.runtime_checkable
class Extension(typing.Protocol):
    """Storage/flux/source contributions of an optional physics module."""

    @property
    def enables_brine(self) -> bool:
        """Whether the extension adds the salt component and the brine slot."""
        ...

    def salt_solubility(self, pvt_region: int) -> float: ...

    def add_storage(
        self, storage: npt.NDArray[np.floating], fluid_state: "FluidState"
    ) -> None: ...

    def add_flux(
        self,
        flux: npt.NDArray[np.floating],
        darcy: npt.NDArray[np.floating],
        upstream_states: typing.Sequence["FluidState"],
    ) -> None:
        """
        :param flux: Component flux of the face, modified in place.
        :param darcy: Darcy flux per phase (m/s).
        :param upstream_states: Upstream fluid state per phase.
        """
        ...

    def add_source(
        self, source: npt.NDArray[np.floating], cell: int, fluid_state: "FluidState"
    ) -> None: ...


@attrs.frozen
class NoExtension:
    """Extension that contributes nothing."""

    @property
    def enables_brine(self) -> bool:
        return False

    def salt_solubility(self, pvt_region: int) -> float:
        return 0.0

    def add_storage(
        self, storage: npt.NDArray[np.floating], fluid_state: "FluidState"
    ) -> None:
        return None

    def add_flux(
        self,
        flux: npt.NDArray[np.floating],
        darcy: npt.NDArray[np.floating],
        upstream_states: typing.Sequence["FluidState"],
    ) -> None:
        return None

    def add_source(
        self, source: npt.NDArray[np.floating], cell: int, fluid_state: "FluidState"
    ) -> None:
        return None


def _as_solubilities(value: typing.Any) -> typing.Tuple[float, ...]:
    if np.ndim(value) == 0:
        return (float(value),)
    return tuple(float(v) for v in value)


@attrs.frozen
class BrineExtension:
    """
    Salt transported in the water phase, with precipitation above the solubility limit.

    Adds the salt component. Dissolved salt is stored as `phi * Sw * invBw * Cs` and moves
    with the water phase. Salt above the solubility limit precipitates as a solid occupying
    the pore fraction `Sp`, stored as `phi_rock * Sp * rho_salt`.
    """

    salt_solubility_limits: typing.Tuple[float, ...] = attrs.field(
        converter=_as_solubilities
    )
    """Salt solubility (kg/sm³) per PVT region. A single value applies to every region."""
    salt_density: float = attrs.field(
        factory=lambda: float(c.SALT_DENSITY), validator=attrs.validators.gt(0)
    )
    """Density of solid salt (kg/m³)."""

    @property
    def enables_brine(self) -> bool:
        return True

    def salt_solubility(self, pvt_region: int) -> float:
        if len(self.salt_solubility_limits) == 1:
            return self.salt_solubility_limits[0]
        return self.salt_solubility_limits[pvt_region]

    def add_storage(
        self, storage: npt.NDArray[np.floating], fluid_state: "FluidState"
    ) -> None:
        porosity = fluid_state.porosity
        precipitated = fluid_state.precipitated_salt_saturation
        storage[SALT_INDEX] += (
            porosity
            * fluid_state.saturations[WATER_INDEX]
            * fluid_state.inverse_formation_volume_factors[WATER_INDEX]
            * fluid_state.salt_concentration
        )
        if precipitated != 0.0 and precipitated < 1.0:
            # Solid salt fills a fraction of the pore space of the bare rock
            rock_porosity = porosity / (1.0 - precipitated)
            storage[SALT_INDEX] += rock_porosity * precipitated * self.salt_density

    def add_flux(
        self,
        flux: npt.NDArray[np.floating],
        darcy: npt.NDArray[np.floating],
        upstream_states: typing.Sequence["FluidState"],
    ) -> None:
        upstream = upstream_states[WATER_INDEX]
        flux[SALT_INDEX] += (
            upstream.inverse_formation_volume_factors[WATER_INDEX]
            * darcy[WATER_INDEX]
            * upstream.salt_concentration
        )

    def add_source(
        self, source: npt.NDArray[np.floating], cell: int, fluid_state: "FluidState"
    ) -> None:
        return None


@attrs.frozen
class CombinedExtension:
    """
    Several extensions applied one after the other.

    At most one of them may add the salt component, which then supplies the salt solubility.
    """

    extensions: typing.Tuple[Extension, ...] = attrs.field(converter=tuple)

    def __attrs_post_init__(self) -> None:
        if sum(extension.enables_brine for extension in self.extensions) > 1:
            raise ValidationError("At most one extension may add the salt component.")

    @property
    def enables_brine(self) -> bool:
        return any(extension.enables_brine for extension in self.extensions)

    def salt_solubility(self, pvt_region: int) -> float:
        for extension in self.extensions:
            if extension.enables_brine:
                return extension.salt_solubility(pvt_region)
        return 0.0

    def add_storage(
        self, storage: npt.NDArray[np.floating], fluid_state: "FluidState"
    ) -> None:
        for extension in self.extensions:
            extension.add_storage(storage, fluid_state)

    def add_flux(
        self,
        flux: npt.NDArray[np.floating],
        darcy: npt.NDArray[np.floating],
        upstream_states: typing.Sequence["FluidState"],
    ) -> None:
        for extension in self.extensions:
            extension.add_flux(flux, darcy, upstream_states)

    def add_source(
        self, source: npt.NDArray[np.floating], cell: int, fluid_state: "FluidState"
    ) -> None:
        for extension in self.extensions:
            extension.add_source(source, cell, fluid_state)
