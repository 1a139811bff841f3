"""Physical constants and numerical defaults"""

from contextvars import ContextVar
import typing

import attrs


__all__ = ["Constant", "Constants", "c", "ConstantsContext", "get_constant"]


@attrs.frozen(slots=True)
class Constant:
    """
    A constant value with optional description and unit.
    """

    value: typing.Any
    """The actual value of the constant."""

    description: typing.Optional[str] = None
    """Optional description of what this constant represents."""

    unit: typing.Optional[str] = None
    """Optional unit of measurement for this constant."""

    def __str__(self) -> str:
        return f"{self.value}{self.unit or ''}"

    def __repr__(self) -> str:
        parts = [f"value={self.value}"]
        if self.description:
            parts.append(f"description='{self.description}'")
        if self.unit:
            parts.append(f"unit='{self.unit}'")
        return f"Constant({', '.join(parts)})"


DEFAULT_CONSTANTS: typing.Dict[str, typing.Union[typing.Any, Constant]] = {
    # Standard Conditions
    "STANDARD_PRESSURE": Constant(
        value=101325.0, description="Standard atmospheric pressure", unit="Pa"
    ),
    "STANDARD_TEMPERATURE": Constant(
        value=288.7056, description="Standard temperature (15.6°C)", unit="K"
    ),
    "ACCELERATION_DUE_TO_GRAVITY": Constant(
        value=9.80665,
        description="Standard acceleration due to gravity, acting along increasing depth",
        unit="m/s²",
    ),
    # Standard Densities
    "STANDARD_WATER_DENSITY": Constant(
        value=998.2, description="Standard water density at 15.6°C", unit="kg/m³"
    ),
    "STANDARD_OIL_DENSITY": Constant(
        value=850.0, description="Default stock-tank oil density", unit="kg/m³"
    ),
    "STANDARD_GAS_DENSITY": Constant(
        value=0.9, description="Default surface gas density", unit="kg/m³"
    ),
    "SALT_DENSITY": Constant(
        value=2170.0, description="Density of solid sodium chloride", unit="kg/m³"
    ),
    # Compressibilities
    "WATER_ISOTHERMAL_COMPRESSIBILITY": Constant(
        value=4.6e-10,
        description="Isothermal compressibility of water at 15.6°C",
        unit="1/Pa",
    ),
    # Conversions
    "PSI_TO_PA": Constant(
        value=6894.757,
        description="Conversion factor from psi to Pascals",
        unit="Pa/psi",
    ),
    "BAR_TO_PA": Constant(
        value=1e5, description="Conversion factor from bar to Pascals", unit="Pa/bar"
    ),
    "CENTIPOISE_TO_PA_S": Constant(
        value=0.001,
        description="Conversion factor from centipoise to Pascal-seconds",
        unit="Pa·s/cP",
    ),
    "MD_TO_M2": Constant(
        value=9.869233e-16,
        description="Conversion factor from millidarcies to square meters",
        unit="m²/mD",
    ),
    "SECONDS_PER_DAY": Constant(value=86400.0, description="Seconds in a day", unit="s"),
    # Numerical
    "PHASE_PRESENCE_SATURATION": Constant(
        value=1e-5,
        description="Saturation above which a phase fully contributes to the face density average",
        unit="fraction",
    ),
    "MIN_INITIAL_ERROR": Constant(
        value=1e-20,
        description="Lower clamp on the initial weighted residual error",
        unit=None,
    ),
    "MIN_RELATIVE_MOBILITY": Constant(
        value=0.0,
        description="Lower bound applied to phase mobilities",
        unit="1/(Pa·s)",
    ),
}


class Constants:
    """
    Physical constants and numerical defaults used by the simulator.

    All constants are stored in an internal dictionary and can be accessed via dot notation.
    Use attribute access for values and item access for `Constant` objects.
    """

    __slots__ = ("_store",)

    def __new__(cls) -> "Constants":
        instance = super().__new__(cls)
        instance._store = {}
        return instance

    def __init__(self) -> None:
        for name, value in DEFAULT_CONSTANTS.items():
            if isinstance(value, Constant):
                self._store[name] = value
            else:
                self._store[name] = Constant(value=value)

    def __getattr__(self, name: str) -> typing.Any:
        """Get a constant's value using dot notation.

        :param name: Name of the constant
        :return: Value of the constant (unwrapped from Constant object)
        :raises AttributeError: If the constant does not exist
        """
        if name.startswith("_"):
            return object.__getattribute__(self, name)

        try:
            constant = self._store[name]
            return constant.value if isinstance(constant, Constant) else constant
        except KeyError:
            raise AttributeError(
                f"'{type(self).__name__}' object has no attribute '{name}'"
            ) from None

    def __getitem__(self, name: str) -> Constant:
        return self._store[name]

    def __setattr__(self, name: str, value: typing.Union[typing.Any, Constant]) -> None:
        if name.startswith("_"):
            object.__setattr__(self, name, value)
        elif isinstance(value, Constant):
            self._store[name] = value
        else:
            self._store[name] = Constant(value=value)

    def __setitem__(self, name: str, value: typing.Union[typing.Any, Constant]) -> None:
        setattr(self, name, value)

    def __contains__(self, name: str) -> bool:
        return name in self._store

    def keys(self) -> typing.KeysView[str]:
        return self._store.keys()

    def get(self, name: str, default: typing.Any = None) -> typing.Any:
        """Get a constant's value with a default fallback.

        :param name: Name of the constant
        :param default: Default value if constant doesn't exist
        :return: Value of the constant or default
        """
        constant = self._store.get(name)
        if constant is None:
            return default
        return constant.value if isinstance(constant, Constant) else constant

    def get_constant(
        self, name: str, default: typing.Optional[Constant] = None
    ) -> typing.Optional[Constant]:
        return self._store.get(name, default)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(constants={len(self._store)})"

    def __len__(self) -> int:
        return len(self._store)

    def __call__(self) -> "ConstantsContext":
        """
        Create a context manager that, within its context, makes this instance the one
        read through the global proxy `blackoil.c`.

        :return: `ConstantsContext` for temporary overrides
        """
        return ConstantsContext(self)


_constants_context: ContextVar[Constants] = ContextVar(
    "constants_context", default=Constants()
)


class ConstantsContext:
    """
    Context manager for temporary global `Constants` overrides.

    Upon exiting the context, the previous `Constants` instance is restored.
    """

    def __init__(self, constants: Constants) -> None:
        self._new_constants = constants
        self._token = None

    def __enter__(self) -> Constants:
        self._token = _constants_context.set(self._new_constants)
        return self._new_constants

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        if self._token is not None:
            _constants_context.reset(self._token)


class _ConstantsProxy:
    """
    Proxy class to access the current context's `Constants` instance.

    Override the current instance using the `ConstantsContext` context manager.
    """

    @property
    def _constants(self) -> Constants:
        return _constants_context.get()

    def __getattr__(self, name: str) -> typing.Any:
        return getattr(self._constants, name)

    def __getitem__(self, name: str) -> Constant:
        return self._constants[name]


c = _ConstantsProxy()
"""Global proxy to access physical constants and numerical defaults."""


def get_constant(name: str) -> typing.Optional[Constant]:
    """Get a `Constant` object by name from the global constants.

    :param name: Name of the constant
    :return: `Constant` object or None if not found
    """
    return c._constants.get_constant(name)
