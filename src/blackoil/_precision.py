from contextlib import contextmanager
from contextvars import ContextVar

import numpy as np


__all__ = [
    "get_dtype",
    "set_dtype",
    "with_precision",
    "use_64bit_precision",
    "use_32bit_precision",
    "get_floating_point_info",
]

_blackoil_dtype: ContextVar[np.typing.DTypeLike] = ContextVar(
    "_blackoil_dtype", default=np.float64
)


def get_dtype() -> np.typing.DTypeLike:
    """
    Get the current data type used for state vectors and residuals.

    :return: The current data type.
    """
    return _blackoil_dtype.get()


def set_dtype(dtype: np.typing.DTypeLike) -> None:
    """
    Set the default data type for blackoil computations.

    :param dtype: The data type to set as default.
    """
    _blackoil_dtype.set(dtype)


@contextmanager
def with_precision(dtype: np.typing.DTypeLike):
    """
    Context manager to temporarily set the data type, and hence the precision for blackoil computations.

    :param dtype: The data type to set within the context.
    """
    token = _blackoil_dtype.set(dtype)
    try:
        yield
    finally:
        _blackoil_dtype.reset(token)


def use_64bit_precision() -> None:
    """
    Set the default data type to float64 for blackoil computations.

    Default precision for blackoil. Newton convergence at relative
    tolerances around 1e-6 needs double precision residuals.
    """
    set_dtype(np.float64)


def use_32bit_precision() -> None:
    """Set the default data type to float32 for blackoil computations."""
    set_dtype(np.float32)


def get_floating_point_info() -> np.finfo:
    """
    Get the floating point information for the current data type.

    :return: The floating point information.
    """
    dtype = get_dtype()
    return np.finfo(dtype)  # type: ignore
