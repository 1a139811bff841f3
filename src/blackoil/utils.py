import typing

import numba
import numpy as np
import numpy.typing as npt

from blackoil.errors import ValidationError


__all__ = ["clip_scalar", "harmonic_mean", "face_density", "as_float_array"]


@numba.njit(cache=True)
def clip_scalar(value: float, min_val: float, max_val: float) -> float:
    if value < min_val:
        return min_val
    elif value > max_val:
        return max_val
    return value


@numba.njit(cache=True)
def harmonic_mean(value1: float, value2: float) -> float:
    """
    Harmonic mean of two non-negative values. Zero if either value is zero.
    """
    if value1 <= 0.0 or value2 <= 0.0:
        return 0.0
    return 2.0 * value1 * value2 / (value1 + value2)


@numba.njit(cache=True)
def face_density(
    interior_density: float,
    exterior_density: float,
    interior_saturation: float,
    exterior_saturation: float,
    presence_saturation: float,
) -> float:
    """
    Phase density at a face, weighted by how present the phase is on each side.

    Each side gets weight `clamp(S / presence_saturation, 0, 0.5)`. A phase absent from
    both sides falls back to the arithmetic mean, so the result stays finite.

    :param interior_density: Phase density in the interior cell.
    :param exterior_density: Phase density in the exterior cell.
    :param interior_saturation: Phase saturation in the interior cell.
    :param exterior_saturation: Phase saturation in the exterior cell.
    :param presence_saturation: Saturation at which a side reaches full weight.
    :return: Face density.
    """
    interior_weight = clip_scalar(interior_saturation / presence_saturation, 0.0, 0.5)
    exterior_weight = clip_scalar(exterior_saturation / presence_saturation, 0.0, 0.5)
    if interior_weight + exterior_weight == 0.0:
        interior_weight = 0.5
        exterior_weight = 0.5
    return (interior_weight * interior_density + exterior_weight * exterior_density) / (
        interior_weight + exterior_weight
    )


def as_float_array(values: typing.Any, size: int, name: str) -> npt.NDArray:
    """
    Broadcast a scalar or sequence to a float array of the given size.

    :param values: Scalar or array-like input.
    :param size: Expected number of entries.
    :param name: Name used in error messages.
    :return: A new float64 array of length `size`.
    """
    array = np.asarray(values, dtype=np.float64)
    if array.ndim == 0:
        return np.full(size, float(array))
    array = array.ravel()
    if array.size != size:
        raise ValidationError(f"`{name}` must have {size} entries, got {array.size}.")
    return array.copy()
