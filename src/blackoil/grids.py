"""Cell and face geometry consumed by the residual assembly."""

import typing

import attrs
import numpy as np
import numpy.typing as npt

from blackoil._precision import get_dtype
from blackoil.boundary_conditions import Boundary, BoundaryCondition
from blackoil.errors import ValidationError
from blackoil.utils import as_float_array, harmonic_mean

__all__ = [
    "Face",
    "BoundaryFace",
    "Grid",
    "build_cartesian_grid",
    "half_transmissibility",
]


@attrs.frozen(slots=True)
class Face:
    """Interior face shared by two cells."""

    interior: int
    """Index of the interior cell. Positive flux leaves this cell."""
    exterior: int
    """Index of the exterior cell."""
    transmissibility: float = attrs.field(validator=attrs.validators.ge(0))
    """Two-point transmissibility (m³), permeability times area over distance."""
    area: float = attrs.field(validator=attrs.validators.gt(0))
    """Face area (m²)."""
    interior_depth: float
    """Depth of the interior cell centre (m, positive downwards)."""
    exterior_depth: float
    """Depth of the exterior cell centre (m, positive downwards)."""
    threshold_pressure: float = attrs.field(default=0.0, validator=attrs.validators.ge(0))
    """Potential difference (Pa) below which no flow occurs across the face."""

    def __attrs_post_init__(self) -> None:
        if self.interior == self.exterior:
            raise ValidationError(f"Face connects cell {self.interior} to itself.")

    def reversed(self) -> "Face":
        """The same face seen from the exterior cell."""
        return attrs.evolve(
            self,
            interior=self.exterior,
            exterior=self.interior,
            interior_depth=self.exterior_depth,
            exterior_depth=self.interior_depth,
        )


@attrs.frozen(slots=True)
class BoundaryFace:
    """Face between a cell and the outside of the domain."""

    cell: int
    """Index of the inside cell."""
    condition: BoundaryCondition
    """Condition applied on the face."""
    transmissibility: float = attrs.field(validator=attrs.validators.ge(0))
    """Half transmissibility from the cell centre to the face (m³)."""
    area: float = attrs.field(validator=attrs.validators.gt(0))
    """Face area (m²)."""
    depth: float
    """Depth of the face centre (m, positive downwards)."""
    cell_depth: float
    """Depth of the inside cell centre (m, positive downwards)."""


@attrs.frozen
class Grid:
    """
    Unstructured cell/face description of the reservoir.

    Face index arrays let face contributions be scattered into
    cell residuals with `np.add.at`.
    """

    volumes: npt.NDArray[np.floating] = attrs.field(
        converter=lambda value: np.asarray(value, dtype=get_dtype())
    )
    """Bulk cell volumes (m³)."""
    depths: npt.NDArray[np.floating] = attrs.field(
        converter=lambda value: np.asarray(value, dtype=get_dtype())
    )
    """Cell centre depths (m, positive downwards)."""
    faces: typing.Tuple[Face, ...] = attrs.field(factory=tuple, converter=tuple)
    """Interior faces."""
    boundary_faces: typing.Tuple[BoundaryFace, ...] = attrs.field(
        factory=tuple, converter=tuple
    )
    """Boundary faces."""

    def __attrs_post_init__(self) -> None:
        if self.volumes.ndim != 1 or self.depths.shape != self.volumes.shape:
            raise ValidationError("`volumes` and `depths` must be 1D arrays of equal length.")
        if np.any(self.volumes <= 0.0):
            raise ValidationError("Cell volumes must be positive.")
        num_cells = self.num_cells
        for face in self.faces:
            if not (0 <= face.interior < num_cells and 0 <= face.exterior < num_cells):
                raise ValidationError(
                    f"Face ({face.interior}, {face.exterior}) refers to a cell outside 0..{num_cells - 1}."
                )
        for boundary_face in self.boundary_faces:
            if not 0 <= boundary_face.cell < num_cells:
                raise ValidationError(
                    f"Boundary face refers to cell {boundary_face.cell} outside 0..{num_cells - 1}."
                )

    @property
    def num_cells(self) -> int:
        return int(self.volumes.size)

    @property
    def interior_cells(self) -> npt.NDArray[np.intp]:
        return np.array([face.interior for face in self.faces], dtype=np.intp)

    @property
    def exterior_cells(self) -> npt.NDArray[np.intp]:
        return np.array([face.exterior for face in self.faces], dtype=np.intp)

    def neighbours(self) -> typing.List[typing.List[int]]:
        """Adjacent cells of every cell."""
        neighbours: typing.List[typing.List[int]] = [[] for _ in range(self.num_cells)]
        for face in self.faces:
            neighbours[face.interior].append(face.exterior)
            neighbours[face.exterior].append(face.interior)
        return neighbours

    def faces_of(self) -> typing.List[typing.List[int]]:
        """Indices of the interior faces touching every cell."""
        faces_of: typing.List[typing.List[int]] = [[] for _ in range(self.num_cells)]
        for index, face in enumerate(self.faces):
            faces_of[face.interior].append(index)
            faces_of[face.exterior].append(index)
        return faces_of

    def boundary_faces_of(self) -> typing.List[typing.List[int]]:
        """Indices of the boundary faces touching every cell."""
        boundary_faces_of: typing.List[typing.List[int]] = [
            [] for _ in range(self.num_cells)
        ]
        for index, boundary_face in enumerate(self.boundary_faces):
            boundary_faces_of[boundary_face.cell].append(index)
        return boundary_faces_of


def half_transmissibility(permeability: float, area: float, distance: float) -> float:
    """
    Transmissibility from a cell centre to one of its faces.

    :param permeability: Permeability normal to the face (m²).
    :param area: Face area (m²).
    :param distance: Distance from the cell centre to the face (m).
    :return: `k * A / d` (m³).
    """
    return permeability * area / distance


def build_cartesian_grid(
    cell_counts: typing.Tuple[int, int, int],
    cell_dimensions: typing.Tuple[float, float, float],
    permeability: typing.Any,
    top_depth: float = 0.0,
    boundary_conditions: typing.Optional[typing.Mapping[Boundary, BoundaryCondition]] = None,
    threshold_pressure: float = 0.0,
) -> Grid:
    """
    Build a Cartesian grid with two-point transmissibilities.

    Cells are numbered with x varying fastest, then y, then z (downwards).
    The face transmissibility combines the half transmissibilities of both
    cells in series (harmonic average).

    :param cell_counts: Number of cells (nx, ny, nz).
    :param cell_dimensions: Cell size (dx, dy, dz) in m.
    :param permeability: Permeability in m². A scalar, one value per cell, or an array of
        shape (num_cells, 3) holding (kx, ky, kz) per cell.
    :param top_depth: Depth of the top of the grid (m).
    :param boundary_conditions: Conditions per grid side. Sides without a condition are sealed.
    :param threshold_pressure: Threshold pressure applied on every interior face (Pa).
    :return: The grid.
    """
    nx, ny, nz = (int(count) for count in cell_counts)
    if min(nx, ny, nz) < 1:
        raise ValidationError(f"Cell counts must be positive, got {cell_counts}.")
    dx, dy, dz = (float(size) for size in cell_dimensions)
    if min(dx, dy, dz) <= 0.0:
        raise ValidationError(f"Cell dimensions must be positive, got {cell_dimensions}.")

    num_cells = nx * ny * nz
    permeability_array = np.asarray(permeability, dtype=np.float64)
    if permeability_array.ndim == 2:
        if permeability_array.shape != (num_cells, 3):
            raise ValidationError(
                f"Directional permeability must have shape ({num_cells}, 3), got {permeability_array.shape}."
            )
        permeabilities = permeability_array
    else:
        isotropic = as_float_array(permeability_array, num_cells, "permeability")
        permeabilities = np.repeat(isotropic[:, None], 3, axis=1)
    if np.any(permeabilities < 0.0):
        raise ValidationError("Permeability must be non-negative.")

    def index(i: int, j: int, k: int) -> int:
        return i + nx * (j + ny * k)

    depths = np.empty(num_cells, dtype=np.float64)
    for k in range(nz):
        for j in range(ny):
            for i in range(nx):
                depths[index(i, j, k)] = top_depth + (k + 0.5) * dz

    areas = (dy * dz, dx * dz, dx * dy)
    spacings = (dx, dy, dz)
    faces: typing.List[Face] = []
    for k in range(nz):
        for j in range(ny):
            for i in range(nx):
                cell = index(i, j, k)
                for axis, (di, dj, dk) in enumerate(((1, 0, 0), (0, 1, 0), (0, 0, 1))):
                    ni, nj, nk = i + di, j + dj, k + dk
                    if ni >= nx or nj >= ny or nk >= nz:
                        continue
                    neighbour = index(ni, nj, nk)
                    half_distance = spacings[axis] / 2.0
                    # Half transmissibilities in series: half their harmonic mean
                    transmissibility = 0.5 * harmonic_mean(
                        half_transmissibility(permeabilities[cell, axis], areas[axis], half_distance),
                        half_transmissibility(
                            permeabilities[neighbour, axis], areas[axis], half_distance
                        ),
                    )
                    faces.append(
                        Face(
                            interior=cell,
                            exterior=neighbour,
                            transmissibility=transmissibility,
                            area=areas[axis],
                            interior_depth=float(depths[cell]),
                            exterior_depth=float(depths[neighbour]),
                            threshold_pressure=threshold_pressure,
                        )
                    )

    boundary_faces: typing.List[BoundaryFace] = []
    for side, condition in (boundary_conditions or {}).items():
        side = Boundary(side)
        if side in (Boundary.LEFT, Boundary.RIGHT):
            axis = 0
            cells = [
                index(0 if side is Boundary.LEFT else nx - 1, j, k)
                for k in range(nz)
                for j in range(ny)
            ]
        elif side in (Boundary.FRONT, Boundary.BACK):
            axis = 1
            cells = [
                index(i, 0 if side is Boundary.FRONT else ny - 1, k)
                for k in range(nz)
                for i in range(nx)
            ]
        else:
            axis = 2
            cells = [
                index(i, j, 0 if side is Boundary.TOP else nz - 1)
                for j in range(ny)
                for i in range(nx)
            ]

        for cell in cells:
            face_depth = float(depths[cell])
            if side is Boundary.TOP:
                face_depth -= dz / 2.0
            elif side is Boundary.BOTTOM:
                face_depth += dz / 2.0
            boundary_faces.append(
                BoundaryFace(
                    cell=cell,
                    condition=condition,
                    transmissibility=half_transmissibility(
                        permeabilities[cell, axis], areas[axis], spacings[axis] / 2.0
                    ),
                    area=areas[axis],
                    depth=face_depth,
                    cell_depth=float(depths[cell]),
                )
            )

    volumes = np.full(num_cells, dx * dy * dz, dtype=np.float64)
    return Grid(volumes=volumes, depths=depths, faces=faces, boundary_faces=boundary_faces)
