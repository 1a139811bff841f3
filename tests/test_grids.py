import numpy as np
import pytest

from blackoil.boundary_conditions import Boundary, FreeBoundary, RateBoundary
from blackoil.errors import ValidationError
from blackoil.grids import Face, Grid, build_cartesian_grid
from blackoil.variables import CellCondition


def test_cartesian_transmissibility_is_harmonic():
    permeability = np.array([1e-13, 3e-13])
    grid = build_cartesian_grid(
        cell_counts=(2, 1, 1), cell_dimensions=(10.0, 10.0, 10.0), permeability=permeability
    )
    assert len(grid.faces) == 1
    face = grid.faces[0]
    first = 1e-13 * 100.0 / 5.0
    second = 3e-13 * 100.0 / 5.0
    assert face.transmissibility == pytest.approx(first * second / (first + second))
    assert (face.interior, face.exterior) == (0, 1)


def test_cartesian_grid_numbers_cells_x_fastest():
    grid = build_cartesian_grid(
        cell_counts=(3, 2, 2),
        cell_dimensions=(10.0, 20.0, 4.0),
        permeability=1e-13,
        top_depth=1000.0,
    )
    assert grid.num_cells == 12
    # nx*ny*nz neighbours along x, y and z
    assert len(grid.faces) == 2 * 2 * 2 + 3 * 1 * 2 + 3 * 2 * 1
    np.testing.assert_allclose(grid.volumes, 800.0)
    np.testing.assert_allclose(grid.depths[:6], 1002.0)
    np.testing.assert_allclose(grid.depths[6:], 1006.0)
    vertical = [face for face in grid.faces if face.exterior - face.interior == 6]
    assert len(vertical) == 6
    assert all(face.area == pytest.approx(200.0) for face in vertical)


def test_zero_permeability_seals_face():
    grid = build_cartesian_grid(
        cell_counts=(2, 1, 1), cell_dimensions=(1.0, 1.0, 1.0), permeability=[1e-13, 0.0]
    )
    assert grid.faces[0].transmissibility == 0.0


def test_boundary_faces_cover_the_side():
    exterior = CellCondition(pressures=1e7, saturations={"water": 1.0})
    grid = build_cartesian_grid(
        cell_counts=(2, 3, 2),
        cell_dimensions=(10.0, 10.0, 2.0),
        permeability=1e-13,
        boundary_conditions={
            Boundary.LEFT: FreeBoundary(exterior),
            "bottom": RateBoundary([1e-3, 0.0, 0.0]),
        },
    )
    left = [face for face in grid.boundary_faces if not face.condition.is_rate]
    bottom = [face for face in grid.boundary_faces if face.condition.is_rate]

    assert sorted(face.cell for face in left) == [0, 2, 4, 6, 8, 10]
    assert all(face.transmissibility == pytest.approx(1e-13 * 20.0 / 5.0) for face in left)
    assert sorted(face.cell for face in bottom) == list(range(6, 12))
    assert all(face.depth == pytest.approx(4.0) for face in bottom)
    assert all(face.cell_depth == pytest.approx(3.0) for face in bottom)
    assert grid.boundary_faces_of()[0] == [0]


def test_faces_of_and_neighbours():
    grid = build_cartesian_grid(
        cell_counts=(3, 1, 1), cell_dimensions=(1.0, 1.0, 1.0), permeability=1e-13
    )
    assert grid.faces_of() == [[0], [0, 1], [1]]
    assert grid.neighbours() == [[1], [0, 2], [1]]
    np.testing.assert_array_equal(grid.interior_cells, [0, 1])
    np.testing.assert_array_equal(grid.exterior_cells, [1, 2])


def test_invalid_geometry_is_rejected():
    with pytest.raises(ValidationError):
        build_cartesian_grid(cell_counts=(0, 1, 1), cell_dimensions=(1.0, 1.0, 1.0), permeability=1e-13)
    with pytest.raises(ValidationError):
        build_cartesian_grid(cell_counts=(1, 1, 1), cell_dimensions=(1.0, -1.0, 1.0), permeability=1e-13)
    with pytest.raises(ValidationError):
        build_cartesian_grid(
            cell_counts=(2, 1, 1), cell_dimensions=(1.0, 1.0, 1.0), permeability=np.ones((3, 3))
        )
    with pytest.raises(ValidationError):
        Face(interior=1, exterior=1, transmissibility=1.0, area=1.0, interior_depth=0.0, exterior_depth=0.0)
    with pytest.raises(ValidationError):
        Grid(
            volumes=[1.0, 1.0],
            depths=[0.0, 0.0],
            faces=[
                Face(
                    interior=0,
                    exterior=2,
                    transmissibility=1.0,
                    area=1.0,
                    interior_depth=0.0,
                    exterior_depth=0.0,
                )
            ],
        )
