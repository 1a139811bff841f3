"""Residual and Jacobian assembly over all cells and faces."""

import logging
import typing

import attrs
import numpy as np
import numpy.typing as npt
from scipy.sparse import csr_matrix, lil_matrix  # type: ignore[import-untyped]

from blackoil.config import Config
from blackoil.errors import ValidationError
from blackoil.fluid_state import FluidState, compute_fluid_state
from blackoil.local_residual import (
    compute_boundary_flux,
    compute_flux,
    compute_source,
    compute_storage,
)
from blackoil.models import ReservoirModel
from blackoil.types import PHASES, SALT_INDEX
from blackoil.variables import PrimaryVariables, PrimaryVariableSet

logger = logging.getLogger(__name__)

__all__ = ["Evaluation", "ResidualAssembler"]


@attrs.frozen
class Evaluation:
    """Terms of the residual at one set of primary variables, by canonical component."""

    fluid_states: typing.List[FluidState]
    storage: npt.NDArray[np.floating]
    """Storage per unit bulk volume, shape (num_cells, 4)."""
    face_fluxes: npt.NDArray[np.floating]
    """Component flux times area per interior face, shape (num_faces, 4)."""
    boundary_fluxes: npt.NDArray[np.floating]
    """Component flux times area per boundary face, shape (num_boundary_faces, 4)."""
    sources: npt.NDArray[np.floating]
    """Component sources per cell, shape (num_cells, 4)."""
    residual: npt.NDArray[np.floating]
    """Residual per cell, shape (num_cells, 4)."""


class ResidualAssembler:
    """
    Builds the residual of the discrete conservation equations and its Jacobian.

    For cell `i` and component `k`:

        R[i, k] = V[i] * (M[i, k] - M_old[i, k]) / dt
                  + sum of face fluxes leaving i (times area)
                  + boundary fluxes leaving i (times area)
                  - source[i, k]

    Flat vectors use the layout of `PrimaryVariableSet.to_vector`: cell by cell,
    with the equations of each cell ordered by `Indices.components`.
    """

    def __init__(self, model: ReservoirModel, config: Config) -> None:
        self.model = model
        self.config = config
        self.indices = model.indices
        grid = model.grid
        self._faces = grid.faces
        self._boundary_faces = grid.boundary_faces
        self._interior_cells = grid.interior_cells
        self._exterior_cells = grid.exterior_cells
        self._boundary_cells = np.array(
            [boundary_face.cell for boundary_face in grid.boundary_faces], dtype=np.intp
        )
        self._faces_of = grid.faces_of()
        self._boundary_faces_of = grid.boundary_faces_of()
        self._components = np.array(self.indices.components, dtype=np.intp)
        self._exterior_states: typing.Dict[int, FluidState] = {}

    @property
    def num_unknowns(self) -> int:
        return self.model.num_cells * self.indices.num_equations

    def to_equations(self, values: npt.NDArray[np.floating]) -> npt.NDArray[np.floating]:
        """Flatten a (num_cells, 4) component array to the equation layout."""
        return np.ascontiguousarray(values[:, self._components]).ravel()

    def fluid_states(self, primary_variables: PrimaryVariableSet) -> typing.List[FluidState]:
        return [
            self.model.fluid_state(cell, variables)
            for cell, variables in enumerate(primary_variables)
        ]

    def storage(
        self,
        primary_variables: PrimaryVariableSet,
        fluid_states: typing.Optional[typing.Sequence[FluidState]] = None,
    ) -> npt.NDArray[np.floating]:
        """
        Storage of every cell per unit bulk volume.

        :param primary_variables: Primary variables of every cell.
        :param fluid_states: Precomputed fluid states, evaluated when omitted.
        :return: Array of shape (num_cells, 4).
        """
        if fluid_states is None:
            fluid_states = self.fluid_states(primary_variables)
        model = self.model
        conserve_surface_volume = self.config.conserve_surface_volume
        return np.array(
            [
                compute_storage(
                    state, model.fluid_system, model.extension, conserve_surface_volume
                )
                for state in fluid_states
            ],
            dtype=np.float64,
        ).reshape(model.num_cells, 4)

    def exterior_state(self, boundary_index: int) -> FluidState:
        """Fluid state outside a pressure-controlled boundary face. Cached per face."""
        state = self._exterior_states.get(boundary_index)
        if state is not None:
            return state

        model = self.model
        boundary_face = self._boundary_faces[boundary_index]
        cell = boundary_face.cell
        exterior = boundary_face.condition.exterior
        if exterior is None:
            raise ValidationError(f"Boundary face {boundary_index} has no exterior condition.")
        pvt_region = int(model.pvt_regions[cell])  # type: ignore[index]
        variables = PrimaryVariables.from_condition(
            exterior,
            model.fluid_system,
            pvt_region=pvt_region,
            enable_brine=model.enables_brine,
        )
        state = compute_fluid_state(
            variables,
            fluid_system=model.fluid_system,
            material_law=model.material_law(cell),
            temperature=model.temperature,
            reference_porosity=float(model.porosity[cell]),
            rock_compressibility=model.rock_compressibility,
            reference_pressure=model.reference_pressure,
            salt_solubility=model.extension.salt_solubility(pvt_region),
        )
        self._exterior_states[boundary_index] = state
        return state

    def _face_flux(
        self,
        face_index: int,
        interior_state: FluidState,
        exterior_state: FluidState,
    ) -> npt.NDArray[np.floating]:
        face = self._faces[face_index]
        face_flux = compute_flux(
            interior_state,
            exterior_state,
            face,
            gravity=self.config.gravity,
            fluid_system=self.model.fluid_system,
            extension=self.model.extension,
            conserve_surface_volume=self.config.conserve_surface_volume,
        )
        return face_flux.flux * face.area

    def _boundary_flux(
        self, boundary_index: int, inside_state: FluidState
    ) -> npt.NDArray[np.floating]:
        boundary_face = self._boundary_faces[boundary_index]
        exterior_state = (
            None if boundary_face.condition.is_rate else self.exterior_state(boundary_index)
        )
        face_flux = compute_boundary_flux(
            inside_state,
            boundary_face,
            gravity=self.config.gravity,
            fluid_system=self.model.fluid_system,
            extension=self.model.extension,
            exterior_state=exterior_state,
            conserve_surface_volume=self.config.conserve_surface_volume,
        )
        return face_flux.flux * boundary_face.area

    def evaluate(
        self,
        primary_variables: PrimaryVariableSet,
        old_storage: npt.NDArray[np.floating],
        step_size: float,
    ) -> Evaluation:
        """Evaluate every term of the residual."""
        model = self.model
        fluid_states = self.fluid_states(primary_variables)
        storage = self.storage(primary_variables, fluid_states)

        face_fluxes = np.zeros((len(self._faces), 4), dtype=np.float64)
        for face_index, face in enumerate(self._faces):
            face_fluxes[face_index] = self._face_flux(
                face_index, fluid_states[face.interior], fluid_states[face.exterior]
            )
        boundary_fluxes = np.zeros((len(self._boundary_faces), 4), dtype=np.float64)
        for boundary_index, boundary_face in enumerate(self._boundary_faces):
            boundary_fluxes[boundary_index] = self._boundary_flux(
                boundary_index, fluid_states[boundary_face.cell]
            )
        sources = np.array(
            [
                compute_source(cell, model.sources[cell], state, model.extension)  # type: ignore[index]
                for cell, state in enumerate(fluid_states)
            ],
            dtype=np.float64,
        ).reshape(model.num_cells, 4)

        residual = model.grid.volumes[:, None] * (storage - old_storage) / step_size - sources
        np.add.at(residual, self._interior_cells, face_fluxes)
        np.add.at(residual, self._exterior_cells, -face_fluxes)
        np.add.at(residual, self._boundary_cells, boundary_fluxes)
        return Evaluation(
            fluid_states=fluid_states,
            storage=storage,
            face_fluxes=face_fluxes,
            boundary_fluxes=boundary_fluxes,
            sources=sources,
            residual=residual,
        )

    def residual(
        self,
        primary_variables: PrimaryVariableSet,
        old_storage: npt.NDArray[np.floating],
        step_size: float,
    ) -> npt.NDArray[np.floating]:
        """
        Residual of every equation.

        :param primary_variables: Primary variables of every cell.
        :param old_storage: Storage at the start of the time step, shape (num_cells, 4).
        :param step_size: Time step size (s).
        :return: Flat residual vector.
        """
        return self.to_equations(
            self.evaluate(primary_variables, old_storage, step_size).residual
        )

    def _perturbed_cell_residual(
        self,
        cell: int,
        variables: PrimaryVariables,
        evaluation: Evaluation,
        old_storage: npt.NDArray[np.floating],
        step_size: float,
    ) -> typing.Tuple[npt.NDArray[np.floating], typing.Dict[int, npt.NDArray[np.floating]]]:
        """
        Residual of `cell` with perturbed variables and the resulting residual changes
        of its neighbours.
        """
        model = self.model
        state = model.fluid_state(cell, variables)
        storage = compute_storage(
            state,
            model.fluid_system,
            model.extension,
            self.config.conserve_surface_volume,
        )
        residual = model.grid.volumes[cell] * (storage - old_storage[cell]) / step_size
        residual -= compute_source(cell, model.sources[cell], state, model.extension)  # type: ignore[index]

        neighbour_changes: typing.Dict[int, npt.NDArray[np.floating]] = {}
        states = evaluation.fluid_states
        for face_index in self._faces_of[cell]:
            face = self._faces[face_index]
            if face.interior == cell:
                flux = self._face_flux(face_index, state, states[face.exterior])
                neighbour, sign = face.exterior, 1.0
            else:
                flux = self._face_flux(face_index, states[face.interior], state)
                neighbour, sign = face.interior, -1.0
            residual += sign * flux
            change = -sign * (flux - evaluation.face_fluxes[face_index])
            if neighbour in neighbour_changes:
                neighbour_changes[neighbour] += change
            else:
                neighbour_changes[neighbour] = change

        for boundary_index in self._boundary_faces_of[cell]:
            residual += self._boundary_flux(boundary_index, state)
        return residual, neighbour_changes

    def linearize(
        self,
        primary_variables: PrimaryVariableSet,
        old_storage: npt.NDArray[np.floating],
        step_size: float,
    ) -> typing.Tuple[npt.NDArray[np.floating], csr_matrix]:
        """
        Residual and Jacobian at the current primary variables.

        The Jacobian is built column by column from forward differences. Perturbing an
        unknown of a cell changes only the residuals of that cell and its neighbours.

        :param primary_variables: Primary variables of every cell.
        :param old_storage: Storage at the start of the time step, shape (num_cells, 4).
        :param step_size: Time step size (s).
        :return: The flat residual vector and the Jacobian in CSR format.
        """
        evaluation = self.evaluate(primary_variables, old_storage, step_size)
        num_equations = self.indices.num_equations
        components = self._components
        relative_perturbation = self.config.jacobian_perturbation
        jacobian = lil_matrix((self.num_unknowns, self.num_unknowns), dtype=np.float64)

        for cell, variables in enumerate(primary_variables):
            row = cell * num_equations
            for position, value in enumerate(primary_variables.cell_values(variables)):
                perturbation = max(abs(value), 1.0) * relative_perturbation
                perturbed = variables.copy()
                primary_variables.set_slot(perturbed, position, value + perturbation)
                residual, neighbour_changes = self._perturbed_cell_residual(
                    cell, perturbed, evaluation, old_storage, step_size
                )
                column = row + position
                derivative = (residual - evaluation.residual[cell]) / perturbation
                for equation, component in enumerate(components):
                    jacobian[row + equation, column] = derivative[component]
                for neighbour, change in neighbour_changes.items():
                    neighbour_row = neighbour * num_equations
                    for equation, component in enumerate(components):
                        jacobian[neighbour_row + equation, column] = (
                            change[component] / perturbation
                        )

        jacobian_csr = jacobian.tocsr()
        logger.debug(
            f"Assembled {self.num_unknowns}x{self.num_unknowns} Jacobian with {jacobian_csr.nnz} non-zeros"
        )
        return self.to_equations(evaluation.residual), jacobian_csr

    def weights(self, step_size: float) -> npt.NDArray[np.floating]:
        """
        Convergence weights of every equation.

        `dt / (pore_volume * reference_density)`, so a weighted residual reads as a
        saturation change. Salt equations use `dt / pore_volume`.
        """
        model = self.model
        fluid_system = model.fluid_system
        pore_volumes = model.pore_volumes()
        weights = np.zeros((model.num_cells, 4), dtype=np.float64)
        for cell in range(model.num_cells):
            region = int(model.pvt_regions[cell])  # type: ignore[index]
            densities = np.ones(4, dtype=np.float64)
            if not self.config.conserve_surface_volume:
                for phase in PHASES:
                    if fluid_system.phase_is_active(phase):
                        densities[phase.index] = fluid_system.reference_density(phase, region)
            densities[SALT_INDEX] = 1.0
            weights[cell] = step_size / (pore_volumes[cell] * densities)
        return self.to_equations(weights)
