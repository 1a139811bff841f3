"""
*blackoil*

Fully implicit black-oil reservoir simulation core with primary variable switching.
"""

from ._precision import *  # noqa
from .constants import *  # noqa
from .types import *  # noqa
from .pvt import *  # noqa
from .capillary_pressures import *  # noqa
from .relperm import *  # noqa
from .boundary_conditions import *  # noqa
from .grids import *  # noqa
from .variables import *  # noqa
from .fluid_state import *  # noqa
from .extensions import *  # noqa
from .models import *  # noqa
from .switching import *  # noqa
from .local_residual import *  # noqa
from .assembly import *  # noqa
from .linear import *  # noqa
from .newton import *  # noqa
from .config import *  # noqa
from .timing import *  # noqa
from .states import *  # noqa
from .simulate import *  # noqa
from .utils import *  # noqa
