"""QP 기반 whole-body 역동역학 컨트롤러."""

from .contact import ContactInformation
from .controller import ControlStatus, QPController, check_momentum_balance
from .dynamics import MujocoDynamics, RobotDynamics
from .program import QuadraticProgram
from .qp_io import (
    BodyAcceleration,
    DesiredBodyAcceleration,
    QPInput,
    QPOutput,
    ResolvedContact,
    format_input,
    format_output,
)
from .solver import QPSolver, QPSolveResult

__all__ = [
    "BodyAcceleration",
    "ContactInformation",
    "ControlStatus",
    "DesiredBodyAcceleration",
    "MujocoDynamics",
    "QPController",
    "QPInput",
    "QPOutput",
    "QPSolveResult",
    "QPSolver",
    "QuadraticProgram",
    "ResolvedContact",
    "RobotDynamics",
    "check_momentum_balance",
    "format_input",
    "format_output",
]
