"""
MILP core for fleet charging and activity scheduling.
"""

from .milp_interface import FleetDataInterface, load_parameters
from .milp_builder import (FleetAssignment, FleetModel, FleetModelBuilder, build_model,
                           model_size, violated_constraints)
from .solvers import (SolveResult, SolveStatus, SolverBackend, GurobiBackend,
                      HighsBackend, get_backend, solve_with_retry)
from .extractor import FleetSchedule, ScheduleSummary, build_schedule, check_invariants, extract

__all__ = [
    "FleetDataInterface",
    "load_parameters",
    "FleetAssignment",
    "FleetModel",
    "FleetModelBuilder",
    "build_model",
    "model_size",
    "violated_constraints",
    "SolveResult",
    "SolveStatus",
    "SolverBackend",
    "GurobiBackend",
    "HighsBackend",
    "get_backend",
    "solve_with_retry",
    "FleetSchedule",
    "ScheduleSummary",
    "build_schedule",
    "check_invariants",
    "extract",
]
