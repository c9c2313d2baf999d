"""
Fleet Charging Optimization
Joint charging and activity scheduling for battery-powered fleets with MILP.
"""

__version__ = "0.1.0"

# Main API exports
from .exceptions import DataError, ModelConstructionError, ExtractionError
from .schema import (Horizon, TimeSlot, Resource, Activity, PenaltyWeights,
                     SolverSettings, SweepSettings, FleetBundle, ScenarioConfig)
from .optimize import FleetOptimizer, quick_sweep
from .sweep import SweepDriver, SweepRow, sweep, sweep_table
from .io import DataLoader, DataWriter, generate_template

# Convenience imports
from .optimization.milp_interface import FleetDataInterface, load_parameters
from .utils.validators import validate_fleet_bundle, generate_validation_report

__all__ = [
    "DataError",
    "ModelConstructionError",
    "ExtractionError",
    "Horizon",
    "TimeSlot",
    "Resource",
    "Activity",
    "PenaltyWeights",
    "SolverSettings",
    "SweepSettings",
    "FleetBundle",
    "ScenarioConfig",
    "FleetOptimizer",
    "quick_sweep",
    "SweepDriver",
    "SweepRow",
    "sweep",
    "sweep_table",
    "DataLoader",
    "DataWriter",
    "generate_template",
    "FleetDataInterface",
    "load_parameters",
    "validate_fleet_bundle",
    "generate_validation_report",
]
