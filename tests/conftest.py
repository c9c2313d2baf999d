# tests/conftest.py
"""
Shared fixtures: a 24-hour, two-resource, four-activity scenario small enough
for HiGHS (and a size-limited Gurobi license) to solve to proven optimality.

Hand-checked optimum (w_delay = w_outside = 1000):
    target 0.2 -> r0 charges once in hour 23            energy 1.0, total 2001.0
    target 0.5 -> r0 in hour 23, r1 in hour 22           energy 1.6, total 2001.6
    target 1.0 -> infeasible: r0 ends at 10 + 20k kWh, never exactly 60
Activity (r1, 1) lies entirely outside work hours, so off-hours is always 2h.
"""

import sys
from pathlib import Path

import numpy as np
import pyomo.environ as pyo
import pytest

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fleetcharge.schema import FleetBundle, Horizon
from fleetcharge.optimization.milp_interface import FleetDataInterface
from fleetcharge.optimization.solvers import GurobiBackend, HighsBackend, SolveStatus

HOURS = 24

FLEET = [
    {"resource_id": "r0", "capacity_kwh": 60, "charge_rate_kw": 20, "consumption_kwh_per_hour": 10},
    {"resource_id": "r1", "capacity_kwh": 40, "charge_rate_kw": 10, "consumption_kwh_per_hour": 5},
]

ACTIVITIES = [
    {"resource_id": "r0", "activity_id": 0, "earliest_start": 8, "latest_end": 14, "duration_hours": 3},
    {"resource_id": "r0", "activity_id": 1, "earliest_start": 12, "latest_end": 20, "duration_hours": 2},
    {"resource_id": "r1", "activity_id": 0, "earliest_start": 6, "latest_end": 12, "duration_hours": 4},
    {"resource_id": "r1", "activity_id": 1, "earliest_start": 18, "latest_end": 23, "duration_hours": 2},
]


def create_test_prices():
    """Flat 0.20 day, cheaper night, two cheapest hours at the end"""
    prices = np.full(HOURS, 0.20)
    prices[0:6] = 0.12
    prices[22] = 0.06
    prices[23] = 0.05
    return prices


def create_test_bundle(**overrides) -> FleetBundle:
    """Minimal FleetBundle for the two-resource scenario"""
    kwargs = dict(
        fleet=FLEET,
        activities=ACTIVITIES,
        prices=create_test_prices(),
        horizon=Horizon(hours=HOURS),
        reserve_margin=0.04,
    )
    kwargs.update(overrides)
    return FleetBundle.load(**kwargs)


@pytest.fixture
def bundle():
    return create_test_bundle()


@pytest.fixture
def params(bundle):
    return FleetDataInterface(bundle).to_milp_params()


@pytest.fixture
def highs():
    return HighsBackend()


@pytest.fixture(scope="session")
def gurobi_backend():
    """Gurobi backend, skipped when no usable license is present"""
    backend = GurobiBackend()
    probe = pyo.ConcreteModel(name="license_probe")
    probe.x = pyo.Var(bounds=(0, 1))
    probe.objective = pyo.Objective(expr=probe.x)
    result = backend.solve(probe)
    if result.status == SolveStatus.SOLVER_ERROR:
        pytest.skip(f"Gurobi unavailable: {result.message}")
    return backend


@pytest.fixture(params=["highs", "gurobi"])
def backend(request):
    if request.param == "gurobi":
        return request.getfixturevalue("gurobi_backend")
    return HighsBackend()
