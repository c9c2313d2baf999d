# tests/test_extractor.py
"""Solved schedules: scheduling rules, cost breakdown and detail tables"""

from dataclasses import replace

import numpy as np
import pyomo.environ as pyo
import pytest
from pyomo.common.collections import ComponentMap

from fleetcharge.exceptions import ExtractionError
from fleetcharge.optimization.extractor import build_schedule, check_invariants, extract
from fleetcharge.optimization.milp_builder import build_model, violated_constraints
from fleetcharge.optimization.milp_interface import FleetDataInterface
from fleetcharge.optimization.solvers import SolveResult, SolveStatus

from conftest import create_test_bundle


def solve(params, backend, target):
    fm = build_model(params, target)
    result = backend.solve(fm.model, time_limit=60, mip_gap=0.0)
    return fm, result


@pytest.mark.parametrize("target", [0.2, 0.5])
def test_solution_respects_scheduling_rules(params, backend, target):
    fm, result = solve(params, backend, target)
    assert result.status == SolveStatus.OPTIMAL
    assignment = fm.assignment(result)

    assert check_invariants(assignment, params) == []

    # Spot-check the core rules directly on the arrays
    charge = np.rint(assignment.charge)
    engaged = np.rint(assignment.engaged)
    assert np.all(charge.sum(axis=0) <= 1)
    assert np.allclose(engaged.sum(axis=1), [3, 2, 4, 2])
    caps = np.array([60.0, 40.0])
    assert np.all(assignment.battery >= -1e-3)
    assert np.all(assignment.battery <= caps[:, None] + 1e-3)
    assert np.all(assignment.battery[:, -1] >= target * caps - 1e-3)

    # battery[t] = battery[t-1] + rate * charge[t] - consumption * engaged[t]
    rates = np.array([20.0, 10.0])
    use = np.array([10.0, 5.0])
    busy = np.vstack([engaged[0:2].sum(axis=0), engaged[2:4].sum(axis=0)])
    expected = assignment.battery[:, :-1] + rates[:, None] * charge[:, 1:] - use[:, None] * busy[:, 1:]
    assert np.allclose(assignment.battery[:, 1:], expected, atol=1e-3)


@pytest.mark.parametrize("target, energy", [(0.2, 1.0), (0.5, 1.6)])
def test_cost_breakdown(params, backend, target, energy):
    fm, result = solve(params, backend, target)
    summary = extract(fm.assignment(result), params)

    assert summary.energy_cost == pytest.approx(energy, abs=1e-6)
    assert summary.delay_hours == 0
    assert summary.off_hours_hours == 2
    assert summary.off_hours_cost == pytest.approx(2000.0)
    assert summary.penalties == pytest.approx(2000.0)
    assert summary.total_cost == pytest.approx(2000.0 + energy, abs=1e-6)
    assert summary.penalty_share == pytest.approx(2000.0 / (2000.0 + energy))


def test_late_finish_is_penalized(highs):
    # Seven hours of work in a window that only holds four: the second
    # activity must start at 12 and overrun its latest end by three hours
    fleet = [{"resource_id": "r0", "capacity_kwh": 60, "charge_rate_kw": 20,
              "consumption_kwh_per_hour": 5}]
    activities = [
        {"resource_id": "r0", "activity_id": 0, "earliest_start": 8, "latest_end": 12, "duration_hours": 4},
        {"resource_id": "r0", "activity_id": 1, "earliest_start": 8, "latest_end": 12, "duration_hours": 3},
    ]
    params = FleetDataInterface(create_test_bundle(fleet=fleet, activities=activities)).to_milp_params()

    fm, result = solve(params, highs, 0.2)
    assert result.status == SolveStatus.OPTIMAL
    assert result.objective_value == pytest.approx(3000.0, abs=1e-6)

    assignment = fm.assignment(result)
    assert np.rint(assignment.start).tolist() == [8, 12]
    assert check_invariants(assignment, params) == []

    summary = extract(assignment, params)
    assert summary.delay_hours == pytest.approx(3.0)
    assert summary.delay_cost == pytest.approx(3000.0)
    assert summary.energy_cost == pytest.approx(0.0, abs=1e-9)
    assert summary.off_hours_hours == 0
    assert summary.penalty_share == pytest.approx(1.0)

    acts = build_schedule(assignment, params).activities.set_index("activity_id")
    assert acts.loc[1, "delay_hours"] == pytest.approx(3.0)
    assert acts.loc[0, "delay_hours"] == 0


def test_cost_round_trip(params, highs):
    fm, result = solve(params, highs, 0.5)
    summary = extract(fm.assignment(result), params)

    assert summary.total_cost == pytest.approx(result.objective_value, abs=1e-6)
    m = fm.model
    assert pyo.value(m.energy_cost) == pytest.approx(summary.energy_cost, abs=1e-6)
    assert pyo.value(m.delay_cost) == pytest.approx(summary.delay_cost, abs=1e-6)
    assert pyo.value(m.off_hours_cost) == pytest.approx(summary.off_hours_cost, abs=1e-6)
    assert violated_constraints(m, tol=1e-5) == []


def test_resolve_is_idempotent(params, highs):
    fm, first = solve(params, highs, 0.2)
    second = highs.solve(fm.model, time_limit=60, mip_gap=0.0)
    assert second.objective_value == pytest.approx(first.objective_value, abs=1e-9)


def test_zero_cost_share(params):
    zero = {**params, "price_t": np.zeros(params["T"]), "w_outside": 0.0}
    fm = build_model(params, 0.2)
    values = ComponentMap((v, 0.0) for v in fm.model.component_data_objects(pyo.Var))
    assignment = fm.assignment(SolveResult(SolveStatus.FEASIBLE, values=values))
    summary = extract(assignment, zero)
    assert summary.total_cost == 0.0
    assert summary.penalty_share == 0.0


def test_extraction_rejects_unusable_results(params, highs):
    fm, result = solve(params, highs, 0.2)

    with pytest.raises(ExtractionError):
        fm.assignment(SolveResult(SolveStatus.INFEASIBLE))

    timed_out = fm.assignment(SolveResult(SolveStatus.TIMED_OUT, values=result.values))
    with pytest.raises(ExtractionError):
        extract(timed_out, params)
    with pytest.raises(ExtractionError):
        check_invariants(timed_out, params)


def test_invariant_audit_catches_tampering(params, highs):
    fm, result = solve(params, highs, 0.2)
    assignment = fm.assignment(result)

    battery = assignment.battery.copy()
    battery[0, 5] += 7.0
    violations = check_invariants(replace(assignment, battery=battery), params)
    assert any("recursion" in v for v in violations)

    charge = assignment.charge.copy()
    charge[:, 23] = 1.0
    violations = check_invariants(replace(assignment, charge=charge), params)
    assert any("more than one resource charging" in v for v in violations)


def test_schedule_tables(params, highs):
    fm, result = solve(params, highs, 0.2)
    schedule = build_schedule(fm.assignment(result), params)

    assert schedule.battery.shape == (2, 24)
    assert list(schedule.battery.index) == ["r0", "r1"]
    assert schedule.battery.loc["r0", 0] == pytest.approx(60.0)
    assert schedule.charging.to_numpy().sum() == 1

    timeline = schedule.charger_timeline()
    assert timeline[23] == "r0"
    assert timeline.drop(23).isna().all()

    acts = schedule.activities.set_index(["resource_id", "activity_id"])
    assert len(acts) == 4
    assert acts.loc[("r1", 1), "off_hours"] == 2
    assert (acts["delay_hours"] == 0).all()
    assert (acts["end"] - acts["start"]).tolist() == [3, 2, 4, 2]
    assert acts.loc[("r0", 1), "start"] >= acts.loc[("r0", 0), "end"]

    soc = schedule.soc_fraction(params["C_r"])
    assert soc.iloc[:, 0].tolist() == pytest.approx([1.0, 1.0])
