# tests/test_sweep.py
"""Terminal-target sweep: ordering, laziness, failure rows and concurrency"""

import json
import math
import threading
import time

import pytest

from fleetcharge.exceptions import ModelConstructionError
from fleetcharge.optimize import FleetOptimizer
from fleetcharge.optimization.solvers import SolveResult, SolverBackend, SolveStatus
from fleetcharge.schema import SolverSettings, SweepSettings
from fleetcharge.sweep import TABLE_COLUMNS, SweepDriver, format_table, sweep, sweep_table


def target_of(model):
    return float(model.name.rsplit("soc", 1)[1])


class CountingBackend(SolverBackend):
    """Answers every solve with a fixed status and counts the calls"""

    name = "counting"

    def __init__(self, status=SolveStatus.INFEASIBLE, objective=None):
        self.status = status
        self.objective = objective
        self.calls = 0
        self._lock = threading.Lock()

    def solve(self, model, time_limit=None, mip_gap=None):
        with self._lock:
            self.calls += 1
        return SolveResult(self.status, objective_value=self.objective, message="scripted")


class SlowEchoBackend(SolverBackend):
    """
    Times out with objective = 100 * target. Low targets take longest, so
    concurrent completions arrive in reverse order.
    """

    name = "slow-echo"

    def __init__(self):
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def solve(self, model, time_limit=None, mip_gap=None):
        target = target_of(model)
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(0.25 * (1.0 - target) + 0.02)
        finally:
            with self._lock:
                self.active -= 1
        return SolveResult(SolveStatus.TIMED_OUT, objective_value=100 * target, solve_time=time_limit or 0.0)


def highs_driver(params, **kwargs):
    return SweepDriver(params, backend="highs", time_limit=60, mip_gap=0.0, **kwargs)


def test_sweep_with_highs(params):
    rows = list(highs_driver(params).run([0.2, 0.5, 1.0]))

    assert [row.target for row in rows] == [0.2, 0.5, 1.0]
    assert [row.status for row in rows] == [SolveStatus.OPTIMAL, SolveStatus.OPTIMAL,
                                            SolveStatus.INFEASIBLE]
    assert rows[0].summary.total_cost == pytest.approx(2001.0, abs=1e-6)
    assert rows[1].summary.total_cost == pytest.approx(2001.6, abs=1e-6)
    assert rows[2].failed and rows[2].reason == "infeasible"

    table = sweep_table(rows)
    assert list(table.columns) == TABLE_COLUMNS
    assert table["Status"].tolist() == ["OPTIMAL", "OPTIMAL", "INFEASIBLE"]
    assert table.loc[0, "Off-hours (h)"] == 2
    assert table.loc[0, "Delay (h)"] == 0
    assert table.loc[1, "Penalties"] == pytest.approx(2000.0)
    assert math.isnan(table.loc[2, "Total Cost"])
    assert math.isnan(table.loc[2, "Penalty Share"])
    assert table["Reason"].isna()[:2].all()


def test_cost_is_monotone_in_target(params):
    rows = list(highs_driver(params).run([0.1, 0.2, 0.3, 0.4, 0.5]))
    costs = [row.summary.total_cost for row in rows]
    assert all(a <= b + 1e-6 for a, b in zip(costs, costs[1:]))


def test_sweep_is_restartable(params):
    driver = highs_driver(params)
    first = sweep_table(driver.run([0.2, 1.0]))
    second = sweep_table(driver.run([0.2, 1.0]))
    assert first.equals(second)


def test_bad_target_rejected_before_any_solve(params):
    backend = CountingBackend()
    driver = SweepDriver(params, backend=backend)
    with pytest.raises(ModelConstructionError):
        driver.run([0.2, 1.5])
    with pytest.raises(ModelConstructionError):
        sweep(params, [0.5, float("nan")], backend=backend, max_workers=4)
    assert backend.calls == 0


def test_rows_are_lazy(params):
    backend = CountingBackend()
    rows = SweepDriver(params, backend=backend).run([0.2, 0.4, 0.6])
    assert backend.calls == 0
    first = next(rows)
    assert backend.calls == 1
    assert first.target == 0.2 and first.status == SolveStatus.INFEASIBLE


def test_concurrent_rows_keep_target_order(params):
    backend = SlowEchoBackend()
    targets = [0.2, 0.4, 0.6, 0.8, 1.0]
    rows = list(sweep(params, targets, backend=backend, max_workers=5, solver_sessions=5))

    assert [row.target for row in rows] == targets
    assert [row.objective_value for row in rows] == pytest.approx([20, 40, 60, 80, 100])
    assert backend.peak > 1


def test_solver_sessions_cap_concurrency(params):
    backend = SlowEchoBackend()
    rows = list(sweep(params, [0.2, 0.3, 0.4, 0.5, 0.6, 0.7], backend=backend,
                      max_workers=6, solver_sessions=2))
    assert len(rows) == 6
    assert 1 <= backend.peak <= 2


def test_timed_out_row_keeps_incumbent(params):
    backend = CountingBackend(SolveStatus.TIMED_OUT, objective=123.0)
    row = next(sweep(params, [0.3], backend=backend))
    assert row.failed and row.reason == "timed_out"

    record = row.as_record()
    assert record["Status"] == "TIMED_OUT"
    assert record["Objective"] == 123.0
    assert math.isnan(record["Total Cost"])


def test_solver_error_is_retried_once(params):
    backend = CountingBackend(SolveStatus.SOLVER_ERROR)
    rows = list(sweep(params, [0.2, 0.4], backend=backend))
    assert [row.attempts for row in rows] == [2, 2]
    assert backend.calls == 4
    assert {row.reason for row in rows} == {"solver_error"}


def test_concurrent_highs_matches_sequential(params):
    targets = [1.0, 0.2, 0.5]
    sequential = sweep_table(highs_driver(params).run(targets))
    concurrent = sweep_table(highs_driver(params, max_workers=3, solver_sessions=3).run(targets))

    assert concurrent["Final SOC"].tolist() == targets
    assert concurrent["Status"].tolist() == ["INFEASIBLE", "OPTIMAL", "OPTIMAL"]
    assert concurrent["Total Cost"].tolist()[1:] == pytest.approx(sequential["Total Cost"].tolist()[1:])


def test_audit_and_schedules(params):
    rows = list(highs_driver(params, keep_schedules=True, audit=True).run([0.5]))
    assert rows[0].violations == ()
    assert rows[0].schedule.charging.to_numpy().sum() == 2


def test_format_table(params):
    rows = list(highs_driver(params).run([0.2, 1.0]))
    text = format_table(sweep_table(rows))
    assert "20%" in text and "100%" in text
    assert "failed" in text
    assert "2,001.00" in text


def test_driver_rejects_bad_pool_sizes(params):
    with pytest.raises(ValueError):
        SweepDriver(params, backend="highs", max_workers=0)
    with pytest.raises(ValueError):
        SweepDriver(params, backend="highs", solver_sessions=0)


class TestFleetOptimizer:
    """High-level optimizer"""

    @pytest.fixture
    def optimizer(self, bundle):
        return FleetOptimizer(bundle, solver=SolverSettings(backend="highs", time_limit=60, mip_gap=0.0))

    def test_optimize_and_kpis(self, optimizer):
        schedule = optimizer.optimize(0.5)
        assert schedule is not None
        assert optimizer.result.status == SolveStatus.OPTIMAL

        kpis = optimizer.get_kpis()
        assert kpis["total_cost"] == pytest.approx(2001.6, abs=1e-6)
        assert kpis["energy_charged_kwh"] == pytest.approx(30.0)
        assert kpis["avg_price_paid"] == pytest.approx(1.6 / 30.0)
        assert kpis["charger_utilization"] == pytest.approx(2 / 24)
        assert kpis["min_final_soc"] >= 0.5 - 1e-6

    def test_infeasible_target(self, optimizer):
        assert optimizer.optimize(1.0) is None
        assert optimizer.result.status == SolveStatus.INFEASIBLE
        with pytest.raises(ValueError):
            optimizer.get_kpis()

    def test_sweep_and_save(self, optimizer, tmp_path):
        with pytest.raises(ValueError):
            optimizer.save_results(tmp_path / "sweep.csv")

        table = optimizer.sweep([0.2, 1.0])
        assert table["Status"].tolist() == ["OPTIMAL", "INFEASIBLE"]

        optimizer.save_results(tmp_path / "sweep.csv")
        assert (tmp_path / "sweep.csv").exists()
        meta = json.loads((tmp_path / "sweep.meta.json").read_text())
        assert meta["targets"] == [0.2, 1.0]
        assert meta["solver"]["backend"] == "highs"
        assert meta["scenario"]["scenario_id"] == "2res_4act_24h"

    def test_default_targets_come_from_settings(self, bundle):
        optimizer = FleetOptimizer(bundle, solver=SolverSettings(backend="highs", time_limit=60),
                                   sweep=SweepSettings(targets=[0.3]))
        table = optimizer.sweep()
        assert table["Final SOC"].tolist() == [0.3]
