# fleetcharge/optimization/extractor.py
"""
Result extraction: turn a solved FleetAssignment into cost/penalty metrics,
detail tables, and an invariant audit.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping

import numpy as np
import pandas as pd

from ..exceptions import ExtractionError
from .milp_builder import FleetAssignment
from .solvers import SolveStatus

logger = logging.getLogger(__name__)

EXTRACTABLE = (SolveStatus.OPTIMAL, SolveStatus.FEASIBLE)


@dataclass(frozen=True)
class ScheduleSummary:
    """Cost breakdown of one solved schedule"""
    total_cost: float
    energy_cost: float
    delay_cost: float
    off_hours_cost: float
    delay_hours: float
    off_hours_hours: float
    penalty_share: float

    @property
    def penalties(self) -> float:
        return self.delay_cost + self.off_hours_cost


@dataclass
class FleetSchedule:
    """Summary plus per-resource and per-activity detail tables"""
    summary: ScheduleSummary
    battery: pd.DataFrame       # kWh, resources x hours
    charging: pd.DataFrame      # 0/1, resources x hours
    activities: pd.DataFrame    # one row per (resource, activity)

    def charger_timeline(self) -> pd.Series:
        """Resource occupying the charger in each hour (None when idle)"""
        occupied = self.charging.T
        return occupied.apply(lambda row: row.idxmax() if row.any() else None, axis=1)

    def soc_fraction(self, capacities: Mapping[Any, float]) -> pd.DataFrame:
        caps = pd.Series({r: capacities[r] for r in self.battery.index})
        return self.battery.div(caps, axis=0)


def _require_solution(assignment: FleetAssignment):
    if assignment.status not in EXTRACTABLE:
        raise ExtractionError(f"Cannot extract a schedule from status {assignment.status}")


def _lateness(assignment: FleetAssignment, params: Mapping[str, Any]) -> np.ndarray:
    start = np.rint(assignment.start)
    dur = np.array([params["D_ra"][ra] for ra in assignment.activities], dtype=float)
    le = np.array([params["LE_ra"][ra] for ra in assignment.activities], dtype=float)
    return np.maximum(0.0, start + dur - le)


def extract(assignment: FleetAssignment, params: Mapping[str, Any]) -> ScheduleSummary:
    """
    Compute the cost breakdown of a solved assignment.

    Metrics are recomputed from the schedule itself (charging hours, start
    times, engaged hours), not read back from the objective.

    Raises:
        ExtractionError: if the assignment does not come from an
            OPTIMAL or FEASIBLE solve
    """
    _require_solution(assignment)

    charge = np.rint(assignment.charge)
    engaged = np.rint(assignment.engaged)
    prices = np.asarray(params["price_t"], dtype=float)
    rates = np.array([params["P_r"][r] for r in assignment.resources], dtype=float)

    energy_cost = float(np.sum(charge * rates[:, None] * prices[None, :]))

    delay_hours = float(np.sum(_lateness(assignment, params)))
    off_mask = ~np.asarray(params["work_t"], dtype=bool)
    off_hours_hours = float(np.sum(engaged[:, off_mask])) if engaged.size else 0.0

    delay_cost = params["w_delay"] * delay_hours
    off_hours_cost = params["w_outside"] * off_hours_hours
    total_cost = energy_cost + delay_cost + off_hours_cost
    penalties = delay_cost + off_hours_cost

    summary = ScheduleSummary(
        total_cost=total_cost,
        energy_cost=energy_cost,
        delay_cost=delay_cost,
        off_hours_cost=off_hours_cost,
        delay_hours=delay_hours,
        off_hours_hours=off_hours_hours,
        penalty_share=penalties / total_cost if total_cost != 0 else 0.0,
    )

    logger.debug(f"Target {assignment.target:.0%}: total {total_cost:,.2f}, "
                 f"penalties {penalties:,.2f}")
    return summary


def build_schedule(assignment: FleetAssignment, params: Mapping[str, Any]) -> FleetSchedule:
    """Summary plus battery, charging and activity tables"""
    summary = extract(assignment, params)
    hours = pd.RangeIndex(params["T"], name="hour")
    resources = pd.Index(assignment.resources, name="resource_id")

    battery = pd.DataFrame(assignment.battery, index=resources, columns=hours)
    charging = pd.DataFrame(np.rint(assignment.charge).astype(int), index=resources, columns=hours)

    start = np.rint(assignment.start).astype(int)
    off_mask = ~np.asarray(params["work_t"], dtype=bool)
    rows = []
    for i, ra in enumerate(assignment.activities):
        engaged = np.rint(assignment.engaged[i])
        rows.append({
            "resource_id": ra[0],
            "activity_id": ra[1],
            "earliest_start": params["ES_ra"][ra],
            "latest_end": params["LE_ra"][ra],
            "start": int(start[i]),
            "end": int(start[i] + params["D_ra"][ra]),
            "delay_hours": max(0, int(start[i] + params["D_ra"][ra] - params["LE_ra"][ra])),
            "off_hours": int(engaged[off_mask].sum()),
        })
    activities = pd.DataFrame(rows, columns=[
        "resource_id", "activity_id", "earliest_start", "latest_end",
        "start", "end", "delay_hours", "off_hours",
    ])

    return FleetSchedule(summary=summary, battery=battery, charging=charging, activities=activities)


def check_invariants(assignment: FleetAssignment, params: Mapping[str, Any],
                     tol: float = 1e-3) -> List[str]:
    """
    Audit a solved assignment against the scheduling rules.

    Returns:
        Human-readable violations; empty when the schedule is valid
    """
    _require_solution(assignment)

    violations = []
    T = params["T"]
    charge = np.rint(assignment.charge)
    engaged = np.rint(assignment.engaged)
    battery = assignment.battery
    start = np.rint(assignment.start).astype(int)
    row_of = {ra: i for i, ra in enumerate(assignment.activities)}

    for i, r in enumerate(assignment.resources):
        cap = params["C_r"][r]
        rate = params["P_r"][r]
        use = params["E_r"][r]
        rows = [row_of[(r, a)] for a in params["A"][r]]
        busy = engaged[rows].sum(axis=0) if rows else np.zeros(T)
        b = battery[i]

        if abs(b[0] - params["SoC_0"] * cap) > tol:
            violations.append(f"{r}: initial battery {b[0]:.4f} != {params['SoC_0'] * cap:.4f}")

        expected = b[:-1] + rate * charge[i, 1:] - use * busy[1:]
        for t in np.flatnonzero(np.abs(b[1:] - expected) > tol) + 1:
            violations.append(f"{r}: battery recursion broken at hour {t}")

        for t in np.flatnonzero((b < -tol) | (b > cap + tol)):
            violations.append(f"{r}: battery {b[t]:.4f} outside [0, {cap}] at hour {t}")

        reserve = params["rho_r"][r] * cap
        for t in np.flatnonzero(b[:-1] < use * busy[1:] + reserve - tol):
            violations.append(f"{r}: forward reserve violated at hour {t}")

        for t in np.flatnonzero(busy > 1):
            violations.append(f"{r}: overlapping activities at hour {t}")
        for t in np.flatnonzero(charge[i] + busy > 1):
            violations.append(f"{r}: charging while engaged at hour {t}")

        if b[-1] < assignment.target * cap - tol:
            violations.append(f"{r}: final battery {b[-1]:.4f} below target {assignment.target * cap:.4f}")

    for t in np.flatnonzero(charge.sum(axis=0) > 1):
        violations.append(f"hour {t}: more than one resource charging")

    for k, ra in enumerate(assignment.activities):
        D = params["D_ra"][ra]
        s = start[k]
        if engaged[k].sum() != D:
            violations.append(f"{ra}: engaged {int(engaged[k].sum())}h, expected {D}h")
        if not params["ES_ra"][ra] <= s <= params["LE_ra"][ra] or s + D > T:
            violations.append(f"{ra}: start {s} outside its admissible window")
        window = np.zeros(T)
        window[max(s, 0):min(s + D, T)] = 1
        if not np.array_equal(engaged[k], window):
            violations.append(f"{ra}: engagement is not the block [{s}, {s + D})")

    for r in assignment.resources:
        acts = params["A"][r]
        for prev, nxt in zip(acts, acts[1:]):
            if start[row_of[r, nxt]] < start[row_of[r, prev]] + params["D_ra"][r, prev]:
                violations.append(f"{r}: activity {nxt} starts before {prev} finishes")

    return violations
