# fleetcharge/sweep.py
"""
Sensitivity sweep over the end-of-horizon battery target.

Each target runs its own build -> solve -> extract pipeline on a clean model.
Rows come back lazily and always in the caller's target order, whether the
points are solved one by one or concurrently.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .optimization.extractor import FleetSchedule, ScheduleSummary, build_schedule, check_invariants
from .optimization.milp_builder import FleetModelBuilder, validate_target
from .optimization.solvers import SolverBackend, SolveStatus, get_backend, solve_with_retry

logger = logging.getLogger(__name__)

TABLE_COLUMNS = [
    "Final SOC", "Total Cost", "Delay (h)", "Off-hours (h)",
    "Penalties", "Penalty Share", "Status", "Reason", "Objective",
]


@dataclass(frozen=True)
class SweepRow:
    """Outcome of one sweep point, tagged with its target"""
    target: float
    status: SolveStatus
    summary: Optional[ScheduleSummary] = None
    reason: Optional[str] = None                # set on failed rows only
    objective_value: Optional[float] = None     # incumbent for timed-out rows
    solve_time: float = 0.0
    attempts: int = 1
    schedule: Optional[FleetSchedule] = None
    violations: Tuple[str, ...] = ()

    @property
    def failed(self) -> bool:
        return self.summary is None

    def as_record(self) -> dict:
        """One line of the sensitivity table; metrics are NaN on failed rows"""
        s = self.summary
        nan = float("nan")
        return {
            "Final SOC": self.target,
            "Total Cost": s.total_cost if s else nan,
            "Delay (h)": s.delay_hours if s else nan,
            "Off-hours (h)": s.off_hours_hours if s else nan,
            "Penalties": s.penalties if s else nan,
            "Penalty Share": s.penalty_share if s else nan,
            "Status": self.status.name,
            "Reason": self.reason,
            "Objective": self.objective_value if self.objective_value is not None else nan,
        }


class SweepDriver:
    """
    Runs the scheduling model for a list of terminal targets.

    Example:
        driver = SweepDriver(params, backend="highs", time_limit=60)
        table = sweep_table(driver.run([0.2, 0.6, 1.0]))
    """

    def __init__(self,
                 params: Mapping[str, Any],
                 backend: Union[str, SolverBackend] = "gurobi",
                 time_limit: Optional[float] = 300.0,
                 mip_gap: Optional[float] = 0.001,
                 max_workers: int = 1,
                 solver_sessions: int = 1,
                 relax_factor: float = 2.0,
                 keep_schedules: bool = False,
                 audit: bool = False):
        """
        Args:
            params: Read-only snapshot from FleetDataInterface.to_milp_params()
            backend: Backend name or instance
            time_limit: Per-solve time limit in seconds
            mip_gap: Relative MIP gap
            max_workers: Sweep points evaluated concurrently
            solver_sessions: Concurrent solver calls allowed (license capacity)
            relax_factor: Time limit multiplier for the single solver-error retry
            keep_schedules: Attach detail tables to successful rows
            audit: Check every successful schedule against the scheduling rules
        """
        if max_workers < 1 or solver_sessions < 1:
            raise ValueError("max_workers and solver_sessions must be at least 1")

        self.params = params
        self.backend = get_backend(backend)
        self.time_limit = time_limit
        self.mip_gap = mip_gap
        self.max_workers = max_workers
        self.relax_factor = relax_factor
        self.keep_schedules = keep_schedules
        self.audit = audit

        self.builder = FleetModelBuilder(params)
        # pyomo component construction is not thread-safe
        self._build_lock = threading.Lock()
        self._sessions = threading.BoundedSemaphore(solver_sessions)

    def run(self, targets: Iterable[float]) -> Iterator[SweepRow]:
        """
        Validate all targets, then return a lazy iterator of rows in target order.

        Raises:
            ModelConstructionError: immediately, before any solve, for a bad target
        """
        targets = [validate_target(t) for t in targets]
        logger.info(f"Sweeping {len(targets)} targets with {self.backend.name} "
                    f"({self.max_workers} worker(s))")
        if self.max_workers == 1:
            return (self.solve_point(t) for t in targets)
        return self._run_concurrent(targets)

    def _run_concurrent(self, targets: List[float]) -> Iterator[SweepRow]:
        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="sweep")
        try:
            futures = [pool.submit(self.solve_point, t) for t in targets]
            # Yield in submission order regardless of completion order
            for future in futures:
                yield future.result()
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

    def solve_point(self, target: float) -> SweepRow:
        """Build, solve and extract one sweep point"""
        with self._build_lock:
            fm = self.builder.build(target)

        with self._sessions:
            result = solve_with_retry(self.backend, fm.model, self.time_limit,
                                      self.mip_gap, self.relax_factor)

        if not result.is_success:
            reason = result.status.value
            logger.warning(f"Target {target:.0%} failed: {reason} ({result.message})")
            return SweepRow(
                target=target,
                status=result.status,
                reason=reason,
                objective_value=result.objective_value,
                solve_time=result.solve_time,
                attempts=result.attempts,
            )

        assignment = fm.assignment(result)
        schedule = build_schedule(assignment, self.params)
        summary = schedule.summary
        logger.info(f"Target {target:.0%}: {result.status}, total cost {summary.total_cost:,.2f}, "
                    f"delay {summary.delay_hours:g}h, off-hours {summary.off_hours_hours:g}h")

        violations = ()
        if self.audit:
            violations = tuple(check_invariants(assignment, self.params))
            for violation in violations:
                logger.warning(f"Target {target:.0%}: {violation}")

        return SweepRow(
            target=target,
            status=result.status,
            summary=summary,
            objective_value=result.objective_value,
            solve_time=result.solve_time,
            attempts=result.attempts,
            schedule=schedule if self.keep_schedules else None,
            violations=violations,
        )


def sweep(params: Mapping[str, Any], targets: Iterable[float], **kwargs) -> Iterator[SweepRow]:
    """Lazy, ordered sweep; see SweepDriver for keyword arguments"""
    return SweepDriver(params, **kwargs).run(targets)


def sweep_table(rows: Iterable[SweepRow]) -> pd.DataFrame:
    """Render sweep rows as the sensitivity table"""
    records = [row.as_record() for row in rows]
    df = pd.DataFrame(records, columns=TABLE_COLUMNS)
    numeric = ["Final SOC", "Total Cost", "Delay (h)", "Off-hours (h)",
               "Penalties", "Penalty Share", "Objective"]
    df[numeric] = df[numeric].astype(float)
    return df


def format_table(df: pd.DataFrame) -> str:
    """Console rendering: percentages for targets and shares, NaN as 'failed'"""
    view = df.copy()
    view["Final SOC"] = (view["Final SOC"] * 100).map(lambda v: f"{v:.0f}%")
    view["Penalty Share"] = view["Penalty Share"].map(
        lambda v: "failed" if np.isnan(v) else f"{v:.1%}")
    for col in ["Total Cost", "Penalties", "Objective"]:
        view[col] = view[col].map(lambda v: "-" if np.isnan(v) else f"{v:,.2f}")
    for col in ["Delay (h)", "Off-hours (h)"]:
        view[col] = view[col].map(lambda v: "-" if np.isnan(v) else f"{v:g}")
    view["Reason"] = view["Reason"].fillna("")
    return view.to_string(index=False)
