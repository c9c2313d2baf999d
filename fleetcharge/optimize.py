# fleetcharge/optimize.py
"""
High-level interface for fleet charging optimization.
Provides simple API for single-target solves and target sweeps.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from .schema import FleetBundle, SolverSettings, SweepSettings
from .io import DataLoader, DataWriter, sweep_metadata
from .optimization.milp_interface import FleetDataInterface
from .optimization.milp_builder import FleetModelBuilder
from .optimization.solvers import SolveResult, get_backend, solve_with_retry
from .optimization.extractor import FleetSchedule, build_schedule, check_invariants
from .sweep import SweepDriver, SweepRow, sweep_table

logger = logging.getLogger(__name__)


class FleetOptimizer:
    """
    High-level optimizer for fleet charging and activity scheduling.

    Example:
        optimizer = FleetOptimizer.from_config('scenario.yaml')
        schedule = optimizer.optimize(target=0.6)
        table = optimizer.sweep()
        optimizer.save_results('sweep.csv')
    """

    def __init__(self, bundle: FleetBundle,
                 solver: Optional[SolverSettings] = None,
                 sweep: Optional[SweepSettings] = None):
        """
        Args:
            bundle: Validated FleetBundle
            solver: Solver settings (defaults apply when omitted)
            sweep: Default sweep targets
        """
        self.bundle = bundle
        self.solver = solver or SolverSettings()
        self.sweep_settings = sweep or SweepSettings()

        self.interface = FleetDataInterface(bundle)
        self.params = self.interface.to_milp_params()

        self.result: Optional[SolveResult] = None
        self.schedule: Optional[FleetSchedule] = None
        self.rows: List[SweepRow] = []

        for warning in self.interface.validate_milp_readiness():
            logger.warning(warning)

    @classmethod
    def from_config(cls, config_path: Union[str, Path],
                    prices_path: Optional[Union[str, Path]] = None) -> "FleetOptimizer":
        """
        Create optimizer from a configuration file.

        Args:
            config_path: Path to configuration YAML/JSON
            prices_path: Optional CSV overriding the configured prices
        """
        config = DataLoader.load_config(config_path, prices_path)
        return cls(config.to_bundle(), solver=config.solver, sweep=config.sweep)

    def optimize(self, target: float,
                 backend: Optional[str] = None,
                 time_limit: Optional[float] = None,
                 mip_gap: Optional[float] = None) -> Optional[FleetSchedule]:
        """
        Solve a single terminal target.

        Returns:
            FleetSchedule, or None when the solve produced no usable schedule
            (inspect self.result.status)
        """
        s = self.solver
        summary = self.interface.get_scenario_summary()
        logger.info(f"Optimizing {summary['scenario_id']} at terminal target {target:.0%}")

        fm = FleetModelBuilder(self.params).build(target)
        self.result = solve_with_retry(
            get_backend(backend or s.backend), fm.model,
            time_limit if time_limit is not None else s.time_limit,
            mip_gap if mip_gap is not None else s.mip_gap,
            s.retry_relax_factor,
        )

        if not self.result.is_success:
            logger.warning(f"No schedule: {self.result.status} ({self.result.message})")
            self.schedule = None
            return None

        assignment = fm.assignment(self.result)
        self.schedule = build_schedule(assignment, self.params)
        for violation in check_invariants(assignment, self.params):
            logger.warning(f"Invariant violated: {violation}")

        self._log_results_summary()
        return self.schedule

    def sweep(self, targets: Optional[Iterable[float]] = None,
              backend: Optional[str] = None,
              keep_schedules: bool = False,
              audit: bool = False) -> pd.DataFrame:
        """
        Run the terminal-target sweep and return the sensitivity table.

        Args:
            targets: Terminal fractions (defaults to the configured sweep)
            backend: Override the configured backend
            keep_schedules: Keep detail tables on successful rows
            audit: Check successful schedules against the scheduling rules
        """
        s = self.solver
        driver = SweepDriver(
            self.params,
            backend=backend or s.backend,
            time_limit=s.time_limit,
            mip_gap=s.mip_gap,
            max_workers=s.max_workers,
            solver_sessions=s.solver_sessions,
            relax_factor=s.retry_relax_factor,
            keep_schedules=keep_schedules,
            audit=audit,
        )
        targets = list(targets) if targets is not None else list(self.sweep_settings.targets)
        self.rows = list(driver.run(targets))
        return sweep_table(self.rows)

    def _log_results_summary(self):
        """Log summary of the last single-target solve."""
        if not self.schedule:
            return

        r = self.schedule.summary
        logger.info(f"Optimization complete: {self.result.status}")
        logger.info(f"  Objective value: {self.result.objective_value:,.2f}")
        logger.info(f"  Energy cost: {r.energy_cost:,.2f}")
        logger.info(f"  Delay: {r.delay_hours:g}h ({r.delay_cost:,.2f})")
        logger.info(f"  Off-hours: {r.off_hours_hours:g}h ({r.off_hours_cost:,.2f})")
        logger.info(f"  Solve time: {self.result.solve_time:.2f}s")

    def save_results(self, output_path: Union[str, Path],
                     format: str = "csv",
                     include_metadata: bool = True):
        """
        Save the last sweep table.

        Args:
            output_path: Where to save results
            format: Output format ('csv', 'json')
            include_metadata: Whether to include metadata
        """
        if not self.rows:
            raise ValueError("No results to save. Run sweep() first.")

        metadata = None
        if include_metadata:
            metadata = sweep_metadata(self.solver, self.interface.get_scenario_summary(),
                                      [row.target for row in self.rows])
        DataWriter.save_sweep(sweep_table(self.rows), output_path, format, metadata)

    def get_kpis(self) -> Dict[str, Any]:
        """
        Key figures of the last single-target schedule.

        Returns:
            Dictionary of KPIs
        """
        if not self.schedule:
            raise ValueError("No results available. Run optimize() first.")

        sched = self.schedule
        s = sched.summary
        charged_hours = int(sched.charging.to_numpy().sum())
        energy_kwh = float(sum(
            sched.charging.loc[r].sum() * self.params["P_r"][r] for r in sched.charging.index
        ))
        final_soc = sched.soc_fraction(self.params["C_r"]).iloc[:, -1]

        return {
            "total_cost": s.total_cost,
            "energy_cost": s.energy_cost,
            "delay_cost": s.delay_cost,
            "off_hours_cost": s.off_hours_cost,
            "penalty_share": s.penalty_share,
            "delay_hours": s.delay_hours,
            "off_hours_hours": s.off_hours_hours,
            "charger_utilization": charged_hours / self.params["T"],
            "energy_charged_kwh": energy_kwh,
            "avg_price_paid": s.energy_cost / energy_kwh if energy_kwh > 0 else 0.0,
            "min_final_soc": float(np.min(final_soc)),
        }


def quick_sweep(config_path: Union[str, Path],
                output_path: Optional[Union[str, Path]] = None,
                **kwargs) -> pd.DataFrame:
    """
    One-line sweep from a config file.

    Example:
        table = quick_sweep('scenario.yaml', 'sweep.csv', backend='highs')
    """
    optimizer = FleetOptimizer.from_config(config_path)
    table = optimizer.sweep(**kwargs)
    if output_path:
        optimizer.save_results(output_path)
    return table
