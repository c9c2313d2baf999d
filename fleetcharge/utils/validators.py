"""
Data validation utilities for fleet scheduling.
Complements the structural checks in FleetBundle with softer plausibility
checks that predict infeasible or penalty-dominated runs.
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from ..exceptions import DataError
from ..optimization.milp_interface import FleetDataInterface
from ..schema import FleetBundle

logger = logging.getLogger(__name__)

MAX_PRICE = 10.0            # per kWh
LONG_WINDOW_HOURS = 48


class DataValidator:
    """Plausibility validation for FleetBundle scenarios."""

    def __init__(self, strict: bool = True):
        """
        Initialize validator.

        Args:
            strict: If True, raise DataError on errors. If False, only collect them.
        """
        self.strict = strict
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate_fleet_bundle(self, bundle: FleetBundle) -> Tuple[bool, List[str], List[str]]:
        """
        Validate a FleetBundle.

        Returns:
            Tuple of (is_valid, errors, warnings)
        """
        self.errors = []
        self.warnings = []

        self._validate_prices(bundle)
        self._validate_energy_balance(bundle)
        self._validate_charger_load(bundle)
        self._validate_activity_windows(bundle)
        self.errors.extend(FleetDataInterface(bundle).validate_milp_readiness())

        is_valid = len(self.errors) == 0

        if not is_valid and self.strict:
            raise DataError(f"Validation failed with {len(self.errors)} errors:\n" +
                            "\n".join(self.errors))

        return is_valid, self.errors, self.warnings

    def _validate_prices(self, bundle: FleetBundle):
        prices = bundle.price_array
        if np.any(~np.isfinite(prices)):
            self.errors.append("prices contain NaN or infinite values")
            return
        if np.any(prices < 0):
            self.warnings.append(f"{int(np.sum(prices < 0))} hours with negative prices")
        if np.any(np.abs(prices) > MAX_PRICE):
            self.warnings.append(f"prices exceed {MAX_PRICE} per kWh")

    def _validate_energy_balance(self, bundle: FleetBundle):
        """Engagement energy must be coverable by the battery plus charging in idle hours"""
        for r in bundle.fleet:
            acts = bundle.activities_for(r.resource_id)
            engaged = sum(a.duration_hours for a in acts)
            need = engaged * r.consumption_kwh_per_hour
            usable = r.capacity_kwh * (1 - bundle.reserve_for(r.resource_id))
            rechargeable = (bundle.T - engaged) * r.charge_rate_kw

            if need > usable + rechargeable:
                self.errors.append(
                    f"resource {r.resource_id!r} needs {need:.0f} kWh but can store and "
                    f"recharge at most {usable + rechargeable:.0f} kWh"
                )
            elif need > usable:
                self.warnings.append(
                    f"resource {r.resource_id!r} must recharge between activities "
                    f"({need:.0f} kWh needed, {usable:.0f} kWh usable)"
                )

    def _validate_charger_load(self, bundle: FleetBundle):
        """Full recharge of the whole fleet should fit on the single charger"""
        hours = sum(r.capacity_kwh / r.charge_rate_kw for r in bundle.fleet)
        if hours > bundle.T:
            self.warnings.append(
                f"recharging every battery from empty needs {hours:.0f} charger hours, "
                f"horizon has {bundle.T}"
            )

    def _validate_activity_windows(self, bundle: FleetBundle):
        mask = bundle.horizon.work_mask()
        for a in bundle.activities:
            width = a.latest_end - a.earliest_start
            if width > LONG_WINDOW_HOURS:
                self.warnings.append(
                    f"activity {a.activity_id} of {a.resource_id!r} has a {width}h window; "
                    f"expect a large start-selection model"
                )
            end = min(a.latest_end, bundle.T)
            if not mask[a.earliest_start:end].any():
                self.warnings.append(
                    f"activity {a.activity_id} of {a.resource_id!r} lies entirely outside "
                    f"work hours; off-hours penalties are unavoidable"
                )


def validate_fleet_bundle(bundle: FleetBundle, strict: bool = True) -> bool:
    """
    Convenience function to validate a FleetBundle.

    Returns:
        True if valid, False otherwise
    """
    validator = DataValidator(strict=strict)
    is_valid, errors, warnings = validator.validate_fleet_bundle(bundle)

    for warning in warnings:
        logger.warning(warning)
    for error in errors:
        logger.error(error)

    return is_valid


def generate_validation_report(bundle: FleetBundle,
                               output_path: Optional[Path] = None) -> str:
    """
    Generate a text validation report.

    Args:
        bundle: FleetBundle to analyze
        output_path: Optional path to save report

    Returns:
        Report as string
    """
    validator = DataValidator(strict=False)
    is_valid, errors, warnings = validator.validate_fleet_bundle(bundle)
    summary = FleetDataInterface(bundle).get_scenario_summary()

    lines = [
        "=" * 60,
        "FLEET SCHEDULING DATA VALIDATION REPORT",
        "=" * 60,
        f"Generated: {pd.Timestamp.now()}",
        "",
        "SCENARIO SUMMARY",
        "-" * 40,
        f"Scenario: {summary['scenario_id']}",
        f"Horizon: {summary['horizon_hours']} hours, work band {summary['work_band']}",
        f"Resources: {summary['num_resources']} ({summary['total_capacity_kwh']:.0f} kWh total)",
        f"Activities: {summary['num_activities']} ({summary['total_engaged_hours']} engaged hours)",
        f"Prices: {summary['min_price']:.4f} - {summary['max_price']:.4f} "
        f"(avg {summary['avg_price']:.4f})",
        f"Estimated binaries: {summary['estimated_binaries']}",
        "",
        "FLEET",
        "-" * 40,
    ]
    for r in bundle.fleet:
        lines.append(f"  - {r.resource_id}: {r.capacity_kwh:g} kWh, {r.charge_rate_kw:g} kW, "
                     f"{r.consumption_kwh_per_hour:g} kWh/h, "
                     f"{len(bundle.activities_for(r.resource_id))} activities")
    lines.append("")

    lines.extend([
        "VALIDATION RESULTS",
        "-" * 40,
        f"Status: {'VALID' if is_valid else 'INVALID'}",
        f"Errors: {len(errors)}",
        f"Warnings: {len(warnings)}",
        "",
    ])

    if errors:
        lines.extend(["ERRORS (must fix)", "-" * 40])
        lines.extend(f"  x {error}" for error in errors)
        lines.append("")

    if warnings:
        lines.extend(["WARNINGS (review)", "-" * 40])
        lines.extend(f"  ! {warning}" for warning in warnings)
        lines.append("")

    report = "\n".join(lines)

    if output_path:
        Path(output_path).write_text(report)
        logger.info(f"Validation report saved to {output_path}")

    return report
