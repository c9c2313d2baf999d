# examples/basic_sweep.py
"""Example of using the fleet charging API: one schedule, then a target sweep"""

import sys
from pathlib import Path

import numpy as np

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fleetcharge import FleetBundle, FleetOptimizer, Horizon, SolverSettings
from fleetcharge.sweep import format_table


def create_day_ahead_prices(hours=48):
    """Two days of hourly prices: cheap nights, morning and evening peaks"""
    h = np.arange(hours) % 24
    prices = 0.20 + 0.05 * np.exp(-((h - 8) ** 2) / 8) + 0.09 * np.exp(-((h - 19) ** 2) / 6)
    prices[(h < 5) | (h >= 23)] -= 0.07
    return np.round(prices, 4)


def main():
    """Run a two-day, three-vehicle example with HiGHS"""

    print("=== Fleet Charging Example ===\n")

    HOURS = 48

    fleet = [
        {"resource_id": "van1", "capacity_kwh": 75, "charge_rate_kw": 22, "consumption_kwh_per_hour": 9},
        {"resource_id": "van2", "capacity_kwh": 60, "charge_rate_kw": 11, "consumption_kwh_per_hour": 7},
        {"resource_id": "truck", "capacity_kwh": 120, "charge_rate_kw": 22, "consumption_kwh_per_hour": 15},
    ]

    activities = [
        {"resource_id": "van1", "activity_id": 0, "earliest_start": 6, "latest_end": 16, "duration_hours": 6},
        {"resource_id": "van1", "activity_id": 1, "earliest_start": 30, "latest_end": 40, "duration_hours": 5},
        {"resource_id": "van2", "activity_id": 0, "earliest_start": 8, "latest_end": 14, "duration_hours": 4},
        {"resource_id": "truck", "activity_id": 0, "earliest_start": 6, "latest_end": 15, "duration_hours": 7},
        {"resource_id": "truck", "activity_id": 1, "earliest_start": 30, "latest_end": 38, "duration_hours": 6},
    ]

    bundle = FleetBundle.load(
        fleet=fleet,
        activities=activities,
        prices=create_day_ahead_prices(HOURS),
        horizon=Horizon(hours=HOURS, work_start_hour=6, work_end_hour=16),
        reserve_margin=0.04,
    )

    print(f"Horizon: {HOURS} hours, work band 06-16")
    print(f"Fleet: {len(bundle.fleet)} resources, {len(bundle.activities)} activities\n")

    optimizer = FleetOptimizer(bundle, solver=SolverSettings(backend="highs", time_limit=60, mip_gap=0.0))

    # Single schedule
    print("Solving for a 60% terminal target...")
    schedule = optimizer.optimize(target=0.6)
    if schedule is None:
        print(f"No schedule: {optimizer.result.status}")
        return

    kpis = optimizer.get_kpis()
    print("\n=== Cost Summary ===")
    print(f"Total cost:           {kpis['total_cost']:10.2f}")
    print(f"Energy cost:          {kpis['energy_cost']:10.2f}")
    print(f"Delay penalties:      {kpis['delay_cost']:10.2f}")
    print(f"Off-hours penalties:  {kpis['off_hours_cost']:10.2f}")
    print(f"Charger utilization:  {kpis['charger_utilization']:10.1%}")
    print(f"Average price paid:   {kpis['avg_price_paid']:10.4f} per kWh")

    print("\n=== Activities ===")
    print(schedule.activities.to_string(index=False))

    print("\n=== Charger (first 24 hours) ===")
    timeline = schedule.charger_timeline()
    for h in range(24):
        print(f" {h:2d} | {timeline[h] or '-'}")

    # Sensitivity sweep
    print("\nSweeping terminal targets...")
    table = optimizer.sweep([0.2, 0.4, 0.6, 0.8, 1.0])
    print(format_table(table))

    print("\nSaving results...")
    optimizer.save_results("example_sweep.csv")

    print("\nExample completed successfully!")


if __name__ == "__main__":
    main()
