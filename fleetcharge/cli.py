#!/usr/bin/env python3
"""
Command-line interface for fleet charging optimization.
Provides convenient commands for common operations.
"""

import logging
import sys
from pathlib import Path

import click
import pandas as pd

from . import __version__
from .exceptions import DataError
from .io import DataLoader, DataWriter, generate_template, synthetic_prices
from .optimization.registry import SYMBOLS, VARIABLES
from .optimize import FleetOptimizer
from .schema import FleetBundle
from .sweep import format_table
from .utils.validators import DataValidator, generate_validation_report

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="fleet-charging-optimization")
@click.option('--verbose', '-v', is_flag=True, help='Show debug output')
def cli(verbose):
    """Fleet charging optimization - joint charging and activity scheduling with MILP."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@cli.command()
@click.argument('config_file', type=click.Path(exists=True))
@click.option('--prices', 'prices_file', type=click.Path(exists=True),
              help='CSV file with a price column')
@click.option('--target', '-t', 'targets', type=float, multiple=True,
              help='Terminal SoC fraction to sweep (repeatable)')
@click.option('--backend', type=click.Choice(['gurobi', 'highs']),
              help='Solver backend (overrides config)')
@click.option('--time-limit', type=float, help='Maximum solve time per target in seconds')
@click.option('--mip-gap', type=float, help='MIP optimality gap')
@click.option('--workers', type=int, help='Targets solved concurrently')
@click.option('--sessions', type=int, help='Concurrent solver sessions')
@click.option('--output', '-o', type=click.Path(),
              default='sweep.csv', help='Output file for the sensitivity table')
@click.option('--format', 'output_format', type=click.Choice(['csv', 'json']),
              default='csv', help='Output format')
@click.option('--schedules', 'schedules_dir', type=click.Path(),
              help='Directory for per-target schedule tables')
@click.option('--check', is_flag=True, help='Audit every schedule against the scheduling rules')
def run(config_file, prices_file, targets, backend, time_limit, mip_gap, workers,
        sessions, output, output_format, schedules_dir, check):
    """
    Run the terminal-target sweep from a configuration file.

    Example:
        fleet-sweep run scenario.yaml -t 0.2 -t 1.0 --backend highs -o sweep.csv
    """
    try:
        click.echo(f"Loading configuration from {config_file}...")
        optimizer = FleetOptimizer.from_config(config_file, prices_file)

        overrides = {
            'backend': backend,
            'time_limit': time_limit,
            'mip_gap': mip_gap,
            'max_workers': workers,
            'solver_sessions': sessions,
        }
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if overrides:
            optimizer.solver = optimizer.solver.model_copy(update=overrides)

        s = optimizer.solver
        click.echo(f"Running sweep with {s.backend} (time limit: {s.time_limit}s, "
                   f"{s.max_workers} worker(s))...")
        table = optimizer.sweep(targets or None, keep_schedules=bool(schedules_dir), audit=check)

        click.echo(f"Saving results to {output}...")
        optimizer.save_results(output, format=output_format)

        if schedules_dir:
            for row in optimizer.rows:
                if row.schedule is not None:
                    DataWriter.save_schedule(row.schedule, schedules_dir,
                                             prefix=f"soc{row.target * 100:.0f}_")

        click.echo("\n" + "=" * 60)
        click.echo("SENSITIVITY TABLE")
        click.echo("=" * 60)
        click.echo(format_table(table))

        failed = [row for row in optimizer.rows if row.failed]
        if failed:
            click.echo(f"\n{len(failed)} of {len(optimizer.rows)} targets failed: " +
                       ", ".join(f"{row.target:.0%} ({row.reason})" for row in failed))

        violated = [row for row in optimizer.rows if row.violations]
        if violated:
            click.echo(f"Rule violations in {len(violated)} schedule(s); see log", err=True)
            sys.exit(1)

        click.echo(f"\nResults saved to {output}")

    except (ValueError, OSError) as e:
        click.echo(f"Sweep failed: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument('config_file', type=click.Path(exists=True))
@click.option('--prices', 'prices_file', type=click.Path(exists=True),
              help='CSV file with a price column')
@click.option('--report', '-r', type=click.Path(),
              help='Save validation report to file')
@click.option('--strict/--no-strict', default=True,
              help='Fail on validation errors')
def validate(config_file, prices_file, report, strict):
    """
    Validate a scenario configuration.

    Example:
        fleet-sweep validate scenario.yaml --report validation.txt
    """
    try:
        click.echo(f"Loading data from {config_file}...")
        bundle: FleetBundle = DataLoader.load_bundle(config_file, prices_file)
    except DataError as e:
        click.echo(f"Invalid data: {e}", err=True)
        sys.exit(1)

    click.echo("Running validation...")
    is_valid, errors, warnings = DataValidator(strict=False).validate_fleet_bundle(bundle)

    if errors:
        click.echo(f"\nFound {len(errors)} errors:", err=True)
        for error in errors:
            click.echo(f"  - {error}", err=True)

    if warnings:
        click.echo(f"\nFound {len(warnings)} warnings:")
        for warning in warnings:
            click.echo(f"  - {warning}")

    if is_valid:
        click.echo("\nData validation passed")
    else:
        click.echo("\nData validation failed", err=True)

    if report:
        generate_validation_report(bundle, Path(report))
        click.echo(f"Report saved to {report}")

    if strict and not is_valid:
        sys.exit(1)


@cli.command('generate-template')
@click.option('--output-dir', '-o', type=click.Path(),
              default='.', help='Output directory')
@click.option('--hours', type=int, default=168, help='Horizon length in hours')
def generate_template_cmd(output_dir, hours):
    """
    Generate a template scenario and price series.

    Example:
        fleet-sweep generate-template -o templates/
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    config_path = output_path / 'scenario_template.yaml'
    generate_template(config_path, hours=hours)
    click.echo(f"Config template saved to {config_path}")

    prices_path = output_path / 'prices_template.csv'
    pd.DataFrame({'hour': range(hours), 'price': synthetic_prices(hours)}).to_csv(prices_path, index=False)
    click.echo(f"Price template saved to {prices_path}")

    click.echo("\nEdit the templates with your data and run:")
    click.echo(f"  fleet-sweep run {config_path} --prices {prices_path}")


@cli.command()
def symbols():
    """List the MILP parameter and variable symbols."""
    click.echo("PARAMETERS")
    for key, desc in SYMBOLS.items():
        click.echo(f"  {key:12s} {desc}")
    click.echo("\nVARIABLES")
    for key, desc in VARIABLES.items():
        click.echo(f"  {key:12s} {desc}")


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == '__main__':
    main()
