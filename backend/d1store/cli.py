# Overview: Flask CLI command groups for bootstrap, CSV imports, and stock inspection.

# backend/d1store/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Imports (same reconciliation as the HTTP upload):
# - python -m flask imports staff staff.csv
# - python -m flask imports stock stock.csv
#
# Stock inspection:
# - python -m flask stock list [--low]

import json
from pathlib import Path

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .services import stock_service
from .services.import_service import ImportRejectedError, run_import, summarize_errors


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('imports')
def imports_group():
    """Run CSV imports from local files."""


def _import_file(import_type: str, path: str) -> None:
    file_path = Path(path)
    text = file_path.read_text(encoding="utf-8-sig")
    try:
        result = run_import(import_type, file_path.name, text)
    except ImportRejectedError as e:
        raise click.ClickException(str(e)) from e

    summary = result.summary()
    click.echo(
        f"PASS {import_type} import: total={summary['total']} success={summary['success']} "
        f"skipped={summary['skipped']} failed={summary['failed']}"
    )
    for notice in result.notices:
        click.echo(f"NOTE {notice}")
    for line in summarize_errors(result.invalid_rows):
        click.echo(f"FAIL {line}")


@imports_group.command('staff')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def import_staff(path):
    """Import staff rows from a CSV file."""
    _import_file("staff", path)


@imports_group.command('stock')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def import_stock(path):
    """Import stock rows from a CSV file."""
    _import_file("stock", path)


@click.group('stock')
def stock_group():
    """Stock inspection commands."""


@stock_group.command('list')
@click.option('--low', is_flag=True, help='Only items at or below the low-stock threshold')
@click.option('--json', 'as_json', is_flag=True, help='Print JSON instead of a table')
@with_appcontext
def list_stock(low, as_json):
    """List stock items."""
    threshold = current_app.config["LOW_STOCK_THRESHOLD"]
    items = stock_service.low_stock_items(threshold) if low else stock_service.list_stock_items()

    if as_json:
        click.echo(json.dumps([item.to_dict() for item in items], indent=2))
        return

    if not items:
        click.echo("No stock items found.")
        return
    for item in items:
        flag = " LOW" if item.qty <= threshold else ""
        click.echo(f"{item.ean:<16} {item.name:<40} {item.qty:>6}{flag}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(imports_group)
    app.cli.add_command(stock_group)
