"""
app/cli.py — `flask settlements ...` maintenance commands.

Registered on the app in create_app(). Run with FLASK_APP pointing at the
factory, e.g.:

    flask --app "backend.app:create_app('development')" settlements recompute-all

Each trip is recomputed and committed on its own, so one failing trip does
not roll back the others.
"""

from __future__ import annotations

import click
from flask import current_app
from flask.cli import AppGroup

from backend.app.errors import AppError
from backend.app.extensions import db
from backend.app.services import settlement_repository, settlement_service

settlements_cli = AppGroup("settlements", help="Settlement maintenance commands.")


@settlements_cli.command("recompute-all")
@click.option(
    "--trip-id",
    "trip_ids",
    type=int,
    multiple=True,
    help="Only recompute these trips (repeatable). Defaults to every trip.",
)
@click.option("--strict/--lenient", default=None, help="Override SETTLEMENT_STRICT_SPLITS.")
def recompute_all(trip_ids: tuple[int, ...], strict: bool | None) -> None:
    """Force a settlement recompute for every trip (or the given ones)."""
    options = settlement_service.options_from_config(current_app.config)
    if strict is not None:
        options["strict"] = strict

    ids = list(trip_ids) or settlement_repository.list_trip_ids(db.session)

    succeeded = 0
    failed = 0
    for trip_id in ids:
        try:
            result = settlement_service.recompute_with_retry(trip_id, db.session, **options)
            db.session.commit()
        except AppError as err:
            db.session.rollback()
            failed += 1
            click.echo(f"trip {trip_id}: FAILED {err.code} {err.message}", err=True)
            continue

        succeeded += 1
        click.echo(
            f"trip {trip_id}: {len(result.pending)} pending transfers, "
            f"{len(result.warnings)} warnings"
        )

    click.echo(f"Recomputed {succeeded} trip(s); {failed} failed.")
    if failed:
        raise SystemExit(1)
