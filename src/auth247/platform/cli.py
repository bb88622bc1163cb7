#!/usr/bin/env python
"""
CLI management commands for the auth247 billing platform.
"""

import json
from typing import Any

import click

from auth247.platform.billing.subscriptions.service import SubscriptionService
from auth247.platform.db import create_all_tables_async, get_async_db
from auth247.platform.logging import setup_logging
from auth247.platform.metering.service import MeteringService
from auth247.platform.tasks import (
    process_trial_expirations,
    run_monthly_mau_calculation,
    run_sync,
)


@click.group()
def cli() -> None:
    """auth247 billing platform CLI."""
    setup_logging()


@cli.command()
def init_db() -> None:
    """Create all database tables."""
    click.echo("Initializing database...")
    run_sync(create_all_tables_async())
    click.echo("Database initialized successfully!")


@cli.command()
def seed_plans() -> None:
    """Seed the default subscription plans if none exist."""

    async def _seed() -> int:
        async with get_async_db() as session:
            return await SubscriptionService(session).initialize_default_plans()

    created = run_sync(_seed())
    if created:
        click.echo(f"Created {created} subscription plans.")
    else:
        click.echo("Subscription plans already exist, nothing to do.")


@cli.command()
def run_monthly_mau() -> None:
    """Snapshot last month's MAU for every active tenant."""
    results = run_sync(run_monthly_mau_calculation())

    failed = 0
    for result in results:
        if result.error:
            failed += 1
            click.echo(f"  {result.tenant_id}: FAILED ({result.error})", err=True)
        else:
            click.echo(
                f"  {result.tenant_id}: {result.mau_count} MAU, "
                f"{result.billing_amount} billed for {result.billing_period}"
            )

    click.echo(f"Reconciled {len(results) - failed}/{len(results)} tenants.")
    if failed:
        raise SystemExit(1)


@cli.command()
def process_trials() -> None:
    """Move expired trials back to the free plan."""
    result = run_sync(process_trial_expirations())
    click.echo(
        f"Processed {result.processed} expired trials "
        f"({len(result.expired_accounts)} moved to free, "
        f"{len(result.skipped_accounts)} skipped, {len(result.failures)} failed)."
    )
    if result.failures:
        raise SystemExit(1)


@cli.command()
@click.argument("tenant_id")
@click.option("--period", default=None, help="Billing period (YYYY-MM), defaults to this month")
def billing_data(tenant_id: str, period: str | None) -> None:
    """Show billing data for a tenant's stored MAU snapshot."""

    async def _fetch() -> dict[str, Any] | None:
        async with get_async_db() as session:
            data = await MeteringService(session).get_mau_billing_data(tenant_id, period)
            return data.model_dump(mode="json") if data else None

    data = run_sync(_fetch())
    if data is None:
        click.echo(f"No MAU snapshot for tenant {tenant_id} in that period.", err=True)
        raise SystemExit(1)
    click.echo(json.dumps(data, indent=2))


if __name__ == "__main__":
    cli()
