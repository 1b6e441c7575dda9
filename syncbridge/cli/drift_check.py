"""
CLI entry point for an on-demand drift check between Shopify and Naver.

    syncbridge-drift-check                 # dry run over all active mappings
    syncbridge-drift-check --apply         # correct mismatches through the sync service
    syncbridge-drift-check --sku ABC-1 --sku ABC-2
"""
import asyncio
import json
import logging
import sys
from datetime import datetime

import click

from syncbridge.core.config import get_settings
from syncbridge.core.exceptions import DriftCheckInProgressError
from syncbridge.core.logging_config import configure_logging
from syncbridge.database import async_session
from syncbridge.integrations.setup import close_platforms, setup_platforms
from syncbridge.services.reconciliation_service import DriftChecker, DriftReport

logger = logging.getLogger(__name__)


async def run_drift_check(apply: bool, skus) -> DriftReport:
    settings = get_settings()
    platforms = setup_platforms(settings)
    try:
        async with async_session() as db:
            checker = DriftChecker(db, platforms, settings)
            return await checker.run(dry_run=not apply, skus=list(skus) or None)
    finally:
        await close_platforms(platforms)


@click.command()
@click.option('--apply', is_flag=True, help='Correct mismatches instead of only reporting them')
@click.option('--sku', 'skus', multiple=True, help='Check only this SKU (repeatable)')
@click.option('--json', 'as_json', is_flag=True, help='Print the full report as JSON')
def drift_check(apply, skus, as_json):
    """Compare stock and prices on both storefronts"""
    configure_logging()

    start_time = datetime.now()
    logger.info(f"Starting drift check at {start_time}")

    try:
        report = asyncio.run(run_drift_check(apply, skus))
    except DriftCheckInProgressError as e:
        click.echo(f"Drift check not started: {e}")
        sys.exit(2)
    except Exception as e:
        logger.exception("Error during drift check")
        click.echo(f"Error during drift check: {str(e)}")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        report.print_summary()
    logger.info(f"Completed drift check in {datetime.now() - start_time}")

    if report.mismatch_count or report.error_count:
        sys.exit(1)


if __name__ == '__main__':
    drift_check()
