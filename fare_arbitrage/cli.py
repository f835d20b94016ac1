from __future__ import annotations

import datetime as dt
import json
import logging
from typing import Optional

import click

from .config import get_settings
from .models import CabinClass, SearchRequest
from .orchestrator import ArbitrageOrchestrator

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _parse_date(ctx, param, value: Optional[str]) -> Optional[dt.date]:
    if value is None:
        return None
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        raise click.BadParameter("expected YYYY-MM-DD")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def cli(verbose: bool) -> None:
    """Fare arbitrage search and booking housekeeping."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT
    )


@cli.command()
@click.argument("origin")
@click.argument("destination")
@click.option("--depart", "departure_date", required=True, callback=_parse_date,
              help="Departure date (YYYY-MM-DD)")
@click.option("--return", "return_date", callback=_parse_date,
              help="Return date (YYYY-MM-DD) for a round trip")
@click.option("--adults", default=1, show_default=True, type=int)
@click.option("--children", default=0, show_default=True, type=int)
@click.option("--infants", default=0, show_default=True, type=int)
@click.option("--cabin", default=CabinClass.ECONOMY.value, show_default=True,
              type=click.Choice([c.value for c in CabinClass]))
@click.option("--currency", default=None, help="Defaults to DEFAULT_CURRENCY")
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON")
def search(
    origin: str,
    destination: str,
    departure_date: dt.date,
    return_date: Optional[dt.date],
    adults: int,
    children: int,
    infants: int,
    cabin: str,
    currency: Optional[str],
    as_json: bool,
) -> None:
    """Search every strategy for ORIGIN → DESTINATION and print the options."""
    settings = get_settings()
    try:
        request = SearchRequest(
            origin=origin,
            destination=destination,
            departure_date=departure_date,
            return_date=return_date,
            adults=adults,
            children=children,
            infants=infants,
            cabin_class=CabinClass(cabin),
            currency=currency or settings.default_currency,
        )
    except ValueError as exc:
        raise click.UsageError(str(exc))

    logger.debug("CLI search %s", request.to_dict())
    result = ArbitrageOrchestrator.from_settings(settings).search(request)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if not result.all_options:
        click.echo("No flights found.")
        for err in result.metadata.errors:
            click.echo(f"  ! {err}")
        return

    for off in result.all_options:
        line = f"{off.total_price:>10} {off.currency}  {off.strategy.value:<15} {off.description}"
        if off.savings_vs_standard > 0:
            line += f"  (save {off.savings_vs_standard})"
        click.echo(line)
    for strategy, reason in result.metadata.strategies_skipped.items():
        click.echo(f"  skipped {strategy}: {reason}")
    click.echo(
        f"{result.metadata.total_api_calls} API call(s), "
        f"{result.metadata.cache_hits} cache hit(s), "
        f"{result.metadata.budget_remaining} call(s) left in budget"
    )


if __name__ == "__main__":
    cli()
