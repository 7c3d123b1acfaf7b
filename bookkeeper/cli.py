import json
from datetime import date
from pathlib import Path
from typing import Any

import click

from bookkeeper.engine import BookkeepingEngine
from bookkeeper.errors import BookkeepingError
from bookkeeper.financials import to_jsonable
from bookkeeper.store import JsonFileStore
from infra.config_loader import get_app_config
from infra.logging_config import setup_logging


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(to_jsonable(data), indent=2, ensure_ascii=False, default=str))


def _engine(ctx: click.Context) -> BookkeepingEngine:
    return ctx.obj["engine"]


@click.group()
@click.option("--store", "store_path", default=None, help="Ledger JSON file (default: config store.path)")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Override logging.level from config",
)
@click.pass_context
def cli(ctx: click.Context, store_path: str | None, log_level: str | None) -> None:
    """Period bookkeeping CLI"""
    setup_logging(log_level)
    app = get_app_config()
    path = Path(store_path or app.store_path)
    try:
        engine = BookkeepingEngine(JsonFileStore(path), config=app.engine)
    except BookkeepingError as exc:
        raise click.ClickException(str(exc)) from exc
    ctx.ensure_object(dict)
    ctx.obj["engine"] = engine


@cli.command()
@click.pass_context
def assets(ctx: click.Context) -> None:
    """Live balances with per-partner ownership"""
    _echo_json(_engine(ctx).get_enriched_assets())


@cli.command()
@click.argument("period")
@click.pass_context
def report(ctx: click.Context, period: str) -> None:
    """Financial report for PERIOD (YYYY-MM)"""
    try:
        _echo_json(_engine(ctx).get_period_financials(period))
    except BookkeepingError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command()
@click.argument("period")
@click.pass_context
def tax(ctx: click.Context, period: str) -> None:
    """Tax estimate for PERIOD"""
    try:
        _echo_json(_engine(ctx).get_tax_estimate(period))
    except BookkeepingError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command()
@click.argument("item_id")
@click.argument("period")
@click.pass_context
def schedule(ctx: click.Context, item_id: str, period: str) -> None:
    """Installment schedule of a debt or receivable as seen from PERIOD"""
    try:
        _echo_json(_engine(ctx).get_amortization_schedule(item_id, period))
    except BookkeepingError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command()
@click.argument("period")
@click.pass_context
def due(ctx: click.Context, period: str) -> None:
    """Debts and receivables due or paid in PERIOD"""
    try:
        _echo_json(_engine(ctx).get_due_items(period))
    except BookkeepingError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command()
@click.pass_context
def capital(ctx: click.Context) -> None:
    """Partner capital: contributions, withdrawals and rolled-forward profit"""
    rows = [
        {**to_jsonable(row), "balance": str(row.balance)}
        for row in _engine(ctx).get_partner_capital()
    ]
    _echo_json(rows)


@cli.command()
@click.pass_context
def periods(ctx: click.Context) -> None:
    """Overview of every opened period"""
    _echo_json(_engine(ctx).get_periods_overview())


@cli.command("open")
@click.argument("period", required=False)
@click.pass_context
def open_period(ctx: click.Context, period: str | None) -> None:
    """Open PERIOD (default: the month after the last closed one)"""
    engine = _engine(ctx)
    target = period or engine.next_period()
    try:
        engine.open_period(target)
    except BookkeepingError as exc:
        raise click.ClickException(f"{exc.code}: {exc}") from exc
    click.echo(f"Period {target} is now active")


@cli.command("close")
@click.argument("period")
@click.option("--today", "today_str", default=None, help="Override today's date (YYYY-MM-DD)")
@click.pass_context
def close_period(ctx: click.Context, period: str, today_str: str | None) -> None:
    """Close PERIOD and roll profit into partner capital"""
    engine = _engine(ctx)
    try:
        today = date.fromisoformat(today_str) if today_str else None
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--today") from exc
    try:
        result = engine.close_period(period, today=today)
    except BookkeepingError as exc:
        raise click.ClickException(f"{exc.code}: {exc}") from exc
    click.echo(f"Period {period} closed; net profit {result.net_profit}")


@cli.command("export")
@click.option("--output", "output_path", help="Output JSON file path")
@click.pass_context
def export_cmd(ctx: click.Context, output_path: str | None) -> None:
    """Export the whole ledger as one JSON document"""
    doc = _engine(ctx).export_snapshot()
    if output_path:
        out = Path(output_path)
        out.parent.mkdir(parents=True, exist_ok=True)
        with open(out, "w", encoding="utf-8") as f:
            json.dump(doc, f, indent=2, ensure_ascii=False, default=str)
        click.echo(f"Ledger exported to {output_path}")
    else:
        click.echo(json.dumps(doc, indent=2, ensure_ascii=False, default=str))


@cli.command("import")
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_cmd(ctx: click.Context, input_path: str) -> None:
    """Replace the ledger with an exported JSON document"""
    try:
        with open(input_path, "r", encoding="utf-8") as f:
            doc = json.load(f)
        _engine(ctx).import_snapshot(doc)
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"invalid JSON: {exc}") from exc
    except BookkeepingError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Ledger imported from {input_path}")


if __name__ == "__main__":
    cli()
