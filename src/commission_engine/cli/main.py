"""Main CLI entry point for the commissions command."""

import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..core.attainment import resolve_tier
from ..core.config import EngineConfigManager
from ..engine import CommissionEngine
from ..errors import (
    CommissionError,
    InvalidQuota,
    InvalidSalesAmount,
    LedgerError,
    PlanNotFound,
    PlanTierOrderingViolation,
    RepNotFound,
    RoleNotEligible,
)
from ..ledger.models import Period
from ..plans.models import AcceleratorTier, BonusRule, CommissionPlan, DealContext
from ..reporting.forecast import forecast_total
from ..reps.accounts import QuotaPeriod, SalesRepAccount
from ..schemas import PlanRecord, RepRecord

console = Console()


def get_engine(ctx: click.Context) -> CommissionEngine:
    """Build the engine once per invocation from the resolved config."""
    if ctx.obj.get("engine") is None:
        ctx.obj["engine"] = CommissionEngine.from_config(ctx.obj["config"])
    return ctx.obj["engine"]


def report_error(error: CommissionError):
    """Print a commission error with a message for its category."""
    if isinstance(error, (PlanTierOrderingViolation, InvalidQuota)):
        console.print(f"[red]Plan misconfigured:[/red] {error}")
    elif isinstance(error, (PlanNotFound, RepNotFound)):
        console.print(f"[red]Not found:[/red] {error}")
    elif isinstance(error, InvalidSalesAmount):
        console.print(f"[red]Invalid sales amount:[/red] {error}")
    elif isinstance(error, RoleNotEligible):
        console.print(f"[red]Not eligible:[/red] {error}")
    elif isinstance(error, LedgerError):
        console.print(f"[red]Ledger rejected entry:[/red] {error}")
    else:
        console.print(f"[red]Error:[/red] {error}")


def _money(amount: Optional[float]) -> str:
    return "-" if amount is None else f"${amount:,.2f}"


@click.group()
@click.version_option(version=__version__, prog_name="commissions")
@click.option("--data-dir", type=click.Path(file_okay=False), help="Directory holding plans, reps and ledger")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, data_dir: Optional[str], verbose: bool):
    """Commission calculation and reconciliation.

    \b
    Quick Start:
      commissions init                                  # Seed sample plans
      commissions add-rep -i rep_1 -n "Sarah" -p plan_enterprise -q 250000
      commissions record -r rep_1 -a 50000 --deal D-100
      commissions summary -r rep_1 --period 2024-Q2
    """
    config = EngineConfigManager().config
    if data_dir:
        config.data_dir = Path(data_dir)

    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@click.pass_context
def init(ctx: click.Context):
    """Create the data directory and seed the sample plans."""
    engine = get_engine(ctx)
    try:
        added = engine.catalog.seed_defaults()
    except CommissionError as e:
        report_error(e)
        ctx.exit(1)

    console.print(Panel.fit(
        f"[green]✓ Commission data initialized![/green]\n\n"
        f"Location: [cyan]{ctx.obj['config'].data_dir}[/cyan]\n"
        f"Plans added: [bold]{added}[/bold] ({len(engine.catalog)} total)\n\n"
        f"[bold]Next:[/bold]\n"
        f"1. [yellow]commissions add-rep ...[/yellow]\n"
        f"2. [yellow]commissions record -r REP -a AMOUNT[/yellow]\n"
        f"3. [yellow]commissions summary -r REP[/yellow]",
        title="Commission Engine"
    ))


def _bonus_label(rule: BonusRule) -> str:
    if rule.active_from or rule.active_until:
        return f"{rule.name} ({rule.status_on(date.today())})"
    return rule.name


@cli.command()
@click.pass_context
def plans(ctx: click.Context):
    """List commission plans and their accelerator tiers."""
    engine = get_engine(ctx)
    plan_list = engine.catalog.list_plans()
    if not plan_list:
        console.print("[yellow]No plans configured. Run 'commissions init' first.[/yellow]")
        return

    table = Table(title=f"Commission Plans ({len(plan_list)})")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Base", justify="right")
    table.add_column("Tiers")
    table.add_column("Bonuses", max_width=40)
    table.add_column("Mode")

    for plan in plan_list:
        table.add_row(
            plan.id,
            f"{plan.name} v{plan.version}",
            f"{plan.base_rate}%",
            ", ".join(f"{t.threshold:g}%→{t.rate}%" for t in plan.tiers) or "-",
            ", ".join(_bonus_label(b) for b in plan.bonus_rules) or "-",
            "retroactive" if plan.retroactive_accelerators else "marginal",
        )

    console.print(table)


@cli.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_records(ctx: click.Context, path: str):
    """Import plans and reps from a JSON file.

    \b
    The file holds {"plans": [...], "reps": [...]}; every record is
    validated before anything is stored.
    """
    engine = get_engine(ctx)
    with open(path, 'r') as f:
        data = json.load(f)

    try:
        plan_list = [PlanRecord(**p).to_model() for p in data.get("plans", [])]
        reps = [RepRecord(**r).to_model() for r in data.get("reps", [])]
    except ValidationError as e:
        console.print(f"[red]Invalid record:[/red] {e}")
        ctx.exit(1)
    except CommissionError as e:
        report_error(e)
        ctx.exit(1)

    for plan in plan_list:
        try:
            engine.catalog.add(plan)
        except ValueError as e:
            console.print(f"[yellow]Skipped plan {plan.id}: {e}[/yellow]")
    for rep in reps:
        engine.accounts.add(rep)

    console.print(f"[green]Imported {len(plan_list)} plan(s) and {len(reps)} rep(s)[/green]")


@cli.command("add-rep")
@click.option("--id", "-i", "rep_id", required=True, help="Rep id")
@click.option("--name", "-n", required=True, help="Rep name")
@click.option("--plan", "-p", "plan_id", required=True, help="Commission plan id")
@click.option("--quota", "-q", type=float, required=True, help="Annual quota")
@click.option("--role", default="", help="Job role, checked against plan eligibility")
@click.option("--period", "quota_period", type=click.Choice([p.value for p in QuotaPeriod]),
              default=None, help="Quota period (default from config)")
@click.option("--ytd", type=float, default=0.0, help="Sales closed so far this year")
@click.option("--no-accelerators", is_flag=True, help="Rep is paid the base rate only")
@click.pass_context
def add_rep(ctx: click.Context, rep_id: str, name: str, plan_id: str, quota: float, role: str,
            quota_period: Optional[str], ytd: float, no_accelerators: bool):
    """Add or replace a sales rep account."""
    engine = get_engine(ctx)
    try:
        plan = engine.catalog.get(plan_id)
    except PlanNotFound as e:
        report_error(e)
        ctx.exit(1)

    if quota <= 0:
        report_error(InvalidQuota(quota))
        ctx.exit(1)

    account = engine.accounts.add(SalesRepAccount(
        id=rep_id,
        name=name,
        role=role or next(iter(sorted(plan.eligible_roles)), ""),
        plan_id=plan.id,
        annual_quota=quota,
        quota_period=QuotaPeriod(quota_period or ctx.obj["config"].default_quota_period),
        ytd_sales=ytd,
        period_sales=ytd,
        accelerator_eligible=not no_accelerators,
    ))
    console.print(f"[green]✓ Rep {account.id} ({account.name}) on {plan.name}[/green]")


@cli.command()
@click.option("--plan", "-p", "plan_id", help="Plan id from the catalog")
@click.option("--base", type=float, help="Ad-hoc base rate when no plan is given")
@click.option("--tier", "tiers", multiple=True, help="Ad-hoc tier as THRESHOLD:RATE")
@click.option("--ytd", type=float, required=True, help="Year-to-date sales")
@click.option("--quota", type=float, required=True, help="Quota")
@click.pass_context
def resolve(ctx: click.Context, plan_id: Optional[str], base: Optional[float], tiers, ytd: float, quota: float):
    """Show attainment and the accelerator tier it selects."""
    try:
        if plan_id:
            plan = get_engine(ctx).catalog.get(plan_id)
        else:
            parsed = []
            for tier_text in tiers:
                threshold, rate = tier_text.split(":")
                parsed.append(AcceleratorTier(float(threshold), float(rate)))
            plan = CommissionPlan(id="adhoc", name="Ad-hoc", base_rate=base or 0.0, tiers=tuple(parsed))
        attainment, tier = resolve_tier(plan, ytd, quota)
    except CommissionError as e:
        report_error(e)
        ctx.exit(1)
    except ValueError:
        console.print("[red]Tiers must look like 100:8.5[/red]")
        ctx.exit(1)

    console.print(Panel.fit(
        f"[bold]Plan:[/bold] {plan.name}\n"
        f"[bold]Attainment:[/bold] {attainment}%\n"
        f"[bold]Tier:[/bold] {tier.threshold:g}% threshold\n"
        f"[bold]Rate:[/bold] [green]{tier.rate}%[/green]",
        title="Tier Resolution"
    ))


def _deal_options(func):
    func = click.option("--close-date", type=click.DateTime(formats=["%Y-%m-%d"]),
                        help="Date the deal closed (default: today)")(func)
    func = click.option("--renewal-rate", type=float, default=0.0, help="Renewal rate percent")(func)
    func = click.option("--deals-in-period", type=int, default=0, help="Deals closed this period incl. this one")(func)
    func = click.option("--upsell", is_flag=True, help="Upsell to an existing client")(func)
    func = click.option("--years", type=int, default=1, help="Contract length in years")(func)
    func = click.option("--new-logo", is_flag=True, help="First deal with this client")(func)
    return func


def _build_deal(deal_id: str, description: str, new_logo: bool, years: int, upsell: bool,
                deals_in_period: int, renewal_rate: float, close_date: Optional[datetime]) -> DealContext:
    return DealContext(
        deal_id=deal_id,
        description=description,
        new_logo=new_logo,
        contract_years=years,
        upsell=upsell,
        deals_closed_in_period=deals_in_period,
        renewal=renewal_rate > 0,
        renewal_rate=renewal_rate,
        closed_on=close_date.date() if close_date else None,
    )


def _print_breakdown(breakdown, title: str):
    table = Table(title=title)
    table.add_column("Item")
    table.add_column("Amount", justify="right")

    table.add_row(f"Base ({breakdown.sales_amount:,.2f} at {breakdown.rate}%)", _money(breakdown.base_commission))
    for bonus in breakdown.bonuses:
        table.add_row(bonus.name, _money(bonus.amount))
    table.add_row("[bold]Total[/bold]", f"[bold green]{_money(breakdown.total)}[/bold green]")

    console.print(table)
    console.print(f"[dim]Attainment after deal: {breakdown.attainment_pct}%[/dim]")


@cli.command()
@click.option("--rep", "-r", "rep_id", required=True, help="Rep id")
@click.option("--amount", "-a", type=float, required=True, help="Deal sales amount")
@_deal_options
@click.pass_context
def calculate(ctx: click.Context, rep_id: str, amount: float, new_logo: bool, years: int,
              upsell: bool, deals_in_period: int, renewal_rate: float, close_date: Optional[datetime]):
    """Preview the commission a deal would earn, without recording it."""
    engine = get_engine(ctx)
    deal = _build_deal("", "", new_logo, years, upsell, deals_in_period, renewal_rate, close_date)
    try:
        breakdown = engine.preview_deal(rep_id, amount, deal)
    except CommissionError as e:
        report_error(e)
        ctx.exit(1)

    _print_breakdown(breakdown, f"Commission preview for {rep_id}")


@cli.command()
@click.option("--rep", "-r", "rep_id", required=True, help="Rep id")
@click.option("--amount", "-a", type=float, required=True, help="Deal sales amount")
@click.option("--deal", "deal_id", default="", help="Deal id in the CRM")
@click.option("--description", default="", help="Deal description")
@click.option("--pay-date", type=click.DateTime(formats=["%Y-%m-%d"]), help="Scheduled payroll date")
@_deal_options
@click.pass_context
def record(ctx: click.Context, rep_id: str, amount: float, deal_id: str, description: str,
           pay_date: Optional[datetime], new_logo: bool, years: int, upsell: bool,
           deals_in_period: int, renewal_rate: float, close_date: Optional[datetime]):
    """Record a closed deal: earned commission plus a pending payout."""
    engine = get_engine(ctx)
    deal = _build_deal(deal_id, description, new_logo, years, upsell, deals_in_period, renewal_rate, close_date)
    try:
        result = engine.record_deal(rep_id, amount, deal, pay_date=pay_date.date() if pay_date else None)
    except CommissionError as e:
        report_error(e)
        ctx.exit(1)

    title = f"Recorded deal {deal_id} for {rep_id}" if deal_id else f"Recorded deal for {rep_id}"
    _print_breakdown(result.breakdown, title)
    console.print(f"Earned: [cyan]{result.earned_id}[/cyan]  Pending: [cyan]{result.pending_id}[/cyan]")


@cli.command()
@click.argument("pending_id")
@click.option("--amount", type=float, help="Amount to pay (default: full open balance)")
@click.option("--pay-date", type=click.DateTime(formats=["%Y-%m-%d"]), help="Payroll date")
@click.pass_context
def pay(ctx: click.Context, pending_id: str, amount: Optional[float], pay_date: Optional[datetime]):
    """Close a pending entry through payroll."""
    engine = get_engine(ctx)
    try:
        paid_id = engine.close_pending(pending_id, amount, pay_date.date() if pay_date else None)
    except CommissionError as e:
        report_error(e)
        ctx.exit(1)

    paid = engine.ledger.get(paid_id)
    console.print(f"[green]✓ Paid {_money(paid.amount)} against {pending_id}[/green] ({paid_id})")


@cli.command()
@click.option("--rep", "-r", "rep_id", required=True, help="Rep id")
@click.option("--amount", "-a", type=float, required=True, help="Positive for a SPIFF, negative for a clawback")
@click.option("--note", required=True, help="Reason for the adjustment")
@click.option("--reference", "reference_id", help="Open pending entry a clawback cancels")
@click.option("--settled", is_flag=True, help="Already paid out, or already recovered for a clawback")
@click.option("--pay-date", type=click.DateTime(formats=["%Y-%m-%d"]), help="Payroll date")
@click.pass_context
def adjust(ctx: click.Context, rep_id: str, amount: float, note: str, reference_id: Optional[str],
           settled: bool, pay_date: Optional[datetime]):
    """Record a manual adjustment such as a SPIFF or a clawback."""
    engine = get_engine(ctx)
    try:
        adjustment_id = engine.record_adjustment(
            rep_id,
            amount,
            note,
            settled=settled,
            pay_date=pay_date.date() if pay_date else None,
            reference_id=reference_id,
        )
    except CommissionError as e:
        report_error(e)
        ctx.exit(1)

    console.print(f"[green]✓ Adjustment {_money(amount)} for {rep_id}[/green] ({adjustment_id})")
    if amount < 0 and not (settled or reference_id):
        console.print(f"[yellow]Recover it through payroll: commissions recover {adjustment_id}[/yellow]")


@cli.command()
@click.argument("adjustment_id")
@click.option("--amount", type=float, help="Amount to recover (default: all that is outstanding)")
@click.option("--pay-date", type=click.DateTime(formats=["%Y-%m-%d"]), help="Payroll date")
@click.pass_context
def recover(ctx: click.Context, adjustment_id: str, amount: Optional[float], pay_date: Optional[datetime]):
    """Take back a paid-out clawback through payroll."""
    engine = get_engine(ctx)
    try:
        paid_id = engine.recover_clawback(adjustment_id, amount, pay_date.date() if pay_date else None)
    except CommissionError as e:
        report_error(e)
        ctx.exit(1)

    recovery = engine.ledger.get(paid_id)
    console.print(f"[green]✓ Recovered {_money(-recovery.amount)} of {adjustment_id}[/green] ({paid_id})")


@cli.command()
@click.option("--rep", "-r", "rep_id", required=True, help="Rep id")
@click.option("--period", default="all", help="2024, 2024-Q2, 2024-05 or all")
@click.option("--open", "open_only", is_flag=True, help="Only pending entries with an open balance")
@click.pass_context
def ledger(ctx: click.Context, rep_id: str, period: str, open_only: bool):
    """Show a rep's ledger entries."""
    engine = get_engine(ctx)
    try:
        window = Period.parse(period)
    except ValueError:
        console.print(f"[red]Unrecognized period '{period}'[/red]")
        ctx.exit(1)

    if open_only:
        rows = engine.ledger.open_pending(rep_id)
        table = Table(title=f"Open pending for {rep_id} ({len(rows)})")
        table.add_column("ID", style="dim")
        table.add_column("Date")
        table.add_column("Amount", justify="right")
        table.add_column("Open", justify="right", style="yellow")
        table.add_column("Pay Date")
        for entry, balance in rows:
            table.add_row(
                entry.id,
                entry.timestamp.strftime("%Y-%m-%d"),
                _money(entry.amount),
                _money(balance),
                entry.pay_date.isoformat() if entry.pay_date else "-",
            )
        console.print(table)
        return

    entries = list(engine.ledger.entries_for(rep_id, window))
    table = Table(title=f"Ledger for {rep_id} - {window} ({len(entries)})")
    table.add_column("Seq", justify="right", style="dim")
    table.add_column("ID", style="dim")
    table.add_column("Date")
    table.add_column("Kind")
    table.add_column("Amount", justify="right")
    table.add_column("Ref", style="dim")
    table.add_column("Note", max_width=30)

    kind_colors = {"earned": "green", "paid": "cyan", "pending": "yellow", "adjustment": "magenta"}
    for entry in entries:
        color = kind_colors[entry.kind.value]
        table.add_row(
            str(entry.sequence),
            entry.id,
            entry.timestamp.strftime("%Y-%m-%d %H:%M"),
            f"[{color}]{entry.kind.value}[/{color}]",
            _money(entry.amount),
            entry.reference_id or "",
            entry.note or entry.source_ref,
        )

    console.print(table)


@cli.command()
@click.option("--rep", "-r", "rep_id", help="Rep id (default: every rep in the ledger)")
@click.option("--period", default="all", help="2024, 2024-Q2, 2024-05 or all")
@click.option("--expected", type=float, help="Computed earned total to cross-check")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def summary(ctx: click.Context, rep_id: Optional[str], period: str, expected: Optional[float], as_json: bool):
    """Reconcile earned, paid and pending totals."""
    engine = get_engine(ctx)
    try:
        window = Period.parse(period)
    except ValueError:
        console.print(f"[red]Unrecognized period '{period}'[/red]")
        ctx.exit(1)

    if rep_id:
        results = {rep_id: engine.summary(rep_id, window, expected)}
    else:
        results = engine.reconciler.reconcile_many(period=window)

    if as_json:
        click.echo(json.dumps({k: v.to_dict() for k, v in results.items()}, indent=2))
        return

    if not results:
        console.print("[dim]No ledger entries[/dim]")
        return

    table = Table(title=f"Commission Summary - {window}")
    table.add_column("Rep", style="cyan")
    table.add_column("Earned", justify="right")
    table.add_column("Paid", justify="right")
    table.add_column("Pending", justify="right")
    table.add_column("Prior Closed", justify="right", style="dim")
    table.add_column("Attainment", justify="right")
    table.add_column("Rate", justify="right")

    needs_review = []
    for rid, result in results.items():
        if not result.is_consistent:
            needs_review.append(result)
            continue
        table.add_row(
            rid,
            _money(result.total_earned),
            _money(result.total_paid),
            _money(result.total_pending),
            _money(result.prior_pending_closed),
            f"{result.attainment_pct}%" if result.attainment_pct is not None else "-",
            f"{result.current_rate}%" if result.current_rate is not None else "-",
        )

    console.print(table)

    for mismatch in needs_review:
        console.print(Panel.fit(
            f"[bold]Rep:[/bold] {mismatch.rep_id}\n"
            f"[bold]Expected:[/bold] {_money(mismatch.expected)}\n"
            f"[bold]Actual:[/bold] {_money(mismatch.actual)}\n"
            f"[bold]Delta:[/bold] [red]{_money(mismatch.delta)}[/red]\n"
            f"[dim]{mismatch.reason}[/dim]",
            title="[red]Ledger needs review[/red]"
        ))
    if needs_review:
        ctx.exit(2)


@cli.command()
@click.option("--rep", "-r", "rep_id", required=True, help="Rep id")
@click.option("--days", type=int, default=30, help="Forecast window in days")
@click.option("--as-of", type=click.DateTime(formats=["%Y-%m-%d"]), help="Forecast start (default today)")
@click.pass_context
def forecast(ctx: click.Context, rep_id: str, days: int, as_of: Optional[datetime]):
    """Project near-term commission from recent earnings."""
    engine = get_engine(ctx)
    start = as_of.date() if as_of else date.today()
    points = engine.forecast(rep_id, days, start)
    payouts = engine.forecaster.scheduled_payouts(rep_id, days, start)

    if not points:
        console.print(f"[yellow]Insufficient data to forecast {rep_id}: "
                      f"needs at least two weeks of earned commission[/yellow]")
    else:
        weekly = Table(title=f"Forecast for {rep_id} ({days} days)")
        weekly.add_column("Week of")
        weekly.add_column("Projected", justify="right", style="green")
        for i in range(0, len(points), 7):
            chunk = points[i:i + 7]
            weekly.add_row(chunk[0].date.isoformat(), _money(forecast_total(chunk)))
        console.print(weekly)
        console.print(f"[bold]Projected total:[/bold] {_money(forecast_total(points))}")

    if payouts:
        console.print(f"[bold]Scheduled payouts:[/bold] {_money(forecast_total(payouts))} "
                      f"on {len(payouts)} date(s)")


@cli.command()
@click.option("--year", type=int, help="Only payouts dated in this year")
@click.pass_context
def payouts(ctx: click.Context, year: Optional[int]):
    """Show commission paid out per month."""
    engine = get_engine(ctx)
    history = engine.payout_history(year)
    if not history:
        console.print("[dim]No payouts recorded[/dim]")
        return

    table = Table(title=f"Monthly Payouts{f' - {year}' if year else ''}")
    table.add_column("Month")
    table.add_column("Payments", justify="right")
    table.add_column("Amount", justify="right", style="green")
    for month in history:
        table.add_row(month.label, str(month.payment_count), _money(month.amount))

    console.print(table)
    console.print(f"[bold]Total paid:[/bold] {_money(round(sum(m.amount for m in history), 2))}")


@cli.command()
@click.option("--period", default="all", help="2024, 2024-Q2, 2024-05 or all")
@click.pass_context
def team(ctx: click.Context, period: str):
    """Show attainment and commission per plan."""
    engine = get_engine(ctx)
    try:
        window = Period.parse(period)
    except ValueError:
        console.print(f"[red]Unrecognized period '{period}'[/red]")
        ctx.exit(1)

    report = engine.team_performance(window)
    if not report:
        console.print("[dim]No reps configured[/dim]")
        return

    table = Table(title=f"Team Performance - {window}")
    table.add_column("Plan", style="cyan")
    table.add_column("Reps", justify="right")
    table.add_column("Avg Attainment", justify="right")
    table.add_column("Earned", justify="right", style="green")
    table.add_column("Paid", justify="right")
    for plan in report:
        attainment = plan.average_attainment
        if attainment is None:
            shown = "-"
        elif attainment >= 100:
            shown = f"[green]{attainment}%[/green]"
        else:
            shown = f"[yellow]{attainment}%[/yellow]"
        table.add_row(plan.plan_name, str(plan.rep_count), shown,
                      _money(plan.total_earned), _money(plan.total_paid))

    console.print(table)


if __name__ == "__main__":
    cli()
