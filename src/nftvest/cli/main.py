#!/usr/bin/env python3
"""
nftvest CLI - vesting plan management

Command-line client for a running vesting API:
- Create linear and tranche plans
- Claim and revoke
- Inspect plans, positions and the template catalogue
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import click
import requests
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from nftvest.cli.client import RetryPolicy, VestingAPIError, VestingClient
from nftvest.core import config
from nftvest.core.logging_config import setup_cli_logging

logger = logging.getLogger(__name__)
console = Console()


def _cli_fail(exc: Exception, exit_code: int = 1) -> None:
    """Centralized CLI error handler for consistent messaging."""
    logger.error("CLI error: %s", exc, exc_info=True)
    code = getattr(exc, "code", "")
    suffix = f" [dim]({code})[/]" if code else ""
    console.print(f"[bold red]Error:[/] {exc}{suffix}")
    sys.exit(exit_code)


def _parse_token_ids(_ctx: click.Context, _param: click.Parameter, value: Optional[str]) -> Optional[List[int]]:
    if value is None:
        return None
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError:
        raise click.BadParameter("token ids must be a comma-separated list of integers")


def _parse_tranches(_ctx: click.Context, _param: click.Parameter, values: tuple[str, ...]) -> List[Dict[str, int]]:
    tranches = []
    for value in values:
        timestamp, sep, count = value.partition(":")
        if not sep:
            raise click.BadParameter(f"expected TIMESTAMP:COUNT, got {value!r}")
        try:
            tranches.append({"timestamp": int(timestamp), "count": int(count)})
        except ValueError:
            raise click.BadParameter(f"expected integers in {value!r}")
    return tranches


def _load_permits(path: Optional[str]) -> List[Dict[str, Any]]:
    if not path:
        return []
    try:
        with open(path, "r", encoding="utf-8") as handle:
            permits = json.load(handle)
    except (json.JSONDecodeError, OSError) as exc:
        raise click.ClickException(f"Failed to load permits file: {exc}")
    if not isinstance(permits, list):
        raise click.ClickException("Permits file must contain a JSON list")
    return permits


def _format_time(timestamp: int) -> str:
    if not timestamp:
        return "-"
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _emit_json(ctx: click.Context, data: Dict[str, Any]) -> bool:
    if ctx.obj["json_output"]:
        click.echo(json.dumps(data, indent=2))
        return True
    return False


def _plan_table(plan: Dict[str, Any]) -> Table:
    table = Table(show_header=False, box=box.ROUNDED)
    table.add_row("[bold cyan]Plan", str(plan["id"]))
    table.add_row("[bold cyan]Status", plan["status"])
    table.add_row("[bold cyan]Collection", plan["sourceCollection"])
    table.add_row("[bold cyan]Issuer", plan["issuer"])
    table.add_row("[bold cyan]Beneficiary", plan["beneficiary"])
    table.add_row("[bold cyan]Start", _format_time(plan["startTime"]))
    table.add_row("[bold green]Claimed", f"{plan['claimedCount']} / {plan['totalCount']}")
    if plan.get("isLinear"):
        table.add_row("[bold cyan]Template", str(plan.get("templateId")))
    else:
        steps = ", ".join(f"{t['count']}@{_format_time(t['timestamp'])}" for t in plan.get("trancheSchedule", []))
        table.add_row("[bold cyan]Tranches", steps)
    if plan.get("revoked"):
        table.add_row("[bold red]Revoked", _format_time(plan["revokeTime"]))
        table.add_row("[bold red]Cap", str(plan["vestedCapOnRevoke"]))
    return table


# ============================================================================
# CLI Groups
# ============================================================================

@click.group()
@click.option("--node-url", default=config.CLIENT_NODE_URL, help="Vesting API URL", show_default=True)
@click.option("--timeout", default=config.CLIENT_TIMEOUT, type=float, help="Request timeout in seconds", show_default=True)
@click.option("--retries", default=config.CLIENT_MAX_RETRIES, type=click.IntRange(0, 10), help="Retries for transient failures", show_default=True)
@click.option("--json-output", is_flag=True, help="Output raw JSON")
@click.pass_context
def cli(ctx: click.Context, node_url: str, timeout: float, retries: int, json_output: bool):
    """
    nftvest - NFT vesting plans

    Create, claim and revoke vesting plans on a running vesting API.
    """
    ctx.ensure_object(dict)
    setup_cli_logging(
        environment=config.Config.NETWORK_TYPE.value,
        log_file=config.LOG_FILE,
        level=config.LOG_LEVEL,
    )
    ctx.obj["client"] = VestingClient(node_url, timeout, retry_policy=RetryPolicy(max_retries=retries))
    ctx.obj["json_output"] = json_output


@cli.group()
def plan():
    """Vesting plan commands."""
    pass


@plan.command("create-linear")
@click.option("--issuer", required=True, help="Issuer address (current token owner)")
@click.option("--beneficiary", required=True, help="Beneficiary address")
@click.option("--collection", required=True, help="Source collection address")
@click.option("--template-id", required=True, type=int, help="Linear template id (see `nftvest templates`)")
@click.option("--token-ids", required=True, callback=_parse_token_ids, help="Comma-separated token ids")
@click.option("--permits-file", type=click.Path(exists=True, dir_okay=False), help="JSON list of permits")
@click.pass_context
def create_linear(
    ctx: click.Context,
    issuer: str,
    beneficiary: str,
    collection: str,
    template_id: int,
    token_ids: List[int],
    permits_file: Optional[str],
):
    """Escrow tokens on a linear template."""
    client: VestingClient = ctx.obj["client"]
    try:
        with console.status("[bold cyan]Creating plan..."):
            data = client.create_linear_plan(
                issuer, beneficiary, collection, template_id, token_ids, _load_permits(permits_file)
            )
        if _emit_json(ctx, data):
            return
        console.print(f"[bold green]Plan {data['planId']} created[/]")
        console.print(_plan_table(data["plan"]))
    except (click.ClickException, VestingAPIError, requests.RequestException, KeyError) as exc:
        _cli_fail(exc)


@plan.command("create-tranche")
@click.option("--issuer", required=True, help="Issuer address (current token owner)")
@click.option("--beneficiary", required=True, help="Beneficiary address")
@click.option("--collection", required=True, help="Source collection address")
@click.option("--token-ids", required=True, callback=_parse_token_ids, help="Comma-separated token ids")
@click.option("--tranche", "tranches", multiple=True, required=True, callback=_parse_tranches, help="TIMESTAMP:CUMULATIVE_COUNT, repeatable")
@click.option("--permits-file", type=click.Path(exists=True, dir_okay=False), help="JSON list of permits")
@click.pass_context
def create_tranche(
    ctx: click.Context,
    issuer: str,
    beneficiary: str,
    collection: str,
    token_ids: List[int],
    tranches: List[Dict[str, int]],
    permits_file: Optional[str],
):
    """Escrow tokens on an explicit tranche schedule."""
    client: VestingClient = ctx.obj["client"]
    try:
        with console.status("[bold cyan]Creating plan..."):
            data = client.create_tranche_plan(
                issuer, beneficiary, collection, token_ids, tranches, _load_permits(permits_file)
            )
        if _emit_json(ctx, data):
            return
        console.print(f"[bold green]Plan {data['planId']} created[/]")
        console.print(_plan_table(data["plan"]))
    except (click.ClickException, VestingAPIError, requests.RequestException, KeyError) as exc:
        _cli_fail(exc)


@plan.command("claim")
@click.argument("plan_id", type=int)
@click.option("--caller", required=True, help="Beneficiary address")
@click.option("--to", default=None, help="Recipient (defaults to the beneficiary)")
@click.option("--token-ids", default=None, callback=_parse_token_ids, help="Explicit comma-separated selection")
@click.pass_context
def claim(ctx: click.Context, plan_id: int, caller: str, to: Optional[str], token_ids: Optional[List[int]]):
    """Claim every currently claimable token."""
    client: VestingClient = ctx.obj["client"]
    try:
        data = client.claim(plan_id, caller, to=to, token_ids=token_ids)
        if _emit_json(ctx, data):
            return
        claimed = data.get("tokenIds", [])
        console.print(f"[bold green]Claimed {len(claimed)} token(s)[/] from plan {plan_id}: {claimed}")
    except (VestingAPIError, requests.RequestException) as exc:
        _cli_fail(exc)


@plan.command("revoke")
@click.argument("plan_id", type=int)
@click.option("--caller", required=True, help="Issuer address")
@click.option("--yes", is_flag=True, help="Skip confirmation")
@click.pass_context
def revoke(ctx: click.Context, plan_id: int, caller: str, yes: bool):
    """Revoke a plan. Irreversible."""
    client: VestingClient = ctx.obj["client"]
    if not yes and not Confirm.ask(f"[bold]Revoke plan {plan_id}? This cannot be undone[/]", default=False):
        console.print("[yellow]Revocation cancelled[/]")
        return
    try:
        data = client.revoke(plan_id, caller)
        if _emit_json(ctx, data):
            return
        returned = data.get("returnedTokenIds", [])
        console.print(
            f"[bold yellow]Plan {plan_id} revoked[/]: cap {data.get('vestedCapOnRevoke')}, "
            f"{len(returned)} token(s) returned to issuer"
        )
    except (VestingAPIError, requests.RequestException) as exc:
        _cli_fail(exc)


@plan.command("show")
@click.argument("plan_id", type=int)
@click.pass_context
def show(ctx: click.Context, plan_id: int):
    """Show a plan."""
    client: VestingClient = ctx.obj["client"]
    try:
        data = client.get_plan(plan_id)
        if _emit_json(ctx, data):
            return
        console.print(Panel(_plan_table(data["plan"]), title=f"[bold green]Plan {plan_id}", border_style="green"))
    except (VestingAPIError, requests.RequestException, KeyError) as exc:
        _cli_fail(exc)


@plan.command("claimable")
@click.argument("plan_id", type=int)
@click.pass_context
def claimable(ctx: click.Context, plan_id: int):
    """Number of tokens claimable now."""
    client: VestingClient = ctx.obj["client"]
    try:
        data = client.claimable_count(plan_id)
        if _emit_json(ctx, data):
            return
        console.print(f"Plan {plan_id}: [bold green]{data['claimable']}[/] claimable")
    except (VestingAPIError, requests.RequestException, KeyError) as exc:
        _cli_fail(exc)


@plan.command("unlocked")
@click.argument("plan_id", type=int)
@click.option("--timestamp", type=int, default=None, help="Unix timestamp (defaults to now)")
@click.pass_context
def unlocked(ctx: click.Context, plan_id: int, timestamp: Optional[int]):
    """Number of tokens vested at a point in time."""
    client: VestingClient = ctx.obj["client"]
    try:
        data = client.unlocked_count(plan_id, timestamp)
        if _emit_json(ctx, data):
            return
        console.print(
            f"Plan {plan_id}: [bold green]{data['unlocked']}[/] unlocked at {_format_time(data['timestamp'])}"
        )
    except (VestingAPIError, requests.RequestException, KeyError) as exc:
        _cli_fail(exc)


@plan.command("metadata")
@click.argument("plan_id", type=int)
@click.pass_context
def metadata(ctx: click.Context, plan_id: int):
    """Print the position token metadata URI of a plan."""
    client: VestingClient = ctx.obj["client"]
    try:
        data = client.metadata_uri(plan_id)
        if _emit_json(ctx, data):
            return
        console.print(data["uri"], soft_wrap=True)
    except (VestingAPIError, requests.RequestException, KeyError) as exc:
        _cli_fail(exc)


@cli.command("positions")
@click.argument("owner")
@click.pass_context
def positions(ctx: click.Context, owner: str):
    """List the vesting positions held by an address."""
    client: VestingClient = ctx.obj["client"]
    try:
        data = client.positions(owner)
        if _emit_json(ctx, data):
            return
        table = Table(title=f"Positions of {owner[:12]}... ({data['balance']})", box=box.ROUNDED)
        table.add_column("Plan", justify="right")
        table.add_column("Status")
        table.add_column("Claimed", justify="right")
        table.add_column("Schedule")
        for item in data.get("plans", []):
            schedule = f"template {item['templateId']}" if item.get("isLinear") else "tranche"
            table.add_row(str(item["id"]), item["status"], f"{item['claimedCount']}/{item['totalCount']}", schedule)
        console.print(table)
    except (VestingAPIError, requests.RequestException, KeyError) as exc:
        _cli_fail(exc)


@cli.command("position")
@click.argument("owner")
@click.argument("index", type=int)
@click.pass_context
def position(ctx: click.Context, owner: str, index: int):
    """Plan id of the INDEX-th position held by OWNER."""
    client: VestingClient = ctx.obj["client"]
    try:
        data = client.position_by_index(owner, index)
        if _emit_json(ctx, data):
            return
        console.print(f"Position {index} of {owner[:12]}...: plan [bold green]{data['planId']}[/]")
    except (VestingAPIError, requests.RequestException, KeyError) as exc:
        _cli_fail(exc)


@cli.command("templates")
@click.pass_context
def templates(ctx: click.Context):
    """Show the linear template catalogue."""
    client: VestingClient = ctx.obj["client"]
    try:
        data = client.templates()
        if _emit_json(ctx, data):
            return
        table = Table(title="Linear Templates", box=box.ROUNDED)
        table.add_column("Id", justify="right")
        table.add_column("Name")
        table.add_column("Cliff (days)", justify="right")
        table.add_column("Duration (days)", justify="right")
        table.add_column("Slice (days)", justify="right")
        for item in data.get("templates", []):
            table.add_row(
                str(item["id"]),
                item["name"],
                str(item["cliff"] // config.SECONDS_PER_DAY),
                str(item["duration"] // config.SECONDS_PER_DAY),
                str(item["slice"] // config.SECONDS_PER_DAY) if item["slice"] else "continuous",
            )
        console.print(table)
    except (VestingAPIError, requests.RequestException, KeyError) as exc:
        _cli_fail(exc)


def main():
    """Main CLI entry point"""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/]")
        sys.exit(130)


if __name__ == "__main__":
    main()
