"""
Rangekeeper Admin CLI - rangectl
Click-based admin tool wrapping the Rangekeeper REST API.
"""

import json
from typing import Any, Dict, List, Optional

import click
import requests


# ============================================
# CLI Configuration
# ============================================

class Context:
    """CLI context for global settings."""

    def __init__(self):
        self.api_url: str = "http://localhost:8000"
        self.output_format: str = "table"
        self.quiet: bool = False


pass_context = click.make_pass_decorator(Context, ensure=True)


def setup_api_client(ctx: Context) -> requests.Session:
    """Create API client with JSON headers."""
    session = requests.Session()
    session.headers.update({"Content-Type": "application/json"})
    return session


def api_call(ctx: Context, method: str, path: str, **kwargs: Any) -> Any:
    """Call the API and return the decoded body; exit non-zero on failure."""
    session = setup_api_client(ctx)
    try:
        response = session.request(method, f"{ctx.api_url}/api/v1{path}", **kwargs)
    except requests.RequestException as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    try:
        body = response.json()
    except ValueError:
        body = {"detail": response.text}

    if response.status_code >= 400:
        detail = body.get("detail") if isinstance(body, dict) else body
        click.echo(f"Error ({response.status_code}): {detail}", err=True)
        raise SystemExit(1)
    return body


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2))


def echo_report(ctx: Context, report: Dict[str, Any]) -> None:
    """Print an execution report."""
    if ctx.output_format == "json":
        echo_json(report)
        return

    state = "ABORTED" if report.get("aborted") else ("OK" if report.get("ok") else "PARTIAL FAILURE")
    click.echo(f"{report.get('operation', '').capitalize()}: {state}")
    click.echo(f"{'ID':<8} {'Stage':<6} {'Outcome':<12} {'Status':<12} {'Detail'}")
    click.echo("-" * 80)
    for outcome in report.get("outcomes", []):
        click.echo(
            f"{outcome.get('resource_id'):<8} "
            f"{outcome.get('stage'):<6} "
            f"{outcome.get('outcome', ''):<12} "
            f"{outcome.get('status') or '':<12} "
            f"{outcome.get('detail') or ''}"
        )


def selection(root_ids: List[int], timeout: Optional[float] = None) -> Dict[str, Any]:
    data: Dict[str, Any] = {"root_ids": list(root_ids) or None}
    if timeout is not None:
        data["timeout_seconds"] = timeout
    return data


# ============================================
# Base Commands
# ============================================

@click.group()
@click.option(
    "--api-url",
    default="http://localhost:8000",
    help="API URL for Rangekeeper server",
    envvar="RANGEKEEPER_API_URL",
)
@click.option(
    "--output",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@click.option(
    "--quiet",
    is_flag=True,
    help="Suppress output except errors",
)
@click.pass_context
def cli(
    ctx: click.Context,
    api_url: str,
    output: str,
    quiet: bool,
):
    """Rangekeeper resource lifecycle CLI"""
    ctx.ensure_object(Context)
    ctx.obj.api_url = api_url.rstrip("/")
    ctx.obj.output_format = output
    ctx.obj.quiet = quiet


# ============================================
# Resource Commands
# ============================================

@cli.group()
def resource():
    """Resource registry commands"""
    pass


@resource.command("list")
@click.option("--include-deleted", is_flag=True, help="Include soft-deleted resources")
@click.option("--status", help="Filter by lifecycle status")
@click.option("--type", "resource_type", help="Filter by resource type")
@pass_context
def resource_list(ctx: Context, include_deleted: bool, status: Optional[str], resource_type: Optional[str]):
    """List resources"""
    params: Dict[str, Any] = {"include_deleted": include_deleted}
    if status:
        params["status"] = status
    if resource_type:
        params["resource_type"] = resource_type

    result = api_call(ctx, "GET", "/resources", params=params)

    if ctx.output_format == "json":
        echo_json(result)
        return

    click.echo(f"{'ID':<8} {'Name':<24} {'Type':<9} {'Level':<6} {'Seq':<5} {'Status':<12} {'Contains'}")
    click.echo("-" * 80)
    for item in result.get("resources", []):
        click.echo(
            f"{item.get('id'):<8} "
            f"{item.get('name', '')[:24]:<24} "
            f"{item.get('resource_type', ''):<9} "
            f"{item.get('level'):<6} "
            f"{item.get('sequence'):<5} "
            f"{item.get('status', ''):<12} "
            f"{','.join(str(child) for child in item.get('contains', []))}"
        )


@resource.command("show")
@click.argument("resource_id", type=int)
@pass_context
def resource_show(ctx: Context, resource_id: int):
    """Show one resource"""
    echo_json(api_call(ctx, "GET", f"/resources/{resource_id}"))


@resource.command("create")
@click.argument("name")
@click.option("--type", "resource_type", type=click.Choice(["os", "db", "app", "profiler"]), default="app")
@click.option("--level", type=int, default=0, help="Hierarchy level, 0 = operating system")
@click.option("--sequence", type=int, default=0, help="Deployment order among siblings")
@click.option("--contains", "contains", type=int, multiple=True, help="Contained resource id (repeatable)")
@click.option("--description", default="")
@click.option("--meta", multiple=True, help="Metadata entry KEY=VALUE (repeatable)")
@pass_context
def resource_create(
    ctx: Context,
    name: str,
    resource_type: str,
    level: int,
    sequence: int,
    contains: tuple,
    description: str,
    meta: tuple,
):
    """Register a resource"""
    metadata: Dict[str, str] = {}
    for entry in meta:
        key, sep, value = entry.partition("=")
        if not sep:
            raise click.BadParameter(f"expected KEY=VALUE, got '{entry}'", param_hint="--meta")
        metadata[key] = value

    data = {
        "name": name,
        "description": description,
        "resource_type": resource_type,
        "resource_form": "composite" if contains else "single",
        "level": level,
        "sequence": sequence,
        "contains": list(contains),
        "metadata": metadata,
    }
    result = api_call(ctx, "POST", "/resources", json=data)

    if not ctx.quiet:
        click.echo(f"Resource created: {result.get('id')}")
        if ctx.output_format == "json":
            echo_json(result)


@resource.command("trigger")
@click.argument("resource_id", type=int)
@click.argument("trigger")
@pass_context
def resource_trigger(ctx: Context, resource_id: int, trigger: str):
    """Apply a lifecycle trigger (e.g. usage_requested)"""
    result = api_call(ctx, "POST", f"/resources/{resource_id}/transitions", json={"trigger": trigger})
    if not ctx.quiet:
        click.echo(f"Resource {resource_id} is now {result.get('status')}")


@resource.command("delete")
@click.argument("resource_id", type=int)
@click.option("--force", is_flag=True, help="Skip confirmation")
@pass_context
def resource_delete(ctx: Context, resource_id: int, force: bool):
    """Soft-delete an unavailable resource"""
    if not force:
        if not click.confirm(f"Delete resource {resource_id}?"):
            return

    api_call(ctx, "DELETE", f"/resources/{resource_id}")
    if not ctx.quiet:
        click.echo(f"Resource {resource_id} deleted")


# ============================================
# Orchestration Commands
# ============================================

@cli.command("plan")
@click.argument("root_ids", type=int, nargs=-1)
@pass_context
def plan(ctx: Context, root_ids: tuple):
    """Show the stage plan (all active resources when no ROOT_IDS)"""
    result = api_call(ctx, "POST", "/orchestrator/plan", json=selection(root_ids))

    if ctx.output_format == "json":
        echo_json(result)
        return

    for stage in result.get("stages", []):
        members = ", ".join(str(rid) for rid in stage.get("resource_ids", []))
        click.echo(f"Stage {stage.get('index')} (depth {stage.get('depth')}, seq {stage.get('sequence')}): {members}")


@cli.command("deploy")
@click.argument("root_ids", type=int, nargs=-1)
@click.option("--timeout", type=float, help="Per-call timeout in seconds")
@pass_context
def deploy(ctx: Context, root_ids: tuple, timeout: Optional[float]):
    """Deploy resources"""
    echo_report(ctx, api_call(ctx, "POST", "/orchestrator/deploy", json=selection(root_ids, timeout)))


@cli.command("revoke")
@click.argument("root_ids", type=int, nargs=-1)
@click.option("--timeout", type=float, help="Per-call timeout in seconds")
@click.option("--force", is_flag=True, help="Skip confirmation")
@pass_context
def revoke(ctx: Context, root_ids: tuple, timeout: Optional[float], force: bool):
    """Revoke resources"""
    if not force:
        target = ", ".join(str(rid) for rid in root_ids) or "all resources"
        if not click.confirm(f"Revoke {target}?"):
            return
    echo_report(ctx, api_call(ctx, "POST", "/orchestrator/revoke", json=selection(root_ids, timeout)))


@cli.command("delete")
@click.argument("root_ids", type=int, nargs=-1, required=True)
@click.option("--force", is_flag=True, help="Skip confirmation")
@pass_context
def delete(ctx: Context, root_ids: tuple, force: bool):
    """Soft-delete revoked subtrees, children first"""
    if not force:
        target = ", ".join(str(rid) for rid in root_ids)
        if not click.confirm(f"Delete {target} and everything they contain?"):
            return
    echo_report(ctx, api_call(ctx, "POST", "/orchestrator/delete", json=selection(root_ids)))


@cli.command("abort")
@pass_context
def abort(ctx: Context):
    """Abort running deploy/revoke executions"""
    result = api_call(ctx, "POST", "/orchestrator/abort")
    if not ctx.quiet:
        click.echo(f"Executions signalled: {result.get('signalled')}")


# ============================================
# Health Commands
# ============================================

@cli.group()
def health():
    """Health signal commands"""
    pass


@health.command("report")
@click.argument("resource_id", type=int)
@click.option("--healthy/--anomalous", default=True)
@click.option("--passive", is_flag=True, help="Report as a pushed notification")
@click.option("--detail", help="Detail message")
@pass_context
def health_report(ctx: Context, resource_id: int, healthy: bool, passive: bool, detail: Optional[str]):
    """Report a health signal for a resource"""
    kind = "passive" if passive else "active"
    result = api_call(
        ctx,
        "POST",
        f"/health/resources/{resource_id}/{kind}",
        json={"healthy": healthy, "detail": detail},
    )
    if ctx.output_format == "json":
        echo_json(result)
    elif not ctx.quiet:
        click.echo(f"Resource {resource_id}: {result.get('status')} ({result.get('message')})")


@health.command("recover")
@click.argument("resource_id", type=int)
@pass_context
def health_recover(ctx: Context, resource_id: int):
    """Manually confirm recovery of a resource in exception"""
    result = api_call(ctx, "POST", f"/health/resources/{resource_id}/recover", json={})
    if not ctx.quiet:
        click.echo(f"Resource {resource_id}: {result.get('status')}")


# ============================================
# Main Entry Point
# ============================================

if __name__ == "__main__":
    cli()
