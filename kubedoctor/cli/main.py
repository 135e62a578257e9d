"""KubeDoctor command-line interface.

Commands:
    kubedoctor version                           Print version and exit.
    kubedoctor serve                             Run the MCP + REST server.
    kubedoctor pod NS NAME                       Diagnose a pod.
    kubedoctor namespace NS                      Diagnose a namespace.
    kubedoctor cluster                           Diagnose the cluster.
    kubedoctor unhealthy [-n NS]                 List unhealthy pods.
    kubedoctor security NS [--pod NAME]          Pod security checks.
    kubedoctor audit NS                          Namespace security score.
    kubedoctor rbac NS [--subject TEXT]          RoleBinding and ClusterRoleBinding grants.
    kubedoctor deps NS NAME [--kind KIND]        Workload dependencies.
    kubedoctor connectivity NS POD               NetworkPolicy analysis.
    kubedoctor quotas [-n NS]                    ResourceQuota usage.
    kubedoctor flux kustomization|helmrelease|system|tree ...
    kubedoctor flux kustomizations|helmreleases|sources|images [-n NS]
    kubedoctor allocation [-n NS]                Requests/limits vs allocatable.
    kubedoctor top [-n NS] [--sort cpu|memory]   Top pods by usage.

Client commands call the REST API at http://localhost:8080 (configurable via
``--api-url``) and print the server-rendered text report, followed by a
Mermaid diagram when the report carries a graph.
"""

from __future__ import annotations

import asyncio
import json
import re

import click
import httpx

from kubedoctor import __version__

_DEFAULT_API_URL = "http://localhost:8080"

# ---------------------------------------------------------------------------
# Colour helpers
# ---------------------------------------------------------------------------

_SEVERITY_COLORS: dict[str, str] = {
    "INFO": "green",
    "WARNING": "yellow",
    "CRITICAL": "bright_red",
}

_SEVERITY_TAG = re.compile(r"\[(CRITICAL|WARNING|INFO)\]")


def _styled_severity(severity: str) -> str:
    color = _SEVERITY_COLORS.get(severity.upper(), "white")
    return click.style(severity.upper(), fg=color, bold=True)


def _colourise(line: str) -> str:
    return _SEVERITY_TAG.sub(lambda m: f"[{_styled_severity(m.group(1))}]", line)


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def _get(api_url: str, path: str, params: dict[str, str] | None = None) -> dict[str, object]:
    """Perform a GET request and return the parsed JSON body.

    Raises click.ClickException on connection errors or non-2xx responses.
    """
    url = api_url.rstrip("/") + path
    try:
        with httpx.Client(timeout=60.0) as client:
            response = client.get(url, params=params or {})
        response.raise_for_status()
        return response.json()  # type: ignore[no-any-return]
    except httpx.ConnectError as err:
        raise click.ClickException(f"Cannot connect to KubeDoctor API at {api_url}. Is the server running?") from err
    except httpx.HTTPStatusError as exc:
        _handle_error_response(exc.response)
        raise  # unreachable, _handle_error_response always raises


def _handle_error_response(response: httpx.Response) -> None:
    """Parse an error response body and raise a friendly ClickException."""
    try:
        data: dict[str, object] = response.json()
        msg = f"{data.get('error', 'ERROR')}: {data.get('detail', 'Unknown error')}"
    except ValueError:
        msg = f"HTTP {response.status_code}: {response.text[:200]}"
    raise click.ClickException(msg)


def _print_payload(data: dict[str, object], output_json: bool) -> None:
    if output_json:
        click.echo(json.dumps(data, indent=2))
        return
    for line in str(data.get("text", "")).splitlines():
        click.echo(_colourise(line))
    mermaid = data.get("mermaid")
    if mermaid:
        click.echo("")
        click.echo(click.style("Graph (Mermaid):", bold=True))
        click.echo(str(mermaid))


def _fetch_and_print(ctx: click.Context, path: str, params: dict[str, str | None] | None = None) -> None:
    query = {k: v for k, v in (params or {}).items() if v is not None}
    data = _get(ctx.obj["api_url"], path, params=query or None)
    _print_payload(data, ctx.obj["output_json"])


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--api-url",
    default=_DEFAULT_API_URL,
    envvar="KUBEDOCTOR_API_URL",
    show_default=True,
    help="KubeDoctor REST API base URL.",
)
@click.option("--json", "output_json", is_flag=True, default=False, help="Print raw JSON response.")
@click.pass_context
def cli(ctx: click.Context, api_url: str, output_json: bool) -> None:
    """KubeDoctor - Kubernetes and Flux health diagnostics."""
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url
    ctx.obj["output_json"] = output_json


_namespace_option = click.option(
    "--namespace",
    "-n",
    default=None,
    metavar="NS",
    help="Filter to a specific namespace. Omit for all namespaces.",
)


@cli.command("version")
def cmd_version() -> None:
    """Print the KubeDoctor version and exit."""
    click.echo(f"kubedoctor {__version__}")


@cli.command("serve")
def cmd_serve() -> None:
    """Run the MCP stdio server and REST API until interrupted.

    Configuration is read from KUBEDOCTOR_* environment variables.
    """
    from kubedoctor.app import main

    asyncio.run(main())


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@cli.command("pod")
@click.argument("namespace")
@click.argument("name")
@click.pass_context
def cmd_pod(ctx: click.Context, namespace: str, name: str) -> None:
    """Diagnose pod NAME in NAMESPACE."""
    _fetch_and_print(ctx, f"/api/v1/namespaces/{namespace}/pods/{name}")


@cli.command("namespace")
@click.argument("namespace")
@click.pass_context
def cmd_namespace(ctx: click.Context, namespace: str) -> None:
    """Diagnose every pod, deployment and PVC in NAMESPACE."""
    _fetch_and_print(ctx, f"/api/v1/namespaces/{namespace}")


@cli.command("cluster")
@click.pass_context
def cmd_cluster(ctx: click.Context) -> None:
    """Diagnose nodes and pods across the cluster."""
    _fetch_and_print(ctx, "/api/v1/cluster")


@cli.command("unhealthy")
@_namespace_option
@click.pass_context
def cmd_unhealthy(ctx: click.Context, namespace: str | None) -> None:
    """List pods that are not running healthily."""
    _fetch_and_print(ctx, "/api/v1/unhealthy", {"namespace": namespace})


# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------


@cli.command("security")
@click.argument("namespace")
@click.option("--pod", "pod_name", default=None, metavar="NAME", help="Check a single pod.")
@click.pass_context
def cmd_security(ctx: click.Context, namespace: str, pod_name: str | None) -> None:
    """Check pod security contexts in NAMESPACE."""
    _fetch_and_print(ctx, f"/api/v1/namespaces/{namespace}/security", {"name": pod_name})


@cli.command("audit")
@click.argument("namespace")
@click.pass_context
def cmd_audit(ctx: click.Context, namespace: str) -> None:
    """Score the security posture of NAMESPACE."""
    _fetch_and_print(ctx, f"/api/v1/namespaces/{namespace}/audit")


@cli.command("rbac")
@click.argument("namespace")
@click.option("--subject", default=None, metavar="TEXT", help="Only subjects whose name contains TEXT.")
@click.pass_context
def cmd_rbac(ctx: click.Context, namespace: str, subject: str | None) -> None:
    """List the role grants that reach NAMESPACE."""
    _fetch_and_print(ctx, f"/api/v1/namespaces/{namespace}/rbac", {"subject": subject})


# ---------------------------------------------------------------------------
# Dependencies, connectivity, quotas
# ---------------------------------------------------------------------------


@cli.command("deps")
@click.argument("namespace")
@click.argument("name")
@click.option("--kind", default="Deployment", show_default=True, help="Workload kind.")
@click.pass_context
def cmd_deps(ctx: click.Context, namespace: str, name: str, kind: str) -> None:
    """Show what workload NAME depends on."""
    _fetch_and_print(ctx, f"/api/v1/namespaces/{namespace}/workloads/{kind}/{name}/dependencies")


@cli.command("connectivity")
@click.argument("namespace")
@click.argument("pod")
@click.pass_context
def cmd_connectivity(ctx: click.Context, namespace: str, pod: str) -> None:
    """Show the NetworkPolicies that select POD and the traffic they allow."""
    _fetch_and_print(ctx, f"/api/v1/namespaces/{namespace}/pods/{pod}/connectivity")


@cli.command("quotas")
@_namespace_option
@click.pass_context
def cmd_quotas(ctx: click.Context, namespace: str | None) -> None:
    """Show ResourceQuota usage."""
    _fetch_and_print(ctx, "/api/v1/quotas", {"namespace": namespace})


# ---------------------------------------------------------------------------
# Flux
# ---------------------------------------------------------------------------


@cli.group("flux")
def flux() -> None:
    """Flux GitOps diagnostics."""


@flux.command("kustomization")
@click.argument("namespace")
@click.argument("name")
@click.pass_context
def cmd_flux_kustomization(ctx: click.Context, namespace: str, name: str) -> None:
    """Diagnose a Kustomization and its dependency chain."""
    _fetch_and_print(ctx, f"/api/v1/flux/kustomizations/{namespace}/{name}")


@flux.command("helmrelease")
@click.argument("namespace")
@click.argument("name")
@click.pass_context
def cmd_flux_helmrelease(ctx: click.Context, namespace: str, name: str) -> None:
    """Diagnose a HelmRelease, its chart source and history."""
    _fetch_and_print(ctx, f"/api/v1/flux/helmreleases/{namespace}/{name}")


@flux.command("kustomizations")
@_namespace_option
@click.pass_context
def cmd_flux_kustomizations(ctx: click.Context, namespace: str | None) -> None:
    """List Kustomizations with source, path and revision."""
    _fetch_and_print(ctx, "/api/v1/flux/kustomizations", {"namespace": namespace})


@flux.command("helmreleases")
@_namespace_option
@click.pass_context
def cmd_flux_helmreleases(ctx: click.Context, namespace: str | None) -> None:
    """List HelmReleases with chart, version and remediation."""
    _fetch_and_print(ctx, "/api/v1/flux/helmreleases", {"namespace": namespace})


@flux.command("sources")
@_namespace_option
@click.option(
    "--type",
    "source_type",
    type=click.Choice(["git", "oci", "helm", "helmchart", "bucket"], case_sensitive=False),
    default=None,
    help="Only one source type.",
)
@click.pass_context
def cmd_flux_sources(ctx: click.Context, namespace: str | None, source_type: str | None) -> None:
    """List Flux sources with URL and artifact revision."""
    _fetch_and_print(ctx, "/api/v1/flux/sources", {"namespace": namespace, "source_type": source_type})


@flux.command("images")
@_namespace_option
@click.pass_context
def cmd_flux_images(ctx: click.Context, namespace: str | None) -> None:
    """List ImageRepositories and ImagePolicies with their latest tags."""
    _fetch_and_print(ctx, "/api/v1/flux/images", {"namespace": namespace})


@flux.command("system")
@click.pass_context
def cmd_flux_system(ctx: click.Context) -> None:
    """Check Flux controllers and reconciler totals."""
    _fetch_and_print(ctx, "/api/v1/flux/system")


@flux.command("tree")
@click.argument("namespace")
@click.argument("name")
@click.option(
    "--kind",
    type=click.Choice(["Kustomization", "HelmRelease"], case_sensitive=False),
    default="Kustomization",
    show_default=True,
)
@click.pass_context
def cmd_flux_tree(ctx: click.Context, namespace: str, name: str, kind: str) -> None:
    """Show a Flux resource with its source, dependencies and inventory."""
    _fetch_and_print(ctx, f"/api/v1/flux/tree/{namespace}/{name}", {"kind": kind})


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------


@cli.command("allocation")
@_namespace_option
@click.pass_context
def cmd_allocation(ctx: click.Context, namespace: str | None) -> None:
    """Compare CPU and memory requests with node allocatable."""
    _fetch_and_print(ctx, "/api/v1/allocation", {"namespace": namespace})


@cli.command("top")
@_namespace_option
@click.option(
    "--sort",
    "resource",
    type=click.Choice(["cpu", "memory"], case_sensitive=False),
    default="cpu",
    show_default=True,
)
@click.option("--limit", type=click.IntRange(min=1), default=10, show_default=True)
@click.pass_context
def cmd_top(ctx: click.Context, namespace: str | None, resource: str, limit: int) -> None:
    """List the pods using the most CPU or memory."""
    _fetch_and_print(ctx, "/api/v1/top", {"namespace": namespace, "resource": resource, "limit": str(limit)})


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
