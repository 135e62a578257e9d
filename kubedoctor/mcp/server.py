"""MCP stdio server for KubeDoctor.

Exposes every diagnostic operation of the DiagnosticsCoordinator as an MCP
tool. Each tool returns a single JSON ``TextContent`` holding the
structured result, its text rendering and, where the report carries a
graph, Mermaid markup.

Errors are returned in-band, never raised to the transport::

    {"isError": true, "error": "RESOURCE_NOT_FOUND", "detail": "..."}

Transport: stdio (read from stdin, write to stdout). Logging therefore
goes to stderr.

Usage::

    from kubedoctor.mcp.server import MCPServer

    server = MCPServer(coordinator=coordinator)
    await server.start()  # blocks until stdin is closed
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import structlog
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from kubedoctor import __version__
from kubedoctor.errors import KubeDoctorError
from kubedoctor.report.serialize import payload_for

_log = structlog.get_logger(component="mcp.server")

_SERVER_NAME = "kubedoctor"

_NAMESPACE = {"type": "string", "description": "Kubernetes namespace."}
_OPTIONAL_NAMESPACE = {
    "type": "string",
    "description": "Optional namespace filter. Omit to include all namespaces.",
}
_NAME = {"type": "string", "description": "Resource name."}


@dataclass(frozen=True)
class _ToolSpec:
    """One MCP tool bound to a coordinator method of the same operation name."""

    name: str
    operation: str
    description: str
    properties: dict[str, Any] = field(default_factory=dict)
    required: tuple[str, ...] = ()

    def tool(self) -> Tool:
        return Tool(
            name=self.name,
            description=self.description,
            inputSchema={
                "type": "object",
                "properties": self.properties,
                "required": list(self.required),
                "additionalProperties": False,
            },
        )


TOOLS: tuple[_ToolSpec, ...] = (
    _ToolSpec(
        "k8s_diagnose_pod",
        "diagnose_pod",
        "Diagnose a single pod: phase, container states, restart counts, "
        "OOMKilled and CrashLoopBackOff detection, and recent warning events.",
        {"namespace": _NAMESPACE, "name": _NAME},
        ("namespace", "name"),
    ),
    _ToolSpec(
        "k8s_diagnose_namespace",
        "diagnose_namespace",
        "Summarise namespace health: pod counts by phase, unhealthy pods, "
        "degraded deployments, unbound PVCs and recent warning events.",
        {"namespace": _NAMESPACE},
        ("namespace",),
    ),
    _ToolSpec(
        "k8s_diagnose_cluster",
        "diagnose_cluster",
        "Cluster-wide health: node conditions, pod counts, unhealthy pods, kube-system problems and warning events.",
    ),
    _ToolSpec(
        "k8s_find_unhealthy_pods",
        "find_unhealthy_pods",
        "List pods that are not running healthily, with the reason for each.",
        {"namespace": _OPTIONAL_NAMESPACE},
    ),
    _ToolSpec(
        "k8s_analyze_pod_security",
        "analyze_pod_security",
        "Check pod security contexts: privileged containers, root users, "
        "host namespaces, capabilities and privilege escalation.",
        {"namespace": _NAMESPACE, "name": {"type": "string", "description": "Optional pod name."}},
        ("namespace",),
    ),
    _ToolSpec(
        "k8s_audit_namespace_security",
        "audit_namespace_security",
        "Score a namespace's security posture (0-100, grade A-F) from "
        "NetworkPolicies, PDBs, quotas and pod security settings.",
        {"namespace": _NAMESPACE},
        ("namespace",),
    ),
    _ToolSpec(
        "k8s_list_rbac_bindings",
        "list_rbac_bindings",
        "List the RoleBindings and ClusterRoleBindings that grant roles in a namespace, one row per "
        "subject, and flag cluster-admin, anonymous and default ServiceAccount grants.",
        {
            "namespace": _NAMESPACE,
            "subject": {"type": "string", "description": "Optional case-insensitive substring of the subject name."},
        },
        ("namespace",),
    ),
    _ToolSpec(
        "k8s_workload_dependencies",
        "workload_dependencies",
        "Map the ConfigMaps, Secrets, PVCs, ServiceAccount and Services a workload depends on.",
        {
            "namespace": _NAMESPACE,
            "name": _NAME,
            "kind": {
                "type": "string",
                "description": "Workload kind: Deployment (default), StatefulSet, DaemonSet, Job, ReplicaSet, Pod.",
            },
        },
        ("namespace", "name"),
    ),
    _ToolSpec(
        "k8s_analyze_pod_connectivity",
        "analyze_pod_connectivity",
        "Work out which NetworkPolicies select a pod and what ingress/egress traffic they allow.",
        {"namespace": _NAMESPACE, "pod_name": {"type": "string", "description": "Pod name."}},
        ("namespace", "pod_name"),
    ),
    _ToolSpec(
        "k8s_check_resource_quotas",
        "check_resource_quotas",
        "Report ResourceQuota usage and flag quotas above the warning and critical thresholds.",
        {"namespace": _OPTIONAL_NAMESPACE},
    ),
    _ToolSpec(
        "flux_diagnose_kustomization",
        "diagnose_kustomization",
        "Diagnose a Flux Kustomization, its source and its dependsOn chain.",
        {"namespace": _NAMESPACE, "name": _NAME},
        ("namespace", "name"),
    ),
    _ToolSpec(
        "flux_diagnose_helmrelease",
        "diagnose_helm_release",
        "Diagnose a Flux HelmRelease, its chart source, dependsOn chain and release history.",
        {"namespace": _NAMESPACE, "name": _NAME},
        ("namespace", "name"),
    ),
    _ToolSpec(
        "flux_list_kustomizations",
        "list_flux_kustomizations",
        "List Flux Kustomizations with source, path, status, applied revision and suspend state.",
        {"namespace": _OPTIONAL_NAMESPACE},
    ),
    _ToolSpec(
        "flux_list_helmreleases",
        "list_flux_helm_releases",
        "List Flux HelmReleases with chart, version, status, remediation retries and suspend state.",
        {"namespace": _OPTIONAL_NAMESPACE},
    ),
    _ToolSpec(
        "flux_list_sources",
        "list_flux_sources",
        "List Flux sources (GitRepository, OCIRepository, HelmRepository, HelmChart, Bucket) with URL, "
        "status and artifact revision.",
        {
            "namespace": _OPTIONAL_NAMESPACE,
            "source_type": {
                "type": "string",
                "description": "Optional source type: git, oci, helm, helmchart or bucket. Omit for all.",
            },
        },
    ),
    _ToolSpec(
        "flux_list_image_policies",
        "list_flux_image_policies",
        "List Flux ImageRepositories and ImagePolicies with the latest scanned tag and selected image.",
        {"namespace": _OPTIONAL_NAMESPACE},
    ),
    _ToolSpec(
        "flux_system_status",
        "diagnose_flux_system",
        "Check Flux controllers and summarise all Kustomizations and HelmReleases.",
    ),
    _ToolSpec(
        "flux_resource_tree",
        "flux_resource_tree",
        "Show a Kustomization or HelmRelease with its source, dependencies and managed inventory.",
        {
            "namespace": _NAMESPACE,
            "name": _NAME,
            "kind": {"type": "string", "description": "Kustomization (default) or HelmRelease."},
        },
        ("namespace", "name"),
    ),
    _ToolSpec(
        "k8s_resource_allocation",
        "analyze_resource_allocation",
        "Sum CPU and memory requests/limits and compare them with node allocatable and live usage.",
        {"namespace": _OPTIONAL_NAMESPACE},
    ),
    _ToolSpec(
        "k8s_top_consumers",
        "top_consumers",
        "List the pods using the most CPU or memory according to metrics-server.",
        {
            "namespace": _OPTIONAL_NAMESPACE,
            "resource": {"type": "string", "description": "Sort by 'cpu' (default) or 'memory'."},
            "limit": {"type": "integer", "description": "Number of pods to return (default 10).", "minimum": 1},
        },
    ),
)

_TOOLS_BY_NAME: dict[str, _ToolSpec] = {spec.name: spec for spec in TOOLS}


def _error(code: str, detail: str) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps({"isError": True, "error": code, "detail": detail}))]


class MCPServer:
    """MCP stdio server wrapping the KubeDoctor coordinator.

    Args:
        coordinator: DiagnosticsCoordinator exposing one coroutine per tool.
    """

    def __init__(self, coordinator: Any) -> None:
        self._coordinator = coordinator
        self._server = Server(_SERVER_NAME)
        self._register_handlers()

    def _register_handlers(self) -> None:
        """Wire list-tools and call-tool handlers onto the MCP Server."""

        @self._server.list_tools()  # type: ignore[no-untyped-call, untyped-decorator]
        async def _list_tools() -> list[Tool]:
            return [spec.tool() for spec in TOOLS]

        @self._server.call_tool()  # type: ignore[untyped-decorator]
        async def _call_tool(
            name: str,
            arguments: dict[str, Any] | None,
        ) -> list[TextContent]:
            return await self.handle(name, arguments or {})

    async def handle(self, name: str, args: dict[str, Any]) -> list[TextContent]:
        """Validate arguments, run the operation and encode the result."""
        spec = _TOOLS_BY_NAME.get(name)
        if spec is None:
            return _error("INVALID_ARGUMENT", f"Unknown tool: {name}")

        missing = [key for key in spec.required if not args.get(key)]
        if missing:
            return _error("INVALID_ARGUMENT", f"Missing required argument(s): {', '.join(missing)}")
        unknown = sorted(set(args) - set(spec.properties))
        if unknown:
            return _error("INVALID_ARGUMENT", f"Unexpected argument(s): {', '.join(unknown)}")

        kwargs = {key: value for key, value in args.items() if value is not None}
        if "limit" in kwargs:
            try:
                kwargs["limit"] = int(kwargs["limit"])
            except (TypeError, ValueError):
                return _error("INVALID_ARGUMENT", f"limit must be an integer, got: {kwargs['limit']!r}")

        try:
            result = await getattr(self._coordinator, spec.operation)(**kwargs)
        except KubeDoctorError as exc:
            _log.warning("mcp_tool_failed", tool=name, error_code=exc.error_code, error=str(exc))
            return _error(exc.error_code, str(exc))
        except Exception as exc:
            _log.error("mcp_tool_error", tool=name, error=str(exc))
            return _error("INTERNAL_ERROR", str(exc))

        return [TextContent(type="text", text=json.dumps(payload_for(spec.operation, result)))]

    async def start(self) -> None:
        """Run the MCP server until stdin is closed.

        Blocks the calling coroutine; intended to run as a background task.
        """
        _log.info("mcp_server_starting", version=__version__, tools=len(TOOLS))
        init_options = InitializationOptions(
            server_name=_SERVER_NAME,
            server_version=__version__,
            capabilities=self._server.get_capabilities(
                notification_options=NotificationOptions(),
                experimental_capabilities={},
            ),
        )
        async with stdio_server() as (read_stream, write_stream):
            await self._server.run(read_stream, write_stream, init_options)

        _log.info("mcp_server_stopped")
