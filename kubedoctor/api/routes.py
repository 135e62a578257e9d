"""FastAPI route handlers for the KubeDoctor REST API.

All routes are registered on a single APIRouter that ``app.py`` mounts
under the ``/api/v1`` prefix. Each diagnostic route calls one coordinator
operation and returns the shared payload envelope; KubeDoctorError
subclasses are mapped to HTTP statuses by the handlers in ``app.py``.

Error code conventions:
    400 INVALID_ARGUMENT      -- unknown kind, bad sort key or limit
    401 UNAUTHORIZED          -- cluster credentials rejected
    403 FORBIDDEN             -- RBAC denied a primary read
    404 RESOURCE_NOT_FOUND    -- named resource does not exist
    422 MALFORMED_RESOURCE    -- resource lacks fields the operation needs
    503 UNAVAILABLE           -- cluster or metrics API unreachable / timed out
    503 FLUX_NOT_INSTALLED    -- Flux CRDs not served
    500 INTERNAL_ERROR        -- unexpected server-side failure
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Query, Request

from kubedoctor import __version__
from kubedoctor.api.schemas import DiagnosticResponse, ErrorResponse, HealthStatus
from kubedoctor.report.serialize import payload_for

_log = structlog.get_logger(component="api.routes")

router = APIRouter()

_ERRORS: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


async def _run(request: Request, operation: str, **kwargs: Any) -> DiagnosticResponse:
    coordinator = request.app.state.coordinator
    _log.debug("api_request", operation=operation, path=request.url.path)
    result = await getattr(coordinator, operation)(**kwargs)
    return DiagnosticResponse(**payload_for(operation, result))


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthStatus,
    summary="Health check",
    description="Lightweight liveness probe. Always returns 200 if the process is up.",
)
async def get_health(request: Request) -> HealthStatus:
    """``GET /api/v1/health``"""
    registry = getattr(request.app.state, "registry", None)
    classifiers = len(registry.classifiers) if registry is not None else 0
    return HealthStatus(status="ok", version=__version__, classifiers=classifiers)


@router.get(
    "/cluster",
    response_model=DiagnosticResponse,
    summary="Diagnose the cluster",
    description="Node conditions, pod counts, unhealthy pods, kube-system problems and recent warning events.",
    responses=_ERRORS,
)
async def get_cluster(request: Request) -> DiagnosticResponse:
    """``GET /api/v1/cluster``"""
    return await _run(request, "diagnose_cluster")


@router.get("/namespaces/{namespace}", response_model=DiagnosticResponse, responses=_ERRORS)
async def get_namespace(request: Request, namespace: str) -> DiagnosticResponse:
    """``GET /api/v1/namespaces/{namespace}``"""
    return await _run(request, "diagnose_namespace", namespace=namespace)


@router.get("/namespaces/{namespace}/pods/{name}", response_model=DiagnosticResponse, responses=_ERRORS)
async def get_pod(request: Request, namespace: str, name: str) -> DiagnosticResponse:
    """``GET /api/v1/namespaces/{namespace}/pods/{name}``"""
    return await _run(request, "diagnose_pod", namespace=namespace, name=name)


@router.get("/unhealthy", response_model=DiagnosticResponse, responses=_ERRORS)
async def get_unhealthy(request: Request, namespace: str | None = None) -> DiagnosticResponse:
    """``GET /api/v1/unhealthy?namespace={ns}``"""
    return await _run(request, "find_unhealthy_pods", namespace=namespace)


# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------


@router.get("/namespaces/{namespace}/security", response_model=DiagnosticResponse, responses=_ERRORS)
async def get_pod_security(request: Request, namespace: str, name: str | None = None) -> DiagnosticResponse:
    """``GET /api/v1/namespaces/{namespace}/security?name={pod}``"""
    return await _run(request, "analyze_pod_security", namespace=namespace, name=name)


@router.get("/namespaces/{namespace}/audit", response_model=DiagnosticResponse, responses=_ERRORS)
async def get_audit(request: Request, namespace: str) -> DiagnosticResponse:
    """``GET /api/v1/namespaces/{namespace}/audit``"""
    return await _run(request, "audit_namespace_security", namespace=namespace)


@router.get("/namespaces/{namespace}/rbac", response_model=DiagnosticResponse, responses=_ERRORS)
async def get_rbac_bindings(request: Request, namespace: str, subject: str | None = None) -> DiagnosticResponse:
    """``GET /api/v1/namespaces/{namespace}/rbac?subject={substring}``"""
    return await _run(request, "list_rbac_bindings", namespace=namespace, subject=subject)


# ---------------------------------------------------------------------------
# Dependencies, connectivity, quotas
# ---------------------------------------------------------------------------


@router.get(
    "/namespaces/{namespace}/workloads/{kind}/{name}/dependencies",
    response_model=DiagnosticResponse,
    responses=_ERRORS,
)
async def get_dependencies(request: Request, namespace: str, kind: str, name: str) -> DiagnosticResponse:
    """``GET /api/v1/namespaces/{namespace}/workloads/{kind}/{name}/dependencies``"""
    return await _run(request, "workload_dependencies", namespace=namespace, name=name, kind=kind)


@router.get("/namespaces/{namespace}/pods/{name}/connectivity", response_model=DiagnosticResponse, responses=_ERRORS)
async def get_connectivity(request: Request, namespace: str, name: str) -> DiagnosticResponse:
    """``GET /api/v1/namespaces/{namespace}/pods/{name}/connectivity``"""
    return await _run(request, "analyze_pod_connectivity", namespace=namespace, pod_name=name)


@router.get("/quotas", response_model=DiagnosticResponse, responses=_ERRORS)
async def get_quotas(request: Request, namespace: str | None = None) -> DiagnosticResponse:
    """``GET /api/v1/quotas?namespace={ns}``"""
    return await _run(request, "check_resource_quotas", namespace=namespace)


# ---------------------------------------------------------------------------
# Flux
# ---------------------------------------------------------------------------


@router.get("/flux/system", response_model=DiagnosticResponse, responses=_ERRORS)
async def get_flux_system(request: Request) -> DiagnosticResponse:
    """``GET /api/v1/flux/system``"""
    return await _run(request, "diagnose_flux_system")


@router.get("/flux/kustomizations", response_model=DiagnosticResponse, responses=_ERRORS)
async def list_kustomizations(request: Request, namespace: str | None = None) -> DiagnosticResponse:
    """``GET /api/v1/flux/kustomizations?namespace={ns}``"""
    return await _run(request, "list_flux_kustomizations", namespace=namespace)


@router.get("/flux/helmreleases", response_model=DiagnosticResponse, responses=_ERRORS)
async def list_helm_releases(request: Request, namespace: str | None = None) -> DiagnosticResponse:
    """``GET /api/v1/flux/helmreleases?namespace={ns}``"""
    return await _run(request, "list_flux_helm_releases", namespace=namespace)


@router.get("/flux/sources", response_model=DiagnosticResponse, responses=_ERRORS)
async def list_sources(
    request: Request,
    namespace: str | None = None,
    source_type: str | None = Query(default=None, description="git, oci, helm, helmchart or bucket."),
) -> DiagnosticResponse:
    """``GET /api/v1/flux/sources?namespace={ns}&source_type={type}``"""
    return await _run(request, "list_flux_sources", namespace=namespace, source_type=source_type)


@router.get("/flux/images", response_model=DiagnosticResponse, responses=_ERRORS)
async def list_image_policies(request: Request, namespace: str | None = None) -> DiagnosticResponse:
    """``GET /api/v1/flux/images?namespace={ns}``"""
    return await _run(request, "list_flux_image_policies", namespace=namespace)


@router.get("/flux/kustomizations/{namespace}/{name}", response_model=DiagnosticResponse, responses=_ERRORS)
async def get_kustomization(request: Request, namespace: str, name: str) -> DiagnosticResponse:
    """``GET /api/v1/flux/kustomizations/{namespace}/{name}``"""
    return await _run(request, "diagnose_kustomization", namespace=namespace, name=name)


@router.get("/flux/helmreleases/{namespace}/{name}", response_model=DiagnosticResponse, responses=_ERRORS)
async def get_helm_release(request: Request, namespace: str, name: str) -> DiagnosticResponse:
    """``GET /api/v1/flux/helmreleases/{namespace}/{name}``"""
    return await _run(request, "diagnose_helm_release", namespace=namespace, name=name)


@router.get("/flux/tree/{namespace}/{name}", response_model=DiagnosticResponse, responses=_ERRORS)
async def get_flux_tree(
    request: Request,
    namespace: str,
    name: str,
    kind: str = "Kustomization",
) -> DiagnosticResponse:
    """``GET /api/v1/flux/tree/{namespace}/{name}?kind={kind}``"""
    return await _run(request, "flux_resource_tree", namespace=namespace, name=name, kind=kind)


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------


@router.get("/allocation", response_model=DiagnosticResponse, responses=_ERRORS)
async def get_allocation(request: Request, namespace: str | None = None) -> DiagnosticResponse:
    """``GET /api/v1/allocation?namespace={ns}``"""
    return await _run(request, "analyze_resource_allocation", namespace=namespace)


@router.get("/top", response_model=DiagnosticResponse, responses=_ERRORS)
async def get_top(
    request: Request,
    namespace: str | None = None,
    resource: str = "cpu",
    limit: int = Query(default=10, description="Number of pods to return."),
) -> DiagnosticResponse:
    """``GET /api/v1/top?namespace={ns}&resource=cpu|memory&limit={n}``"""
    return await _run(request, "top_consumers", namespace=namespace, resource=resource, limit=limit)
