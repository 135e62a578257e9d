"""Error taxonomy for cluster access and diagnostics.

Collector code converts ``ApiException`` into one of these types at the
point of the API call so callers never inspect HTTP status codes.
"""

from __future__ import annotations

from kubernetes_asyncio.client.exceptions import ApiException


class KubeDoctorError(Exception):
    """Base class for every error raised by the diagnostics engine."""

    error_code: str = "INTERNAL_ERROR"


class ClusterAccessError(KubeDoctorError):
    """A read against the cluster API failed."""

    def __init__(self, message: str, *, kind: str = "", namespace: str = "", name: str = "") -> None:
        super().__init__(message)
        self.kind = kind
        self.namespace = namespace
        self.name = name

    @property
    def target(self) -> str:
        parts = [p for p in (self.kind, self.namespace, self.name) if p]
        return "/".join(parts) or "<cluster>"


class NotFoundError(ClusterAccessError):
    """The named resource does not exist."""

    error_code = "RESOURCE_NOT_FOUND"


class ForbiddenError(ClusterAccessError):
    """RBAC denied the read."""

    error_code = "FORBIDDEN"


class UnauthorizedError(ForbiddenError):
    """Cluster credentials were rejected."""

    error_code = "UNAUTHORIZED"


class UnavailableError(ClusterAccessError):
    """The source is not installed, not reachable, or timed out."""

    error_code = "UNAVAILABLE"


class FluxNotInstalledError(UnavailableError):
    """The Flux toolkit CRDs are not served by this cluster."""

    error_code = "FLUX_NOT_INSTALLED"


class MalformedResourceError(KubeDoctorError):
    """A resource was fetched but lacks fields the operation requires."""

    error_code = "MALFORMED_RESOURCE"


class InvalidArgumentError(KubeDoctorError, ValueError):
    """A caller-supplied argument is not acceptable (unknown kind, bad limit...)."""

    error_code = "INVALID_ARGUMENT"


def from_api_exception(
    exc: ApiException,
    *,
    kind: str = "",
    namespace: str = "",
    name: str = "",
) -> ClusterAccessError:
    """Map an ApiException onto the error taxonomy by HTTP status."""
    status = exc.status or 0
    reason = (exc.reason or "").strip() or f"HTTP {status}"
    target = "/".join(p for p in (kind, namespace, name) if p) or "<cluster>"

    if status == 404:
        return NotFoundError(f"Not found: {target}", kind=kind, namespace=namespace, name=name)
    if status == 401:
        return UnauthorizedError(
            f"Unauthorized reading {target}. Check cluster credentials.",
            kind=kind,
            namespace=namespace,
            name=name,
        )
    if status == 403:
        return ForbiddenError(
            f"Permission denied reading {target}. Check RBAC permissions.",
            kind=kind,
            namespace=namespace,
            name=name,
        )
    if status in (408, 504):
        return UnavailableError(
            f"Timeout reading {target}. The cluster may be unreachable.",
            kind=kind,
            namespace=namespace,
            name=name,
        )
    return UnavailableError(f"Error reading {target}: {reason}", kind=kind, namespace=namespace, name=name)
