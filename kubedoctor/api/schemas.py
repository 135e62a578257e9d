"""Pydantic response models for the KubeDoctor REST API.

All models use Pydantic v2 syntax. Field descriptions are also used by
FastAPI to generate the OpenAPI spec.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class HealthStatus(BaseModel):
    """Response body for ``GET /api/v1/health``."""

    status: str = Field(
        ...,
        description="Always ``ok`` while the process is running.",
        examples=["ok"],
    )
    version: str = Field(
        ...,
        description="KubeDoctor version string.",
        examples=["0.1.0"],
    )
    classifiers: int = Field(
        ...,
        description="Number of registered classifiers.",
        examples=[9],
    )


class DiagnosticResponse(BaseModel):
    """Envelope returned by every diagnostic endpoint."""

    operation: str = Field(
        ...,
        description="Name of the diagnostic operation that produced the result.",
        examples=["diagnose_pod", "audit_namespace_security"],
    )
    result: dict[str, Any] = Field(
        ...,
        description="Structured report. Shape depends on the operation.",
    )
    text: str = Field(
        ...,
        description="Plain-text rendering of the report.",
    )
    mermaid: str | None = Field(
        default=None,
        description="Mermaid flowchart for reports that carry a graph.",
        examples=['graph LR\n    Deployment_default_web["Deployment: web"]'],
    )


class ErrorResponse(BaseModel):
    """Standard error envelope returned for all 4xx and 5xx responses."""

    error: str = Field(
        ...,
        description="Machine-readable error code.",
        examples=[
            "RESOURCE_NOT_FOUND",
            "FORBIDDEN",
            "UNAVAILABLE",
            "FLUX_NOT_INSTALLED",
            "INVALID_ARGUMENT",
            "INTERNAL_ERROR",
        ],
    )
    detail: str = Field(
        ...,
        description="Human-readable description of the error.",
        examples=["Not found: Pod/default/web-0"],
    )
