from __future__ import annotations

from collections.abc import Iterable

from fastapi import FastAPI, HTTPException
from fastapi.responses import Response

from reqguard.resource import Resource
from reqguard.schemas import AbortAllResponse, HealthResponse, ResourceHealth
from reqguard.telemetry import Telemetry


def create_diagnostics_app(resources: Iterable[Resource]) -> FastAPI:
    registry: dict[str, Resource] = {}
    for resource in resources:
        if resource.name in registry:
            raise ValueError(f"duplicate resource name {resource.name!r}")
        registry[resource.name] = resource

    app = FastAPI(title="reqguard diagnostics", version="0.1.0")

    def resource_for(name: str) -> Resource:
        resource = registry.get(name)
        if resource is None:
            raise HTTPException(status_code=404, detail=f"unknown resource {name!r}")
        return resource

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(
            status="ok",
            resources=[
                ResourceHealth(
                    name=name,
                    has_pending=resource.has_pending,
                    pending=resource.pending_counts(),
                )
                for name, resource in registry.items()
            ],
        )

    @app.get("/resources/{name}", response_model=ResourceHealth)
    async def resource_health(name: str) -> ResourceHealth:
        resource = resource_for(name)
        return ResourceHealth(
            name=name,
            has_pending=resource.has_pending,
            pending=resource.pending_counts(),
        )

    @app.post("/resources/{name}/abort-all", response_model=AbortAllResponse)
    async def abort_all(name: str) -> AbortAllResponse:
        resource = resource_for(name)
        return AbortAllResponse(name=name, aborted=resource.abort_all())

    @app.get("/metrics")
    async def metrics() -> Response:
        body, content_type = Telemetry.scrape()
        return Response(content=body, media_type=content_type)

    return app
