from datetime import UTC, datetime

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from src.services.gateway_services import GatewayServices

router = APIRouter(tags=["health"])


def _services(request: Request) -> GatewayServices:
    return request.app.state.services


@router.get("/health")
async def health_check(request: Request):
    services = _services(request)
    graph_connected = False
    if services.graph_guard is not None:
        graph_connected = await services.graph_guard.is_backend_connected()
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "api_key": bool(services.config.semantic_scholar_api_key),
        "neo4j": graph_connected,
    }


@router.get("/metrics")
async def metrics(request: Request) -> Response:
    return Response(
        content=generate_latest(request.app.state.metrics_registry),
        media_type=CONTENT_TYPE_LATEST,
    )
