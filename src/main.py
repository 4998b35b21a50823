import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.logger import logger

from src.agent_tools.scholar.scholar_mcp import create_scholar_mcp_server
from src.factory.mcp_server_factory import McpServerFactory
from src.routes.health_route import router as health_router
from src.services.gateway_services import GatewayServices, build_services
from src.utils.gateway_config import GatewayConfig
from src.utils.logging_config import configure_logging
from src.utils.metrics import build_metrics_registry

MCP_PATH = "/mcp"


def create_app(services: GatewayServices | None = None) -> FastAPI:
    """One ASGI app serving the MCP endpoint, `/health` and `/metrics` from shared services."""
    owned = services is None
    if services is None:
        services = build_services(GatewayConfig.from_env())
    mcp_app = create_scholar_mcp_server(services).http_app(path=MCP_PATH)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with mcp_app.lifespan(app):
            try:
                yield
            finally:
                if owned:
                    await services.aclose()

    app = FastAPI(
        title="Semantic Scholar Gateway",
        logger=logging.getLogger(__name__),
        lifespan=lifespan,
        middleware=[McpServerFactory.create_cors_middleware()],
    )
    app.state.services = services
    app.state.metrics_registry = build_metrics_registry(services)
    app.include_router(health_router)
    app.mount("/", mcp_app)
    return app


if __name__ == "__main__":
    configure_logging()
    config = GatewayConfig.from_env()
    logger.info(
        "Running Semantic Scholar MCP server on %s:%s%s", config.mcp_host, config.mcp_port, MCP_PATH
    )
    uvicorn.run(create_app(), host=config.mcp_host, port=config.mcp_port)
