from fastmcp import FastMCP
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware


class McpServerFactory:
    @staticmethod
    def create_mcp_server(mcp_name: str, instructions: str | None = None) -> FastMCP:
        return FastMCP(mcp_name, instructions=instructions)

    @staticmethod
    def create_cors_middleware() -> Middleware:
        return Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=[
                "mcp-protocol-version",
                "mcp-session-id",
                "Authorization",
                "Content-Type",
            ],
            expose_headers=["mcp-session-id"],
        )
