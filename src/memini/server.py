"""FastMCP server bootstrap for Memini."""

import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import MeminiSettings, get_settings
from .runtime import Orchestrator, build_orchestrator
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the Memini server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[MeminiSettings] = None,
    orchestrator: Orchestrator | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server around an orchestrator."""

    settings = settings or get_settings()
    orchestrator = orchestrator or build_orchestrator(settings)

    @asynccontextmanager
    async def lifespan(_server: FastMCP):
        await orchestrator.start()
        try:
            yield
        finally:
            await orchestrator.shutdown()

    server = FastMCP(
        name="Memini",
        version=__version__,
        instructions=(
            "Memini runs many agent sessions side by side. Spawn sessions or coordination "
            "groups, answer the ones waiting for input, and manage recurring recipes with "
            "run_command('auto ...')."
        ),
        lifespan=lifespan,
    )

    handles = register_tools(server, orchestrator=orchestrator)

    @server.resource(
        "resource://memini/status",
        name="memini_status",
        title="Memini Status",
        description="Session counts by state, the waiting queue, and recipe summaries.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing runtime state."""

        payload = {
            "server_version": __version__,
            "log_level": settings.log_level,
            "recipe_dir": str(settings.recipe_dir) if settings.recipe_dir else None,
            **orchestrator.status(),
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "orchestrator", orchestrator)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Memini MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    orchestrator: Orchestrator = getattr(server, "orchestrator")
    logging.getLogger(__name__).info(
        "Launching Memini MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "codex_available": orchestrator.metadata.codex.get("available"),
            "memory_available": orchestrator.metadata.memory.get("available"),
            "tool_servers": orchestrator.metadata.tools.get("servers"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
