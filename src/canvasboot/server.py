"""Diagnostics server for the boot orchestrator.

Runs the boot pipeline in the background when the server starts and
exposes its state, a retry trigger and diagnostic reports as MCP tools.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from .config import load_boot_config
from .container import ServiceContainer

logger = logging.getLogger(__name__)

# The one container for this process; created on first use or by main().
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """Get the process container, building it from the environment if needed."""
    global _container
    if _container is None:
        _container = ServiceContainer(config=load_boot_config())
    return _container


def set_container(container: Optional[ServiceContainer]) -> None:
    """Replace the process container (None resets it)."""
    global _container
    _container = container


@asynccontextmanager
async def boot_lifespan(server: FastMCP):
    """Start initialization and periodic reports; tear both down on exit."""
    container = get_container()
    boot_task = asyncio.create_task(container.pipeline.initialize())
    boot_task.add_done_callback(_log_boot_result)
    if container.config.periodic_reports_enabled:
        container.telemetry.start_periodic_reports(container.config.report_interval_s)
    try:
        yield {"boot_task": boot_task}
    finally:
        container.telemetry.stop_periodic_reports()
        container.boot.unwire_events()
        if not boot_task.done():
            logger.info("Server stopping before initialization finished")
            boot_task.cancel()
            await asyncio.gather(boot_task, return_exceptions=True)


def _log_boot_result(task: "asyncio.Task[bool]") -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("Initialization task raised: %s", error, exc_info=error)
    elif task.result():
        logger.info("Canvas application ready")
    else:
        logger.warning("Initialization did not complete; use retry_initialization to try again")


mcp = FastMCP("canvasboot", lifespan=boot_lifespan)


# ---- tool implementations ----


def boot_status_payload(container: ServiceContainer) -> Dict[str, Any]:
    return {"success": True, **container.status()}


async def retry_payload(container: ServiceContainer) -> Dict[str, Any]:
    ready = await container.pipeline.retry()
    return {
        "success": ready,
        "state": container.pipeline.state.value,
        "recovery": container.recovery.status(),
    }


def report_payload(container: ServiceContainer, log_level: str = "INFO") -> Dict[str, Any]:
    report = container.telemetry.generate_report(log_level)
    report["status"] = container.status()
    return {"success": True, "report": report}


def events_payload(container: ServiceContainer, limit: int = 20) -> Dict[str, Any]:
    events: List[Dict[str, Any]] = [
        event.to_dict() for event in container.events.get_recent(max(0, limit))
    ]
    return {"success": True, "events": events, "count": len(events)}


# ---- tools ----


@mcp.tool(
    name="boot_status",
    description="Pipeline state, unit load partition, recovery counters and bridge/canvas status.",
)
async def boot_status() -> Dict[str, Any]:
    return boot_status_payload(get_container())


@mcp.tool(
    name="retry_initialization",
    description="User-initiated retry: clears recovery budgets and terminal state, then re-runs the boot steps.",
)
async def retry_initialization() -> Dict[str, Any]:
    return await retry_payload(get_container())


@mcp.tool(
    name="diagnostic_report",
    description="Diagnostic report built from buffered telemetry (logs, loads, recoveries, timings).",
)
async def diagnostic_report(log_level: str = "INFO") -> Dict[str, Any]:
    return report_payload(get_container(), log_level)


@mcp.tool(
    name="recent_events",
    description="Most recent domain events (unit loads, step failures, recovery attempts).",
)
async def recent_events(limit: int = 20) -> Dict[str, Any]:
    return events_payload(get_container(), limit)


# ---- entry point ----


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Boot orchestrator diagnostics server."
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "http", "sse"],
        help="MCP transport (default stdio).",
    )
    parser.add_argument("--host", help="Host interface for HTTP/SSE transports.")
    parser.add_argument("--port", type=int, help="Port for HTTP/SSE transports.")
    parser.add_argument(
        "--manifest",
        help=(
            "YAML boot manifest (overrides CANVASBOOT_MANIFEST). Units are imported "
            "from CANVASBOOT_UNIT_PACKAGE and stylesheets read from "
            "CANVASBOOT_RESOURCE_ROOT."
        ),
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        help="Logging level (overrides CANVASBOOT_LOG_LEVEL).",
    )
    return parser


def main(argv: List[str] | None = None) -> None:
    """Start the diagnostics server and boot the canvas application."""

    parser = _build_arg_parser()
    args = parser.parse_args(argv)

    config = load_boot_config().with_overrides(
        manifest_path=args.manifest,
        log_level=args.log_level,
    )
    logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO))
    set_container(ServiceContainer(config=config))

    run_kwargs: Dict[str, Any] = {}
    transport = args.transport or "stdio"
    run_kwargs["transport"] = transport
    if transport != "stdio":
        if args.host:
            run_kwargs["host"] = args.host
        if args.port:
            run_kwargs["port"] = args.port

    logger.info("Starting canvasboot server (%s transport)", transport)
    try:
        mcp.run(**run_kwargs)
    except KeyboardInterrupt:
        logger.info("canvasboot interrupted by user")


if __name__ == "__main__":
    main()
