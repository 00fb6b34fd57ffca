"""MCP server exposing the rootfs lifecycle as tools."""
import asyncio
import json
import os
from dataclasses import replace
from typing import Any, Dict, List

import mcp.types as types
from mcp.server import stdio
from mcp.server.lowlevel import Server
from mcp.server.models import InitializationOptions

from alpine_rootfs.bridge import enter
from alpine_rootfs.config import Settings
from alpine_rootfs.environment import create_environment, destroy_environment, get_environment
from alpine_rootfs.errors import RootfsError, log_error
from alpine_rootfs.logging import configure_logging, get_logger
from alpine_rootfs.types import StepContext

logger = get_logger("server")

tools = [
    types.Tool(
        name="alpine_setup",
        description="Provision a new Alpine Linux chroot (optionally for a foreign architecture)",
        inputSchema={
            "type": "object",
            "properties": {
                "arch": {"type": "string", "description": "Alpine architecture, e.g. x86_64, aarch64"},
                "branch": {"type": "string", "description": "vMAJOR.MINOR, edge or latest-stable"},
                "packages": {"type": "array", "items": {"type": "string"}},
                "extra_repositories": {"type": "array", "items": {"type": "string"}},
                "volumes": {"type": "array", "items": {"type": "string"}, "description": "hostPath:guestPath"},
            },
        },
    ),
    types.Tool(
        name="alpine_run",
        description="Run a shell command inside an Alpine chroot",
        inputSchema={
            "type": "object",
            "properties": {
                "env_id": {"type": "string", "description": "Environment identifier"},
                "command": {"type": "string", "description": "Shell command line"},
                "args": {"type": "array", "items": {"type": "string"}, "description": "Positional parameters for the command"},
                "root": {"type": "boolean", "description": "Run as root"},
            },
            "required": ["env_id", "command"],
        },
    ),
    types.Tool(
        name="alpine_destroy",
        description="Unmount and remove an Alpine chroot",
        inputSchema={
            "type": "object",
            "properties": {
                "env_id": {"type": "string", "description": "Environment identifier"},
                "robust": {"type": "boolean", "description": "Evict processes and keep the tree on failure"},
            },
            "required": ["env_id"],
        },
    ),
]


def settings_from_arguments(arguments: Dict[str, Any]) -> Settings:
    overrides = {
        k: arguments[k]
        for k in ("arch", "branch", "packages", "extra_repositories", "volumes")
        if k in arguments
    }
    return replace(Settings.from_env(), **overrides)


def _result(payload: Dict[str, Any]) -> List[types.TextContent]:
    return [types.TextContent(type="text", text=json.dumps(payload))]


async def call_tool(name: str, arguments: Dict[str, Any]) -> List[types.TextContent]:
    try:
        if name == "alpine_setup":
            env = await create_environment(settings_from_arguments(arguments))
            return _result({
                "success": True,
                "data": {
                    "id": env.id,
                    "root": str(env.root),
                    "bin_dir": str(env.bin_dir),
                    "arch": env.arch,
                    "branch": env.branch,
                    "created_at": env.created_at.isoformat(),
                },
            })

        if name in ("alpine_run", "alpine_destroy"):
            env = get_environment(arguments["env_id"])
            if not env:
                return _result({"success": False, "error": f"Unknown environment: {arguments['env_id']}"})

            if name == "alpine_run":
                returncode, stdout, stderr = await enter(
                    StepContext.root("run"),
                    env,
                    "-c",
                    [arguments["command"], *arguments.get("args", [])],
                    root=bool(arguments.get("root")),
                    cwd="/",
                    capture=True,
                )
                return _result({
                    "success": returncode == 0,
                    "data": {
                        "returncode": returncode,
                        "stdout": stdout.decode(errors="replace"),
                        "stderr": stderr.decode(errors="replace"),
                    },
                })

            await destroy_environment(env, robust=bool(arguments.get("robust")))
            return _result({"success": True, "data": {"message": "Environment destroyed"}})

        return _result({"success": False, "error": f"Unknown tool: {name}"})

    except RootfsError as e:
        log_error(e, {"tool": name})
        return _result({"success": False, "error": str(e), "phase": e.phase, "details": e.details})


async def init_server() -> Server:
    logger.info("tools_registered", tools=[t.name for t in tools])
    server = Server("alpine-rootfs")

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        return tools

    @server.call_tool()
    async def handle_call_tool(name: str, arguments: Dict[str, Any]) -> List[types.TextContent]:
        logger.debug("tool_call", name=name, arguments=arguments)
        return await call_tool(name, arguments or {})

    return server


async def serve() -> None:
    configure_logging(os.environ.get("ALPINE_ROOTFS_LOG_LEVEL", "INFO"))
    logger.info("server_starting")
    server = await init_server()
    async with stdio.stdio_server() as (read_stream, write_stream):
        init_options = InitializationOptions(
            server_name="alpine-rootfs",
            server_version="0.1.0",
            capabilities=types.ServerCapabilities(
                tools=types.ToolsCapability(listChanged=False),
                logging=types.LoggingCapability(),
            ),
        )
        await server.run(read_stream, write_stream, init_options)


def main() -> None:
    """Run the MCP server."""
    asyncio.run(serve())
