"""rscript-runner MCP Server。

通过 MCP 暴露 R 脚本执行和 ggplot2 渲染。

环境变量:
    RSCRIPT_R_PATH: R 可执行文件路径
    RSCRIPT_TIMEOUT: 默认超时（秒）
    RSCRIPT_ENABLE / RSCRIPT_DISABLE: 工具过滤

注意:
    stdout 是 JSON-RPC 通道，服务器模式下强制关闭输出回显。
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from .config import Config, get_config
from .render import (
    InterpreterCommand,
    LocalREngine,
    LocalRenderingFailedError,
    PlotSpec,
    RenderingFailedError,
    ScriptInvoker,
)
from .response_formatter import (
    format_command_result,
    format_error_response,
    format_render_response,
)
from .runtime import ProcessError
from .tool_schema import SUPPORTED_TOOLS, TOOL_DESCRIPTIONS, create_tool_schema

__all__ = ["create_server", "dispatch_tool"]

logger = logging.getLogger(__name__)


def _make_invoker(config: Config, timeout: Any = None) -> ScriptInvoker:
    """创建服务器使用的 ScriptInvoker（关闭回显）。"""
    if timeout is not None:
        timeout = float(timeout)
        if timeout <= 0:
            raise ValueError("timeout must be positive")
    return ScriptInvoker(
        InterpreterCommand.r(config.r_path),
        echo=False,
        cwd=config.workdir,
        timeout=timeout if timeout is not None else config.timeout,
        keep_scripts=config.keep_scripts,
    )


async def handle_run_r_script(arguments: dict[str, Any], config: Config) -> list[TextContent]:
    """处理 run_r_script 工具调用。"""
    script = arguments.get("script")
    if not isinstance(script, str) or not script.strip():
        return format_error_response("'script' must be a non-empty string")

    invoker = _make_invoker(config, arguments.get("timeout"))
    result = await invoker.run_script(script)
    logger.info(f"run_r_script finished with exit_code={result.exit_code}")
    return format_command_result(result)


async def handle_render_plot(arguments: dict[str, Any], config: Config) -> list[TextContent]:
    """处理 render_plot 工具调用。"""
    layers = arguments.get("layers")
    if not isinstance(layers, list) or not layers or not all(isinstance(l, str) for l in layers):
        return format_error_response("'layers' must be a non-empty list of strings")

    output_file = arguments.get("output_file")
    if not isinstance(output_file, str) or not output_file.strip():
        return format_error_response("'output_file' must be a non-empty string")

    data = arguments.get("data") or {}
    if not isinstance(data, dict):
        return format_error_response("'data' must be an object of row lists")

    engine = LocalREngine(_make_invoker(config))
    plot = PlotSpec(layers=layers, data=data)

    try:
        path = await engine.render(plot, Path(output_file))
    except LocalRenderingFailedError as e:
        return format_error_response(
            f"R exited with status {e.result.exit_code}", e.result
        )

    logger.info(f"render_plot wrote {path}")
    return format_render_response(str(path))


async def dispatch_tool(
    name: str,
    arguments: dict[str, Any],
    config: Config | None = None,
) -> list[TextContent]:
    """按名称执行工具，所有异常转换为错误响应（取消除外）。"""
    config = config or get_config()

    if name not in SUPPORTED_TOOLS:
        return format_error_response(f"Unknown tool '{name}'")

    if not config.is_tool_allowed(name):
        return format_error_response(f"Tool '{name}' is not enabled")

    try:
        if name == "run_r_script":
            return await handle_run_r_script(arguments, config)
        return await handle_render_plot(arguments, config)

    except asyncio.CancelledError:
        logger.info(f"Tool '{name}' cancelled")
        raise

    except (ProcessError, RenderingFailedError, ValueError) as e:
        logger.warning(f"Tool '{name}' failed: {type(e).__name__}: {e}")
        return format_error_response(str(e))

    except Exception as e:
        logger.error(f"Tool '{name}' unexpected error: type={type(e).__name__}, msg={e}")
        return format_error_response(str(e))


def create_server(config: Config | None = None) -> Server:
    """创建 MCP Server 实例。

    Args:
        config: 配置（默认使用全局配置）
    """
    config = config or get_config()
    server = Server("rscript-runner")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """列出可用工具。"""
        tools = [
            Tool(
                name=tool,
                description=TOOL_DESCRIPTIONS[tool],
                inputSchema=create_tool_schema(tool),
            )
            for tool in sorted(SUPPORTED_TOOLS)
            if config.is_tool_allowed(tool)
        ]
        logger.debug(f"[MCP] list_tools returning {[t.name for t in tools]}")
        return tools

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """调用工具。"""
        logger.debug(
            f"[MCP] call_tool request:\n"
            f"  Tool: {name}\n"
            f"  Arguments: {json.dumps({k: v[:100] + '...' if isinstance(v, str) and len(v) > 100 else v for k, v in arguments.items()}, ensure_ascii=False, default=str)}"
        )
        return await dispatch_tool(name, arguments, config)

    return server
