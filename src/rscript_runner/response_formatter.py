"""MCP 响应格式化器。

使用 XML-wrapped 文本格式，对 LLM 友好。

格式说明:
    - <exit_code>: 子进程退出码
    - <stdout>/<stderr>: 捕获的输出（为空时省略）
    - <output_file>: 渲染生成的图片路径
    - <error>: 错误信息
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .runtime import CommandResult

if TYPE_CHECKING:
    from mcp.types import TextContent

__all__ = [
    "format_command_result",
    "format_render_response",
    "format_error_response",
    "render_result_xml",
]


def _format_streams(result: CommandResult) -> list[str]:
    """格式化 stdout/stderr（为空时省略）。"""
    parts = []
    if result.stdout_text:
        parts.append(f"  <stdout>\n{result.stdout_text}\n  </stdout>")
    if result.stderr_text:
        parts.append(f"  <stderr>\n{result.stderr_text}\n  </stderr>")
    return parts


def render_result_xml(result: CommandResult) -> str:
    """将 CommandResult 格式化为 XML 文本。

    非零退出码时额外输出 <error>，流内容仍然保留，方便诊断。
    """
    parts = ["<response>"]
    if not result.succeeded:
        parts.append(f"  <error>Script exited with status {result.exit_code}</error>")
    parts.append(f"  <exit_code>{result.exit_code}</exit_code>")
    parts.extend(_format_streams(result))
    parts.append("</response>")
    return "\n".join(parts)


def format_command_result(result: CommandResult) -> list[TextContent]:
    """将脚本执行结果转换为 MCP 响应。"""
    from mcp.types import TextContent

    return [TextContent(type="text", text=render_result_xml(result))]


def format_render_response(output_file: str) -> list[TextContent]:
    """渲染成功的 MCP 响应。"""
    from mcp.types import TextContent

    text = f"<response>\n  <output_file>{output_file}</output_file>\n</response>"
    return [TextContent(type="text", text=text)]


def format_error_response(error: str, result: CommandResult | None = None) -> list[TextContent]:
    """统一的错误响应格式化函数。

    确保所有错误都以 <response><error>...</error></response> 格式返回，
    保持 API 契约一致性。附带 result 时同时返回已捕获的输出。
    """
    from mcp.types import TextContent

    parts = ["<response>", f"  <error>{error}</error>"]
    if result is not None:
        parts.append(f"  <exit_code>{result.exit_code}</exit_code>")
        parts.extend(_format_streams(result))
    parts.append("</response>")
    return [TextContent(type="text", text="\n".join(parts))]
