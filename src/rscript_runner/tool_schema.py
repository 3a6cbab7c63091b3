"""Tool Schema 定义。

包含工具描述、参数 schema 和 schema 创建函数。
"""

from __future__ import annotations

from typing import Any

from .config import SUPPORTED_TOOLS

__all__ = [
    "SUPPORTED_TOOLS",
    "TOOL_DESCRIPTIONS",
    "create_tool_schema",
]

# 工具描述
TOOL_DESCRIPTIONS = {
    "run_r_script": """Run an R script with the local R installation.

The script is written to a temporary file and executed with
`R --vanilla --quiet --slave -f <file>`.

RETURNS:
- <exit_code>: R's exit status (0 = success)
- <stdout>/<stderr>: everything R printed, streams kept separate
- <error>: present when R exited with a non-zero status

NOTES:
- No session state survives between calls; load libraries in every script.
- Use timeout for scripts that might not terminate.""",

    "render_plot": """Render a ggplot2 plot to an image file.

Layers are joined with "+" into one ggplot expression, e.g.
["ggplot(df, aes(x, y))", "geom_point()"]. Tables in `data` are made
available as R data frames under their key (read with readr::read_tsv).

Supported output formats: .png .svg .eps .jpg .pdf

RETURNS:
- <output_file>: absolute path of the written image
- <error> plus R's output when rendering failed""",
}

# 工具参数 schema
_PROPERTIES: dict[str, dict[str, Any]] = {
    "run_r_script": {
        "script": {
            "type": "string",
            "description": "R source code to execute.",
        },
        "timeout": {
            "type": "number",
            "description": "Seconds before R is terminated. Omit to use the server default.",
            "exclusiveMinimum": 0,
        },
    },
    "render_plot": {
        "layers": {
            "type": "array",
            "items": {"type": "string"},
            "minItems": 1,
            "description": "ggplot2 terms combined with '+'.",
        },
        "output_file": {
            "type": "string",
            "description": "Absolute path of the image to write; extension selects the format.",
        },
        "data": {
            "type": "object",
            "description": "Data frames by R variable name; each value is a list of row objects.",
            "additionalProperties": {
                "type": "array",
                "items": {"type": "object"},
            },
        },
    },
}

_REQUIRED: dict[str, list[str]] = {
    "run_r_script": ["script"],
    "render_plot": ["layers", "output_file"],
}


def create_tool_schema(tool: str) -> dict[str, Any]:
    """创建工具的 inputSchema。

    Args:
        tool: 工具名称

    Returns:
        JSON Schema 字典

    Raises:
        ValueError: 不支持的工具
    """
    if tool not in SUPPORTED_TOOLS:
        raise ValueError(f"Unsupported tool: {tool}")

    return {
        "type": "object",
        "properties": _PROPERTIES[tool],
        "required": list(_REQUIRED[tool]),
    }
