"""rscript-runner - 运行 R 脚本并渲染 ggplot2 图表。

环境变量:
    RSCRIPT_R_PATH: R 可执行文件路径 (默认 /usr/local/bin/R)
    RSCRIPT_ECHO: 是否实时回显 R 输出 (默认 false)
    RSCRIPT_TIMEOUT: 执行超时秒数 (默认不限时)

用法:
    rscript-runner run plot.R
    uvx rscript-runner          # MCP Server
"""

__version__ = "0.1.0"

from .app import main
from .runtime import CommandResult, ProcessInvocation, ProcessRunner, eval_cmd

__all__ = [
    "__version__",
    "CommandResult",
    "ProcessInvocation",
    "ProcessRunner",
    "eval_cmd",
    "main",
]
