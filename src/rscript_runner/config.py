"""rscript-runner 环境变量配置管理。

环境变量:
    RSCRIPT_R_PATH: R 可执行文件路径
        - 默认 /usr/local/bin/R
        - 不做自动探测，由部署方指定

    RSCRIPT_ECHO: 是否实时回显子进程输出
        - true/1/yes = 开启
        - false/0/no = 关闭 (默认)

    RSCRIPT_TIMEOUT: 单次脚本执行的超时时间（秒）
        - 未设置/无效/<=0 = 不限时 (默认)

    RSCRIPT_KEEP_SCRIPTS: 是否保留临时脚本和数据文件
        - true/1/yes = 保留（便于调试）
        - false/0/no = 执行后删除 (默认)

    RSCRIPT_WORKDIR: 子进程工作目录
        - 未设置 = 调用时的当前目录

    RSCRIPT_ENABLE: 启用的 MCP 工具列表
        - 空/未设置 = 全部可用 (run_r_script, render_plot)
        - 逗号分割，忽略大小写

    RSCRIPT_DISABLE: 禁用的 MCP 工具列表（从 enable 中减去）

    RSCRIPT_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config", "SUPPORTED_TOOLS"]

# 默认 R 路径（可通过 RSCRIPT_R_PATH 覆盖）
DEFAULT_R_PATH = "/usr/local/bin/R"

# 支持的 MCP 工具
SUPPORTED_TOOLS = frozenset({"run_r_script", "render_plot"})


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_tool_list(value: str | None) -> set[str]:
    """解析工具列表环境变量。

    Args:
        value: 环境变量值，逗号分割，忽略大小写

    Returns:
        工具集合（无效名称被忽略）
    """
    if not value or not value.strip():
        return set()

    tools = set()
    for item in value.split(","):
        tool = item.strip().lower()
        if tool and tool in SUPPORTED_TOOLS:
            tools.add(tool)

    return tools


def _compute_enabled_tools(enable: str | None, disable: str | None) -> set[str]:
    """计算最终启用的工具列表。

    Args:
        enable: RSCRIPT_ENABLE 环境变量值
        disable: RSCRIPT_DISABLE 环境变量值

    Returns:
        最终启用的工具集合
    """
    enabled = _parse_tool_list(enable)
    disabled = _parse_tool_list(disable)

    # enable 为空时默认全开
    if not enabled:
        enabled = set(SUPPORTED_TOOLS)

    return enabled - disabled


def _parse_timeout(value: str | None) -> float | None:
    """解析超时时间环境变量。"""
    if not value or not value.strip():
        return None
    try:
        timeout = float(value)
    except ValueError:
        return None
    return timeout if timeout > 0 else None


def _parse_workdir(value: str | None) -> Path | None:
    """解析工作目录环境变量。"""
    if not value or not value.strip():
        return None
    return Path(value.strip()).expanduser()


@dataclass
class Config:
    """rscript-runner 配置。

    Attributes:
        r_path: R 可执行文件路径
        echo: 是否实时回显子进程输出
        timeout: 执行超时（秒），None 表示不限时
        keep_scripts: 是否保留临时脚本
        workdir: 子进程工作目录，None 表示当前目录
        tools: 启用的 MCP 工具集合
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    r_path: str = DEFAULT_R_PATH
    echo: bool = False
    timeout: float | None = None
    keep_scripts: bool = False
    workdir: Path | None = None
    tools: set[str] = field(default_factory=lambda: set(SUPPORTED_TOOLS))
    log_debug: bool = False
    log_file: str | None = None

    def is_tool_allowed(self, tool: str) -> bool:
        """检查工具是否允许使用。"""
        return tool.lower() in self.tools

    def __repr__(self) -> str:
        tools_str = ",".join(sorted(self.tools)) or "none"
        return (
            f"Config(r_path={self.r_path}, "
            f"echo={self.echo}, "
            f"timeout={self.timeout}, "
            f"keep_scripts={self.keep_scripts}, "
            f"workdir={self.workdir}, "
            f"tools={tools_str}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "rscript-runner"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"rscript_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("RSCRIPT_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    r_path = os.environ.get("RSCRIPT_R_PATH", "").strip() or DEFAULT_R_PATH

    return Config(
        r_path=r_path,
        echo=_parse_bool(os.environ.get("RSCRIPT_ECHO"), default=False),
        timeout=_parse_timeout(os.environ.get("RSCRIPT_TIMEOUT")),
        keep_scripts=_parse_bool(os.environ.get("RSCRIPT_KEEP_SCRIPTS"), default=False),
        workdir=_parse_workdir(os.environ.get("RSCRIPT_WORKDIR")),
        tools=_compute_enabled_tools(
            os.environ.get("RSCRIPT_ENABLE"),
            os.environ.get("RSCRIPT_DISABLE"),
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
