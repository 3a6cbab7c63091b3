"""rscript-runner 应用入口。

包含日志配置、命令行解析和主入口点。

用法:
    rscript-runner                  # 以 stdio 方式运行 MCP Server
    rscript-runner serve            # 同上
    rscript-runner run plot.R       # 直接执行一个 R 脚本，退出码与 R 一致
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .config import Config, get_config
from .render import ScriptInvoker
from .runtime import ProcessLaunchError, ProcessTimeoutError

__all__ = ["run_server", "run_script_file", "configure_logging", "main"]

logger = logging.getLogger(__name__)

# 与 shell 约定一致的退出码
EXIT_LAUNCH_FAILED = 127
EXIT_TIMED_OUT = 124


async def run_server(config: Config | None = None) -> None:
    """运行 MCP Server（stdio transport）。"""
    from mcp.server.stdio import stdio_server

    from .server import create_server

    config = config or get_config()
    logger.info(f"Starting rscript-runner MCP Server: {config}")

    server = create_server(config)
    async with stdio_server() as (read_stream, write_stream):
        logger.debug("stdio transport ready")
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )
    logger.info("MCP Server stopped")


def run_script_file(
    script_file: Path,
    config: Config,
    *,
    timeout: float | None = None,
    echo: bool = True,
) -> int:
    """执行单个 R 脚本文件并返回进程退出码。

    Args:
        script_file: R 脚本路径
        config: 配置
        timeout: 超时（秒），None 时使用配置中的默认值
        echo: 是否实时回显输出

    Returns:
        R 的退出码；启动失败返回 127，超时返回 124
    """
    try:
        script = script_file.read_text(encoding="utf-8")
    except OSError as e:
        logger.error(f"Cannot read script {script_file}: {e}")
        return 1

    invoker = ScriptInvoker.from_config(config)
    invoker.echo = echo
    if timeout is not None:
        invoker.timeout = timeout

    try:
        result = invoker.run_script_sync(script)
    except ProcessLaunchError as e:
        logger.error(f"{e} (set RSCRIPT_R_PATH to the R executable)")
        return EXIT_LAUNCH_FAILED
    except ProcessTimeoutError as e:
        logger.error(str(e))
        return EXIT_TIMED_OUT

    if not result.succeeded:
        logger.warning(f"{script_file} exited with status {result.exit_code}")
        if not echo and result.stderr_text:
            print(result.stderr_text, file=sys.stderr)
    return result.exit_code


def configure_logging(config: Config) -> None:
    """配置日志输出。

    - 默认: stderr，rscript_runner 命名空间 INFO
    - RSCRIPT_LOG_DEBUG: 临时文件，DEBUG
    """
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # LOG_DEBUG 模式：输出到临时文件
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        # 默认模式：输出到 stderr（stdout 留给 MCP / 脚本输出）
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # 配置 root logger（第三方库）为 WARNING，减少噪音
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    # 只对 rscript_runner 命名空间启用详细日志
    logging.getLogger("rscript_runner").setLevel(log_level)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rscript-runner",
        description="Run R scripts and render ggplot2 plots, standalone or as an MCP server.",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("serve", help="Run the MCP server on stdio (default)")

    run_parser = subparsers.add_parser("run", help="Run an R script file once")
    run_parser.add_argument("script", type=Path, help="Path to the R script")
    run_parser.add_argument("--timeout", type=float, default=None, help="Seconds before R is terminated")
    run_parser.add_argument("--quiet", action="store_true", help="Do not echo R output")

    return parser


def main(argv: list[str] | None = None) -> None:
    """主入口点。"""
    args = _build_parser().parse_args(argv)
    config = get_config()
    configure_logging(config)

    if args.command == "run":
        sys.exit(run_script_file(args.script, config, timeout=args.timeout, echo=not args.quiet))

    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
        sys.exit(130)  # 128 + SIGINT(2) = 130


if __name__ == "__main__":
    main()
