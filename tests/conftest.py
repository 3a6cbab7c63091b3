"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import stat
import sys
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

# 测试用子进程程序
FIXTURES_DIR = Path(__file__).parent / "fixtures"
EMITTER = FIXTURES_DIR / "emitter.py"
FAKE_R = FIXTURES_DIR / "fake_r.py"

IS_WINDOWS = sys.platform == "win32"


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """创建临时工作目录。"""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def emitter_argv() -> list[str]:
    """输出生成器的命令行前缀。"""
    return [sys.executable, str(EMITTER)]


@pytest.fixture
def fake_r_executable(tmp_path: Path) -> Path:
    """可直接执行的假 R（shell 包装脚本，仅 POSIX）。"""
    if IS_WINDOWS:
        pytest.skip("POSIX-only wrapper script")
    wrapper = tmp_path / "bin" / "R"
    wrapper.parent.mkdir()
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_R}" "$@"\n')
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return wrapper


@pytest.fixture(autouse=True)
def _reset_globals():
    """每个测试后清理全局配置和默认引擎。"""
    yield
    from rscript_runner import config as config_module
    from rscript_runner.render import reset_default_engine

    config_module._config = None
    reset_default_engine()
