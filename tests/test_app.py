"""App 入口测试。

测试 `rscript-runner run` 的退出码约定和命令行解析。
"""

from __future__ import annotations

from pathlib import Path

import pytest

from rscript_runner.app import (
    EXIT_LAUNCH_FAILED,
    EXIT_TIMED_OUT,
    _build_parser,
    main,
    run_script_file,
)
from rscript_runner.config import Config


@pytest.fixture
def config(fake_r_executable: Path, temp_workspace: Path) -> Config:
    return Config(r_path=str(fake_r_executable), workdir=temp_workspace)


def _script(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "script.R"
    path.write_text(body, encoding="utf-8")
    return path


class TestRunScriptFile:
    """测试脚本文件执行。"""

    def test_success_echoes_output(self, config: Config, tmp_path: Path, capsys: pytest.CaptureFixture):
        code = run_script_file(_script(tmp_path, 'cat("hello\\n")'), config)

        assert code == 0
        assert "hello" in capsys.readouterr().out

    def test_quiet(self, config: Config, tmp_path: Path, capsys: pytest.CaptureFixture):
        code = run_script_file(_script(tmp_path, 'cat("hello\\n")'), config, echo=False)

        assert code == 0
        assert "hello" not in capsys.readouterr().out

    def test_quiet_failure_prints_stderr(self, config: Config, tmp_path: Path, capsys: pytest.CaptureFixture):
        code = run_script_file(_script(tmp_path, 'stop("boom")'), config, echo=False)

        assert code == 1
        assert "Error: boom" in capsys.readouterr().err

    def test_exit_status_passed_through(self, config: Config, tmp_path: Path):
        assert run_script_file(_script(tmp_path, "quit(status=5)"), config, echo=False) == 5

    def test_unreadable_script(self, config: Config, tmp_path: Path):
        assert run_script_file(tmp_path / "missing.R", config) == 1

    def test_missing_r(self, tmp_path: Path):
        config = Config(r_path=str(tmp_path / "no-such-R"))

        code = run_script_file(_script(tmp_path, 'cat("x")'), config)

        assert code == EXIT_LAUNCH_FAILED

    @pytest.mark.timeout(15)
    def test_timeout(self, config: Config, tmp_path: Path):
        code = run_script_file(_script(tmp_path, "Sys.sleep(30)"), config, timeout=0.5, echo=False)

        assert code == EXIT_TIMED_OUT


class TestParser:
    """测试命令行解析。"""

    def test_default_is_serve(self):
        assert _build_parser().parse_args([]).command is None

    def test_serve(self):
        assert _build_parser().parse_args(["serve"]).command == "serve"

    def test_run(self):
        args = _build_parser().parse_args(["run", "plot.R", "--timeout", "2.5", "--quiet"])

        assert args.command == "run"
        assert args.script == Path("plot.R")
        assert args.timeout == 2.5
        assert args.quiet is True

    def test_run_requires_script(self):
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["run"])


class TestMain:
    """测试主入口。"""

    def test_run_exits_with_script_status(self, monkeypatch: pytest.MonkeyPatch, config: Config, tmp_path: Path):
        monkeypatch.setattr("rscript_runner.app.get_config", lambda: config)
        monkeypatch.setattr("rscript_runner.app.configure_logging", lambda config: None)
        script = _script(tmp_path, "quit(status=3)")

        with pytest.raises(SystemExit) as exc_info:
            main(["run", str(script), "--quiet"])

        assert exc_info.value.code == 3
