"""Script invocation and ggplot2 rendering.

基础用法:
    from rscript_runner.render import InterpreterCommand, ScriptInvoker

    invoker = ScriptInvoker(InterpreterCommand.r("/usr/bin/R"))
    result = await invoker.run_script('cat("hello\\n")')

渲染图表:
    from rscript_runner.render import PlotSpec, default_engine

    plot = PlotSpec(
        layers=["ggplot(df, aes(x, y))", "geom_point()"],
        data={"df": [{"x": 1, "y": 2}, {"x": 2, "y": 4}]},
    )
    path = await default_engine().render(plot, Path("plot.png"))
"""

from __future__ import annotations

from .engine import (
    LocalREngine,
    LocalRenderingFailedError,
    PlotFormat,
    PlotSpec,
    REngine,
    RenderingFailedError,
    build_render_script,
    default_engine,
    reset_default_engine,
    write_tsv,
)
from .script_invoker import R_SCRIPT_FLAGS, InterpreterCommand, ScriptInvoker

__all__ = [
    "InterpreterCommand",
    "LocalREngine",
    "LocalRenderingFailedError",
    "PlotFormat",
    "PlotSpec",
    "R_SCRIPT_FLAGS",
    "REngine",
    "RenderingFailedError",
    "ScriptInvoker",
    "build_render_script",
    "default_engine",
    "reset_default_engine",
    "write_tsv",
]
