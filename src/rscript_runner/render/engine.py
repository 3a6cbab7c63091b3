"""ggplot2 rendering through a local R installation.

rscript-runner render module v0.1.0

LocalREngine turns a PlotSpec into an R script (data tables are written to
TSV files and read back with readr), runs it through a ScriptInvoker and
checks that ggsave produced the requested file.
"""

from __future__ import annotations

import csv
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import anyio

from ..config import get_config
from ..runtime import CommandResult, NonZeroExitError
from .script_invoker import ScriptInvoker

if TYPE_CHECKING:
    from ..config import Config

__all__ = [
    "PlotFormat",
    "PlotSpec",
    "REngine",
    "LocalREngine",
    "RenderingFailedError",
    "LocalRenderingFailedError",
    "build_render_script",
    "write_tsv",
    "default_engine",
    "reset_default_engine",
]

logger = logging.getLogger(__name__)

# Fixed seed so jittered/sampled geoms render identically across runs
RENDER_SEED = 2009

# Written for missing cells; readr parses it as NA
TSV_MISSING = "NA"


class RenderingFailedError(Exception):
    """Base class for plot rendering failures."""
    pass


class LocalRenderingFailedError(RenderingFailedError, NonZeroExitError):
    """The R process exited with a non-zero status.

    str() contains the full CommandResult (exit code and both streams).
    """

    def __init__(self, result: CommandResult) -> None:
        NonZeroExitError.__init__(self, result)


class PlotFormat(Enum):
    """Image formats ggsave can write."""

    PNG = "png"
    SVG = "svg"
    EPS = "eps"
    JPG = "jpg"
    PDF = "pdf"

    @property
    def extension(self) -> str:
        return f".{self.value}"

    def __str__(self) -> str:
        return self.extension

    @classmethod
    def is_supported(cls, extension: str) -> bool:
        """Case-insensitive check, the leading dot is optional. Never raises."""
        return extension.lstrip(".").lower() in {f.value for f in cls}

    @classmethod
    def from_path(cls, path: Path | str) -> PlotFormat:
        """Format matching a file's suffix.

        Raises:
            ValueError: If the suffix is not a supported format
        """
        suffix = Path(path).suffix
        if not cls.is_supported(suffix):
            supported = ", ".join(f.extension for f in cls)
            raise ValueError(f"Unsupported plot format {suffix!r} (expected one of {supported})")
        return cls(suffix.lstrip(".").lower())


@dataclass
class PlotSpec:
    """A ggplot expression and the data tables it references.

    Attributes:
        layers: ggplot2 terms combined with "+", e.g. ["ggplot(df, aes(x, y))", "geom_point()"]
        data: R variable name -> rows (mappings of column name to value)
    """

    layers: list[str]
    data: dict[str, Sequence[Mapping[str, Any]]] = field(default_factory=dict)


def write_tsv(rows: Sequence[Mapping[str, Any]], path: Path) -> None:
    """Write rows as a tab-separated table with a header line.

    Columns are the union of all row keys in first-seen order.
    """
    columns: list[str] = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)

    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(
            f,
            fieldnames=columns,
            delimiter="\t",
            restval=TSV_MISSING,
            lineterminator="\n",
        )
        writer.writeheader()
        for row in rows:
            writer.writerow({k: TSV_MISSING if v is None else v for k, v in row.items()})


def _r_string(value: str) -> str:
    """Quote a value as an R string literal."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_render_script(
    plot: PlotSpec,
    output_file: Path,
    data_files: Mapping[str, Path],
) -> str:
    """Compose the R script that renders plot into output_file.

    Args:
        plot: Plot to render
        output_file: Image path passed to ggsave
        data_files: R variable name -> TSV file holding its table
    """
    data_ingest = "\n".join(
        f"{var} = read_tsv({_r_string(str(path))})" for var, path in data_files.items()
    )
    plot_expr = "+\n".join(plot.layers)

    lines = [
        "library(ggplot2)",
        "library(dplyr)",
        "library(readr)",
        "",
        data_ingest,
        "",
        f"set.seed({RENDER_SEED})",
        f"gg = {plot_expr}",
        "",
        f"ggsave(filename={_r_string(str(Path(output_file).resolve()))}, plot=gg)",
    ]
    return "\n".join(lines) + "\n"


class REngine(ABC):
    """Something that can run R code and render plots."""

    @abstractmethod
    async def run_r_script(self, script: str) -> CommandResult:
        ...

    @abstractmethod
    async def render(self, plot: PlotSpec, output_file: Path) -> Path:
        ...


class LocalREngine(REngine):
    """Render plots with an R installation on this machine."""

    def __init__(self, invoker: ScriptInvoker) -> None:
        self.invoker = invoker

    @classmethod
    def from_config(cls, config: Config | None = None) -> LocalREngine:
        return cls(ScriptInvoker.from_config(config or get_config()))

    async def run_r_script(self, script: str) -> CommandResult:
        """Run R code.

        Raises:
            LocalRenderingFailedError: If R exited with a non-zero status
            ProcessLaunchError: If R could not be started
        """
        result = await self.invoker.run_script(script)
        if not result.succeeded:
            logger.warning(
                f"R exited with status {result.exit_code}: {result.stderr_text[:500]}"
            )
            raise LocalRenderingFailedError(result)
        return result

    async def render(self, plot: PlotSpec, output_file: Path) -> Path:
        """Render plot into output_file and return its absolute path.

        Raises:
            ValueError: If output_file has an unsupported extension
            LocalRenderingFailedError: If R exited with a non-zero status
            RenderingFailedError: If R succeeded but produced no image
        """
        output_file = Path(output_file).resolve()
        PlotFormat.from_path(output_file)

        data_files: dict[str, Path] = {}
        try:
            self._write_data(plot, data_files)
            script = build_render_script(plot, output_file, data_files)
            await self.run_r_script(script)
        finally:
            if not self.invoker.keep_scripts:
                for path in data_files.values():
                    path.unlink(missing_ok=True)

        if not output_file.exists():
            raise RenderingFailedError(f"Image generation failed: {output_file} was not created")

        logger.debug(f"Rendered {output_file}")
        return output_file

    def render_sync(self, plot: PlotSpec, output_file: Path) -> Path:
        """Blocking variant of render()."""
        return anyio.run(self.render, plot, output_file)

    def _write_data(self, plot: PlotSpec, data_files: dict[str, Path]) -> None:
        """Write each table to a temp TSV, registering it in data_files before writing."""
        # TODO: hash tables and reuse files across renders of the same data
        for var, rows in plot.data.items():
            fd, name = tempfile.mkstemp(suffix=".txt", prefix=f"{var}_", dir=self.invoker.script_dir)
            os.close(fd)
            path = Path(name).resolve()
            data_files[var] = path
            write_tsv(rows, path)


# Process-wide default engine, created lazily
_default_engine: LocalREngine | None = None


def default_engine() -> LocalREngine:
    """Engine used when the caller does not pick one; built from configuration on first use."""
    global _default_engine
    if _default_engine is None:
        _default_engine = LocalREngine.from_config()
    return _default_engine


def reset_default_engine() -> None:
    """Drop the cached default engine (used in tests and after config reloads)."""
    global _default_engine
    _default_engine = None
