"""
Logging and Rich console output for the CMA-ES optimizer.
"""

import datetime
import logging
import os
from typing import Optional

from rich.console import Console
from rich.panel import Panel

from .data_structures import GenerationReport

PACKAGE_LOGGER = "cmaes_engine"

console = Console(
    log_path=False,
    width=120,
    legacy_windows=False,
)


def setup_logging(log_path: Optional[str] = None, level: int = logging.INFO) -> logging.Logger:
    """
    Attach an append-mode file handler to the package logger.

    Calling this twice with the same path does not add a second handler.

    Args:
        log_path: File to append log records to, ``None`` only sets the level
        level: Logging level of the package logger

    Returns:
        The package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    if log_path is None:
        return logger

    log_dir = os.path.dirname(log_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    target = os.path.abspath(log_path)
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == target:
            return logger

    handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter("[%(asctime)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    return logger


def console_wrapper(msg, watch_path: Optional[str] = None):
    """Print a Rich renderable to the terminal, or append it to ``watch_path``."""
    if watch_path is None:
        console.print(msg)
        return
    with open(watch_path, "a", encoding="utf-8") as f:
        Console(file=f, log_path=False, width=120).print(msg)


def log_message(message, watch_path: Optional[str] = None, emoji=None, timestamp=True):
    """Print a single timestamped line through ``console_wrapper``."""
    timestamp_str = datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S') if timestamp else ""
    emoji_str = f" {emoji}" if emoji else ""
    console_wrapper(f"{timestamp_str}{emoji_str} {message}", watch_path)


def render_generation_panel(report: GenerationReport, improved: bool) -> Panel:
    """Build the per-generation status panel."""
    if improved:
        status_emoji, status_color, status_text = "🔥", "bold green", "BEST IMPROVED"
    else:
        status_emoji, status_color, status_text = "🔄", "white", "NO IMPROVEMENT"

    report_lines = [
        f"[{status_color}]{status_emoji} {status_text}[/{status_color}]",
        "",
        "[yellow]📊 FITNESS STATISTICS[/yellow]",
        f"  Gen Best     : {report.generation_best_fitness:.6e}",
        f"  Gen Median   : {report.median_fitness:.6e}",
        f"  Best So Far  : {report.best_fitness:.6e}",
        "",
        "[white]⚙️  CMA-ES PARAMETERS[/white]",
        f"  Sigma (σ)    : {report.sigma:.6e}",
        f"  Condition    : {report.condition_number:.3e}",
        f"  Evaluations  : {report.evaluations:,}",
    ]
    return Panel(
        "\n".join(report_lines),
        title=f"Generation {report.generation}",
        border_style=status_color,
        padding=(1, 2),
    )


def render_termination_panel(report: GenerationReport) -> Panel:
    """Build the final summary panel listing every triggered reason."""
    term_lines = [
        f"  [white]📊 Generations:[/white] {report.generation}",
        f"  [white]🔢 Evaluations:[/white] {report.evaluations:,}",
        f"  [white]🎯 Best Fitness:[/white] {report.best_fitness:.6e}",
        f"  [white]σ Final Sigma:[/white] {report.sigma:.6e}",
        "  [yellow]⚠️  Termination Criteria:[/yellow]",
    ]
    for reason in report.reasons:
        term_lines.append(f"     • {reason}")
    return Panel(
        "\n".join(term_lines),
        title="🛑 CMA-ES Terminated",
        border_style="yellow",
        padding=(1, 2),
    )
