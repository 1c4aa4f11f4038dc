"""Console output formatting utilities for relayci."""

from __future__ import annotations

import threading
import traceback
from typing import Dict, List, Optional

import click

from .. import settings


_STATUS_COLORS = {
    "succeeded": "green",
    "failed": "red",
    "skipped": "yellow",
    "running": "cyan",
    "pending": "white",
}


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, color: Optional[bool] = None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            color: Force colour on/off. None follows RELAYCI_COLOR
                   ("always" / "never" / "auto", auto meaning "if a tty").
        """
        self.debug = debug
        if color is None:
            mode = settings.color_mode()
            color = {"always": True, "never": False}.get(mode)
        self.color = color
        # jobs run on worker threads; keep multi-line blocks together
        self._lock = threading.Lock()

    def _echo(self, text: str = "", *, fg: Optional[str] = None, bold: bool = False, err: bool = False) -> None:
        if fg or bold:
            text = click.style(text, fg=fg, bold=bold)
        click.echo(text, err=err, color=self.color)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        with self._lock:
            self._echo()
            self._echo(title, bold=True)
            self._echo("-" * len(title))

    def print_run_started(
        self,
        pipeline: str,
        event: str,
        ref: str,
        job_count: int,
        run_id: str = "",
    ) -> None:
        """Print run start information."""
        with self._lock:
            self._echo()
            self._echo("RUN STARTED", bold=True)
            self._echo(f"Pipeline: {pipeline}")
            self._echo(f"Trigger: {event} {ref}")
            if run_id:
                self._echo(f"Run ID: {run_id}")
            self._echo(f"Jobs: {job_count}")
            self._echo()

    def print_not_triggered(self, pipeline: str, event: str, ref: str) -> None:
        self._echo(f"Pipeline {pipeline} is not triggered by {event} {ref}", fg="yellow")

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        self._echo(f"JOB STARTED: {name}", fg="cyan", bold=True)

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        self._echo(f"[{job}] STEP: {name}")

    def print_success(self, name: str) -> None:
        self._echo(f"[{name}] STATUS: succeeded", fg="green")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        output: Optional[str] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job or step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            output: Captured output, shown (tail only) in debug mode
            is_job: If True, print "JOB FAILED", otherwise "STEP FAILED"
        """
        prefix = "JOB FAILED" if is_job else "STEP FAILED"
        with self._lock:
            self._echo(f"{prefix}: {name}", fg="red", bold=True)
            if exit_code is not None:
                self._echo(f"Exit code: {exit_code}")
            if self.debug:
                self._echo(f"Error details: {reason}")
                if output:
                    self._echo(output[-4000:])
            else:
                # first line only outside debug mode
                error_line = reason.split("\n")[0] if reason else "Unknown error"
                self._echo(f"Error: {error_line}")

    def print_cache_hit(self, job: str, key: str) -> None:
        self._echo(f"[{job}] CACHE: hit ({_short(key)})", fg="green")

    def print_cache_miss(self, job: str, key: str) -> None:
        self._echo(f"[{job}] CACHE: miss ({_short(key)})")

    def print_cache_saved(self, job: str, key: str) -> None:
        self._echo(f"[{job}] CACHE: saved ({_short(key)})")

    def print_job_skipped(self, name: str, reason: str) -> None:
        self._echo(f"JOB SKIPPED: {name} ({reason})", fg="yellow")

    def print_plan(self, levels: List[List[tuple]]) -> None:
        """Print stages with the gate decision each job would get."""
        with self._lock:
            for idx, level in enumerate(levels, start=1):
                self._echo(f"Stage {idx}:", bold=True)
                for name, decision in level:
                    if decision.run:
                        self._echo(f"  {name} ({decision.reason})")
                    else:
                        self._echo(f"  {name} (skipped: {decision.reason})", fg="yellow")

    def print_results(self, results: Dict[str, str], outputs: Optional[Dict[str, str]] = None) -> None:
        """Print final results summary."""
        with self._lock:
            self._echo()
            self._echo("=" * 40)
            self._echo("RESULTS", bold=True)
            self._echo("=" * 40)
            for job, status in results.items():
                self._echo(f"  {job}: {status.upper()}", fg=_STATUS_COLORS.get(status))
            if outputs:
                self._echo()
                self._echo("OUTPUTS", bold=True)
                for key, value in outputs.items():
                    self._echo(f"  {key}: {value}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        with self._lock:
            self._echo()
            self._echo(f"ERROR: {title}", fg="red", bold=True, err=True)
            self._echo(message, err=True)
            for detail in details or []:
                self._echo(f"  {detail}", err=True)
            if suggestion:
                self._echo()
                self._echo(suggestion, err=True)

    def print_warning(self, message: str) -> None:
        self._echo(f"WARNING: {message}", fg="yellow", err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            self._echo("".join(traceback.format_exception(exc)), err=True)
        else:
            self._echo(f"Error: {exc}", fg="red", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._echo(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._echo(f"[DEBUG] {message}", err=True)


def _short(key: str) -> str:
    return key[:24] + "..." if len(key) > 24 else key


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
