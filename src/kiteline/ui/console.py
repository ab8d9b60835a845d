"""Console output formatting utilities for kiteline."""

from __future__ import annotations

import sys
from typing import Iterable, Optional

from ..dispatch import DispatchRequest
from ..errors import StepIssue


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_pipeline_loaded(self, source: str, step_count: int) -> None:
        print(f"PIPELINE OK: {source}")
        print(f"Steps: {step_count}")

    def print_ignored_fields(self, ignored: Iterable[tuple[int, str]]) -> None:
        """Skipped keys and plugins are only listed when debugging."""
        for index, name in ignored:
            self.print_debug(f"step {index}: ignored field {name!r}")

    def print_issues(self, source: str, issues: list[StepIssue]) -> None:
        """Print every validation problem in one block."""
        print(f"\nPIPELINE INVALID: {source}", file=sys.stderr)
        print(f"{len(issues)} problem(s) found:", file=sys.stderr)
        for issue in issues:
            print(f"  [{issue.kind}] {issue.where}: {issue.message}", file=sys.stderr)

    def print_plan_step(self, request: DispatchRequest) -> None:
        """Print one dispatch request in human-readable form."""
        c = request.container
        constraints = ", ".join(f"{k}={v}" for k, v in request.constraints.items())
        print(f"\nSTEP {request.index}: {request.label}")
        print(f"  agents: {constraints}")
        flags = [f"pull={c.pull_policy.value}"]
        if c.privileged:
            flags.append("privileged")
        if c.mounts:
            flags.append("tmpfs=" + ",".join(c.mounts))
        print(f"  image: {c.image} ({' '.join(flags)})")
        print(f"  retry: {'automatic' if request.retry_automatic else 'manual'}")
        for cmd in request.commands:
            print(f"  $ {cmd}")

    def print_plan_skipped(self, label: str, reason: str) -> None:
        print(f"  {label} (skipped: {reason})")

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
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


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
