# errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Iterable, List, Optional, Type


class PipelineError(Exception):
    """Base class for everything the loader can reject."""


@dataclass
class ParseError(PipelineError):
    """
    The document itself is unusable (bad YAML, wrong root shape, unreadable file).

    Nothing step-level can be checked once this is raised, so it is raised on
    its own rather than collected.
    """
    message: str
    source: str = "<string>"
    line: Optional[int] = None
    column: Optional[int] = None

    def __str__(self) -> str:
        where = self.source
        if self.line is not None:
            where += f":{self.line}"
            if self.column is not None:
                where += f":{self.column}"
        return f"ParseError: {where}: {self.message}"


@dataclass
class StepIssue(PipelineError):
    """
    A problem with one step entry.

    Carries enough context for clean CLI output without a traceback:
    the step index (0-based position in `steps`), its label when known,
    and the offending field.
    """
    step_index: int
    message: str
    label: Optional[str] = None
    field: Optional[str] = None

    kind: ClassVar[str] = "StepIssue"

    @property
    def where(self) -> str:
        if self.label:
            return f"step {self.step_index} ({self.label!r})"
        return f"step {self.step_index}"

    def __str__(self) -> str:
        return f"{self.kind}: {self.where}: {self.message}"


@dataclass
class MissingField(StepIssue):
    kind: ClassVar[str] = "MissingField"


@dataclass
class InvalidField(StepIssue):
    kind: ClassVar[str] = "InvalidField"


@dataclass
class DuplicateLabel(StepIssue):
    first_index: Optional[int] = None

    kind: ClassVar[str] = "DuplicateLabel"


@dataclass
class EmptyCommandList(StepIssue):
    kind: ClassVar[str] = "EmptyCommandList"


@dataclass
class NoAgentConstraint(StepIssue):
    kind: ClassVar[str] = "NoAgentConstraint"


class PipelineValidationError(PipelineError):
    """All step issues found in one document, reported together."""

    def __init__(self, issues: Iterable[StepIssue], source: str = "<string>"):
        self.issues: List[StepIssue] = list(issues)
        self.source = source
        super().__init__(str(self))

    def __str__(self) -> str:
        lines = [f"{self.source}: {len(self.issues)} problem(s) found"]
        lines.extend(f"  {issue}" for issue in self.issues)
        return "\n".join(lines)

    def of_type(self, issue_type: Type[StepIssue]) -> List[StepIssue]:
        return [i for i in self.issues if isinstance(i, issue_type)]

    @property
    def kinds(self) -> List[str]:
        return [i.kind for i in self.issues]
