# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional, Tuple, Union

from .settings import CONTAINER_PLUGIN as DEFAULT_CONTAINER_PLUGIN


class PullPolicy(str, Enum):
    """When the executor should pull the container image."""
    ALWAYS = "always"
    IF_ABSENT = "if-absent"


class AgentSelector(Mapping[str, str]):
    """
    Read-only, hashable mapping of agent constraints (platform, os...).

    Compares equal to any mapping with the same items, so
    `step.agent_selector == {"platform": "arm.metal"}` holds.
    """
    __slots__ = ("_data",)

    def __init__(self, items: Union[Mapping[str, Any], Iterable[Tuple[str, Any]]] = ()):
        self._data = {str(k): str(v) for k, v in dict(items).items()}

    def __getitem__(self, key: str) -> str:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __hash__(self) -> int:
        return hash(frozenset(self._data.items()))

    def __repr__(self) -> str:
        return f"AgentSelector({self._data!r})"


@dataclass(frozen=True)
class RetryPolicy:
    automatic: bool = False


@dataclass(frozen=True)
class ContainerSpec:
    """Parameters for launching a step inside a container image."""
    image: str
    pull_policy: PullPolicy = PullPolicy.IF_ABSENT
    privileged: bool = False
    mounts: frozenset[str] = field(default_factory=frozenset)

    # plugin reference this container config was read from, e.g. "docker#v3.0.1"
    plugin: str = DEFAULT_CONTAINER_PLUGIN


@dataclass(frozen=True)
class Step:
    """
    One named unit of work in a pipeline (build, test, lint...).

    Steps are immutable once loaded: the loader builds them, the dispatcher
    reads them, nothing mutates them in between.
    """
    label: str
    commands: Tuple[str, ...]
    container_spec: ContainerSpec
    agent_selector: AgentSelector = field(default_factory=AgentSelector)
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self):
        # frozen: coerce through object.__setattr__
        object.__setattr__(self, "commands", tuple(self.commands))
        if not isinstance(self.agent_selector, AgentSelector):
            object.__setattr__(self, "agent_selector", AgentSelector(self.agent_selector))


@dataclass(frozen=True)
class Pipeline:
    """An ordered, validated set of steps plus where they came from."""
    steps: Tuple[Step, ...]
    source: Optional[Path] = None

    # (step index, field name) for keys the loader skipped
    ignored_fields: Tuple[Tuple[int, str], ...] = ()

    def __iter__(self) -> Iterator[Step]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    def find_step(self, label: str) -> Optional[Step]:
        for s in self.steps:
            if s.label == label:
                return s
        return None

    @property
    def labels(self) -> list[str]:
        return [s.label for s in self.steps]
