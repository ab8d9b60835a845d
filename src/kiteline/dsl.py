# src/kiteline/dsl.py
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .loader import validate_steps
from .model import DEFAULT_CONTAINER_PLUGIN, ContainerSpec, PullPolicy, RetryPolicy, Step


# ---------------------------------------------------------------------
# Functional Step helper
# ---------------------------------------------------------------------

def step(
    label: str,
    *commands: str,
    image: str,
    agents: Optional[Dict[str, Any]] = None,
    always_pull: bool = False,
    privileged: bool = False,
    mounts: Optional[Iterable[str]] = None,
    retry: bool = False,
    plugin: str = DEFAULT_CONTAINER_PLUGIN,
) -> Step:
    """
    Create a containerized step.

        step("clippy-x86", "cargo clippy --all -- -D warnings",
             image="rustvmm/dev:v2", agents={"platform": "x86_64.metal"},
             always_pull=True)
    """
    if not commands:
        raise ValueError(f"step({label!r}) must have at least one command")
    if not image:
        raise ValueError(f"step({label!r}) needs a container image")

    return Step(
        label=label,
        commands=tuple(commands),
        container_spec=ContainerSpec(
            image=image,
            pull_policy=PullPolicy.ALWAYS if always_pull else PullPolicy.IF_ABSENT,
            privileged=privileged,
            mounts=frozenset(mounts or ()),
            plugin=plugin,
        ),
        agent_selector={str(k): str(v) for k, v in (agents or {}).items()},
        retry_policy=RetryPolicy(automatic=retry),
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class StepBuilder:
    def __init__(self, label: str):
        self.label = label
        self._commands: list[str] = []
        self._agents: dict[str, str] = {}
        self._image: Optional[str] = None
        self._always_pull: bool = False
        self._privileged: bool = False
        self._mounts: list[str] = []
        self._retry: bool = False
        self._plugin: str = DEFAULT_CONTAINER_PLUGIN

    def run(self, *commands: str):
        self._commands.extend(commands)
        return self

    def on(self, **constraints):
        # force values to str, agent tags are always strings
        self._agents.update({k: str(v) for k, v in constraints.items()})
        return self

    def in_container(
        self,
        image: str,
        *,
        always_pull: bool = False,
        privileged: bool = False,
        plugin: Optional[str] = None,
    ):
        self._image = image
        self._always_pull = always_pull
        self._privileged = privileged
        if plugin:
            self._plugin = plugin
        return self

    def mount(self, *tmpfs: str):
        self._mounts.extend(tmpfs)
        return self

    def retry_automatically(self, enabled: bool = True):
        self._retry = enabled
        return self

    def build(self) -> Step:
        if not self._commands:
            raise ValueError(f"Step '{self.label}' has no commands")
        if not self._image:
            raise ValueError(f"Step '{self.label}' has no container image")

        return step(
            self.label,
            *self._commands,
            image=self._image,
            agents=self._agents,
            always_pull=self._always_pull,
            privileged=self._privileged,
            mounts=self._mounts,
            retry=self._retry,
            plugin=self._plugin,
        )


def build(label: str) -> StepBuilder:
    """Convenience: build('style').run('cargo fmt --all -- --check').in_container(...).build()"""
    return StepBuilder(label)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander.

    Example:
        matrix("arch", ["x86", "arm"]).steps(
            lambda arch: step(f"clippy-{arch}", "cargo clippy", image=..., agents=...)
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def steps(self, builder: Callable[[Any], Step]) -> List[Step]:
        return [builder(v) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Pipeline helper
# ---------------------------------------------------------------------

def wf(*items: Union[Step, List[Step]]) -> List[Step]:
    """
    Collect steps (and matrix expansions) into a validated, ordered list.

        STEPS = wf(
            step("style", "cargo fmt --all -- --check", ...),
            matrix("arch", ARCHES).steps(clippy),
        )

    Raises PipelineValidationError when labels collide or a step
    has no agent constraints.
    """
    out: List[Step] = []
    for item in items:
        if isinstance(item, Step):
            out.append(item)
        else:
            out.extend(item)
    return list(validate_steps(out))
