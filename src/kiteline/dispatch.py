# dispatch.py
from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .model import AgentSelector, PullPolicy, Step

CONTAINER_WORKDIR = "/workdir"

# docker's own spelling of the pull policies
_DOCKER_PULL = {
    PullPolicy.ALWAYS: "always",
    PullPolicy.IF_ABSENT: "missing",
}


@dataclass(frozen=True)
class ContainerLaunch:
    image: str
    pull_policy: PullPolicy
    privileged: bool
    mounts: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image": self.image,
            "pull_policy": self.pull_policy.value,
            "privileged": self.privileged,
            "mounts": list(self.mounts),
        }


@dataclass(frozen=True)
class DispatchRequest:
    """Everything an executor needs to run one step."""
    label: str
    commands: Tuple[str, ...]
    constraints: AgentSelector
    container: ContainerLaunch
    retry_automatic: bool = False

    # position of the step in the pipeline
    index: int = 0

    def __post_init__(self):
        object.__setattr__(self, "commands", tuple(self.commands))
        if not isinstance(self.constraints, AgentSelector):
            object.__setattr__(self, "constraints", AgentSelector(self.constraints))

    @classmethod
    def from_step(cls, step: Step, index: int = 0) -> DispatchRequest:
        spec = step.container_spec
        return cls(
            label=step.label,
            commands=tuple(step.commands),
            constraints=step.agent_selector,
            container=ContainerLaunch(
                image=spec.image,
                pull_policy=spec.pull_policy,
                privileged=spec.privileged,
                mounts=tuple(sorted(spec.mounts)),
            ),
            retry_automatic=step.retry_policy.automatic,
            index=index,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-ready dictionary for the executor API."""
        return {
            "label": self.label,
            "index": self.index,
            "commands": list(self.commands),
            "constraints": dict(self.constraints),
            "container": self.container.to_dict(),
            "retry": {"automatic": self.retry_automatic},
        }


def build_dispatch_requests(steps: Iterable[Step]) -> List[DispatchRequest]:
    """One request per step, in pipeline order."""
    return [DispatchRequest.from_step(s, index=i) for i, s in enumerate(steps)]


# ----------------------------------------------------------------------
# Agent selection
# ----------------------------------------------------------------------

def agent_can_run(constraints: Mapping[str, str], tags: Mapping[str, str]) -> bool:
    """
    True when every constraint is satisfied by the agent's tags.
    Constraint values may be glob patterns ("*.metal").
    """
    for key, wanted in constraints.items():
        have = tags.get(key)
        if have is None or not fnmatch(str(have), str(wanted)):
            return False
    return True


def select_for_agent(steps: Iterable[Step], tags: Mapping[str, str]) -> List[Step]:
    return [s for s in steps if agent_can_run(s.agent_selector, tags)]


def parse_tags(pairs: Iterable[str]) -> Dict[str, str]:
    """Parse ["platform=arm.metal", "os=linux"] into a tag mapping."""
    tags: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Agent tag must look like key=value, got: {pair!r}")
        tags[key.strip()] = value.strip()
    return tags


# ----------------------------------------------------------------------
# Container launch rendering
# ----------------------------------------------------------------------

def docker_run_args(
    request: DispatchRequest,
    workdir: Optional[Path] = None,
    *,
    env: Optional[Dict[str, str]] = None,
) -> List[str]:
    """
    Render the `docker run` argv an executor would use for this request.

    Commands run in one shell, joined with `&&`, so the first failing
    command fails the step.
    """
    c = request.container
    cmd = ["docker", "run", "--rm", "--pull", _DOCKER_PULL[c.pull_policy]]

    if c.privileged:
        cmd.append("--privileged")

    for mount in c.mounts:
        cmd.extend(["--tmpfs", mount])

    # Volume mount: workdir -> /workdir
    if workdir is not None:
        cmd.extend(["-v", f"{Path(workdir).resolve()}:{CONTAINER_WORKDIR}"])
        cmd.extend(["-w", CONTAINER_WORKDIR])

    for key, value in (env or {}).items():
        cmd.extend(["-e", f"{key}={value}"])

    cmd.append(c.image)
    cmd.extend(["sh", "-c", " && ".join(request.commands)])
    return cmd
