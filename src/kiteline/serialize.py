# serialize.py
from __future__ import annotations

from typing import Any, Dict, Iterable

import yaml

from .model import PullPolicy, Step


def container_to_dict(step: Step) -> Dict[str, Any]:
    spec = step.container_spec
    cfg: Dict[str, Any] = {
        "image": spec.image,
        "always-pull": spec.pull_policy is PullPolicy.ALWAYS,
    }
    if spec.privileged:
        cfg["privileged"] = True
    if spec.mounts:
        cfg["tmpfs"] = sorted(spec.mounts)
    return {spec.plugin: cfg}


def step_to_dict(step: Step) -> Dict[str, Any]:
    """
    Convert a Step back to its declarative form.
    This is the reverse of the loader: loading the result gives an equal Step.
    """
    return {
        "label": step.label,
        "commands": list(step.commands),
        "retry": {"automatic": step.retry_policy.automatic},
        "agents": dict(step.agent_selector),
        "plugins": [container_to_dict(step)],
    }


def pipeline_to_dict(steps: Iterable[Step]) -> Dict[str, Any]:
    return {"steps": [step_to_dict(s) for s in steps]}


def dump_pipeline(steps: Iterable[Step]) -> str:
    """Render steps as pipeline YAML (stable key order, block style)."""
    return yaml.safe_dump(
        pipeline_to_dict(steps),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
    )
