# loader.py
"""Pipeline document loading & validation.

Turns YAML text into an immutable `Pipeline` of `Step` records. Only
structural parsing and validation live here; dispatch and serialization are
in sibling modules.

Every step-level problem is collected and raised together in a single
`PipelineValidationError`, so one run shows everything that needs fixing.
Document-level problems (bad YAML, no `steps` list) raise `ParseError`
immediately.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from .errors import (
    DuplicateLabel,
    EmptyCommandList,
    InvalidField,
    MissingField,
    NoAgentConstraint,
    ParseError,
    PipelineValidationError,
    StepIssue,
)
from .model import ContainerSpec, Pipeline, PullPolicy, RetryPolicy, Step

KNOWN_STEP_FIELDS = frozenset({"label", "commands", "command", "retry", "agents", "plugins"})
CONTAINER_PLUGIN_NAME = "docker"


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def load_pipeline(path: str | Path) -> Pipeline:
    """
    Load and validate a pipeline file.

    Raises:
        ParseError: file unreadable or not a pipeline document
        PipelineValidationError: one or more steps are invalid
    """
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ParseError(message=f"cannot read pipeline file: {e.strerror or e}", source=str(p)) from e
    except UnicodeDecodeError as e:
        raise ParseError(
            message=f"pipeline file is not valid UTF-8: {e.reason} at byte {e.start}",
            source=str(p),
        ) from e
    return load_pipeline_from_string(text, source=p)


def load_pipeline_from_string(text: str, *, source: str | Path = "<string>") -> Pipeline:
    data = _parse_yaml(text, str(source))
    return build_pipeline(data, source=source)


def build_pipeline(data: Any, *, source: str | Path = "<string>") -> Pipeline:
    """Validate an already-deserialized document (e.g. from json.load)."""
    source_name = str(source)
    if not isinstance(data, dict):
        raise ParseError(message="pipeline root must be a mapping with a 'steps' list", source=source_name)
    if "steps" not in data:
        raise ParseError(message="pipeline is missing the top-level 'steps' list", source=source_name)
    entries = data["steps"]
    if not isinstance(entries, list):
        raise ParseError(
            message=f"'steps' must be a list, got {type(entries).__name__}",
            source=source_name,
        )

    issues: List[StepIssue] = []
    steps: List[Step] = []
    ignored: List[Tuple[int, str]] = []
    seen_labels: Dict[str, int] = {}

    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            issues.append(InvalidField(
                step_index=index,
                message=f"step entry must be a mapping, got {type(entry).__name__}",
            ))
            continue

        before = len(issues)
        label = _read_label(index, entry, issues)
        if label is not None:
            if label in seen_labels:
                first = seen_labels[label]
                issues.append(DuplicateLabel(
                    step_index=index,
                    label=label,
                    field="label",
                    first_index=first,
                    message=f"label {label!r} is already used by step {first}",
                ))
            else:
                seen_labels[label] = index

        commands = _read_commands(index, label, entry, issues)
        agents = _read_agents(index, label, entry, issues)
        retry = _read_retry(index, label, entry, issues)
        container = _read_container(index, label, entry, issues)

        ignored.extend((index, key) for key in entry if key not in KNOWN_STEP_FIELDS)
        ignored.extend((index, f"plugins[{ref}]") for ref in _extra_plugin_refs(entry))

        if len(issues) > before:
            continue
        steps.append(Step(
            label=label,
            commands=commands,
            container_spec=container,
            agent_selector=agents,
            retry_policy=retry,
        ))

    if issues:
        raise PipelineValidationError(issues, source=source_name)

    return Pipeline(
        steps=tuple(steps),
        source=source if isinstance(source, Path) else None,
        ignored_fields=tuple(ignored),
    )


def check_steps(steps: Iterable[Step]) -> List[StepIssue]:
    """
    Apply the document invariants to Step objects built in code.

    Returns the issues instead of raising so callers can merge them.
    """
    issues: List[StepIssue] = []
    seen: Dict[str, int] = {}
    for index, s in enumerate(steps):
        if not isinstance(s.label, str) or not s.label.strip():
            issues.append(InvalidField(
                step_index=index, field="label",
                message=f"'label' must be a non-empty string, got {s.label!r}",
            ))
        elif s.label in seen:
            issues.append(DuplicateLabel(
                step_index=index,
                label=s.label,
                field="label",
                first_index=seen[s.label],
                message=f"label {s.label!r} is already used by step {seen[s.label]}",
            ))
        else:
            seen[s.label] = index
        if not s.commands:
            issues.append(EmptyCommandList(
                step_index=index, label=s.label, field="commands",
                message="step has no commands",
            ))
        for i, cmd in enumerate(s.commands):
            if not isinstance(cmd, str) or not cmd.strip():
                issues.append(InvalidField(
                    step_index=index, label=s.label, field=f"commands[{i}]",
                    message=f"'commands[{i}]' must be a non-empty string, got {cmd!r}",
                ))
        if not s.agent_selector:
            issues.append(NoAgentConstraint(
                step_index=index, label=s.label, field="agents",
                message="step has no agent constraints",
            ))
        if not s.container_spec.image.strip():
            issues.append(MissingField(
                step_index=index, label=s.label, field="plugins.docker.image",
                message="container image is empty",
            ))
        if plugin_name(s.container_spec.plugin) != CONTAINER_PLUGIN_NAME:
            issues.append(InvalidField(
                step_index=index, label=s.label, field="plugins",
                message=f"container plugin must be a docker plugin, got {s.container_spec.plugin!r}",
            ))
    return issues


def validate_steps(steps: Iterable[Step], *, source: str = "<code>") -> Tuple[Step, ...]:
    steps = tuple(steps)
    issues = check_steps(steps)
    if issues:
        raise PipelineValidationError(issues, source=source)
    return steps


# ----------------------------------------------------------------------
# Parsing helpers
# ----------------------------------------------------------------------

def _parse_yaml(text: str, source: str) -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        problem = getattr(e, "problem", None) or str(e)
        raise ParseError(
            message=f"invalid YAML: {problem}",
            source=source,
            line=mark.line + 1 if mark is not None else None,
            column=mark.column + 1 if mark is not None else None,
        ) from e


def _scalar_str(value: Any) -> str:
    # YAML gives us bools/ints for things like `os: linux` vs `cores: 8`
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _read_label(index: int, entry: Dict[str, Any], issues: List[StepIssue]) -> Optional[str]:
    if "label" not in entry or entry["label"] is None:
        issues.append(MissingField(step_index=index, field="label", message="missing 'label'"))
        return None
    label = entry["label"]
    if not isinstance(label, str) or not label.strip():
        issues.append(InvalidField(
            step_index=index, field="label",
            message=f"'label' must be a non-empty string, got {label!r}",
        ))
        return None
    return label


def _read_commands(
    index: int, label: Optional[str], entry: Dict[str, Any], issues: List[StepIssue]
) -> Optional[Tuple[str, ...]]:
    has_plural = "commands" in entry
    has_single = "command" in entry
    if has_plural and has_single:
        issues.append(InvalidField(
            step_index=index, label=label, field="commands",
            message="use either 'commands' or 'command', not both",
        ))
        return None
    if not (has_plural or has_single):
        issues.append(MissingField(
            step_index=index, label=label, field="commands",
            message="missing 'commands'",
        ))
        return None

    key = "commands" if has_plural else "command"
    raw = entry[key]
    if raw is None:
        raw = []
    elif isinstance(raw, str):
        raw = [raw] if raw.strip() else []
    if not isinstance(raw, list):
        issues.append(InvalidField(
            step_index=index, label=label, field=key,
            message=f"'{key}' must be a string or a list of strings, got {type(raw).__name__}",
        ))
        return None
    if not raw:
        issues.append(EmptyCommandList(
            step_index=index, label=label, field=key,
            message=f"'{key}' is empty",
        ))
        return None

    for i, cmd in enumerate(raw):
        if not isinstance(cmd, str) or not cmd.strip():
            issues.append(InvalidField(
                step_index=index, label=label, field=f"{key}[{i}]",
                message=f"'{key}[{i}]' must be a non-empty string, got {cmd!r}",
            ))
            return None
    return tuple(raw)


def _read_agents(
    index: int, label: Optional[str], entry: Dict[str, Any], issues: List[StepIssue]
) -> Optional[Dict[str, str]]:
    raw = entry.get("agents")
    if raw is None or raw == {}:
        issues.append(NoAgentConstraint(
            step_index=index, label=label, field="agents",
            message="no agent constraints (add e.g. 'agents: {platform: x86_64.metal}')",
        ))
        return None
    if not isinstance(raw, dict):
        issues.append(InvalidField(
            step_index=index, label=label, field="agents",
            message=f"'agents' must be a mapping, got {type(raw).__name__}",
        ))
        return None

    selector: Dict[str, str] = {}
    for key, value in raw.items():
        if value is None or isinstance(value, (dict, list)):
            issues.append(InvalidField(
                step_index=index, label=label, field=f"agents.{key}",
                message=f"'agents.{key}' must be a scalar value, got {value!r}",
            ))
            return None
        selector[str(key)] = _scalar_str(value)
    return selector


def _read_retry(
    index: int, label: Optional[str], entry: Dict[str, Any], issues: List[StepIssue]
) -> Optional[RetryPolicy]:
    raw = entry.get("retry")
    if raw is None:
        return RetryPolicy()
    if not isinstance(raw, dict):
        issues.append(InvalidField(
            step_index=index, label=label, field="retry",
            message=f"'retry' must be a mapping, got {type(raw).__name__}",
        ))
        return None
    automatic = raw.get("automatic", False)
    if not isinstance(automatic, bool):
        issues.append(InvalidField(
            step_index=index, label=label, field="retry.automatic",
            message=f"'retry.automatic' must be true or false, got {automatic!r}",
        ))
        return None
    return RetryPolicy(automatic=automatic)


def plugin_name(ref: str) -> str:
    """
    Bare plugin name from a plugin reference.

        "docker#v3.0.1"                                       -> "docker"
        "buildkite-plugins/docker-buildkite-plugin#v3.0.1"    -> "docker"
    """
    name = ref.split("#", 1)[0].rstrip("/").rsplit("/", 1)[-1]
    suffix = "-buildkite-plugin"
    if name.endswith(suffix):
        name = name[: -len(suffix)]
    return name


def _iter_plugins(raw: Any):
    """Yield (position, reference, config) for each plugin entry."""
    if isinstance(raw, dict):
        # map form: `plugins: {docker#v3.0.1: {...}}`
        for i, (ref, cfg) in enumerate(raw.items()):
            yield i, ref, cfg
        return
    for i, item in enumerate(raw):
        if isinstance(item, str):
            yield i, item, None
        elif isinstance(item, dict) and len(item) == 1:
            ref, cfg = next(iter(item.items()))
            yield i, ref, cfg
        else:
            yield i, None, item


def _extra_plugin_refs(entry: Dict[str, Any]) -> List[str]:
    """References of plugins other than the container plugin."""
    raw = entry.get("plugins")
    if not isinstance(raw, (list, dict)):
        return []
    return [
        ref for _, ref, _ in _iter_plugins(raw)
        if isinstance(ref, str) and plugin_name(ref) != CONTAINER_PLUGIN_NAME
    ]


def _read_flag(
    index: int, label: Optional[str], cfg: Dict[str, Any], key: str, issues: List[StepIssue]
) -> Optional[bool]:
    value = cfg.get(key, False)
    if value is None:
        return False
    if not isinstance(value, bool):
        issues.append(InvalidField(
            step_index=index, label=label, field=f"plugins.docker.{key}",
            message=f"'{key}' must be true or false, got {value!r}",
        ))
        return None
    return value


def _read_mounts(
    index: int, label: Optional[str], cfg: Dict[str, Any], issues: List[StepIssue]
) -> Optional[frozenset]:
    raw = cfg.get("tmpfs")
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list) or not all(isinstance(m, str) and m.strip() for m in raw):
        issues.append(InvalidField(
            step_index=index, label=label, field="plugins.docker.tmpfs",
            message=f"'tmpfs' must be a list of mount strings, got {raw!r}",
        ))
        return None
    return frozenset(raw)


def _read_container(
    index: int, label: Optional[str], entry: Dict[str, Any], issues: List[StepIssue]
) -> Optional[ContainerSpec]:
    raw = entry.get("plugins")
    if raw is None:
        issues.append(MissingField(
            step_index=index, label=label, field="plugins.docker.image",
            message="no docker plugin configured; a container image is required",
        ))
        return None
    if not isinstance(raw, (list, dict)):
        issues.append(InvalidField(
            step_index=index, label=label, field="plugins",
            message=f"'plugins' must be a list, got {type(raw).__name__}",
        ))
        return None

    found: Optional[Tuple[str, Any]] = None
    for pos, ref, cfg in _iter_plugins(raw):
        if not isinstance(ref, str):
            issues.append(InvalidField(
                step_index=index, label=label, field=f"plugins[{pos}]",
                message=f"plugin entry must be a name or a single-key mapping, got {cfg!r}",
            ))
            return None
        if plugin_name(ref) != CONTAINER_PLUGIN_NAME:
            continue
        if found is not None:
            issues.append(InvalidField(
                step_index=index, label=label, field=f"plugins[{pos}]",
                message="more than one docker plugin configured",
            ))
            return None
        found = (ref, cfg)

    if found is None:
        issues.append(MissingField(
            step_index=index, label=label, field="plugins.docker.image",
            message="no docker plugin configured; a container image is required",
        ))
        return None

    ref, cfg = found
    if cfg is None:
        cfg = {}
    if not isinstance(cfg, dict):
        issues.append(InvalidField(
            step_index=index, label=label, field="plugins.docker",
            message=f"docker plugin config must be a mapping, got {type(cfg).__name__}",
        ))
        return None

    image = cfg.get("image")
    if image is None or (isinstance(image, str) and not image.strip()):
        issues.append(MissingField(
            step_index=index, label=label, field="plugins.docker.image",
            message="docker plugin is missing 'image'",
        ))
        return None
    if not isinstance(image, str):
        issues.append(InvalidField(
            step_index=index, label=label, field="plugins.docker.image",
            message=f"'image' must be a string, got {image!r}",
        ))
        return None

    before = len(issues)
    always_pull = _read_flag(index, label, cfg, "always-pull", issues)
    privileged = _read_flag(index, label, cfg, "privileged", issues)
    mounts = _read_mounts(index, label, cfg, issues)
    if len(issues) > before:
        return None

    return ContainerSpec(
        image=image,
        pull_policy=PullPolicy.ALWAYS if always_pull else PullPolicy.IF_ABSENT,
        privileged=privileged,
        mounts=mounts,
        plugin=ref,
    )
