from pathlib import Path

import pytest

from kiteline import (
    ParseError,
    PipelineValidationError,
    PullPolicy,
    load_pipeline,
    load_pipeline_from_string,
)
from kiteline.loader import build_pipeline, plugin_name


def test_load_pipeline_from_string_ok(valid_yaml):
    pipeline = load_pipeline_from_string(valid_yaml)
    assert pipeline.labels == ["build-gnu-x86", "style", "unittests-gnu-arm"]

    build = pipeline.find_step("build-gnu-x86")
    assert build is not None
    assert build.commands == ("cargo build --release",)
    assert build.agent_selector == {"platform": "x86_64.metal"}
    assert build.retry_policy.automatic is False
    assert build.container_spec.image == "rustvmm/dev:v2"
    assert build.container_spec.pull_policy is PullPolicy.ALWAYS
    assert build.container_spec.privileged is False
    assert build.container_spec.mounts == frozenset()
    assert build.container_spec.plugin == "docker#v3.0.1"


def test_singular_command_and_defaults(valid_yaml):
    style = load_pipeline_from_string(valid_yaml).find_step("style")
    assert style.commands == ("cargo fmt --all -- --check",)
    # no retry block -> manual retry; no always-pull -> pull only if absent
    assert style.retry_policy.automatic is False
    assert style.container_spec.pull_policy is PullPolicy.IF_ABSENT
    assert style.agent_selector == {"platform": "x86_64.metal", "os": "linux"}


def test_privileged_step_with_tmpfs(valid_yaml):
    s = load_pipeline_from_string(valid_yaml).find_step("unittests-gnu-arm")
    assert s.retry_policy.automatic is True
    assert s.container_spec.privileged is True
    assert s.container_spec.mounts == frozenset({"/tmp:exec"})


def test_step_count_matches_entries(rust_vmm_pipeline: Path):
    pipeline = load_pipeline(rust_vmm_pipeline)
    assert len(pipeline) == 12
    assert pipeline.source == rust_vmm_pipeline
    assert pipeline.labels[0] == "build-gnu-x86"
    assert pipeline.labels[-1] == "check-warnings-arm"

    check = pipeline.find_step("check-warnings-x86")
    assert check.commands == ('RUSTFLAGS="-D warnings" cargo check --all-targets',)


def test_loading_twice_is_identical(rust_vmm_pipeline: Path):
    first = load_pipeline(rust_vmm_pipeline)
    second = load_pipeline(rust_vmm_pipeline)
    assert first.steps == second.steps


def test_unknown_fields_are_ignored_but_recorded():
    text = """
steps:
  - label: lint
    command: make lint
    timeout_in_minutes: 10
    key: lint-key
    agents: {queue: default}
    plugins:
      - docker#v3.0.1: {image: "python:3.12"}
"""
    pipeline = load_pipeline_from_string(text)
    assert len(pipeline) == 1
    assert set(pipeline.ignored_fields) == {(0, "timeout_in_minutes"), (0, "key")}


def test_agent_values_are_strings():
    text = """
steps:
  - label: a
    command: "true"
    agents:
      cores: 8
      gpu: true
    plugins:
      - docker#v3.0.1: {image: alpine}
"""
    s = load_pipeline_from_string(text).steps[0]
    assert s.agent_selector == {"cores": "8", "gpu": "true"}


def test_other_plugins_are_skipped():
    text = """
steps:
  - label: a
    command: make
    agents: {os: linux}
    plugins:
      - artifacts#v1.9.0:
          upload: "out/*"
      - docker-compose#v4.0.0:
          run: app
      - docker#v5.9.0:
          image: alpine:3.19
"""
    pipeline = load_pipeline_from_string(text)
    s = pipeline.steps[0]
    assert s.container_spec.image == "alpine:3.19"
    assert s.container_spec.plugin == "docker#v5.9.0"
    assert pipeline.ignored_fields == (
        (0, "plugins[artifacts#v1.9.0]"),
        (0, "plugins[docker-compose#v4.0.0]"),
    )


def test_plugins_in_map_form():
    text = """
steps:
  - label: a
    command: make
    agents: {os: linux}
    plugins:
      docker#v3.0.1:
        image: alpine
"""
    s = load_pipeline_from_string(text).steps[0]
    assert s.container_spec.image == "alpine"


def test_empty_steps_list_is_an_empty_pipeline():
    pipeline = load_pipeline_from_string("steps: []")
    assert len(pipeline) == 0


def test_invalid_yaml_reports_position():
    with pytest.raises(ParseError) as e:
        load_pipeline_from_string("steps:\n  - label: [unclosed\n")
    assert e.value.line is not None
    assert "invalid YAML" in str(e.value)


@pytest.mark.parametrize(
    "text, fragment",
    [
        ("", "root must be a mapping"),
        ("- just\n- a list\n", "root must be a mapping"),
        ("env: {}\n", "missing the top-level 'steps'"),
        ("steps: build\n", "'steps' must be a list"),
    ],
)
def test_document_shape_errors(text, fragment):
    with pytest.raises(ParseError) as e:
        load_pipeline_from_string(text)
    assert fragment in str(e.value)


def test_missing_file_is_parse_error(tmp_path: Path):
    missing = tmp_path / "nope.yml"
    with pytest.raises(ParseError) as e:
        load_pipeline(missing)
    assert e.value.source == str(missing)
    assert "cannot read pipeline file" in str(e.value)


def test_non_utf8_file_is_parse_error(tmp_path: Path):
    p = tmp_path / "latin1.yml"
    p.write_bytes(b"steps:\n  - label: \xff\xfe\n")
    with pytest.raises(ParseError) as e:
        load_pipeline(p)
    assert e.value.source == str(p)
    assert "not valid UTF-8" in str(e.value)


def test_load_pipeline_file(tmp_path: Path, valid_yaml):
    p = tmp_path / "pipeline.yml"
    p.write_text(valid_yaml)
    pipeline = load_pipeline(p)
    assert pipeline.source == p
    assert len(pipeline) == 3


def test_build_pipeline_from_parsed_data():
    data = {
        "steps": [
            {
                "label": "x",
                "commands": ["echo hi"],
                "agents": {"os": "linux"},
                "plugins": [{"docker#v3.0.1": {"image": "alpine"}}],
            }
        ]
    }
    assert build_pipeline(data).steps[0].label == "x"


def test_validation_error_is_a_pipeline_error():
    with pytest.raises(PipelineValidationError):
        load_pipeline_from_string("steps:\n  - label: x\n")


@pytest.mark.parametrize(
    "ref, name",
    [
        ("docker#v3.0.1", "docker"),
        ("docker", "docker"),
        ("buildkite-plugins/docker-buildkite-plugin#v3.0.1", "docker"),
        ("docker-compose#v4.0.0", "docker-compose"),
    ],
)
def test_plugin_name(ref, name):
    assert plugin_name(ref) == name


def test_project_pipeline_is_valid():
    own = Path(__file__).resolve().parent.parent / ".buildkite" / "pipeline.yml"
    pipeline = load_pipeline(own)
    assert pipeline.labels == ["tests", "validate-self"]
