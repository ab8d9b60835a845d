from pathlib import Path

import pytest

FIXTURES = Path(__file__).resolve().parent / "fixtures"

VALID_YAML = """
steps:
  - label: "build-gnu-x86"
    commands:
     - cargo build --release
    retry:
      automatic: false
    agents:
      platform: x86_64.metal
    plugins:
      - docker#v3.0.1:
          image: "rustvmm/dev:v2"
          always-pull: true

  - label: "style"
    command: cargo fmt --all -- --check
    agents:
      platform: x86_64.metal
      os: linux
    plugins:
      - docker#v3.0.1:
          image: "rustvmm/dev:v2"

  - label: "unittests-gnu-arm"
    commands:
     - cargo test
    retry:
      automatic: true
    agents:
      platform: arm.metal
    plugins:
      - docker#v3.0.1:
          privileged: true
          image: "rustvmm/dev:v2"
          always-pull: true
          tmpfs: [ "/tmp:exec" ]
"""


@pytest.fixture
def valid_yaml() -> str:
    return VALID_YAML


@pytest.fixture
def rust_vmm_pipeline() -> Path:
    return FIXTURES / "rust_vmm_pipeline.yml"
