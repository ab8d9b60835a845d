from __future__ import annotations
import os

PIPELINE_PATH = os.environ.get("KITELINE_PIPELINE")
API_URL = os.environ.get("KITELINE_API_URL")
CONTAINER_PLUGIN = os.environ.get("KITELINE_CONTAINER_PLUGIN", "docker#v3.0.1")

# searched in order when no pipeline path is given
DEFAULT_PIPELINE_FILES = (
    ".buildkite/pipeline.yml",
    ".buildkite/pipeline.yaml",
    "pipeline.yml",
)
