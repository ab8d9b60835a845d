from .model import Step, RetryPolicy, ContainerSpec, PullPolicy, Pipeline, AgentSelector
from .errors import (
    PipelineError,
    ParseError,
    StepIssue,
    MissingField,
    InvalidField,
    DuplicateLabel,
    EmptyCommandList,
    NoAgentConstraint,
    PipelineValidationError,
)
from .loader import load_pipeline, load_pipeline_from_string, build_pipeline, validate_steps
from .serialize import step_to_dict, pipeline_to_dict, dump_pipeline
from .dispatch import DispatchRequest, build_dispatch_requests, select_for_agent, docker_run_args
from .dsl import step, build, matrix, wf, StepBuilder

__all__ = [
    "Step", "RetryPolicy", "ContainerSpec", "PullPolicy", "Pipeline", "AgentSelector",
    "PipelineError", "ParseError", "StepIssue", "MissingField", "InvalidField",
    "DuplicateLabel", "EmptyCommandList", "NoAgentConstraint", "PipelineValidationError",
    "load_pipeline", "load_pipeline_from_string", "build_pipeline", "validate_steps",
    "step_to_dict", "pipeline_to_dict", "dump_pipeline",
    "DispatchRequest", "build_dispatch_requests", "select_for_agent", "docker_run_args",
    "step", "build", "matrix", "wf", "StepBuilder",
]
