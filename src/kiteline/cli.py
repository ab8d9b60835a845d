# cli.py
from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

import click

from kiteline import settings
from kiteline.api import APIClient, APIError
from kiteline.dispatch import build_dispatch_requests, parse_tags, select_for_agent
from kiteline.errors import ParseError, PipelineValidationError
from kiteline.git_facts.git import get_current_ref, get_remote_url, repo_root
from kiteline.loader import load_pipeline
from kiteline.model import Pipeline
from kiteline.serialize import dump_pipeline
from kiteline.ui.console import Console, get_console, set_console


def find_pipeline_files(base: Path) -> list[Path]:
    """Default pipeline locations under `base` that exist, in search order."""
    return [base / name for name in settings.DEFAULT_PIPELINE_FILES if (base / name).is_file()]


def discover_pipeline(pipeline_arg: str | None) -> Path:
    """
    Resolve the pipeline file from argument, environment, or default locations.

    Raises:
        SystemExit: If no pipeline file can be found
    """
    console = get_console()

    explicit = pipeline_arg or settings.PIPELINE_PATH
    if explicit:
        path = Path(explicit)
        if not path.is_file():
            console.print_error(
                "Pipeline file not found",
                f"Could not find pipeline file: {explicit}",
                suggestion="Pass an existing file:\n  kiteline validate path/to/pipeline.yml",
            )
            sys.exit(1)
        return path

    candidates = find_pipeline_files(Path("."))
    if not candidates:
        # fall back to the repository root when run from a subdirectory
        try:
            candidates = find_pipeline_files(repo_root())
        except (subprocess.CalledProcessError, FileNotFoundError):
            console.print_debug("not inside a git repository; skipping repo-root lookup")

    if not candidates:
        console.print_error(
            "No pipeline file found",
            "Could not find a pipeline file.",
            details=["Looked for:", *[f"  {name}" for name in settings.DEFAULT_PIPELINE_FILES]],
            suggestion="Specify a pipeline explicitly:\n  kiteline validate path/to/pipeline.yml",
        )
        sys.exit(1)

    return candidates[0]


def load_or_exit(path: Path) -> Pipeline:
    """Load a pipeline, printing every problem and exiting 1 on failure."""
    console = get_console()
    try:
        pipeline = load_pipeline(path)
    except ParseError as e:
        console.print_error("Could not parse pipeline", str(e))
        sys.exit(1)
    except PipelineValidationError as e:
        console.print_issues(str(path), e.issues)
        sys.exit(1)

    console.print_ignored_fields(pipeline.ignored_fields)
    return pipeline


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and ignored fields)",
)
@click.pass_context
def cli(ctx, debug):
    """kiteline: load, validate and dispatch CI pipeline definitions."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.argument("pipeline", required=False)
def validate(pipeline):
    """Validate a pipeline file and report every problem found."""
    console = get_console()
    path = discover_pipeline(pipeline)
    loaded = load_or_exit(path)
    console.print_pipeline_loaded(str(path), len(loaded))


@cli.command()
@click.argument("pipeline", required=False)
@click.option(
    "--agent",
    "agent_tags",
    multiple=True,
    help="Agent tag key=value; only steps this agent can run are shown (repeatable)",
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print dispatch requests as JSON")
def plan(pipeline, agent_tags, as_json):
    """Show the dispatch requests a pipeline produces."""
    console = get_console()
    path = discover_pipeline(pipeline)
    loaded = load_or_exit(path)

    steps = list(loaded)
    if agent_tags:
        try:
            tags = parse_tags(agent_tags)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--agent")
        selected = select_for_agent(steps, tags)
        if not as_json:
            for s in steps:
                if s not in selected:
                    console.print_plan_skipped(s.label, "agent constraints not met")
        steps = selected

    requests = build_dispatch_requests(steps)
    if as_json:
        click.echo(json.dumps([r.to_dict() for r in requests], indent=2))
        return

    for request in requests:
        console.print_plan_step(request)


@cli.command()
@click.argument("pipeline", required=False)
@click.option("--check", is_flag=True, default=False, help="Exit 1 if the file is not in normalized form")
def fmt(pipeline, check):
    """Print the pipeline in normalized form.

    Refuses pipelines with skipped fields or plugins, which normalizing
    would lose.
    """
    console = get_console()
    path = discover_pipeline(pipeline)
    loaded = load_or_exit(path)

    # normalizing would silently drop these
    if loaded.ignored_fields:
        console.print_error(
            "Cannot normalize pipeline",
            f"{path} has fields the normalized form does not keep:",
            details=[f"step {index}: {name}" for index, name in loaded.ignored_fields],
            suggestion="Remove them from the file, or keep formatting it by hand.",
        )
        sys.exit(1)

    normalized = dump_pipeline(loaded)
    if not check:
        click.echo(normalized, nl=False)
        return

    if path.read_text(encoding="utf-8") != normalized:
        console.print_error(
            "Pipeline is not normalized",
            f"{path} differs from its normalized form.",
            suggestion=f"Rewrite it with:\n  kiteline fmt {path} > {path}.new && mv {path}.new {path}",
        )
        sys.exit(1)
    console.print_info(f"{path} is normalized")


@cli.command()
@click.argument("pipeline", required=False)
@click.option("--api", default=None, help="Orchestrator API base URL (defaults to $KITELINE_API_URL)")
@click.option("--repo", default=None, help="Repository URL (defaults to git remote origin URL)")
@click.option("--ref", default=None, help="Git ref/branch/commit (defaults to current branch or HEAD)")
@click.pass_context
def submit(ctx, pipeline, api, repo, ref):
    """Submit a pipeline's dispatch requests to the orchestrator API."""
    console = get_console()

    api = api or settings.API_URL
    if not api:
        console.print_error(
            "No API URL",
            "No --api given and KITELINE_API_URL is not set.",
            suggestion="kiteline submit --api https://ci.example.com/api",
        )
        sys.exit(1)

    path = discover_pipeline(pipeline)
    loaded = load_or_exit(path)
    console.print_info(f"Loaded {len(loaded)} step(s) from {path}")

    if not repo:
        try:
            repo = get_remote_url("origin")
            console.print_debug(f"Using repository URL from git remote: {repo}")
        except (subprocess.CalledProcessError, FileNotFoundError):
            console.print_error(
                "Could not get repository URL",
                "No --repo specified and could not get git remote URL.",
                suggestion="Please specify --repo explicitly:\n  kiteline submit --api <url> --repo <repo_url>",
            )
            sys.exit(1)

    if not ref:
        try:
            ref = get_current_ref()
            console.print_debug(f"Using git ref: {ref}")
        except (subprocess.CalledProcessError, FileNotFoundError):
            console.print_error(
                "Could not determine git ref",
                "Could not get current git ref.",
                suggestion="Please specify --ref explicitly:\n  kiteline submit --api <url> --ref <ref>",
            )
            sys.exit(1)

    client = APIClient(api)
    try:
        result = client.create_run(repo, ref, build_dispatch_requests(loaded))
    except APIError as e:
        console.print_error(
            "API request failed",
            str(e),
            suggestion=f"Check the API at {client.base_url} and verify your request.",
        )
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(1)

    console.print_info(f"\nSuccessfully submitted run to {client.base_url}")
    console.print_info(f"  Run ID: {result.run_id}")
    if result.step_ids:
        console.print_info(f"  Step IDs: {', '.join(result.step_ids)}")


if __name__ == "__main__":
    cli()
