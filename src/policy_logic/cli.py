"""
Command-line interface for policy-logic.

Every command reads JSON files and writes JSON to stdout. Errors from the
core are written to stderr in the shared error shape with exit code 1.
"""

import functools
import json
import sys
from pathlib import Path
from typing import Any, Optional

import click
import structlog

from policy_logic import __version__
from policy_logic.exceptions import PolicyLogicError, SchemaValidationError
from policy_logic.logging_setup import configure_logging
from policy_logic.models.conflicts import ConflictType
from policy_logic.pipeline import get_policy_pipeline
from policy_logic.printer import print_rule

logger = structlog.get_logger(__name__)


def _read_json(path: str) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SchemaValidationError(
            f"{path} is not valid JSON: {exc.msg}",
            error_code="MALFORMED_JSON",
            details={"path": path, "line": exc.lineno, "column": exc.colno},
        ) from exc


def _emit(data: Any, output: Optional[str] = None) -> None:
    text = json.dumps(data, indent=2, sort_keys=False, default=str)
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
        click.echo(f"Results written to: {output}", err=True)
    else:
        click.echo(text)


def handle_errors(command):
    """Print core errors in the shared shape and exit non-zero."""

    @functools.wraps(command)
    def wrapper(*args, **kwargs):
        try:
            return command(*args, **kwargs)
        except PolicyLogicError as exc:
            logger.debug("command_failed", error_code=exc.error_code)
            click.echo(json.dumps(exc.to_dict(), indent=2), err=True)
            sys.exit(1)

    return wrapper


@click.group()
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
@click.option("--json-logs", is_flag=True, default=None, help="Render logs as JSON")
@click.version_option(__version__, prog_name="policy-logic")
@click.pass_context
def cli(ctx: click.Context, log_level: Optional[str], json_logs: Optional[bool]) -> None:
    """policy-logic: eligibility reasoning, complexity and conflicts over policy rules."""
    ctx.ensure_object(dict)
    configure_logging(level=log_level, json_logs=json_logs)


# =========================================================================
# Compilation Commands
# =========================================================================


@cli.command()
@click.argument("ir_path", type=click.Path(exists=True, dir_okay=False))
@handle_errors
def validate(ir_path: str) -> None:
    """Validate an IR file."""
    ir = get_policy_pipeline().validate(_read_json(ir_path))
    _emit({
        "valid": True,
        "schema_version": ir.schema_version,
        "root_rules": len(ir.rules),
        "documents": len(ir.documents),
        "fingerprint": ir.fingerprint(),
    })


@cli.command()
@click.argument("ir_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", type=click.Path(), help="Output file for the graph")
@handle_errors
def build(ir_path: str, output: Optional[str]) -> None:
    """Validate an IR file and compile it into a policy graph."""
    graph = get_policy_pipeline().compile(_read_json(ir_path))
    _emit(graph.to_dict(), output)


@cli.command("print")
@click.argument("ir_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--no-annotate", is_flag=True, help="Omit the {id=.., clause=..} blocks")
@handle_errors
def print_rules(ir_path: str, no_annotate: bool) -> None:
    """Pretty-print every top-level rule of an IR file, one per line."""
    ir = get_policy_pipeline().validate(_read_json(ir_path))
    for rule in ir.rules:
        click.echo(print_rule(rule, annotate=not no_annotate))


# =========================================================================
# Analysis Commands
# =========================================================================


@cli.command()
@click.argument("source", type=click.Path(exists=True, dir_okay=False))
@click.option("--policy", "-p", "policy_id", required=True, help="Policy to evaluate")
@click.option("--inputs", "-i", "inputs_path", type=click.Path(exists=True, dir_okay=False),
              help="JSON file of user inputs")
@handle_errors
def evaluate(source: str, policy_id: str, inputs_path: Optional[str]) -> None:
    """Evaluate eligibility for one policy (SOURCE is an IR or graph file)."""
    pipeline = get_policy_pipeline()
    graph = pipeline.load_graph(_read_json(source))
    inputs = _read_json(inputs_path) if inputs_path else {}
    result = pipeline.evaluate(graph, policy_id, inputs)
    _emit(result.model_dump(mode="json"))


@cli.command()
@click.argument("source", type=click.Path(exists=True, dir_okay=False))
@click.option("--inputs", "-i", "inputs_path", type=click.Path(exists=True, dir_okay=False),
              help="JSON file of partial user inputs")
@handle_errors
def simulate(source: str, inputs_path: Optional[str]) -> None:
    """Evaluate every policy against the same partial inputs."""
    pipeline = get_policy_pipeline()
    graph = pipeline.load_graph(_read_json(source))
    inputs = _read_json(inputs_path) if inputs_path else {}
    results = pipeline.simulate(graph, inputs)
    _emit({policy_id: r.model_dump(mode="json") for policy_id, r in results.items()})


@cli.command()
@click.argument("source", type=click.Path(exists=True, dir_okay=False))
@click.option("--policy", "-p", "policy_id", default=None, help="Score a single policy")
@handle_errors
def score(source: str, policy_id: Optional[str]) -> None:
    """Compute the complexity score of a graph or policy."""
    pipeline = get_policy_pipeline()
    graph = pipeline.load_graph(_read_json(source))
    _emit(pipeline.score(graph, policy_id).model_dump(mode="json"))


@cli.command()
@click.argument("sources", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--pass", "passes", multiple=True,
    type=click.Choice([t.value for t in ConflictType], case_sensitive=False),
    help="Run only these passes (repeatable)",
)
@click.option("--output", "-o", type=click.Path(), help="Output file for the report")
@handle_errors
def detect(sources: tuple[str, ...], passes: tuple[str, ...], output: Optional[str]) -> None:
    """Detect conflicts across one or more IR/graph files."""
    pipeline = get_policy_pipeline()
    graphs = [pipeline.load_graph(_read_json(path)) for path in sources]
    selected = [ConflictType(p.upper()) for p in passes] or None
    report = pipeline.detect(graphs, passes=selected)
    _emit(report.model_dump(mode="json"), output)


def main() -> None:
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
