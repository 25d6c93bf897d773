"""
identiq CLI entry point.

Usage:
    identiq replay SCENARIO.yaml [SCENARIO.yaml ...]
    identiq config show

Scenario files describe a sequence of turns against one session:

    description: Two turns, same person
    conversational: true
    turns:
      - message: "Email John Smith at john@example.com"
        detection:
          raw_text: "Email John Smith at john@example.com"
          persons:
            - matched_name: John Smith
              emails: [john@example.com]
              confidence: 0.9
        expected:
          status: success
          sanitized_text: "Email [Person1] at [Person1:email1]"
        validation:
          required_fields: [status, sanitized_text, session_id]
          pii_tokens: ["[Person1]"]
      - erase: true

An `erase: true` step deletes the scenario's session; the next turn starts
a new one.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click
import yaml

from .config import load_settings
from .core import Identiq
from .exceptions import ConfigurationError
from .logging_utils import setup_logging
from .validation import validate_response


def _load_scenario(path: Path) -> Dict[str, Any]:
    with open(path) as f:
        scenario = yaml.safe_load(f) or {}
    if not isinstance(scenario, dict) or not isinstance(scenario.get("turns"), list):
        raise click.ClickException(f"{path}: scenario must be a mapping with a 'turns' list")
    return scenario


def run_scenario(engine: Identiq, scenario: Dict[str, Any]) -> List[Tuple[int, List[str]]]:
    """
    Replay one scenario through an engine.

    Returns:
        (step number, errors) for every turn step, in order
    """
    conversational = bool(scenario.get("conversational", True))
    session_id: Optional[str] = None
    outcomes: List[Tuple[int, List[str]]] = []

    for step, turn in enumerate(scenario["turns"], start=1):
        if turn.get("erase"):
            if session_id is not None:
                engine.delete_session(session_id)
            session_id = None
            continue

        detection = turn.get("detection")
        message = turn.get("message")
        if message is None and isinstance(detection, dict):
            message = detection.get("raw_text", "")

        result = engine.process_turn(
            detection,
            session_id=session_id,
            conversational=conversational,
            message=message,
        )
        session_id = result.session_id

        errors = validate_response(
            result.response,
            turn.get("expected") or {},
            message or "",
            checks=turn.get("validation"),
            conversational=conversational,
        )
        outcomes.append((step, errors))

    return outcomes


@click.group()
@click.version_option(package_name="identiq")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML configuration file",
)
@click.option("--log-level", default=None, help="Override logging.level")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], log_level: Optional[str]):
    """identiq - session & identity registry for PII tokenization"""
    try:
        settings = load_settings(config_path)
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    setup_logging(
        level=log_level or settings.logging.level,
        json_format=settings.logging.json_format,
    )
    ctx.obj = settings


@cli.command()
@click.argument(
    "scenarios",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option("--show-expected", is_flag=True, help="Print the expected values of failing turns")
@click.pass_obj
def replay(settings, scenarios: Tuple[Path, ...], show_expected: bool):
    """Replay YAML scenario files and validate every response."""
    total = 0
    failed = 0

    for path in sorted(scenarios):
        scenario = _load_scenario(path)
        click.echo(f"Running {path.name}: {scenario.get('description', '')}")

        with Identiq(settings=settings) as engine:
            outcomes = run_scenario(engine, scenario)

        for step, errors in outcomes:
            total += 1
            if not errors:
                click.echo(f"  step {step}: PASSED")
                continue
            failed += 1
            click.echo(f"  step {step}: FAILED")
            for error in errors:
                click.echo(f"    - {error}")
            if show_expected:
                click.echo(json.dumps(scenario["turns"][step - 1].get("expected"), indent=2))

    click.echo(f"{total - failed}/{total} turns passed")
    if failed:
        raise SystemExit(1)


@cli.group()
def config():
    """Configuration management."""
    pass


@config.command("show")
@click.pass_obj
def config_show(settings):
    """Display current configuration."""
    click.echo(settings.model_dump_json(indent=2))


def main() -> None:
    """Console script entry point."""
    cli(prog_name="identiq")


if __name__ == "__main__":
    main()
