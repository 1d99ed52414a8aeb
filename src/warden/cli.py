"""
CLI entry point for Warden.

This module provides the Typer-based command-line interface for Warden.

Commands:
    check       Evaluate one tool call against a rules file
    agents      List builtin agents and agents from a file
    plan        Validate a plan file and show its steps

Architecture Note:
    The CLI is thin - it parses arguments, loads YAML files, and delegates
    to the policy, agent, and orchestrator modules. The library itself never
    configures logging; the CLI installs a RichHandler on request.
"""

import json
import logging
import traceback
from pathlib import Path
from typing import Annotated, Any, NoReturn, Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from warden import __version__
from warden.agent.registry import AgentRegistry
from warden.errors import WardenError
from warden.orchestrator.scheduler import PlanScheduler, get_ready_steps
from warden.policy.engine import PolicyEngine
from warden.schema import PermissionAction, load_agents, load_plan_spec, load_rules
from warden.tools.registry import builtin_registry

# Initialize Typer app with metadata
app = typer.Typer(
    name="warden",
    help="Permission-checked tool calls and multi-agent plans.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()

# Exit codes for `warden check`
EXIT_ALLOW = 0
EXIT_DENY = 1
EXIT_ASK = 2
# Unreadable or invalid input files
EXIT_INVALID_INPUT = 3

ACTION_EXIT_CODES = {
    PermissionAction.ALLOW: EXIT_ALLOW,
    PermissionAction.DENY: EXIT_DENY,
    PermissionAction.ASK: EXIT_ASK,
}

ACTION_STYLES = {
    PermissionAction.ALLOW: "green",
    PermissionAction.DENY: "red",
    PermissionAction.ASK: "yellow",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]warden[/bold] version {__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool, debug: bool) -> None:
    """Route warden's log records to a RichHandler."""
    if not (verbose or debug):
        return
    logger = logging.getLogger("warden")
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    logger.addHandler(RichHandler(console=Console(stderr=True), show_path=debug))
    logger.setLevel(logging.DEBUG if debug else logging.INFO)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log progress to stderr."),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Log debug details and show error tracebacks."),
    ] = False,
) -> None:
    """
    Warden - permission-checked tool calls for autonomous agents.

    Evaluate tool calls against permission rules, inspect agent profiles,
    and validate multi-agent plans.
    """
    configure_logging(verbose, debug)


def _parse_args(pairs: list[str]) -> dict[str, Any]:
    """Turn `key=value` pairs into a dict of strings."""
    args: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected key=value, got {pair!r}", param_hint="--arg")
        args[key] = value
    return args


def _fail(message: str, json_output: bool, error_type: str = "invalid_input") -> NoReturn:
    """Report an input error and exit."""
    if json_output:
        output: dict[str, Any] = {"error": True, "error_type": error_type, "message": message}
        if logging.getLogger("warden").isEnabledFor(logging.DEBUG):
            output["traceback"] = traceback.format_exc()
        print(json.dumps(output, indent=2))
    else:
        console.print(f"[red]{message}[/red]")
    raise typer.Exit(code=EXIT_INVALID_INPUT)


def _load_registry(agents_path: Path | None, json_output: bool) -> AgentRegistry:
    registry = AgentRegistry.with_builtins()
    if agents_path is None:
        return registry
    try:
        for profile in load_agents(agents_path):
            registry.register(profile)
    except (WardenError, yaml.YAMLError) as e:
        _fail(f"Error loading agents: {e}", json_output)
    return registry


@app.command()
def check(
    rules_path: Annotated[
        Path,
        typer.Argument(
            help="Path to the rules YAML file.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    tool: Annotated[str, typer.Argument(help="Tool name to evaluate.")],
    arg: Annotated[
        Optional[list[str]],
        typer.Option("--arg", "-a", help="Tool argument as key=value (repeatable)."),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output the decision in JSON format."),
    ] = False,
) -> None:
    """
    Evaluate one tool call against a rules file.

    Exits 0 when the call is allowed, 1 when denied, 2 when it needs approval.

    Example:
        $ warden check rules.yaml bash --arg "command=rm -rf /"
    """
    args = _parse_args(arg or [])
    try:
        rules = load_rules(rules_path)
    except (WardenError, yaml.YAMLError) as e:
        _fail(f"Error loading rules: {e}", json_output)

    decision = PolicyEngine(rules).evaluate(tool, args)

    if json_output:
        output = {
            "tool": tool,
            "args": args,
            **decision.model_dump(mode="json"),
        }
        print(json.dumps(output, indent=2))
    else:
        style = ACTION_STYLES[decision.action]
        console.print(f"[bold]{tool}[/bold]: [{style}]{decision.action.value}[/{style}]")
        console.print(f"[dim]{decision.reason} ({decision.rule_matched})[/dim]")

    raise typer.Exit(code=ACTION_EXIT_CODES[decision.action])


@app.command()
def agents(
    agents_path: Annotated[
        Optional[Path],
        typer.Option(
            "--agents",
            help="YAML file with additional agent profiles.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output agents in JSON format."),
    ] = False,
) -> None:
    """
    List builtin agents plus agents from a file.

    Example:
        $ warden agents --agents team.yaml
    """
    registry = _load_registry(agents_path, json_output)

    if json_output:
        output = [profile.model_dump(mode="json", by_alias=True) for profile in registry.list()]
        print(json.dumps(output, indent=2))
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Tools")
    table.add_column("Rules", justify="right")
    table.add_column("Description")

    for profile in registry.list():
        rules = "allow all" if profile.rules is None else str(len(profile.rules))
        table.add_row(
            profile.id,
            profile.name,
            ", ".join(profile.tool_names),
            rules,
            profile.description,
        )

    console.print(table)


@app.command()
def plan(
    plan_path: Annotated[
        Path,
        typer.Argument(
            help="Path to the plan YAML file.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    agents_path: Annotated[
        Optional[Path],
        typer.Option(
            "--agents",
            help="YAML file with additional agent profiles.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output the plan in JSON format."),
    ] = False,
) -> None:
    """
    Validate a plan file and show its steps.

    Checks the plan structure and that every step names a known agent,
    then shows each step's dependencies and which steps are ready to run.

    Example:
        $ warden plan release.yaml --agents team.yaml
    """
    registry = _load_registry(agents_path, json_output)
    try:
        spec = load_plan_spec(plan_path)
    except (WardenError, yaml.YAMLError) as e:
        _fail(f"Error loading plan: {e}", json_output)

    scheduler = PlanScheduler(agents=registry, tools=builtin_registry())
    try:
        built = scheduler.create_plan_from_spec(spec)
    except WardenError as e:
        _fail(f"Error loading plan: {e}", json_output)

    known_ids = {step.id for step in built.steps}
    problems = [
        f"Step {step.id}: unknown agent {step.agent_id}"
        for step in built.steps
        if not registry.has(step.agent_id)
    ]
    problems.extend(
        f"Step {step.id}: unknown dependency {dep}"
        for step in built.steps
        for dep in step.depends_on
        if dep not in known_ids
    )
    ready_ids = {step.id for step in get_ready_steps(built)}

    if json_output:
        output = {
            "valid": not problems,
            "problems": problems,
            "plan": built.model_dump(mode="json"),
            "ready": [step.id for step in built.steps if step.id in ready_ids],
        }
        print(json.dumps(output, indent=2))
    else:
        console.print(f"[bold]{built.title}[/bold] ({len(built.steps)} steps)")
        table = Table(show_header=True, header_style="bold")
        table.add_column("Step", style="cyan")
        table.add_column("Agent")
        table.add_column("Mode", width=8)
        table.add_column("Depends on")
        table.add_column("Ready", width=5)
        for step in built.steps:
            table.add_row(
                step.id,
                step.agent_id,
                "parallel" if step.parallel else "serial",
                ", ".join(step.depends_on) or "-",
                "[green]yes[/green]" if step.id in ready_ids else "no",
            )
        console.print(table)
        for problem in problems:
            console.print(f"[red]{problem}[/red]")

    if problems:
        raise typer.Exit(code=EXIT_INVALID_INPUT)
