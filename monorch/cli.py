"""
CLI interface for monorch.

Provides commands to initialize a workspace, inspect its packages and
dependency plan, and run scripts or commands across every package in
dependency order.
"""

import json
import shlex
from pathlib import Path

import click

from monorch import __version__
from monorch.errors import MonorchError
from monorch.schemas import FailurePolicy, RunOptions


def _load_workspace_config(ctx):
    """Load the workspace config once per invocation, exiting on failure."""
    from monorch.config import load_config

    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = load_config(ctx.obj.get("config_path"))
        except MonorchError as e:
            click.echo(f"✗ {e}", err=True)
            raise SystemExit(1)
    return ctx.obj["config"]


def _setup_logging(config, verbose: bool):
    from monorch.utils import setup_logging

    level = "DEBUG" if verbose else config.get_log_level()
    return setup_logging(
        config.get_log_file_path(),
        log_level=level,
        log_format=config.get_log_format(),
        console_output=config.should_log_to_console() or verbose,
    )


def _discover(ctx, scope, ignore):
    from monorch.store import PackageStore, filter_packages

    config = _load_workspace_config(ctx)
    try:
        descriptors = PackageStore(config.root).load(config.packages)
    except MonorchError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)
    return filter_packages(descriptors, scope=scope or None, ignore=ignore or None)


def filter_options(func):
    """--scope / --ignore, shared by every command that selects packages."""
    func = click.option(
        "--ignore", multiple=True, metavar="GLOB",
        help="Exclude packages whose name matches (repeatable)",
    )(func)
    func = click.option(
        "--scope", multiple=True, metavar="GLOB",
        help="Only include packages whose name matches (repeatable)",
    )(func)
    return func


def execution_options(func):
    """Options shared by run and exec."""
    func = filter_options(func)
    func = click.option(
        "--timeout", type=float, default=None,
        help="Per-package timeout in seconds",
    )(func)
    func = click.option(
        "--stream", is_flag=True,
        help="Stream command output instead of capturing it",
    )(func)
    func = click.option(
        "--fail-fast/--no-fail-fast", "fail_fast", default=None,
        help="Failure policy (default: from monorch.yaml)",
    )(func)
    func = click.option(
        "--concurrency", type=click.IntRange(min=1), default=None,
        help="Maximum packages running at once (default: from monorch.yaml, else unbounded)",
    )(func)
    return func


def _run_options(config, concurrency, fail_fast) -> RunOptions:
    defaults = config.run_options()
    if fail_fast is None:
        policy = defaults.failure_policy
    else:
        policy = FailurePolicy.FAIL_FAST if fail_fast else FailurePolicy.CONTINUE
    return RunOptions(
        concurrency=concurrency if concurrency is not None else defaults.concurrency,
        failure_policy=policy,
    )


def _execute(ctx, action, scope, ignore, concurrency, fail_fast):
    """Run action across the workspace and exit with the run's status."""
    from monorch.events import CompositeObserver, ConsoleObserver, LoggingObserver
    from monorch.runner import run
    from monorch.utils import print_banner, print_error

    config = _load_workspace_config(ctx)
    _setup_logging(config, ctx.obj.get("verbose", False))
    descriptors = _discover(ctx, scope, ignore)
    options = _run_options(config, concurrency, fail_fast)

    as_json = ctx.obj.get("json", False)

    if not descriptors:
        click.echo("No packages matched.", err=as_json)
        return

    # stdout carries only the JSON summary in --json mode
    observers = [LoggingObserver()]
    if not as_json:
        print_banner(f"{action!r} in {len(descriptors)} packages")
        observers.append(ConsoleObserver())

    try:
        summary = run(descriptors, action, options, CompositeObserver(observers))
    except MonorchError as e:
        if as_json:
            click.echo(f"✗ {e}", err=True)
        else:
            print_error(str(e))
        raise SystemExit(1)

    if as_json:
        click.echo(json.dumps(summary.to_dict(), indent=2, default=str))

    if not summary.success:
        raise SystemExit(1)


@click.group()
@click.version_option(version=__version__, prog_name="monorch")
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Workspace config file (default: nearest monorch.yaml)",
)
@click.option("--verbose", is_flag=True, help="Enable debug logging")
@click.option("--json", "as_json", is_flag=True, help="Print the run summary as JSON")
@click.pass_context
def main(ctx, config_path, verbose, as_json):
    """
    monorch - Monorepo task runner.

    Runs scripts and commands across workspace packages in dependency order.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose
    ctx.obj["json"] = as_json


@main.command("init")
@click.option("--independent", is_flag=True, help="Version packages independently")
@click.option("--exact", is_flag=True, help="Pin exact versions (kept for future init runs)")
@click.option(
    "--packages", "package_globs", multiple=True, metavar="GLOB",
    help="Package location glob (repeatable, default: packages/*)",
)
@click.option(
    "--root", type=click.Path(file_okay=False, path_type=Path), default=".",
    help="Workspace root (default: current directory)",
)
def init(independent: bool, exact: bool, package_globs, root: Path):
    """
    Initialize a workspace.

    Creates or updates monorch.yaml and the package directory.

    Examples:

        monorch init

        monorch init --independent --packages "libs/*" --packages "apps/*"
    """
    from monorch.utils import print_success, print_warning
    from monorch.workspace import init_workspace

    try:
        result = init_workspace(
            root, independent=independent, packages=list(package_globs) or None, exact=exact,
        )
    except MonorchError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    for created_dir in result.created_dirs:
        click.echo(f"Created package directory {created_dir}")
    if result.removed_version_file:
        click.echo("Removed old VERSION file")
    if result.exact:
        click.echo("Exact versions recorded under command.init.exact")
    if not result.is_git_repository:
        print_warning(f"{root} is not a git repository")

    verb = "Created" if result.created else "Updated"
    print_success(f"{verb} {result.config_path} (version {result.version})")


@main.command("ls")
@filter_options
@click.pass_context
def list_packages(ctx, scope, ignore):
    """List workspace packages."""
    descriptors = sorted(_discover(ctx, scope, ignore), key=lambda d: d.name)

    if ctx.obj.get("json"):
        click.echo(json.dumps([d.to_dict() for d in descriptors], indent=2))
        return

    if not descriptors:
        click.echo("No packages found.")
        return

    config = _load_workspace_config(ctx)
    for d in descriptors:
        try:
            location = d.location.relative_to(config.root.resolve())
        except ValueError:
            location = d.location
        private = " (private)" if d.private else ""
        click.echo(f"{d.name}  v{d.version}  {location}{private}")


@main.command("plan")
@filter_options
@click.option("--concurrency", type=click.IntRange(min=1), default=None, help="Maximum batch size")
@click.pass_context
def plan(ctx, scope, ignore, concurrency):
    """
    Show the batches packages would run in.

    Every package's workspace dependencies sit in an earlier batch.
    Fails if the dependency graph has a cycle.
    """
    from monorch.graph import build_graph
    from monorch.scheduler import plan_batches

    descriptors = _discover(ctx, scope, ignore)
    graph = build_graph(descriptors)

    try:
        batches = plan_batches(graph, concurrency)
    except MonorchError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    if ctx.obj.get("json"):
        click.echo(json.dumps({
            "graph": graph.to_dict(),
            "batches": [sorted(b) for b in batches],
        }, indent=2))
        return

    for index, batch in enumerate(batches, start=1):
        click.echo(f"Batch {index}: {', '.join(sorted(batch))}")


@main.command("run")
@click.argument("script")
@click.option("--strict", is_flag=True, help="Fail packages that do not declare the script")
@execution_options
@click.pass_context
def run_script(ctx, script, strict, scope, ignore, concurrency, fail_fast, stream, timeout):
    """
    Run a manifest script in every package.

    SCRIPT is a key of the "scripts" mapping in each package manifest.
    Packages without it are skipped as a no-op unless --strict.

    Examples:

        monorch run build

        monorch run test --concurrency 2 --no-fail-fast

        monorch run lint --scope "api-*"
    """
    from monorch.actions import ScriptAction

    action = ScriptAction(script, timeout=timeout, stream=stream, strict=strict)
    _execute(ctx, action, scope, ignore, concurrency, fail_fast)


@main.command("exec", context_settings={"ignore_unknown_options": True})
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@execution_options
@click.pass_context
def exec_command(ctx, command, scope, ignore, concurrency, fail_fast, stream, timeout):
    """
    Run a shell command in every package directory.

    Examples:

        monorch exec -- rm -rf dist

        monorch exec --concurrency 1 -- git status --short
    """
    from monorch.actions import CommandAction

    # A single argument is taken as a full shell line
    line = command[0] if len(command) == 1 else shlex.join(command)
    action = CommandAction(line, timeout=timeout, stream=stream)
    _execute(ctx, action, scope, ignore, concurrency, fail_fast)


if __name__ == "__main__":
    main()
