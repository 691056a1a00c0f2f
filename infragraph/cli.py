import asyncio
import importlib
import json
import logging
import sys
import typing

import click
from grpclib.utils import graceful_exit

from infragraph import (
    engine,
    errors,
    graph,
    loader,
    resources,
    schemas,
    settings,
    state,
    unknowns,
)

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "infragraph.simulator:SimulatedProvider"
MASK = "(sensitive)"
KNOWN_AFTER_APPLY = "(known after apply)"


class Context:
    def __init__(self, *, state_path: str, provider_path: str, parallelism: int):
        self.state_path = state_path
        self.provider_path = provider_path
        self.parallelism = parallelism
        self._provider: typing.Optional[schemas.Provider] = None

    @property
    def provider(self) -> schemas.Provider:
        if self._provider is None:
            self._provider = load_provider(self.provider_path)
        return self._provider

    def load_store(self) -> state.StateStore:
        return state.StateStore.load(self.state_path)

    def load_plan(
        self,
        path: str,
        assignments: typing.Sequence[str],
        var_files: typing.Sequence[str],
    ) -> resources.Plan:
        variables: typing.Dict[str, typing.Any] = {}
        for var_file in var_files:
            variables.update(loader.read_document(var_file))
        variables.update(parse_assignments(assignments))
        return loader.load_file(path, self.provider, variables=variables)


def load_provider(path: str) -> schemas.Provider:
    """Instantiate a provider from a ``module:attribute`` path."""
    module_name, _, attribute = path.partition(":")
    if not attribute:
        raise click.BadParameter(
            f"expected module:attribute, got {path!r}", param_hint="--provider"
        )
    try:
        target = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as e:
        raise click.BadParameter(str(e), param_hint="--provider") from e

    provider = target() if callable(target) else target
    if not isinstance(provider, schemas.Provider):
        raise click.BadParameter(
            f"{path} is not a provider", param_hint="--provider"
        )
    return provider


def parse_assignments(assignments: typing.Sequence[str]) -> typing.Dict[str, str]:
    variables = {}
    for assignment in assignments:
        name, sep, value = assignment.partition("=")
        if not sep or not name:
            raise click.BadParameter(
                f"expected name=value, got {assignment!r}", param_hint="--var"
            )
        variables[name.strip()] = value
    return variables


def _displayable(value: typing.Any) -> typing.Any:
    if value == unknowns.UNKNOWN:
        return KNOWN_AFTER_APPLY
    elif isinstance(value, typing.Dict):
        return {key: _displayable(item) for key, item in value.items()}
    elif isinstance(value, typing.List):
        return [_displayable(item) for item in value]
    return value


def render(value: typing.Any) -> str:
    if value == unknowns.UNKNOWN:
        return KNOWN_AFTER_APPLY
    return json.dumps(_displayable(value), sort_keys=True)


def fail(error: Exception) -> typing.NoReturn:
    click.echo(f"Error: {error}", err=True)
    sys.exit(1)


async def run_engine(
    instance: engine.Engine, operation: typing.Awaitable[engine.ApplyResult]
) -> engine.ApplyResult:
    # The first SIGINT/SIGTERM cancels the run, a second one exits
    with graceful_exit([instance]):
        return await operation


def report(result: engine.ApplyResult, outputs: typing.Dict[str, state.OutputState]):
    for address in result.order:
        click.echo(f"{address}: {result.statuses[address].value}")

    for error in result.errors:
        click.echo(f"Error: {error}", err=True)

    if result.cancelled:
        click.echo("Cancelled; run again to resume.", err=True)

    if outputs:
        click.echo("")
        click.echo("Outputs:")
        for name, output in outputs.items():
            value = MASK if output.sensitive else render(output.value)
            click.echo(f"  {name} = {value}")


plan_options = [
    click.argument("path", type=click.Path(exists=True, dir_okay=False)),
    click.option(
        "--var", "assignments", multiple=True, metavar="NAME=VALUE",
        help="Set a plan variable (repeatable).",
    ),
    click.option(
        "--var-file", "var_files", multiple=True,
        type=click.Path(exists=True, dir_okay=False),
        help="Read plan variables from a JSON or YAML file (repeatable).",
    ),
]


def with_plan_options(func):
    for option in reversed(plan_options):
        func = option(func)
    return func


@click.group()
@click.option(
    "--state", "state_path", default=settings.STATE_PATH, show_default=True,
    type=click.Path(dir_okay=False), help="State file.",
)
@click.option(
    "--provider", "provider_path", default=DEFAULT_PROVIDER, show_default=True,
    help="Provider to realize resources with, as module:attribute.",
)
@click.option(
    "--parallelism", default=settings.PARALLELISM, show_default=True,
    type=click.IntRange(min=1), help="Maximum concurrent provider operations.",
)
@click.option(
    "--log-level", default=settings.LOG_LEVEL, show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
@click.pass_context
def main(ctx, state_path, provider_path, parallelism, log_level):
    """Realize declarative AWS resource plans in dependency order."""
    logging.basicConfig(
        level=log_level.upper(), format="%(levelname)s %(name)s: %(message)s"
    )
    ctx.obj = Context(
        state_path=state_path, provider_path=provider_path, parallelism=parallelism
    )


@main.command()
@with_plan_options
@click.pass_obj
def plan(obj: Context, path, assignments, var_files):
    """Show what apply would do, in order."""
    try:
        loaded = obj.load_plan(path, assignments, var_files)
        order = graph.resolve(loaded, provider=obj.provider)
        store = obj.load_store()
    except errors.InfragraphError as e:
        fail(e)

    for address in order:
        declaration = loaded[address]
        record = store.get(address)
        if record is not None and record.status == state.ResourceStatus.READY:
            click.echo(f"  {address} (ready)")
            continue

        click.echo(f"+ {address}")
        block = obj.provider.get_resource(declaration.type).to_block()
        planned = unknowns.set_unknowns(
            unknowns.mask_expressions(dict(declaration.attributes)), block
        )
        sensitive = block.sensitive_attributes()
        for name, value in sorted(planned.items()):
            if value is None:
                continue
            shown = MASK if name in sensitive else render(value)
            click.echo(f"    {name} = {shown}")

    for address in store:
        if address not in loaded:
            click.echo(f"! {address} is in the state but not in the plan")


@main.command()
@with_plan_options
@click.pass_obj
def apply(obj: Context, path, assignments, var_files):
    """Create every resource of the plan that is not ready yet."""
    try:
        loaded = obj.load_plan(path, assignments, var_files)
        store = obj.load_store()
        instance = engine.Engine(obj.provider, store, parallelism=obj.parallelism)
        result = asyncio.run(run_engine(instance, instance.apply(loaded)))
    except errors.InfragraphError as e:
        fail(e)

    report(result, store.outputs)
    if not result.succeeded:
        sys.exit(1)


@main.command()
@click.argument("path", required=False, type=click.Path(exists=True, dir_okay=False))
@click.option("--var", "assignments", multiple=True, metavar="NAME=VALUE")
@click.option(
    "--var-file", "var_files", multiple=True,
    type=click.Path(exists=True, dir_okay=False),
)
@click.pass_obj
def destroy(obj: Context, path, assignments, var_files):
    """
    Delete realized resources, dependents first.

    Without PATH every resource recorded in the state is deleted.
    """
    try:
        loaded = obj.load_plan(path, assignments, var_files) if path else None
        store = obj.load_store()
        instance = engine.Engine(obj.provider, store, parallelism=obj.parallelism)
        result = asyncio.run(run_engine(instance, instance.destroy(loaded)))
    except errors.InfragraphError as e:
        fail(e)

    report(result, {})
    if not result.succeeded:
        sys.exit(1)


@main.command()
@click.argument("name", required=False)
@click.option("--json", "as_json", is_flag=True, help="Print values as JSON.")
@click.pass_obj
def output(obj: Context, name, as_json):
    """
    Show the outputs recorded by the last apply.

    Sensitive values are masked unless NAME selects one output.
    """
    try:
        store = obj.load_store()
    except errors.InfragraphError as e:
        fail(e)

    if name is not None:
        if name not in store.outputs:
            fail(errors.UnresolvedReferenceError(f"No output named {name!r}"))
        value = store.outputs[name].value
        if as_json or not isinstance(value, str):
            value = json.dumps(value)
        click.echo(value)
        return

    if as_json:
        click.echo(
            json.dumps(
                {
                    key: {"value": item.value, "sensitive": item.sensitive}
                    for key, item in store.outputs.items()
                },
                indent=2,
                sort_keys=True,
            )
        )
        return

    for key, item in store.outputs.items():
        click.echo(f"{key} = {MASK if item.sensitive else render(item.value)}")


@main.command("force-unlock")
@click.pass_obj
def force_unlock(obj: Context):
    """
    Remove the state lock.

    Only needed when a run was killed without releasing it and its process
    id was reused; locks of dead processes are cleared automatically.
    """
    store = state.StateStore(obj.state_path)
    if store.force_unlock():
        click.echo(f"Removed {store.lock_path}")
    else:
        click.echo("State is not locked")


if __name__ == "__main__":
    main()
