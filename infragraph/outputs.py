import logging
import typing

from infragraph import errors, resources, state, values

logger = logging.getLogger(__name__)


def resolve_reference(
    reference: values.Reference, plan: resources.Plan, store: state.StateStore
) -> typing.Any:
    try:
        addresses = plan.addresses_for(reference)
    except KeyError:
        raise errors.UnresolvedReferenceError(
            f"Reference to undeclared resource {reference}",
            identifiers=[reference.address],
        ) from None

    result = []
    for address in addresses:
        record = store.get(address)
        if record is None or record.status != state.ResourceStatus.READY:
            status = "absent" if record is None else record.status.value
            raise errors.UnresolvedReferenceError(
                f"{reference}: {address} is not ready ({status})",
                identifiers=[address],
            )
        attributes = resources.AttributeMap(record.attributes)
        try:
            result.append(attributes[reference.attribute])
        except KeyError:
            raise errors.UnresolvedReferenceError(
                f"{address} has no attribute {reference.attribute!r}",
                identifiers=[address],
            ) from None

    if reference.splat:
        return result
    return result[0]


def resolve_value(
    value: typing.Any, plan: resources.Plan, store: state.StateStore
) -> typing.Any:
    """Replace every reference in a value tree with the realized attribute."""

    def replace(expression: values.Expression) -> typing.Any:
        if isinstance(expression, values.Reference):
            return resolve_reference(expression, plan, store)
        raise errors.UnresolvedReferenceError(f"Cannot resolve {expression}")

    return values.transform(value, replace)


def resolve_output(
    output: resources.Output, plan: resources.Plan, store: state.StateStore
) -> typing.Any:
    try:
        return resolve_value(output.value, plan, store)
    except errors.UnresolvedReferenceError as e:
        raise errors.UnresolvedReferenceError(
            f"output.{output.name}: {e}", identifiers=[output.name] + e.identifiers
        ) from e


def resolve_outputs(
    plan: resources.Plan, store: state.StateStore
) -> typing.Dict[str, typing.Any]:
    """
    Resolve every declared output of ``plan`` once its resources are settled.

    Raises :class:`~infragraph.errors.UnresolvedReferenceError` for the first
    output whose resources are not ready.
    """
    return {
        name: resolve_output(output, plan, store)
        for name, output in plan.outputs.items()
    }


def record_outputs(
    plan: resources.Plan, store: state.StateStore
) -> typing.List[errors.UnresolvedReferenceError]:
    """Store every resolvable output and return the errors of the others."""
    failures = []
    resolved = {}

    for name, output in plan.outputs.items():
        try:
            value = resolve_output(output, plan, store)
        except errors.UnresolvedReferenceError as e:
            logger.error("%s", e)
            failures.append(e)
            continue
        resolved[name] = state.OutputState(value=value, sensitive=output.sensitive)

    store.outputs = resolved
    return failures
