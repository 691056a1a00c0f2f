import typing

import msgpack

from infragraph import schemas, values

# Placeholder for a value that is only known once the resource exists
UNKNOWN = msgpack.ExtType(code=0, data=b"\x00")


def set_unknowns(
    value: typing.Optional[typing.Dict[str, typing.Any]], schema: schemas.Block
) -> typing.Optional[typing.Dict[str, typing.Any]]:
    result = {}

    if value is None:
        all_none = True
        for name, attribute in schema.attributes.items():
            if attribute.computed:
                result[name] = UNKNOWN
                all_none = False
            else:
                result[name] = None
        if all_none:
            return value
        return result

    value = typing.cast(typing.Dict[str, typing.Any], value)

    for name, attribute in schema.attributes.items():
        this_value = value.get(name)
        if attribute.computed and this_value is None:
            result[name] = UNKNOWN
        else:
            result[name] = this_value

    for name, block in schema.block_types.items():
        this_value = value.get(name)
        if this_value is None or this_value is UNKNOWN:
            result[name] = this_value
        elif block.nesting == schemas.NestingMode.SINGLE:
            result[name] = set_unknowns(this_value, block.block)
        elif block.nesting in {schemas.NestingMode.LIST, schemas.NestingMode.SET}:
            result[name] = [
                set_unknowns(inner_value, block.block) for inner_value in this_value
            ]
        elif block.nesting == schemas.NestingMode.MAP:
            result[name] = {
                key: set_unknowns(inner_value, block.block)
                for key, inner_value in this_value.items()
            }
        else:
            raise NotImplementedError

    return result


def mask_expressions(value: typing.Any) -> typing.Any:
    """Replace every expression left in a value tree with ``UNKNOWN``."""
    if isinstance(value, values.Expression):
        return UNKNOWN
    elif isinstance(value, typing.Dict):
        return {key: mask_expressions(item) for key, item in value.items()}
    elif isinstance(value, typing.List):
        return [mask_expressions(item) for item in value]
    return value


def has_unknowns(obj: typing.Any) -> bool:
    stack = [obj]
    while stack:
        item = stack.pop()
        if item == UNKNOWN:
            return True
        elif isinstance(item, typing.Dict):
            stack.extend(item.values())
        elif isinstance(item, typing.List):
            stack.extend(item)
    return False
