"""
Attribute value trees.

Plan documents embed references to other resources inside strings, the way
Terraform interpolates them::

    "vpc_id": "${aws_vpc.main.id}"
    "name": "${var.project_name}-${var.environment}-alb"

:func:`parse` turns those strings into explicit nodes (:class:`Reference`,
:class:`Variable`, :class:`CountIndex`, :class:`Template`) so the rest of the
package never has to look inside strings again.
"""
import dataclasses
import json
import re
import typing

from infragraph import errors

INTERPOLATION = re.compile(r"(\$?)\$\{\s*([^}]*?)\s*\}")

REFERENCE = re.compile(
    r"^(?P<type>[A-Za-z_][\w-]*)\.(?P<name>[A-Za-z_][\w-]*)"
    r"(?:\[(?P<index>\d+|\*)\])?"
    r"(?:\.(?P<attribute>[\w.-]+))?$"
)


class Expression:
    """Base class for every non-literal node in a value tree."""


@dataclasses.dataclass(frozen=True)
class Reference(Expression):
    resource: str
    attribute: str
    index: typing.Optional[int] = None
    splat: bool = False

    @property
    def address(self) -> str:
        if self.index is None:
            return self.resource
        return f"{self.resource}[{self.index}]"

    @property
    def type_name(self) -> str:
        return self.resource.split(".", 1)[0]

    @property
    def root_attribute(self) -> str:
        return self.attribute.split(".", 1)[0]

    def __str__(self):
        if self.splat:
            return f"{self.resource}[*].{self.attribute}"
        return f"{self.address}.{self.attribute}"


@dataclasses.dataclass(frozen=True)
class Variable(Expression):
    name: str

    def __str__(self):
        return f"var.{self.name}"


@dataclasses.dataclass(frozen=True)
class CountIndex(Expression):
    def __str__(self):
        return "count.index"


@dataclasses.dataclass(frozen=True)
class Template(Expression):
    parts: typing.Tuple[typing.Union[str, Expression], ...]

    def __str__(self):
        return "".join(
            part if isinstance(part, str) else "${" + str(part) + "}"
            for part in self.parts
        )


def parse_expression(text: str) -> Expression:
    if text == "count.index":
        return CountIndex()

    if text.startswith("var."):
        name = text[len("var.") :]
        if not name or not name.replace("_", "").replace("-", "").isalnum():
            raise errors.ConfigurationError(f"Invalid variable reference: {text!r}")
        return Variable(name)

    match = REFERENCE.match(text)
    if match is None or match.group("attribute") is None:
        raise errors.ConfigurationError(f"Invalid reference: {text!r}")

    resource = f"{match.group('type')}.{match.group('name')}"
    index = match.group("index")
    if index == "*":
        return Reference(resource, match.group("attribute"), splat=True)
    if index is not None:
        return Reference(resource, match.group("attribute"), index=int(index))
    return Reference(resource, match.group("attribute"))


def parse_string(value: str) -> typing.Union[str, Expression]:
    parts: typing.List[typing.Union[str, Expression]] = []
    position = 0

    for match in INTERPOLATION.finditer(value):
        literal = value[position : match.start()]
        position = match.end()

        if match.group(1):
            # "$${...}" escapes an interpolation
            parts.append(literal + match.group(0)[1:])
            continue

        if literal:
            parts.append(literal)
        parts.append(parse_expression(match.group(2)))

    if position < len(value):
        parts.append(value[position:])

    return _collapse(parts)


def _collapse(
    parts: typing.List[typing.Union[str, Expression]]
) -> typing.Union[str, Expression]:
    merged: typing.List[typing.Union[str, Expression]] = []
    for part in parts:
        if isinstance(part, str) and merged and isinstance(merged[-1], str):
            merged[-1] += part
        else:
            merged.append(part)

    if not merged:
        return ""
    if len(merged) == 1:
        return merged[0]
    return Template(tuple(merged))


def parse(value: typing.Any) -> typing.Any:
    """Parse every string in a raw value tree into literals and expressions."""
    if isinstance(value, str):
        return parse_string(value)
    elif isinstance(value, typing.Dict):
        return {key: parse(item) for key, item in value.items()}
    elif isinstance(value, (list, tuple)):
        return [parse(item) for item in value]
    return value


def transform(
    value: typing.Any, func: typing.Callable[[Expression], typing.Any]
) -> typing.Any:
    """
    Rebuild a value tree, replacing each expression with ``func(expression)``.

    Templates are rendered to strings once none of their parts remain
    expressions.
    """
    if isinstance(value, Template):
        parts = []
        for part in value.parts:
            if isinstance(part, Expression):
                part = func(part)
            if not isinstance(part, (str, Expression)):
                part = render(part)
            parts.append(part)
        return _collapse(parts)
    elif isinstance(value, Expression):
        return func(value)
    elif isinstance(value, typing.Dict):
        return {key: transform(item, func) for key, item in value.items()}
    elif isinstance(value, typing.List):
        return [transform(item, func) for item in value]
    return value


def render(value: typing.Any) -> str:
    """Text of a value interpolated into a template."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


def expressions(value: typing.Any) -> typing.Iterator[Expression]:
    stack = [value]
    while stack:
        item = stack.pop()
        if isinstance(item, Template):
            stack.extend(reversed(item.parts))
        elif isinstance(item, Expression):
            yield item
        elif isinstance(item, typing.Dict):
            stack.extend(reversed(list(item.values())))
        elif isinstance(item, typing.List):
            stack.extend(reversed(item))


def references(value: typing.Any) -> typing.List[Reference]:
    return [item for item in expressions(value) if isinstance(item, Reference)]


def has_expressions(value: typing.Any) -> bool:
    return next(expressions(value), None) is not None
