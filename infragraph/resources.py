import dataclasses
import typing

from infragraph import values


@dataclasses.dataclass(frozen=True)
class ResourceDeclaration:
    address: str
    type: str
    attributes: typing.Mapping[str, typing.Any] = dataclasses.field(
        default_factory=dict
    )
    depends_on: typing.Tuple[str, ...] = ()
    group: typing.Optional[str] = None
    index: typing.Optional[int] = None

    @property
    def references(self) -> typing.List[values.Reference]:
        return values.references(dict(self.attributes))

    @property
    def dependency_targets(self) -> typing.List[str]:
        """
        Identifiers this resource depends on, in first-seen order.

        Each identifier is either a resource address or, for a splat
        reference, the name of a counted resource group.
        """
        targets = list(self.depends_on)
        for reference in self.references:
            targets.append(reference.resource if reference.splat else reference.address)
        return list(dict.fromkeys(targets))


@dataclasses.dataclass(frozen=True)
class Output:
    name: str
    value: typing.Any
    sensitive: bool = False
    description: typing.Optional[str] = None

    @property
    def references(self) -> typing.List[values.Reference]:
        return values.references(self.value)


class Plan(typing.Mapping[str, ResourceDeclaration]):
    def __init__(
        self,
        declarations: typing.Sequence[ResourceDeclaration] = (),
        outputs: typing.Sequence[Output] = (),
        *,
        groups: typing.Optional[typing.Mapping[str, typing.Sequence[str]]] = None,
        provider_config: typing.Optional[typing.Dict[str, typing.Any]] = None,
    ):
        self.declarations: typing.Dict[str, ResourceDeclaration] = {}
        self.outputs: typing.Dict[str, Output] = {}
        self.groups: typing.Dict[str, typing.List[str]] = {
            name: list(members) for name, members in (groups or {}).items()
        }
        self.provider_config = provider_config or {}

        for declaration in declarations:
            if declaration.address in self.declarations:
                raise ValueError(f"Duplicate resource address {declaration.address}")
            self.declarations[declaration.address] = declaration
            if declaration.group is not None:
                members = self.groups.setdefault(declaration.group, [])
                if declaration.address not in members:
                    members.append(declaration.address)

        for output in outputs:
            if output.name in self.outputs:
                raise ValueError(f"Duplicate output {output.name}")
            self.outputs[output.name] = output

    def __getitem__(self, address: str) -> ResourceDeclaration:
        return self.declarations[address]

    def __iter__(self):
        return iter(self.declarations)

    def __len__(self) -> int:
        return len(self.declarations)

    def expand(self, identifier: str) -> typing.List[str]:
        """Resolve an address or a counted group name to resource addresses."""
        if identifier in self.groups:
            return list(self.groups[identifier])
        if identifier in self.declarations:
            return [identifier]
        raise KeyError(identifier)

    def addresses_for(self, reference: values.Reference) -> typing.List[str]:
        if reference.splat:
            return self.expand(reference.resource)
        if reference.index is None and reference.resource in self.groups:
            raise KeyError(reference.resource)
        if reference.address not in self.declarations:
            raise KeyError(reference.address)
        return [reference.address]


@dataclasses.dataclass
class AttributeMap(typing.Mapping[str, typing.Any]):
    """Read-only view over realized attributes addressed by dotted paths."""

    attributes: typing.Dict[str, typing.Any] = dataclasses.field(default_factory=dict)

    def __getitem__(self, key: str) -> typing.Any:
        parts = key.split(".")
        if len(parts) == 1 and parts[0] == "":
            return self.attributes

        current: typing.Any = self.attributes

        for i, part in enumerate(parts):
            if current is None:
                raise KeyError(key)

            if isinstance(current, typing.Dict):
                try:
                    current = current[part]
                except KeyError:
                    # Map keys may contain dots
                    try_key = ".".join(parts[i:])
                    if i > 0 and try_key in current:
                        return current[try_key]
                    raise KeyError(key) from None

            elif isinstance(current, typing.List):
                if part == "#":
                    current = len(current)
                    continue
                try:
                    index = int(part)
                except ValueError:
                    raise KeyError(key) from None
                if index < 0 or index >= len(current):
                    raise KeyError(key)
                current = current[index]

            else:
                raise KeyError(key)

        return current

    def __len__(self) -> int:
        return len(self.attributes)

    def __iter__(self):
        return iter(self.attributes)
