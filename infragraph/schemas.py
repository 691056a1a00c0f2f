import abc
import dataclasses
import enum
import operator
import typing

import marshmallow

from infragraph import errors, fields, settings


@dataclasses.dataclass
class Attribute:
    type: typing.Any
    description: typing.Optional[str] = None
    required: bool = False
    optional: bool = False
    computed: bool = False
    sensitive: bool = False


@dataclasses.dataclass
class Block:
    attributes: typing.Dict[str, Attribute] = dataclasses.field(default_factory=dict)
    block_types: typing.Dict[str, "NestedBlock"] = dataclasses.field(
        default_factory=dict
    )

    def computed_attributes(self) -> typing.List[str]:
        return sorted(
            name for name, attribute in self.attributes.items() if attribute.computed
        )

    def sensitive_attributes(self) -> typing.List[str]:
        return sorted(
            name for name, attribute in self.attributes.items() if attribute.sensitive
        )


class NestingMode(enum.Enum):
    INVALID = enum.auto()
    SINGLE = enum.auto()
    LIST = enum.auto()
    SET = enum.auto()
    MAP = enum.auto()


@dataclasses.dataclass
class NestedBlock:
    nesting: NestingMode
    block: Block = dataclasses.field(default_factory=Block)
    min_items: int = 0
    max_items: int = 0


class SchemaMeta(marshmallow.schema.SchemaMeta, abc.ABCMeta):
    ...


class Schema(marshmallow.Schema, metaclass=SchemaMeta):
    def get_type(self) -> typing.Any:
        return [
            "object",
            {
                name: field.get_type()
                for name, field in sorted(
                    self.declared_fields.items(), key=operator.itemgetter(0)
                )
            },
        ]

    def get_by_path(
        self, path: typing.Sequence[str]
    ) -> typing.Optional[typing.List[typing.Union["Schema", fields.BaseField]]]:
        """
        Walk a dotted attribute path (already split) through the schema.

        Returns the schema or field reached at each step, or ``None`` if the
        path does not exist.
        """
        current: typing.Union["Schema", fields.BaseField] = self
        result = []

        path = list(path)[::-1]

        while path:
            part = path.pop()

            if isinstance(current, Schema):
                try:
                    current = current.declared_fields[part]
                except KeyError:
                    return None

            elif isinstance(current, fields.List):
                try:
                    int(part)
                except ValueError:
                    return None
                current = current.get_inner()

            elif isinstance(current, fields.Map):
                current = current.get_inner()

            else:
                return None

            if isinstance(current, fields.Nested):
                current = current.schema

            result.append(current)

        return result

    def to_block(self) -> Block:
        attributes = {}
        block_types = {}

        for name, field in self.declared_fields.items():
            field = typing.cast(fields.BaseField, field)

            if (
                isinstance(field, fields.List)
                and isinstance(field.inner, fields.Nested)
                and isinstance(field.inner.schema, Schema)
                # Computed-only fields are always handled as attributes
                and not field.computed_only
            ):
                if isinstance(field, fields.Set):
                    nesting = NestingMode.SET
                else:
                    nesting = NestingMode.LIST

                min_items = field.metadata["min_items"]
                if field.metadata["optional"] and min_items > 0:
                    min_items = 0

                block_types[name] = NestedBlock(
                    nesting=nesting,
                    block=field.inner.schema.to_block(),
                    min_items=min_items,
                    max_items=field.metadata["max_items"],
                )

            else:
                attributes[name] = Attribute(
                    type=field.get_type(),
                    description=field.metadata["description"],
                    required=field.required,
                    optional=field.metadata["optional"],
                    computed=field.metadata["computed"],
                    sensitive=field.metadata["sensitive"],
                )

        return Block(attributes=attributes, block_types=block_types)


class Resource(Schema):
    """
    Schema of one resource type.

    ``asynchronous`` types report an in-progress status from create and
    delete; the engine then polls ``describe`` until they settle.
    """

    type_name: str
    asynchronous: bool = False
    provider: "Provider"

    id = fields.String(computed=True)
    arn = fields.String(computed=True)

    @property
    def timeout(self) -> float:
        return settings.timeout_for(self.type_name)

    def validate_config(
        self, config: typing.Mapping[str, typing.Any]
    ) -> typing.Dict[str, typing.Any]:
        errors = self.validate(config)
        for name, field in self.declared_fields.items():
            if name in config and field.computed_only:
                errors.setdefault(name, []).append(
                    "Computed attribute cannot be set."
                )
        return errors

    def has_attribute(self, attribute: str) -> bool:
        return self.get_by_path(attribute.split(".")) is not None


class Resources(typing.Mapping[str, Resource]):
    def __init__(
        self,
        resources: typing.Optional[typing.Sequence[Resource]] = None,
        *,
        provider: "Provider",
    ):
        self.resources: typing.Dict[str, Resource] = {}
        self.provider = provider

        if resources is not None:
            for resource in resources:
                self.add(resource)

    def __getitem__(self, name: str) -> Resource:
        return self.resources[name]

    def __iter__(self):
        return iter(self.resources)

    def __len__(self) -> int:
        return len(self.resources)

    def add(self, resource: Resource):
        resource.provider = self.provider
        self.resources[resource.type_name] = resource


class ProviderStatus(enum.Enum):
    IN_PROGRESS = "in_progress"
    AVAILABLE = "available"
    FAILED = "failed"
    DELETED = "deleted"


@dataclasses.dataclass
class ProviderResult:
    handle: typing.Optional[str]
    status: ProviderStatus
    attributes: typing.Dict[str, typing.Any] = dataclasses.field(
        default_factory=dict
    )
    reason: typing.Optional[str] = None


class Provider(Schema):
    """
    Control-plane adapter consumed by the engine.

    The schema fields of a provider subclass describe its own configuration
    block (region, credentials profile, ...).
    """

    name: str

    def __init__(self, resources: typing.Optional[typing.Sequence[Resource]] = None):
        super().__init__()

        self.resources = Resources(resources, provider=self)
        self.config: typing.Dict[str, typing.Any] = {}

    def add_resource(self, resource: Resource):
        self.resources.add(resource)

    def get_resource(self, type_name: str) -> Resource:
        try:
            return self.resources[type_name]
        except KeyError:
            raise errors.ConfigurationError(
                f"Unsupported resource type {type_name!r}", identifiers=[type_name]
            ) from None

    def configure(self, config: typing.Dict[str, typing.Any]):
        self.config = config

    @abc.abstractmethod
    async def create(
        self, type_name: str, attributes: typing.Dict[str, typing.Any]
    ) -> ProviderResult:
        ...

    @abc.abstractmethod
    async def describe(self, type_name: str, handle: str) -> ProviderResult:
        ...

    @abc.abstractmethod
    async def delete(self, type_name: str, handle: str) -> ProviderResult:
        ...
