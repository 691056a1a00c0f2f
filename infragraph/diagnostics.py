import abc
import dataclasses
import enum
import functools
import typing


class Severity(enum.IntEnum):
    INVALID = enum.auto()
    ERROR = enum.auto()
    WARNING = enum.auto()


@functools.total_ordering
class BaseAttributePathStep(abc.ABC):
    @abc.abstractmethod
    def format(self, first: bool) -> str:
        ...

    def __lt__(self, other):
        return str(self) < str(other)


@dataclasses.dataclass
class AttributePathStepAttribute(BaseAttributePathStep):
    attribute_name: str

    def __str__(self):
        return self.attribute_name

    def format(self, first: bool) -> str:
        return self.attribute_name if first else f".{self.attribute_name}"


@dataclasses.dataclass
class AttributePathStepElement(BaseAttributePathStep):
    element_key: typing.Union[str, int]

    def __str__(self):
        return str(self.element_key)

    def format(self, first: bool) -> str:
        if isinstance(self.element_key, int):
            return f"[{self.element_key}]"
        return f"[{self.element_key!r}]"


@dataclasses.dataclass(order=True)
class Diagnostic:
    severity: Severity
    summary: str
    detail: typing.Optional[str] = dataclasses.field(default=None)
    attribute_paths: typing.List[BaseAttributePathStep] = dataclasses.field(
        default_factory=list
    )
    address: typing.Optional[str] = dataclasses.field(default=None, compare=False)

    @property
    def path(self) -> str:
        return "".join(
            step.format(i == 0) for i, step in enumerate(self.attribute_paths)
        )

    def __str__(self):
        location = ".".join(filter(None, [self.address, self.path]))
        text = f"{location}: {self.summary}" if location else self.summary
        if self.detail:
            text = f"{text} ({self.detail})"
        return text


@dataclasses.dataclass
class Diagnostics:
    diagnostics: typing.List[Diagnostic] = dataclasses.field(default_factory=list)

    def __post_init__(self):
        self.sort()

    def __iter__(self) -> typing.Iterator[Diagnostic]:
        return iter(self.diagnostics)

    def __len__(self) -> int:
        return len(self.diagnostics)

    def sort(self):
        self.diagnostics.sort()

    def extend(self, other: "Diagnostics"):
        self.diagnostics.extend(other.diagnostics)
        self.sort()

    def has_errors(self) -> bool:
        return any(
            diagnostic.severity == Severity.ERROR for diagnostic in self.diagnostics
        )

    @classmethod
    def from_schema_errors(
        cls,
        *,
        errors: typing.Optional[typing.Dict[typing.Any, typing.Any]],
        severity=Severity.ERROR,
        address: typing.Optional[str] = None,
    ):
        def walk_errors(
            errors: typing.List[str], steps: typing.List[BaseAttributePathStep]
        ):
            for error in errors:
                yield Diagnostic(
                    severity=severity,
                    summary=error,
                    attribute_paths=steps,
                    address=address,
                )

        def is_mapping_entry(field_errors: typing.Dict[typing.Any, typing.Any]):
            return bool(field_errors) and set(field_errors) <= {"key", "value"}

        def walk(
            errors: typing.Optional[typing.Dict[typing.Any, typing.Any]],
            steps: typing.List[BaseAttributePathStep],
        ):
            if errors is None:
                return

            for key, field_errors in errors.items():
                if key == "_schema":
                    yield from walk_errors(field_errors, steps)
                    continue

                if isinstance(key, int) or (
                    isinstance(field_errors, typing.Dict)
                    and is_mapping_entry(field_errors)
                    and steps
                ):
                    this_steps = steps + [AttributePathStepElement(key)]
                else:
                    this_steps = steps + [AttributePathStepAttribute(key)]

                if isinstance(field_errors, typing.List):
                    yield from walk_errors(field_errors, this_steps)
                elif isinstance(field_errors, typing.Dict):
                    if is_mapping_entry(field_errors) and steps:
                        if "key" in field_errors:
                            yield from walk_errors(
                                [f"Key: {error}" for error in field_errors["key"]],
                                this_steps,
                            )
                        if "value" in field_errors:
                            yield from walk(
                                {"_schema": field_errors["value"]}
                                if isinstance(field_errors["value"], typing.List)
                                else field_errors["value"],
                                this_steps,
                            )
                    else:
                        yield from walk(field_errors, this_steps)
                else:
                    raise NotImplementedError

        return cls(diagnostics=list(walk(errors, [])))
