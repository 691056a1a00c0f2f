"""
Build a :class:`~infragraph.resources.Plan` from a plan document.

A document has the shape below (JSON or YAML)::

    variables:
      project_name: {default: demo}
      instance_count: {type: number, default: 2}
    provider:
      region: us-east-1
    resources:
      aws_vpc:
        main:
          cidr_block: 10.0.0.0/16
      aws_instance:
        web:
          count: ${var.instance_count}
          ami: ami-12345678
          instance_type: t3.micro
          tags: {Name: "${var.project_name}-web-${count.index}"}
    outputs:
      web_ips: ${aws_instance.web[*].private_ip}
"""
import json
import logging
import os
import typing

import marshmallow
import yaml

from infragraph import diagnostics, errors, resources, schemas, values

logger = logging.getLogger(__name__)


class Number(marshmallow.fields.Float):
    """A finite number; integral values load as ``int``."""

    def __init__(self, **kwargs):
        super().__init__(allow_nan=False, **kwargs)

    def _format_num(self, value):
        number = super()._format_num(value)
        return int(number) if number.is_integer() else number


VARIABLE_TYPES: typing.Dict[str, typing.Callable[[], marshmallow.fields.Field]] = {
    "string": marshmallow.fields.String,
    "number": Number,
    "bool": marshmallow.fields.Boolean,
    "list": lambda: marshmallow.fields.List(marshmallow.fields.String()),
    "map": lambda: marshmallow.fields.Dict(keys=marshmallow.fields.String()),
}


class VariableSchema(marshmallow.Schema):
    type = marshmallow.fields.String(
        validate=marshmallow.validate.OneOf(sorted(VARIABLE_TYPES))
    )
    default = marshmallow.fields.Raw(allow_none=True)
    description = marshmallow.fields.String()
    sensitive = marshmallow.fields.Boolean()


class OutputSchema(marshmallow.Schema):
    value = marshmallow.fields.Raw(required=True, allow_none=True)
    description = marshmallow.fields.String()
    sensitive = marshmallow.fields.Boolean()


class DocumentSchema(marshmallow.Schema):
    variables = marshmallow.fields.Dict(keys=marshmallow.fields.String())
    provider = marshmallow.fields.Dict(keys=marshmallow.fields.String())
    resources = marshmallow.fields.Dict(
        keys=marshmallow.fields.String(),
        values=marshmallow.fields.Dict(
            keys=marshmallow.fields.String(),
            values=marshmallow.fields.Dict(keys=marshmallow.fields.String()),
        ),
    )
    outputs = marshmallow.fields.Dict(keys=marshmallow.fields.String())


class Loader:
    def __init__(
        self,
        provider: schemas.Provider,
        variables: typing.Optional[typing.Mapping[str, typing.Any]] = None,
    ):
        self.provider = provider
        self.overrides = dict(variables or {})
        self.variables: typing.Dict[str, typing.Any] = {}
        self.problems = diagnostics.Diagnostics()
        self.identifiers: typing.List[str] = []

    def _error(
        self,
        summary: str,
        *,
        address: typing.Optional[str] = None,
        identifier: typing.Optional[str] = None,
    ):
        self.problems.diagnostics.append(
            diagnostics.Diagnostic(
                severity=diagnostics.Severity.ERROR, summary=summary, address=address
            )
        )
        self.identifiers.append(identifier or address or summary)

    def _schema_errors(
        self, schema_errors: typing.Dict[str, typing.Any], address: str
    ):
        if schema_errors:
            self.problems.extend(
                diagnostics.Diagnostics.from_schema_errors(
                    errors=schema_errors, address=address
                )
            )
            self.identifiers.append(address)

    def load(self, document: typing.Mapping[str, typing.Any]) -> resources.Plan:
        if not isinstance(document, typing.Mapping):
            raise errors.ConfigurationError("Plan document must be a mapping")

        document_errors = DocumentSchema().validate(document)
        if document_errors:
            raise errors.ConfigurationError(
                "Malformed plan document",
                identifiers=sorted(map(str, document_errors)),
                diagnostics=diagnostics.Diagnostics.from_schema_errors(
                    errors=document_errors
                ),
            )

        self._load_variables(document.get("variables") or {})

        provider_config = self._substitute(
            values.parse(document.get("provider") or {}), "provider"
        )
        self._schema_errors(self.provider.validate(provider_config), "provider")

        declarations: typing.List[resources.ResourceDeclaration] = []
        groups: typing.Dict[str, typing.List[str]] = {}

        for type_name, named in (document.get("resources") or {}).items():
            try:
                resource = self.provider.get_resource(type_name)
            except errors.ConfigurationError as e:
                self._error(e.message, identifier=type_name)
                continue

            for name, body in named.items():
                group = f"{type_name}.{name}"
                if "count" in body:
                    # Registered even when count is 0 so splats resolve to []
                    groups[group] = []
                declarations.extend(self._load_resource(resource, group, body))

        outputs = [
            output
            for name, body in (document.get("outputs") or {}).items()
            for output in self._load_output(name, body)
        ]

        if self.problems.has_errors():
            raise errors.ConfigurationError(
                "Invalid plan",
                identifiers=list(dict.fromkeys(self.identifiers)),
                diagnostics=self.problems,
            )

        plan = resources.Plan(
            declarations, outputs, groups=groups, provider_config=provider_config
        )
        logger.info(
            "Loaded plan with %d resources and %d outputs",
            len(plan),
            len(plan.outputs),
        )
        return plan

    def _load_variables(self, declared: typing.Mapping[str, typing.Any]):
        for name, spec in declared.items():
            if not isinstance(spec, typing.Mapping):
                spec = {"default": spec}

            spec_errors = VariableSchema().validate(spec)
            if spec_errors:
                self._schema_errors(spec_errors, f"var.{name}")
                continue

            if name in self.overrides:
                value = self.overrides[name]
            elif "default" in spec:
                value = spec["default"]
            else:
                self._error("No value for required variable", address=f"var.{name}")
                continue

            if "type" in spec and value is not None:
                field = VARIABLE_TYPES[spec["type"]]()
                try:
                    value = field.deserialize(value)
                except marshmallow.ValidationError as e:
                    self._error(
                        f"Invalid {spec['type']} value: {e.messages}",
                        address=f"var.{name}",
                    )
                    continue

            self.variables[name] = value

        for name in self.overrides:
            if name not in declared:
                self._error("Variable is not declared", address=f"var.{name}")

    def _substitute(
        self, value: typing.Any, address: str, index: typing.Optional[int] = None
    ) -> typing.Any:
        def replace(expression: values.Expression) -> typing.Any:
            if isinstance(expression, values.Variable):
                if expression.name not in self.variables:
                    self._error(
                        f"Reference to undeclared variable {expression.name}",
                        address=address,
                    )
                    return None
                return self.variables[expression.name]
            if isinstance(expression, values.CountIndex):
                if index is None:
                    self._error(
                        "count.index used outside a counted resource", address=address
                    )
                    return None
                return index
            return expression

        return values.transform(value, replace)

    def _load_resource(
        self,
        resource: schemas.Resource,
        group: str,
        body: typing.Mapping[str, typing.Any],
    ) -> typing.Iterator[resources.ResourceDeclaration]:
        try:
            parsed = values.parse(dict(body))
        except errors.ConfigurationError as e:
            self._error(e.message, address=group)
            return

        count = parsed.pop("count", None)
        depends_on = parsed.pop("depends_on", None) or []

        if not isinstance(depends_on, typing.List) or not all(
            isinstance(item, str) for item in depends_on
        ):
            self._error(
                "depends_on must be a list of resource addresses", address=group
            )
            return

        if count is None:
            indexes: typing.List[typing.Optional[int]] = [None]
        else:
            count = self._substitute(count, group)
            if isinstance(count, str) and count.isdigit():
                count = int(count)
            if (
                not isinstance(count, int)
                or isinstance(count, bool)
                or count < 0
            ):
                self._error(
                    f"count must be a non-negative whole number, got {count!r}",
                    address=group,
                )
                return
            indexes = list(range(count))

        for index in indexes:
            address = group if index is None else f"{group}[{index}]"
            attributes = self._substitute(parsed, address, index)
            self._schema_errors(resource.validate_config(attributes), address)
            yield resources.ResourceDeclaration(
                address=address,
                type=resource.type_name,
                attributes=attributes,
                depends_on=tuple(depends_on),
                group=None if index is None else group,
                index=index,
            )

    def _load_output(
        self, name: str, body: typing.Any
    ) -> typing.Iterator[resources.Output]:
        if not isinstance(body, typing.Mapping):
            body = {"value": body}

        body_errors = OutputSchema().validate(body)
        if body_errors:
            self._schema_errors(body_errors, f"output.{name}")
            return

        try:
            value = values.parse(body["value"])
        except errors.ConfigurationError as e:
            self._error(e.message, address=f"output.{name}")
            return

        yield resources.Output(
            name=name,
            value=self._substitute(value, f"output.{name}"),
            sensitive=body.get("sensitive", False),
            description=body.get("description"),
        )


def load_plan(
    document: typing.Mapping[str, typing.Any],
    provider: schemas.Provider,
    *,
    variables: typing.Optional[typing.Mapping[str, typing.Any]] = None,
) -> resources.Plan:
    return Loader(provider, variables).load(document)


def read_document(path: str) -> typing.Dict[str, typing.Any]:
    with open(path) as f:
        try:
            if os.path.splitext(path)[1] == ".json":
                return json.load(f)
            return yaml.safe_load(f) or {}
        except (ValueError, yaml.YAMLError) as e:
            raise errors.ConfigurationError(f"Cannot parse {path}: {e}") from e


def load_file(
    path: str,
    provider: schemas.Provider,
    *,
    variables: typing.Optional[typing.Mapping[str, typing.Any]] = None,
) -> resources.Plan:
    return load_plan(read_document(path), provider, variables=variables)
