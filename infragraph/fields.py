import typing

import marshmallow

from infragraph import values


class BaseField(marshmallow.fields.Field):
    type_name: typing.Optional[str] = None

    def __init__(
        self,
        *,
        allow_none: bool = True,
        description: typing.Optional[str] = None,
        required: bool = False,
        optional: bool = False,
        computed: bool = False,
        sensitive: bool = False,
        **kwargs,
    ):
        metadata = {
            "description": description,
            "required": required,
            "optional": optional,
            "computed": computed,
            "sensitive": sensitive,
        }
        metadata.update(kwargs.pop("metadata", {}))
        super().__init__(
            allow_none=allow_none, required=required, metadata=metadata, **kwargs
        )

    @property
    def computed_only(self) -> bool:
        return self.metadata["computed"] and not (
            self.metadata["optional"] or self.metadata["required"]
        )

    def get_type(self) -> typing.Any:
        if self.type_name is not None:
            return self.type_name
        raise NotImplementedError

    def deserialize(self, value, attr=None, data=None, **kwargs):
        # References are checked once they resolve
        if isinstance(value, values.Expression):
            return value
        return super().deserialize(value, attr, data, **kwargs)


class BaseNestedField(BaseField):
    def __init__(
        self, *args, min_items: int = 0, max_items: int = 0, **kwargs,
    ):
        metadata = {
            "min_items": min_items,
            "max_items": max_items,
        }
        super().__init__(*args, metadata=metadata, **kwargs)

    def get_inner(self):
        raise NotImplementedError

    def get_type(self) -> typing.Any:
        return [self.type_name, self.get_inner().get_type()]

    def deserialize(self, value, attr=None, data=None, **kwargs):
        result = super().deserialize(value, attr, data, **kwargs)
        if result is None or result is marshmallow.missing:
            return result
        if isinstance(result, values.Expression):
            return result
        min_items = self.metadata["min_items"]
        max_items = self.metadata["max_items"]
        if min_items and len(result) < min_items:
            raise marshmallow.ValidationError(
                f"Must have at least {min_items} items."
            )
        if max_items and len(result) > max_items:
            raise marshmallow.ValidationError(f"Must have at most {max_items} items.")
        return result


class Bool(marshmallow.fields.Boolean, BaseField):
    type_name = "bool"


class Int(marshmallow.fields.Integer, BaseField):
    type_name = "number"

    def __init__(self, **kwargs):
        super().__init__(strict=True, **kwargs)


class Float(marshmallow.fields.Float, BaseField):
    type_name = "number"


class String(marshmallow.fields.String, BaseField):
    type_name = "string"


class List(marshmallow.fields.List, BaseNestedField):
    type_name = "list"

    def get_inner(self):
        return self.inner


class Set(List, BaseNestedField):
    type_name = "set"

    def _deserialize(self, value, attr, data, **kwargs):
        result = super()._deserialize(value, attr, data, **kwargs)
        if len(set(map(repr, result))) != len(result):
            raise marshmallow.ValidationError("Set items must be unique.")
        return result


class Map(marshmallow.fields.Mapping, BaseNestedField):
    type_name = "map"

    def __init__(self, values=None, **kwargs):
        if values is None:
            values = String()
        super().__init__(String(), values, **kwargs)

    def get_inner(self):
        return self.value_field


class Nested(marshmallow.fields.Nested, BaseField):
    def get_type(self) -> typing.Any:
        return self.schema.get_type()
