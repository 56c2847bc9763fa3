"""Translation of JSON-Schema-like output schemas into pydantic validators."""

from typing import Any, Dict, List, Union

from pydantic import Field, StrictBool, StrictFloat, StrictInt, StrictStr, TypeAdapter, create_model


def json_schema_to_type(schema: Dict[str, Any], name: str = "StructuredOutput") -> Any:
    """
    Build a type annotation that validates values described by `schema`.

    Objects become generated pydantic models (every listed property required),
    arrays become lists, and an unknown or missing type accepts anything.
    """
    schema_type = schema.get("type") if isinstance(schema, dict) else None

    if schema_type == "string":
        return StrictStr
    if schema_type == "number":
        return Union[StrictInt, StrictFloat]
    if schema_type == "integer":
        return StrictInt
    if schema_type == "boolean":
        return StrictBool
    if schema_type == "object":
        properties = schema.get("properties")
        if not properties:
            return Dict[str, Any]
        fields = {}
        for index, (key, property_schema) in enumerate(properties.items()):
            property_type = json_schema_to_type(property_schema, name=f"{name}_{index}")
            fields[f"field_{index}"] = (property_type, Field(..., alias=key))
        return create_model(name, **fields)
    if schema_type == "array":
        items = schema.get("items")
        if not items:
            return List[Any]
        return List[json_schema_to_type(items, name=f"{name}Item")]
    return Any


def validate_structured_output(schema: Dict[str, Any], value: Any) -> Any:
    """Validate `value` against `schema` and return it as plain JSON-ready data.

    Raises:
        pydantic.ValidationError: If the value does not match the schema
    """
    adapter = TypeAdapter(json_schema_to_type(schema))
    validated = adapter.validate_python(value)
    return adapter.dump_python(validated, mode="json", by_alias=True)
