"""JSON Schema derivation from Python signatures.

Runs once per registered method. The type mapping is a closed table;
anything unresolvable is described as a string.
"""

from __future__ import annotations

import inspect
import re
import types
import typing
from collections.abc import Callable
from typing import Annotated, Any, Union, get_args, get_origin

from mcp_switchboard.registry.base import Param, ParameterDescriptor
from mcp_switchboard.runtime.executor import ToolContext

JSON_TYPES: dict[type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    set: "array",
    frozenset: "array",
    dict: "object",
}

_ARGS_HEADER = re.compile(r"^\s*(Args|Arguments|Parameters):\s*$")
_ARG_LINE = re.compile(r"^\s+(\*{0,2}\w+)(?:\s*\([^)]*\))?:\s*(.+)$")


def _unwrap_annotated(annotation: Any) -> tuple[Any, Param | None]:
    if get_origin(annotation) is Annotated:
        base, *extras = get_args(annotation)
        meta = next((extra for extra in extras if isinstance(extra, Param)), None)
        return base, meta
    return annotation, None


def _strip_optional(annotation: Any) -> Any:
    if get_origin(annotation) in (Union, types.UnionType):
        members = [arg for arg in get_args(annotation) if arg is not type(None)]
        if len(members) == 1:
            return members[0]
    return annotation


def json_type(annotation: Any) -> str:
    """Map a Python annotation to a JSON Schema type name.

    Args:
        annotation: Parameter or return annotation.

    Returns:
        One of string, integer, number, boolean, array or object.
    """
    annotation, _ = _unwrap_annotated(annotation)
    annotation = _strip_optional(annotation)

    if annotation is inspect.Parameter.empty or annotation is Any:
        return "string"
    if isinstance(annotation, str):
        return _json_type_from_name(annotation)

    origin = get_origin(annotation)
    if origin is not None:
        annotation = origin
    if not isinstance(annotation, type):
        return "string"

    for python_type, schema_type in JSON_TYPES.items():
        if annotation is python_type:
            return schema_type
    for python_type, schema_type in JSON_TYPES.items():
        if issubclass(annotation, python_type):
            return schema_type
    return "object"


def _json_type_from_name(name: str) -> str:
    base = name.split("[", 1)[0].strip()
    names = {
        "str": "string",
        "int": "integer",
        "float": "number",
        "bool": "boolean",
        "list": "array",
        "tuple": "array",
        "set": "array",
        "dict": "object",
        "object": "object",
    }
    return names.get(base, "string")


def items_type(annotation: Any) -> str | None:
    """Return the element type of a parameterized sequence annotation."""
    annotation, _ = _unwrap_annotated(annotation)
    annotation = _strip_optional(annotation)
    if get_origin(annotation) in (list, set, frozenset, tuple):
        args = [arg for arg in get_args(annotation) if arg is not Ellipsis]
        if args:
            return json_type(args[0])
    return None


def _is_context(annotation: Any) -> bool:
    annotation, _ = _unwrap_annotated(annotation)
    if isinstance(annotation, str):
        return annotation.strip("'\"") == ToolContext.__name__
    return isinstance(annotation, type) and issubclass(annotation, ToolContext)


def parse_docstring_args(doc: str | None) -> dict[str, str]:
    """Extract parameter descriptions from a Google-style ``Args:`` block."""
    if not doc:
        return {}

    descriptions: dict[str, str] = {}
    in_args = False
    indent: int | None = None
    for line in inspect.cleandoc(doc).splitlines():
        if _ARGS_HEADER.match(line):
            in_args = True
            continue
        if not in_args:
            continue
        if not line.strip():
            if descriptions:
                break
            continue
        if not line[0].isspace():
            break

        line_indent = len(line) - len(line.lstrip())
        if indent is None:
            indent = line_indent
        if line_indent != indent:
            continue  # continuation of the previous entry
        match = _ARG_LINE.match(line)
        if match:
            descriptions[match.group(1).lstrip("*")] = match.group(2).strip()
    return descriptions


def summary_line(doc: str | None) -> str:
    """Return the first paragraph line of a docstring."""
    if not doc:
        return ""
    lines = inspect.cleandoc(doc).splitlines()
    return lines[0].strip() if lines else ""


def _type_hints(func: Callable[..., Any]) -> dict[str, Any]:
    try:
        return typing.get_type_hints(func, include_extras=True)
    except (NameError, TypeError):
        # Unresolvable forward references fall back to the raw annotations
        return dict(getattr(func, "__annotations__", {}))


def describe_parameters(
    func: Callable[..., Any],
) -> tuple[tuple[ParameterDescriptor, ...], int | None]:
    """Derive parameter descriptors from a callable's signature.

    Args:
        func: Bound method or plain function.

    Returns:
        Tuple of (parameter descriptors in declared order, position of the
        parameter receiving the :class:`ToolContext`, if any).
    """
    signature = inspect.signature(func)
    hints = _type_hints(func)
    doc_descriptions = parse_docstring_args(func.__doc__)

    parameters: list[ParameterDescriptor] = []
    context_position = None

    for param in signature.parameters.values():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue

        annotation = hints.get(param.name, param.annotation)
        if _is_context(annotation):
            context_position = len(parameters)
            continue

        base, meta = _unwrap_annotated(annotation)
        has_default = param.default is not inspect.Parameter.empty

        required = not has_default
        default = param.default if has_default else None
        description = doc_descriptions.get(param.name, "")
        schema_type = json_type(base)

        if meta is not None:
            if meta.type:
                schema_type = meta.type
            if meta.required is not None:
                required = meta.required
            if meta.default is not None:
                default = meta.default
            if meta.description:
                description = meta.description

        parameters.append(
            ParameterDescriptor(
                name=param.name,
                type=schema_type,
                required=required,
                default=default,
                description=description,
                items=items_type(base) if schema_type == "array" else None,
            )
        )

    return tuple(parameters), context_position


def input_schema(parameters: tuple[ParameterDescriptor, ...]) -> dict[str, Any]:
    """Build the object schema describing a parameter list."""
    return {
        "type": "object",
        "properties": {param.name: param.to_schema() for param in parameters},
        "required": [param.name for param in parameters if param.required],
    }


def output_schema(func: Callable[..., Any]) -> dict[str, Any] | None:
    """Build a schema for a callable's return annotation, if it has one."""
    annotation = _type_hints(func).get("return", inspect.Parameter.empty)
    if annotation is inspect.Parameter.empty or annotation is None or annotation is type(None):
        return None
    return {"type": json_type(annotation)}
