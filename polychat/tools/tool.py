"""
Tool base class and the function_tool decorator.
"""
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple, Type
import inspect
import re

from pydantic import BaseModel, ConfigDict, create_model

from .models import Halt, ToolDefinition, ToolParameter

_JSON_TYPES: Dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "array": list,
    "object": dict,
}

_PYTHON_TYPES: Dict[Any, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    List: "array",
    dict: "object",
    Dict: "object",
}


def _snake_case(name: str) -> str:
    name = re.sub(r"Tool$", "", name) or name
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _field_type(schema: Dict[str, Any]) -> Any:
    if schema.get("enum"):
        return Literal[tuple(schema["enum"])]
    json_type = schema.get("type", "string")
    if isinstance(json_type, list):
        # e.g. ["string", "null"]
        non_null = [t for t in json_type if t != "null"]
        json_type = non_null[0] if non_null else "string"
    return _JSON_TYPES.get(json_type, Any)


class Tool:
    """
    A capability the model may call.

    Subclasses set `description` and either `parameters` (name ->
    ToolParameter) or a raw JSON `parameters_schema`, and implement
    `execute(**kwargs)` as a plain or async method. Returning `self.halt(...)`
    ends the ask loop with that content.

    Provider-native tools set `builtin` (and the `provider` that runs them);
    they are declared to the provider but never executed locally.
    """

    name: Optional[str] = None
    description: str = ""
    parameters: Dict[str, ToolParameter] = {}
    parameters_schema: Optional[Dict[str, Any]] = None
    builtin: Optional[str] = None
    provider: Optional[str] = None

    def __init__(self,
                 name: Optional[str] = None,
                 description: Optional[str] = None,
                 parameters: Optional[Dict[str, ToolParameter]] = None,
                 parameters_schema: Optional[Dict[str, Any]] = None):
        if name is not None:
            self.name = name
        if description is not None:
            self.description = description
        if parameters is not None:
            self.parameters = parameters
        if parameters_schema is not None:
            self.parameters_schema = parameters_schema
        if not self.name:
            self.name = _snake_case(type(self).__name__)
        self._arguments_model: Optional[Type[BaseModel]] = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    def json_schema(self) -> Dict[str, Any]:
        if self.parameters_schema is not None:
            return self.parameters_schema
        return {
            "type": "object",
            "properties": {name: p.to_json_schema() for name, p in self.parameters.items()},
            "required": [name for name, p in self.parameters.items() if p.required],
        }

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(name=self.name, description=self.description,
                              parameters_schema=self.json_schema(), builtin=self.builtin)

    def arguments_model(self) -> Type[BaseModel]:
        """Pydantic model generated from the declared parameter schema."""
        if self._arguments_model is None:
            schema = self.json_schema()
            required = set(schema.get("required") or [])
            fields: Dict[str, Tuple[Any, Any]] = {}
            for prop, prop_schema in (schema.get("properties") or {}).items():
                field_type = _field_type(prop_schema or {})
                if prop in required:
                    fields[prop] = (field_type, ...)
                else:
                    fields[prop] = (Optional[field_type], None)
            self._arguments_model = create_model(
                f"{type(self).__name__}Arguments",
                __config__=ConfigDict(extra="ignore"),
                **fields,
            )
        return self._arguments_model

    def validate_arguments(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate and coerce arguments.

        Raises:
            pydantic.ValidationError: If the arguments do not match the schema
        """
        validated = self.arguments_model().model_validate(arguments)
        return validated.model_dump(exclude_unset=True)

    def execute(self, **kwargs) -> Any:
        raise NotImplementedError(f"Tool '{self.name}' does not implement execute()")

    @staticmethod
    def halt(content: Any) -> Halt:
        return Halt(content=content)


class FunctionTool(Tool):
    """Wraps a plain (sync or async) function as a Tool."""

    def __init__(self, func: Callable[..., Any],
                 name: Optional[str] = None,
                 description: Optional[str] = None,
                 parameters: Optional[Dict[str, ToolParameter]] = None):
        self.func = func
        doc = inspect.getdoc(func) or ""
        super().__init__(
            name=name or func.__name__,
            description=description if description is not None else doc.split("\n\n")[0].strip(),
            parameters=parameters if parameters is not None else self._infer_parameters(func),
        )

    @staticmethod
    def _infer_parameters(func: Callable[..., Any]) -> Dict[str, ToolParameter]:
        parameters = {}
        for param in inspect.signature(func).parameters.values():
            if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue
            annotation = getattr(param.annotation, "__origin__", param.annotation)
            parameters[param.name] = ToolParameter(
                type=_PYTHON_TYPES.get(annotation, "string"),
                required=param.default is inspect.Parameter.empty,
            )
        return parameters

    def execute(self, **kwargs) -> Any:
        return self.func(**kwargs)

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.func)


def function_tool(func: Optional[Callable[..., Any]] = None, *,
                  name: Optional[str] = None,
                  description: Optional[str] = None,
                  parameters: Optional[Dict[str, ToolParameter]] = None):
    """
    Turn a function into a Tool.

    Usable bare (`@function_tool`) or with options
    (`@function_tool(name="weather")`). Parameters are inferred from the
    signature when not given; the docstring's first paragraph becomes the
    description.
    """
    def wrap(f: Callable[..., Any]) -> FunctionTool:
        return FunctionTool(f, name=name, description=description, parameters=parameters)

    if func is not None:
        return wrap(func)
    return wrap
