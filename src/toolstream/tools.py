import inspect
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field


class ToolCatalogEntry(BaseModel):
    """A tool definition as advertised by a provider."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class ToolCallRequest(BaseModel):
    """A tool call requested by the model.

    ``argument_error`` is set when ``raw_arguments`` could not be parsed
    into a JSON object. Such a call is never dispatched; it is answered
    with an error result instead.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    raw_arguments: str = ""
    argument_error: str | None = None


class ToolCallResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    call_id: str
    content: str | dict[str, Any] | list[Any]
    is_error: bool = False


class ToolOutput(BaseModel):
    """What a provider returns for one invocation, before it is tied to a call id."""

    content: str | dict[str, Any] | list[Any]
    is_error: bool = False


class Tool(BaseModel):
    """A Python callable exposed as a tool.

    The input schema is derived from the function signature and the
    description from its docstring.
    """

    func: Callable = Field(exclude=True)
    name: str
    description: str = ""
    model_config = {"arbitrary_types_allowed": True}

    def __init__(self, func: Callable, name: str | None = None):
        super().__init__(
            func=func,
            name=name or func.__name__,
            description=inspect.getdoc(func) or "",
        )

    @staticmethod
    def normalize_to_json_type(annotation: Any) -> str:
        type_mapping = {
            'str': 'string',
            'int': 'integer',
            'float': 'number',
            'bool': 'boolean',
            'NoneType': 'null',
            'dict': 'object',
            'list': 'array',
            'tuple': 'array',
            'set': 'array',
        }
        name = getattr(annotation, "__name__", str(annotation))
        return type_mapping.get(name, 'string')

    def input_schema(self) -> dict[str, Any]:
        signature = inspect.signature(self.func)
        properties = {}
        required = []
        for param_name, param in signature.parameters.items():
            if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue
            properties[param_name] = {
                "type": self.normalize_to_json_type(param.annotation),
            }
            if param.default is inspect.Parameter.empty:
                required.append(param_name)
        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def catalog_entry(self) -> ToolCatalogEntry:
        return ToolCatalogEntry(
            name=self.name,
            description=self.description,
            input_schema=self.input_schema(),
        )

    async def __call__(self, **kwargs) -> Any:
        result = self.func(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


def tool(func: Callable) -> Tool:
    """Decorator turning a function into a :class:`Tool`."""
    return Tool(func)
