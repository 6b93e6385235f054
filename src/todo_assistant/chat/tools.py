from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..schemas import MutationResult, TodoCreate, TodoListQuery, TodoSummary
from ..services import TodoMutationService, TodoQueryService

ToolLocation = Literal["server", "client"]


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class ToolDefinition:
    """
    A named, schema-typed function exposed to the chat model.

    Server tools run inside the relay through `handler`; client tools have no
    handler and are forwarded to the caller to execute.
    """

    name: str
    description: str
    input_model: Type[BaseModel]
    output_type: Any
    handler: Optional[Callable[[BaseModel], Any]] = None
    location: ToolLocation = "server"

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_model.model_json_schema(),
            },
        }

    def parse_arguments(self, raw: str) -> BaseModel:
        """
        Raises:
            ValidationError when the model sent arguments that do not fit the input schema.
        """
        try:
            return self.input_model.model_validate_json(raw or "{}")
        except PydanticValidationError as e:
            errors = [{"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]} for err in e.errors()]
            raise ValidationError(f"invalid arguments for tool {self.name}", errors) from e

    def invoke(self, raw_arguments: str) -> Any:
        """Validate arguments, run the handler and return its JSON-ready, schema-checked output."""
        if self.handler is None:
            raise RuntimeError(f"tool {self.name} runs on the client")
        args = self.parse_arguments(raw_arguments)
        result = self.handler(args)
        adapter = TypeAdapter(self.output_type)
        return adapter.dump_python(adapter.validate_python(result), mode="json", by_alias=True)


class NoArguments(BaseModel):
    model_config = ConfigDict(extra="ignore")


class LocalStorageEntry(BaseModel):
    key: str = Field(..., description="Storage key")
    value: str = Field(..., description="Value to store")


class LocalStorageSaved(BaseModel):
    saved: bool


def build_todo_tools(queries: TodoQueryService, mutations: TodoMutationService) -> List[ToolDefinition]:
    """Tools backed by the todo services, plus the browser-side storage tool."""

    def count_todos(_: BaseModel) -> int:
        return queries.count_todos()

    def show_todos(args: BaseModel) -> List[TodoSummary]:
        page = queries.list_todos(args)
        return [TodoSummary(id=t.id, title=t.title, is_completed=t.is_completed) for t in page.items]

    def add_todo(args: BaseModel) -> MutationResult:
        return mutations.create(args)

    return [
        ToolDefinition(
            name="get_todos_count",
            description="Get the number of todos",
            input_model=NoArguments,
            output_type=int,
            handler=count_todos,
        ),
        ToolDefinition(
            name="show_todos",
            description="List the user todos, optionally filtered, sorted and paginated (10 per page)",
            input_model=TodoListQuery,
            output_type=List[TodoSummary],
            handler=show_todos,
        ),
        ToolDefinition(
            name="add_todo",
            description="Add a new todo. The title must be at least 5 characters long",
            input_model=TodoCreate,
            output_type=MutationResult,
            handler=add_todo,
        ),
        ToolDefinition(
            name="save_to_local_storage",
            description="Save data to browser local storage",
            input_model=LocalStorageEntry,
            output_type=LocalStorageSaved,
            location="client",
        ),
    ]
