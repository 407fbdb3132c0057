"""
Tool schema generation.

Walks the parsed metadata and produces one ``ToolOperation`` per advertised
tool. Each operation carries its JSON input schema and a pydantic arguments
model built from the same parameter list, so what the caller sees and what the
dispatcher accepts cannot drift apart.
"""

import logging
import re
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from mcp.types import Tool
from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from .config import BridgeConfig
from .constants import KIND_DATE, KIND_DATETIME, KIND_DATETIMEOFFSET, KIND_GUID, SERVICE_INFO_TOOL
from .errors import InvalidArgumentError
from .models import EntityProperty, EntitySet, EntityType, FunctionImport, ODataMetadata
from .naming import assign_short_names, matches_name_filter, service_suffix

logger = logging.getLogger(__name__)


class OperationKind(str, Enum):
    SERVICE_INFO = "service_info"
    FILTER = "filter"
    COUNT = "count"
    SEARCH = "search"
    GET = "get"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    FUNCTION = "function"


# Opcodes that prefix entity tool names, in emission order
ENTITY_OPERATIONS = (
    OperationKind.FILTER, OperationKind.COUNT, OperationKind.SEARCH, OperationKind.GET,
    OperationKind.CREATE, OperationKind.UPDATE, OperationKind.DELETE,
)
MUTATING_OPERATIONS = frozenset({OperationKind.CREATE, OperationKind.UPDATE, OperationKind.DELETE})

# Operation letter (--enable/--disable) controlling each kind
OPERATION_LETTERS = {
    OperationKind.FILTER: 'F',
    OperationKind.COUNT: 'F',
    OperationKind.SEARCH: 'S',
    OperationKind.GET: 'G',
    OperationKind.CREATE: 'C',
    OperationKind.UPDATE: 'U',
    OperationKind.DELETE: 'D',
    OperationKind.FUNCTION: 'A',
}

_PYTHON_TYPES = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
}

_FORMATS = {
    KIND_GUID: "uuid",
    KIND_DATETIME: "date-time",
    KIND_DATETIMEOFFSET: "date-time",
    KIND_DATE: "date",
}

_ARGUMENTS_CONFIG = ConfigDict(extra='forbid', coerce_numbers_to_str=True, frozen=True)


class ParamSpec(BaseModel):
    """One tool input."""
    model_config = ConfigDict(frozen=True)

    name: str  # advertised argument name
    json_type: str = "string"
    required: bool = False
    description: Optional[str] = None
    edm_type: Optional[str] = None  # set for entity properties and function parameters
    option: Optional[str] = None  # set for OData query options, without the '$'
    minimum: Optional[int] = None
    maximum: Optional[int] = None
    format: Optional[str] = None

    def python_type(self) -> type:
        if self.edm_type == "Edm.Decimal":
            return Decimal
        return _PYTHON_TYPES.get(self.json_type, str)

    def json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.json_type}
        if self.description:
            schema["description"] = self.description
        if self.format:
            schema["format"] = self.format
        if self.minimum is not None:
            schema["minimum"] = self.minimum
        if self.maximum is not None:
            schema["maximum"] = self.maximum
        return schema


def build_input_schema(params: List[ParamSpec]) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {param.name: param.json_schema() for param in params},
        "required": [param.name for param in params if param.required],
        "additionalProperties": False,
    }


def build_arguments_model(tool_name: str, params: List[ParamSpec]) -> Type[BaseModel]:
    """Create a pydantic model validating the arguments of one tool.

    Argument names are not always valid Python identifiers (``$filter``), so
    each field gets a positional name and the argument name as its alias.
    """
    fields: Dict[str, Any] = {}
    for index, param in enumerate(params):
        constraints = {}
        if param.minimum is not None:
            constraints['ge'] = param.minimum
        if param.maximum is not None:
            constraints['le'] = param.maximum
        annotation = param.python_type()
        if param.required:
            fields[f"p{index}"] = (annotation, Field(..., alias=param.name, **constraints))
        else:
            fields[f"p{index}"] = (Optional[annotation], Field(None, alias=param.name, **constraints))
    model_name = re.sub(r'\W', '_', f"{tool_name}_arguments")
    return create_model(model_name, __config__=_ARGUMENTS_CONFIG, **fields)


class ToolOperation(BaseModel):
    """A generated tool: what it is called, what it targets and what it accepts."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    kind: OperationKind
    target: str = ""  # entity set or function import name
    description: str = ""
    params: List[ParamSpec] = []
    input_schema: Dict[str, Any]
    arguments_model: Type[BaseModel]

    @property
    def is_mutating(self) -> bool:
        return self.kind in MUTATING_OPERATIONS

    def validate_arguments(self, arguments: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Validate a raw argument bag, returning values keyed by advertised argument name.

        Query options are accepted with or without their '$' prefix.
        """
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise InvalidArgumentError(f"Arguments for {self.name} must be an object")

        by_name = {param.name: param for param in self.params}
        by_option = {param.option: param for param in self.params if param.option}
        normalized: Dict[str, Any] = {}
        for key, value in arguments.items():
            param = by_name.get(key) or by_option.get(key.lstrip('$'))
            if param is None:
                raise InvalidArgumentError(f"Unknown argument '{key}' for {self.name}", field=key)
            if param.name in normalized:
                raise InvalidArgumentError(f"Argument '{param.name}' supplied more than once", field=param.name)
            normalized[param.name] = value

        try:
            validated = self.arguments_model.model_validate(normalized)
        except ValidationError as e:
            errors = e.errors()
            missing = [str(err['loc'][0]) for err in errors if err['type'] == 'missing' and err['loc']]
            if missing:
                raise InvalidArgumentError(f"Missing required parameters: {', '.join(missing)}", field=missing[0])
            first = errors[0]
            field = str(first['loc'][0]) if first['loc'] else None
            details = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in errors)
            raise InvalidArgumentError(f"Invalid arguments for {self.name}: {details}", field=field)
        return validated.model_dump(by_alias=True, exclude_unset=True)

    def to_tool(self) -> Tool:
        return Tool(name=self.name, description=self.description, inputSchema=self.input_schema)


def make_operation(name: str, kind: OperationKind, target: str, description: str,
                   params: List[ParamSpec]) -> ToolOperation:
    return ToolOperation(
        name=name,
        kind=kind,
        target=target,
        description=description,
        params=params,
        input_schema=build_input_schema(params),
        arguments_model=build_arguments_model(name, params),
    )


class ToolSchemaGenerator:
    """Generates the tool catalog for one OData service."""

    def __init__(self, metadata: ODataMetadata, config: BridgeConfig):
        self.metadata = metadata
        self.config = config
        self.prefix = config.tool_prefix or ""
        self.suffix = service_suffix(config.service_url, config.tool_shrink, config.tool_postfix)
        self.entity_sets = [name for name in metadata.entity_sets
                            if matches_name_filter(name, config.allowed_entities)]
        self.function_imports = [name for name in metadata.function_imports
                                 if matches_name_filter(name, config.allowed_functions)]
        self.short_names = assign_short_names(self.entity_sets, config.tool_shrink)

    def make_tool_name(self, base_name: str) -> str:
        return f"{self.prefix}{base_name}{self.suffix}"

    def entity_tool_name(self, kind: OperationKind, entity_set_name: str) -> str:
        return self.make_tool_name(f"{kind.value}_{self.short_names[entity_set_name]}")

    def strip_affixes(self, tool_name: str) -> str:
        """Remove the configured prefix and service suffix from a tool name."""
        if self.prefix and tool_name.startswith(self.prefix):
            tool_name = tool_name[len(self.prefix):]
        if self.suffix and tool_name.endswith(self.suffix):
            tool_name = tool_name[:-len(self.suffix)]
        return tool_name

    def generate(self) -> List[ToolOperation]:
        operations = [self._service_info_operation()]
        for set_name in self.entity_sets:
            operations.extend(self._entity_operations(set_name))
        if self.config.is_operation_enabled(OPERATION_LETTERS[OperationKind.FUNCTION]):
            for func_name in self.function_imports:
                operations.append(self._function_operation(self.metadata.function_imports[func_name]))

        unique: Dict[str, ToolOperation] = {}
        for operation in operations:
            if operation.name in unique:
                logger.warning(f"Duplicate tool name '{operation.name}', keeping the first definition")
                continue
            unique[operation.name] = operation
        operations = list(unique.values())

        if self.config.sort_tools:
            operations.sort(key=lambda op: op.name)
        logger.debug(f"Generated {len(operations)} tools for {len(self.entity_sets)} entity sets "
                     f"and {len(self.function_imports)} function imports.")
        return operations

    # --- Parameters ---

    def _option(self, option: str, json_type: str, description: str, required: bool = False,
                minimum: Optional[int] = None, maximum: Optional[int] = None) -> ParamSpec:
        name = option if self.config.claude_code_friendly else f"${option}"
        return ParamSpec(name=name, option=option, json_type=json_type, required=required,
                         description=description, minimum=minimum, maximum=maximum)

    def _property_param(self, prop: EntityProperty, required: bool) -> ParamSpec:
        description = f"{prop.description} ({prop.type})" if prop.description else prop.type
        if prop.is_key:
            description += ", key property"
        return ParamSpec(
            name=prop.name,
            json_type=prop.get_json_schema_type(),
            required=required,
            description=description,
            edm_type=prop.type,
            format=_FORMATS.get(prop.kind),
        )

    def _top_param(self) -> ParamSpec:
        return self._option("top", "integer", f"Maximum number of entities to return (1-{self.config.max_items})",
                            minimum=1, maximum=self.config.max_items)

    def _skip_param(self) -> ParamSpec:
        return self._option("skip", "integer", "Number of entities to skip", minimum=0)

    def _skiptoken_param(self) -> ParamSpec:
        return self._option("skiptoken", "string", "Server-driven paging token from pagination.next_skiptoken")

    # --- Operations ---

    def _describe(self, base_desc: str, description: Optional[str]) -> str:
        if description:
            return f"{base_desc}\n\nDescription: {description}"
        return base_desc

    def _entity_operations(self, set_name: str) -> List[ToolOperation]:
        entity_set: EntitySet = self.metadata.entity_sets[set_name]
        entity_type: EntityType = self.metadata.entity_types[entity_set.entity_type]
        key_props = entity_type.get_key_properties()
        key_params = [self._property_param(prop, required=True) for prop in key_props]
        type_name = entity_type.name
        set_desc = entity_set.description or entity_type.description

        builders = {
            OperationKind.FILTER: lambda: (
                f"Retrieve a list of {type_name} entities from the '{set_name}' set with optional "
                f"filtering, sorting and paging.",
                [
                    self._option("filter", "string", "OData $filter expression, e.g. Price gt 20"),
                    self._option("select", "string", "Comma-separated properties to return"),
                    self._option("expand", "string", "Comma-separated navigation properties to expand"),
                    self._option("orderby", "string", "Sort expression, e.g. Name desc"),
                    self._top_param(),
                    self._skip_param(),
                    self._skiptoken_param(),
                    self._option("count", "boolean", "Include the total number of matching entities"),
                ],
            ),
            OperationKind.COUNT: lambda: (
                f"Get the total count of {type_name} entities in the '{set_name}' set.",
                [self._option("filter", "string", "OData $filter expression")],
            ),
            OperationKind.SEARCH: lambda: (
                f"Performs a free-text search within the '{set_name}' set.",
                [
                    self._option("search", "string", "Text term(s) to search for", required=True),
                    self._top_param(),
                    self._skip_param(),
                    self._skiptoken_param(),
                ],
            ),
            OperationKind.GET: lambda: (
                f"Retrieve a single {type_name} entity from '{set_name}' by its unique key(s).",
                key_params + [
                    self._option("select", "string", "Comma-separated properties to return"),
                    self._option("expand", "string", "Comma-separated navigation properties to expand"),
                ],
            ),
            OperationKind.CREATE: lambda: (
                f"Create a new {type_name} entity in the '{set_name}' set.",
                [self._property_param(prop, required=not prop.nullable) for prop in entity_type.properties],
            ),
            OperationKind.UPDATE: lambda: (
                f"Update an existing {type_name} entity in '{set_name}' using its key(s). "
                f"Only the supplied properties are changed.",
                key_params + [self._property_param(prop, required=False)
                              for prop in entity_type.get_non_key_properties()],
            ),
            OperationKind.DELETE: lambda: (
                f"Delete a {type_name} entity from '{set_name}' using its unique key(s).",
                key_params,
            ),
        }

        operations = []
        for kind in ENTITY_OPERATIONS:
            if not self.config.is_operation_enabled(OPERATION_LETTERS[kind]):
                continue
            if kind == OperationKind.SEARCH and not entity_set.searchable:
                continue
            if kind in (OperationKind.GET, OperationKind.UPDATE, OperationKind.DELETE) and not key_props:
                logger.debug(f"Entity set '{set_name}' has no key properties, skipping {kind.value} tool")
                continue
            base_desc, params = builders[kind]()
            operations.append(make_operation(
                self.entity_tool_name(kind, set_name), kind, set_name,
                self._describe(base_desc, set_desc), params,
            ))
        return operations

    def _function_operation(self, function_import: FunctionImport) -> ToolOperation:
        params = [self._property_param(param, required=not param.nullable) for param in function_import.parameters]
        base_desc = f"Invoke the OData function import '{function_import.name}'. HTTP Method: {function_import.http_method}"
        if function_import.return_type:
            base_desc += f". Returns: {function_import.return_type}"
        return make_operation(
            self.make_tool_name(function_import.name), OperationKind.FUNCTION, function_import.name,
            self._describe(base_desc, function_import.description), params,
        )

    def _service_info_operation(self) -> ToolOperation:
        return make_operation(
            self.make_tool_name(SERVICE_INFO_TOOL), OperationKind.SERVICE_INFO, "",
            "Provides metadata about the configured OData service, including available entity sets, "
            "entity types, function imports, and registered tools.",
            [],
        )

    def service_info(self, operations: List[ToolOperation]) -> Dict[str, Any]:
        """Describe the exposed part of the service for the service info tool."""
        entity_sets = {}
        for set_name in self.entity_sets:
            entity_set = self.metadata.entity_sets[set_name]
            entity_type = self.metadata.entity_types[entity_set.entity_type]
            entity_sets[set_name] = {
                "entity_type": entity_type.name,
                "description": entity_set.description or entity_type.description or "No description",
                "key_properties": entity_type.key_properties,
                "properties": [
                    {"name": p.name, "type": p.type, "is_key": p.is_key, "nullable": p.nullable}
                    for p in entity_type.properties
                ],
                "creatable": entity_set.creatable,
                "updatable": entity_set.updatable,
                "deletable": entity_set.deletable,
                "searchable": entity_set.searchable,
                "tools": [op.name for op in operations
                          if op.target == set_name and op.kind != OperationKind.FUNCTION],
            }

        function_imports = {}
        for func_name in self.function_imports:
            fi = self.metadata.function_imports[func_name]
            function_imports[func_name] = {
                "description": fi.description or "No description",
                "http_method": fi.http_method,
                "return_type": fi.return_type or "Not specified",
                "parameters": [{"name": p.name, "type": p.type, "nullable": p.nullable} for p in fi.parameters],
            }

        return {
            "service_url": self.metadata.service_url,
            "service_description": self.metadata.service_description or "No description provided in metadata.",
            "odata_version": self.metadata.odata_version,
            "parse_strategy": self.metadata.parse_strategy,
            "entity_sets": entity_sets,
            "function_imports": function_imports,
            "tool_count": len(operations),
        }
