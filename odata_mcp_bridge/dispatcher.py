"""
Operation dispatcher: turns a tool call into an OData request and a
normalized result.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote

from .client import ODataClient, encode_query_params
from .constants import KIND_DATETIME, KIND_DATETIMEOFFSET, KIND_INT64, QUERY_OPTIONS, SERVICE_INFO_TOOL
from .errors import EntityNotFoundError, InvalidArgumentError, ODataBridgeError, OriginRequestError, ToolNotFoundError
from .key_formatter import build_key_predicate, format_key_literal
from .models import EntityType, FunctionImport
from .naming import resolve_entity_name
from .normalizer import ResponseNormalizer
from .schema_generator import OperationKind, ToolOperation, ToolSchemaGenerator
from .session import HttpResponse

logger = logging.getLogger(__name__)

# Characters left unescaped in key predicates
_LITERAL_SAFE = "'(),=:"
_COUNT_FALLBACK_STATUSES = (400, 404, 405, 501)

Handler = Callable[[ToolOperation, Dict[str, Any]], Awaitable[Any]]


def _iso_to_legacy_date(value: str) -> Optional[str]:
    """Convert 2023-01-01T00:00:00Z to /Date(1672531200000)/."""
    try:
        if value.endswith('Z'):
            dt = datetime.fromisoformat(value[:-1] + '+00:00')
        else:
            dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return f"/Date({int(dt.timestamp() * 1000)})/"


class OperationDispatcher:
    """Executes tool calls against one OData service."""

    def __init__(self, generator: ToolSchemaGenerator, client: ODataClient, normalizer: ResponseNormalizer):
        self.generator = generator
        self.metadata = generator.metadata
        self.config = generator.config
        self.client = client
        self.normalizer = normalizer
        self.operations: List[ToolOperation] = generator.generate()
        self._by_name = {op.name: op for op in self.operations}
        self._by_target = {(op.kind, op.target): op for op in self.operations}
        self._handlers: Dict[OperationKind, Handler] = {
            OperationKind.SERVICE_INFO: self._service_info,
            OperationKind.FILTER: self._filter,
            OperationKind.COUNT: self._count,
            OperationKind.SEARCH: self._search,
            OperationKind.GET: self._get,
            OperationKind.CREATE: self._create,
            OperationKind.UPDATE: self._update,
            OperationKind.DELETE: self._delete,
            OperationKind.FUNCTION: self._function,
        }

    @property
    def modern(self) -> bool:
        return self.metadata.is_v4

    def resolve(self, tool_name: str) -> ToolOperation:
        """Find the operation for a tool name.

        Exact names are a map lookup. Anything else is taken apart: affixes
        are stripped, function import names are tried, and the rest is read as
        ``<opcode>_<entity>`` with the entity given by its real or short name.
        """
        operation = self._by_name.get(tool_name)
        if operation is not None:
            return operation

        base = self.generator.strip_affixes(tool_name)
        if base == SERVICE_INFO_TOOL:
            return self._by_target[(OperationKind.SERVICE_INFO, "")]
        if base in self.metadata.function_imports:
            operation = self._by_target.get((OperationKind.FUNCTION, base))
            if operation is not None:
                return operation

        opcode, sep, entity = base.partition('_')
        if not sep or not entity:
            raise ToolNotFoundError(tool_name)
        try:
            kind = OperationKind(opcode)
        except ValueError:
            raise ToolNotFoundError(tool_name, f"Unknown tool: {tool_name} (unrecognized operation '{opcode}')")
        if kind in (OperationKind.SERVICE_INFO, OperationKind.FUNCTION):
            raise ToolNotFoundError(tool_name)

        set_name = resolve_entity_name(entity, self.generator.short_names)
        if set_name is None:
            raise EntityNotFoundError(entity, tool_name)
        operation = self._by_target.get((kind, set_name))
        if operation is None:
            raise ToolNotFoundError(
                tool_name, f"Operation '{kind.value}' is not available for entity set '{set_name}'"
            )
        return operation

    async def dispatch(self, tool_name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        """Run one tool call and return its JSON-serializable result."""
        try:
            operation = self.resolve(tool_name)
            values = operation.validate_arguments(arguments)
            logger.debug(f"Dispatching {operation.kind.value} '{operation.target}' via {tool_name}")
            return await self._handlers[operation.kind](operation, values)
        except ODataBridgeError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error while executing {tool_name}: {e}", exc_info=True)
            message = f"Unexpected error while executing {tool_name}: {e}"
            if self.config.verbose_errors:
                message = f"Unexpected error while executing {tool_name}: {type(e).__name__}: {e}"
            raise OriginRequestError(message) from e

    # --- Argument helpers ---

    def _options(self, operation: ToolOperation, values: Dict[str, Any]) -> Dict[str, Any]:
        return {param.option: values[param.name] for param in operation.params
                if param.option and values.get(param.name) is not None}

    def _properties(self, operation: ToolOperation, values: Dict[str, Any]) -> Dict[str, Any]:
        return {param.name: values[param.name] for param in operation.params
                if param.edm_type and param.name in values}

    def _query(self, options: Dict[str, Any]) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        for option in QUERY_OPTIONS:
            if option in options:
                params[f'${option}'] = options[option]
        if options.get('count'):
            if self.modern:
                params['$count'] = 'true'
            else:
                params['$inlinecount'] = 'allpages'
        return params

    def _entity_path(self, set_name: str, entity_type: EntityType, keys: Dict[str, Any]) -> str:
        predicate = build_key_predicate(entity_type, keys, modern=self.modern)
        return f"{set_name}{quote(predicate, safe=_LITERAL_SAFE)}"

    def _body_value(self, kind: str, value: Any) -> Any:
        if isinstance(value, Decimal):
            if not self.modern:
                return format(value, 'f')
            return int(value) if value == value.to_integral_value() else float(value)
        if not self.modern and kind == KIND_INT64 and isinstance(value, int):
            return str(value)
        if (not self.modern and self.config.legacy_dates and isinstance(value, str)
                and kind in (KIND_DATETIME, KIND_DATETIMEOFFSET)):
            return _iso_to_legacy_date(value) or value
        return value

    def _entity_body(self, entity_type: EntityType, properties: Dict[str, Any]) -> Dict[str, Any]:
        body = {}
        for name, value in properties.items():
            prop = entity_type.get_property(name)
            body[name] = self._body_value(prop.kind, value) if prop else value
        return body

    # --- Handlers ---

    async def _service_info(self, operation: ToolOperation, values: Dict[str, Any]) -> Dict[str, Any]:
        return self.generator.service_info(self.operations)

    async def _filter(self, operation: ToolOperation, values: Dict[str, Any]) -> Any:
        options = self._options(operation, values)
        query = encode_query_params(self._query(options))
        response = await self.client.request('GET', operation.target, query=query)
        return self.normalizer.normalize(response, skip=options.get('skip', 0))

    async def _search(self, operation: ToolOperation, values: Dict[str, Any]) -> Any:
        return await self._filter(operation, values)

    async def _count(self, operation: ToolOperation, values: Dict[str, Any]) -> Dict[str, Any]:
        options = self._options(operation, values)
        query = encode_query_params(self._query(options))
        try:
            response = await self.client.request('GET', f"{operation.target}/$count", query=query)
            return {"count": int(response.text.strip())}
        except OriginRequestError as e:
            if e.status_code not in _COUNT_FALLBACK_STATUSES:
                raise
            logger.debug(f"/$count failed for {operation.target} ({e.status_code}), falling back to inline count")
        except ValueError:
            logger.debug(f"/$count for {operation.target} did not return a number, falling back to inline count")

        options = dict(options, top=0, count=True)
        response = await self.client.request('GET', operation.target,
                                             query=encode_query_params(self._query(options)))
        result = self.normalizer.normalize(response)
        total = result.get('pagination', {}).get('total_count') if isinstance(result, dict) else None
        if total is None:
            raise OriginRequestError(f"Could not determine count for {operation.target}: "
                                     f"service returned no inline count")
        return {"count": total}

    async def _get(self, operation: ToolOperation, values: Dict[str, Any]) -> Any:
        entity_type = self.metadata.get_entity_type(operation.target)
        path = self._entity_path(operation.target, entity_type, self._properties(operation, values))
        query = encode_query_params(self._query(self._options(operation, values)))
        response = await self.client.request('GET', path, query=query or None)
        return self.normalizer.normalize(response)

    async def _create(self, operation: ToolOperation, values: Dict[str, Any]) -> Any:
        entity_type = self.metadata.get_entity_type(operation.target)
        body = self._entity_body(entity_type, self._properties(operation, values))
        response = await self.client.request('POST', operation.target, json_body=body, csrf=True)
        return self.normalizer.normalize(response)

    async def _update(self, operation: ToolOperation, values: Dict[str, Any]) -> Any:
        entity_type = self.metadata.get_entity_type(operation.target)
        properties = self._properties(operation, values)
        keys = {name: properties.pop(name) for name in entity_type.key_properties if name in properties}
        if not properties:
            raise InvalidArgumentError(f"No properties to update were supplied for {operation.target}")
        path = self._entity_path(operation.target, entity_type, keys)
        body = self._entity_body(entity_type, properties)

        methods = ['PATCH'] if self.modern else ['MERGE', 'PUT', 'PATCH']
        response: Optional[HttpResponse] = None
        for index, method in enumerate(methods):
            try:
                response = await self.client.request(method, path, json_body=body, csrf=True)
                break
            except OriginRequestError as e:
                if e.status_code != 405 or index == len(methods) - 1:
                    raise
                logger.debug(f"{method} not allowed for update, trying {methods[index + 1]}...")

        if response.status_code == 204:
            return {"message": f"Successfully updated entity in {operation.target} with key {keys}."}
        return self.normalizer.normalize(response)

    async def _delete(self, operation: ToolOperation, values: Dict[str, Any]) -> Any:
        entity_type = self.metadata.get_entity_type(operation.target)
        keys = self._properties(operation, values)
        path = self._entity_path(operation.target, entity_type, keys)
        response = await self.client.request('DELETE', path, csrf=True)
        if response.status_code == 204:
            return {"message": f"Successfully deleted entity from {operation.target} with key {keys}."}
        return self.normalizer.normalize(response)

    async def _function(self, operation: ToolOperation, values: Dict[str, Any]) -> Any:
        function_import: FunctionImport = self.metadata.function_imports[operation.target]
        arguments = self._properties(operation, values)
        method = function_import.http_method.upper()
        csrf = method != 'GET'

        if function_import.is_action:
            body = {}
            for param in function_import.parameters:
                if param.name in arguments:
                    body[param.name] = self._body_value(param.kind, arguments[param.name])
            response = await self.client.request(method, function_import.name, json_body=body, csrf=csrf)
        else:
            parts = []
            for param in function_import.parameters:
                if arguments.get(param.name) is None:
                    continue
                literal = format_key_literal(arguments[param.name], param.type, self.modern, field=param.name)
                parts.append(f"{param.name}={literal}")
            response = await self.client.request(method, function_import.name,
                                                 query='&'.join(parts) or None, csrf=csrf)

        primitive = bool(function_import.return_type) and function_import.return_type.startswith('Edm.')
        return self.normalizer.normalize(response, primitive=primitive)
