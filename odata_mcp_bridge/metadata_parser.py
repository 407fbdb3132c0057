"""
OData metadata parser for extracting entity types, sets, and function imports.

The parser runs an ordered list of strategies against the raw $metadata
document and returns the model built by the first one that succeeds:

1. ``strict``   - OASIS CSDL 4.0 grammar, no tolerance for unknown content
2. ``lenient``  - same grammar, vendor extensions and unknown types ignored
3. ``legacy``   - namespace-agnostic walk by local element name (OData v2/v3)
4. ``salvage``  - EntitySet names only, each with a synthesized string ``ID`` key

A strategy never raises past the parser: every failure is recorded as a
``ParseAttempt`` and the next strategy is tried. Only when salvage finds no
entity sets at all does ``parse`` raise ``SchemaParseError``.
"""

import logging
import re
from typing import Callable, Dict, List, NamedTuple, Optional, Union

from lxml import etree

from .constants import ODATA_PRIMITIVE_TYPES, V4_NAMESPACES
from .errors import SchemaParseError
from .models import EntityProperty, EntitySet, EntityType, FunctionImport, ODataMetadata

logger = logging.getLogger(__name__)

EDMX = V4_NAMESPACES['edmx']
EDM = V4_NAMESPACES['edm']

# Attributes the strict strategy accepts on the elements it reads
_STRICT_ATTRIBUTES = {
    'Schema': {'Namespace', 'Alias'},
    'EntityType': {'Name', 'BaseType', 'Abstract', 'OpenType', 'HasStream'},
    'Key': set(),
    'PropertyRef': {'Name', 'Alias'},
    'Property': {'Name', 'Type', 'Nullable', 'MaxLength', 'Precision', 'Scale', 'SRID', 'DefaultValue', 'Unicode'},
    'EntityContainer': {'Name', 'Extends'},
    'EntitySet': {'Name', 'EntityType', 'IncludeInServiceDocument'},
    'FunctionImport': {'Name', 'Function', 'EntitySet', 'IncludeInServiceDocument'},
    'ActionImport': {'Name', 'Action', 'EntitySet'},
    'Function': {'Name', 'IsBound', 'IsComposable', 'EntitySetPath'},
    'Action': {'Name', 'IsBound', 'EntitySetPath'},
    'Parameter': {'Name', 'Type', 'Nullable', 'MaxLength', 'Precision', 'Scale', 'SRID', 'Unicode'},
    'ReturnType': {'Type', 'Nullable', 'MaxLength', 'Precision', 'Scale', 'SRID'},
}

# Child elements the strict strategy accepts on the elements it reads
_STRICT_CHILDREN = {
    'Schema': {'EntityType', 'ComplexType', 'EnumType', 'EntityContainer', 'Function', 'Action',
               'Term', 'Annotations', 'Annotation', 'TypeDefinition'},
    'EntityType': {'Key', 'Property', 'NavigationProperty', 'Annotation'},
    'Key': {'PropertyRef'},
    'PropertyRef': set(),
    'Property': {'Annotation'},
    'EntityContainer': {'EntitySet', 'Singleton', 'FunctionImport', 'ActionImport', 'Annotation'},
    'EntitySet': {'NavigationPropertyBinding', 'Annotation'},
    'FunctionImport': {'Annotation'},
    'ActionImport': {'Annotation'},
    'Function': {'Parameter', 'ReturnType', 'Annotation'},
    'Action': {'Parameter', 'ReturnType', 'Annotation'},
    'Parameter': {'Annotation'},
    'ReturnType': {'Annotation'},
}

_ENTITY_SET_RE = re.compile(r'<(?:[\w.-]+:)?EntitySet\b[^>]*?\bName\s*=\s*["\']([^"\']+)["\']')


class ParseAttempt(NamedTuple):
    """Outcome of one parsing strategy: either metadata or the reason it failed."""
    strategy: str
    metadata: Optional[ODataMetadata] = None
    error: Optional[str] = None


class _RawEntityType(NamedTuple):
    name: str
    base_type: Optional[str]
    keys: List[str]
    properties: List[EntityProperty]
    description: Optional[str]


def _xml_parser(recover: bool = False) -> etree.XMLParser:
    """lxml parser that never resolves entities or touches the network."""
    return etree.XMLParser(resolve_entities=False, no_network=True, load_dtd=False,
                           remove_comments=True, recover=recover)


def _local_name(qualified: Optional[str]) -> Optional[str]:
    """'NorthwindModel.Product' -> 'Product'."""
    if not qualified:
        return qualified
    return qualified.split('.')[-1]


def _is_true(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() == 'true'


def _resolve_entity_types(raw_types: Dict[str, _RawEntityType]) -> Dict[str, EntityType]:
    """Flatten BaseType inheritance into complete entity types."""
    entity_types = {}
    for name in raw_types:
        chain = []
        current = name
        while current in raw_types:
            if current in chain:
                raise ValueError(f"Cyclic BaseType chain for entity type '{name}'")
            chain.append(current)
            current = raw_types[current].base_type

        keys: List[str] = []
        for type_name in chain:
            if raw_types[type_name].keys:
                keys = raw_types[type_name].keys
                break

        properties = []
        for type_name in reversed(chain):
            for prop in raw_types[type_name].properties:
                properties.append(prop.model_copy(update={'is_key': prop.name in keys}))

        entity_types[name] = EntityType(
            name=name,
            properties=properties,
            key_properties=keys,
            description=raw_types[name].description,
        )
    return entity_types


class MetadataParser:
    """Parses an OData $metadata document into an ODataMetadata model."""

    def __init__(self, service_url: str):
        self.service_url = service_url.rstrip('/')
        self.strategies: List[tuple] = [
            ("strict", self._parse_strict),
            ("lenient", self._parse_lenient),
            ("legacy", self._parse_legacy),
            ("salvage", self._salvage_entity_sets),
        ]

    def parse(self, document: Union[bytes, str]) -> ODataMetadata:
        if document is None:
            raise SchemaParseError("No metadata document to parse")
        if isinstance(document, str):
            document = document.encode('utf-8')

        attempts = []
        for name, strategy in self.strategies:
            attempt = self._run_strategy(name, strategy, document)
            if attempt.metadata is not None:
                metadata = attempt.metadata
                logger.debug(f"Parsed metadata with '{name}' strategy: {len(metadata.entity_types)} types, "
                             f"{len(metadata.entity_sets)} sets, {len(metadata.function_imports)} functions.")
                if name == "salvage":
                    logger.warning("Metadata could not be parsed structurally; exposing entity sets with a "
                                   "synthesized string 'ID' key only.")
                return metadata
            attempts.append((name, attempt.error))

        snippet = document[:500].decode('utf-8', errors='replace')
        tried = "; ".join(f"{name}: {reason}" for name, reason in attempts)
        raise SchemaParseError(
            f"Failed to parse OData metadata. Strategies tried: {tried}. "
            f"First 500 chars of metadata: {snippet}",
            attempts=attempts,
        )

    def _run_strategy(self, name: str, strategy: Callable[[bytes], ODataMetadata], document: bytes) -> ParseAttempt:
        try:
            return ParseAttempt(name, metadata=strategy(document))
        except Exception as e:
            logger.debug(f"Metadata strategy '{name}' failed: {type(e).__name__}: {e}")
            return ParseAttempt(name, error=f"{type(e).__name__}: {e}")

    # --- Strategies 1 and 2: OASIS CSDL ---

    def _parse_strict(self, document: bytes) -> ODataMetadata:
        return self._parse_csdl(document, strict=True)

    def _parse_lenient(self, document: bytes) -> ODataMetadata:
        return self._parse_csdl(document, strict=False)

    def _check_element(self, element, strict: bool):
        """In strict mode reject attributes and child elements outside the CSDL grammar."""
        if not strict:
            return
        tag = etree.QName(element).localname
        allowed_attrs = _STRICT_ATTRIBUTES.get(tag, set())
        for attr in element.attrib:
            if attr not in allowed_attrs:
                raise ValueError(f"Unexpected attribute '{attr}' on {tag} '{element.get('Name', '')}'")
        allowed_children = _STRICT_CHILDREN.get(tag, set())
        for child in element:
            if not isinstance(child.tag, str):
                continue
            qname = etree.QName(child)
            if qname.namespace != EDM or qname.localname not in allowed_children:
                raise ValueError(f"Unexpected element '{child.tag}' inside {tag} '{element.get('Name', '')}'")

    def _csdl_type(self, type_name: Optional[str], strict: bool, context: str) -> str:
        if not type_name:
            raise ValueError(f"Missing Type on {context}")
        if type_name in ODATA_PRIMITIVE_TYPES:
            return type_name
        if strict:
            raise ValueError(f"Unsupported type '{type_name}' on {context}")
        return "Edm.String"

    def _csdl_description(self, element) -> Optional[str]:
        for annotation in element.findall(f'{{{EDM}}}Annotation'):
            if (annotation.get('Term') or '').endswith('Core.Description') and annotation.get('String'):
                return annotation.get('String')
        return None

    def _parse_csdl(self, document: bytes, strict: bool) -> ODataMetadata:
        root = etree.fromstring(document, _xml_parser())
        if root.tag != f'{{{EDMX}}}Edmx':
            raise ValueError(f"Root element is {root.tag}, not an OASIS edmx:Edmx")
        version = root.get('Version')
        if strict and version != '4.0':
            raise ValueError(f"Unsupported edmx Version '{version}'")
        data_services = root.find(f'{{{EDMX}}}DataServices')
        if data_services is None:
            raise ValueError("No edmx:DataServices element")
        schemas = data_services.findall(f'{{{EDM}}}Schema')
        if not schemas:
            raise ValueError("No edm:Schema element")

        raw_types: Dict[str, _RawEntityType] = {}
        functions: Dict[str, etree._Element] = {}
        actions: Dict[str, etree._Element] = {}
        containers = []
        description = None

        for schema in schemas:
            self._check_element(schema, strict)
            description = description or self._csdl_description(schema)
            for et_elem in schema.findall(f'{{{EDM}}}EntityType'):
                raw = self._csdl_entity_type(et_elem, strict)
                raw_types[raw.name] = raw
            for fn_elem in schema.findall(f'{{{EDM}}}Function'):
                if not _is_true(fn_elem.get('IsBound'), False):
                    functions.setdefault(fn_elem.get('Name'), fn_elem)
            for action_elem in schema.findall(f'{{{EDM}}}Action'):
                if not _is_true(action_elem.get('IsBound'), False):
                    actions.setdefault(action_elem.get('Name'), action_elem)
            containers.extend(schema.findall(f'{{{EDM}}}EntityContainer'))

        if not containers:
            raise ValueError("No edm:EntityContainer element")

        entity_types = _resolve_entity_types(raw_types)
        entity_sets: Dict[str, EntitySet] = {}
        function_imports: Dict[str, FunctionImport] = {}

        for container in containers:
            self._check_element(container, strict)
            for es_elem in container.findall(f'{{{EDM}}}EntitySet'):
                self._check_element(es_elem, strict)
                name = es_elem.get('Name')
                if not name:
                    raise ValueError("EntitySet without Name")
                entity_sets[name] = EntitySet(
                    name=name,
                    entity_type=_local_name(es_elem.get('EntityType')) or '',
                    description=self._csdl_description(es_elem),
                )
            for fi_elem in container.findall(f'{{{EDM}}}FunctionImport'):
                fi = self._csdl_operation_import(fi_elem, functions, 'Function', strict)
                function_imports[fi.name] = fi
            for ai_elem in container.findall(f'{{{EDM}}}ActionImport'):
                fi = self._csdl_operation_import(ai_elem, actions, 'Action', strict)
                function_imports[fi.name] = fi

        return ODataMetadata(
            entity_types=entity_types,
            entity_sets=entity_sets,
            function_imports=function_imports,
            service_url=self.service_url,
            service_description=description,
            odata_version=version if version and version.startswith('4') else '4.0',
            parse_strategy="strict" if strict else "lenient",
        )

    def _csdl_entity_type(self, et_elem, strict: bool) -> _RawEntityType:
        self._check_element(et_elem, strict)
        name = et_elem.get('Name')
        if not name:
            raise ValueError("EntityType without Name")

        keys = []
        key_elem = et_elem.find(f'{{{EDM}}}Key')
        if key_elem is not None:
            self._check_element(key_elem, strict)
            for ref in key_elem.findall(f'{{{EDM}}}PropertyRef'):
                self._check_element(ref, strict)
                if not ref.get('Name'):
                    raise ValueError(f"PropertyRef without Name in '{name}'")
                keys.append(ref.get('Name'))

        properties = []
        for prop_elem in et_elem.findall(f'{{{EDM}}}Property'):
            self._check_element(prop_elem, strict)
            prop_name = prop_elem.get('Name')
            if not prop_name:
                raise ValueError(f"Property without Name in '{name}'")
            properties.append(EntityProperty(
                name=prop_name,
                type=self._csdl_type(prop_elem.get('Type'), strict, f"{name}.{prop_name}"),
                nullable=_is_true(prop_elem.get('Nullable'), True),
                description=self._csdl_description(prop_elem),
            ))

        return _RawEntityType(name, _local_name(et_elem.get('BaseType')), keys, properties,
                              self._csdl_description(et_elem))

    def _csdl_operation_import(self, import_elem, declarations: Dict[str, etree._Element],
                               kind: str, strict: bool) -> FunctionImport:
        self._check_element(import_elem, strict)
        name = import_elem.get('Name')
        if not name:
            raise ValueError(f"{kind}Import without Name")
        declaration = declarations.get(_local_name(import_elem.get(kind)))
        if declaration is None and strict:
            raise ValueError(f"{kind}Import '{name}' references unknown {kind} '{import_elem.get(kind)}'")

        parameters = []
        return_type = None
        if declaration is not None:
            self._check_element(declaration, strict)
            for param_elem in declaration.findall(f'{{{EDM}}}Parameter'):
                self._check_element(param_elem, strict)
                param_name = param_elem.get('Name')
                if not param_name:
                    raise ValueError(f"Parameter without Name in {kind} '{name}'")
                parameters.append(EntityProperty(
                    name=param_name,
                    type=self._csdl_type(param_elem.get('Type'), strict, f"{name}({param_name})"),
                    nullable=_is_true(param_elem.get('Nullable'), True),
                ))
            return_elem = declaration.find(f'{{{EDM}}}ReturnType')
            if return_elem is not None:
                return_type = return_elem.get('Type')

        is_action = kind == 'Action'
        return FunctionImport(
            name=name,
            http_method='POST' if is_action else 'GET',
            return_type=return_type,
            parameters=parameters,
            description=self._csdl_description(import_elem),
            is_action=is_action,
        )

    # --- Strategy 3: legacy local-name walk ---

    def _get_description(self, element) -> Optional[str]:
        """Helper to extract description from annotations (basic attempt)."""
        # Check for SAP annotations first
        desc = element.xpath("./@*[local-name()='label']")
        if desc:
            return desc[0]
        desc = element.xpath("./*[local-name()='Documentation']/*[local-name()='Summary']/text()")
        if desc:
            return desc[0]
        desc = element.xpath("./*[local-name()='Documentation']/*[local-name()='LongDescription']/text()")
        if desc:
            return desc[0]
        return None

    def _attribute(self, element, local_name: str) -> Optional[str]:
        """Attribute value by local name, whatever namespace it is declared in."""
        values = element.xpath(f"./@*[local-name()='{local_name}']")
        return values[0] if values else None

    def _legacy_type(self, type_name: Optional[str]) -> str:
        if type_name in ODATA_PRIMITIVE_TYPES:
            return type_name
        return "Edm.String"

    def _parse_legacy(self, document: bytes) -> ODataMetadata:
        root = etree.fromstring(document, _xml_parser())

        raw_types: Dict[str, _RawEntityType] = {}
        for et_elem in root.xpath("//*[local-name()='Schema']/*[local-name()='EntityType']"):
            name = et_elem.get('Name')
            if not name:
                continue
            keys = [ref.get('Name') for ref in
                    et_elem.xpath("./*[local-name()='Key']/*[local-name()='PropertyRef']") if ref.get('Name')]
            properties = []
            for prop_elem in et_elem.xpath("./*[local-name()='Property']"):
                prop_name = prop_elem.get('Name')
                if not prop_name:
                    continue
                properties.append(EntityProperty(
                    name=prop_name,
                    type=self._legacy_type(prop_elem.get('Type')),
                    nullable=_is_true(prop_elem.get('Nullable'), True),
                    description=self._get_description(prop_elem),
                ))
            raw_types[name] = _RawEntityType(name, _local_name(et_elem.get('BaseType')), keys, properties,
                                             self._get_description(et_elem))

        entity_sets: Dict[str, EntitySet] = {}
        for es_elem in root.xpath("//*[local-name()='EntityContainer']/*[local-name()='EntitySet']"):
            name = es_elem.get('Name')
            if not name:
                continue
            entity_sets[name] = EntitySet(
                name=name,
                entity_type=_local_name(es_elem.get('EntityType')) or '',
                creatable=_is_true(self._attribute(es_elem, 'creatable'), True),
                updatable=_is_true(self._attribute(es_elem, 'updatable'), True),
                deletable=_is_true(self._attribute(es_elem, 'deletable'), True),
                searchable=_is_true(self._attribute(es_elem, 'searchable'), False),
                description=self._get_description(es_elem),
            )
        if not entity_sets:
            raise ValueError("No EntitySet elements found")

        function_imports: Dict[str, FunctionImport] = {}
        for fi_elem in root.xpath("//*[local-name()='EntityContainer']/*[local-name()='FunctionImport']"):
            name = fi_elem.get('Name')
            if not name:
                continue
            parameters = []
            for param_elem in fi_elem.xpath("./*[local-name()='Parameter']"):
                mode = param_elem.get('Mode')
                if not param_elem.get('Name') or (mode and mode not in ('In', 'InOut')):
                    continue
                parameters.append(EntityProperty(
                    name=param_elem.get('Name'),
                    type=self._legacy_type(param_elem.get('Type')),
                    nullable=_is_true(param_elem.get('Nullable'), True),
                    description=self._get_description(param_elem),
                ))
            function_imports[name] = FunctionImport(
                name=name,
                http_method=(self._attribute(fi_elem, 'HttpMethod') or 'GET').upper(),
                return_type=fi_elem.get('ReturnType'),
                parameters=parameters,
                description=self._get_description(fi_elem),
            )

        schema = root.xpath("//*[local-name()='Schema']")
        return ODataMetadata(
            entity_types=_resolve_entity_types(raw_types),
            entity_sets=entity_sets,
            function_imports=function_imports,
            service_url=self.service_url,
            service_description=self._get_description(schema[0]) if schema else None,
            odata_version=self._legacy_version(root),
            parse_strategy="legacy",
        )

    def _legacy_version(self, root) -> str:
        if root.tag.startswith(f'{{{EDMX}}}'):
            return '4.0'
        data_services = root.xpath("./*[local-name()='DataServices']")
        if data_services:
            version = self._attribute(data_services[0], 'DataServiceVersion')
            if version and version.startswith(('3', '4')):
                return version
        return '2.0'

    # --- Strategy 4: entity set name salvage ---

    def _salvage_entity_sets(self, document: bytes) -> ODataMetadata:
        names: List[str] = []
        try:
            root = etree.fromstring(document, _xml_parser(recover=True))
        except etree.XMLSyntaxError:
            root = None

        candidates = []
        if root is not None:
            candidates = [el.get('Name') for el in root.iter()
                          if isinstance(el.tag, str) and etree.QName(el).localname == 'EntitySet']
        if not candidates:
            text = document.decode('utf-8', errors='replace')
            candidates = _ENTITY_SET_RE.findall(text)

        for name in candidates:
            if name and name not in names:
                names.append(name)
        if not names:
            raise ValueError("No EntitySet names found in document")

        entity_types = {}
        entity_sets = {}
        for name in names:
            entity_types[name] = EntityType(
                name=name,
                properties=[EntityProperty(name="ID", type="Edm.String", nullable=False, is_key=True,
                                           description="Generic ID")],
                key_properties=["ID"],
                description=f"Minimal type for {name}",
            )
            entity_sets[name] = EntitySet(name=name, entity_type=name)

        return ODataMetadata(
            entity_types=entity_types,
            entity_sets=entity_sets,
            service_url=self.service_url,
            parse_strategy="salvage",
        )

