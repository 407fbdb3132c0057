"""
Data models for OData metadata representation.

The models are frozen: the schema is built once by the parser and never
mutated afterwards, so the tool catalog generated from it stays stable.
"""

from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, model_validator

from .constants import JSON_SCHEMA_TYPES, KIND_UNKNOWN, ODATA_PRIMITIVE_TYPES


class EntityProperty(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "Edm.String"  # OData type string (e.g., "Edm.String")
    nullable: bool = True
    is_key: bool = False
    description: Optional[str] = None

    @property
    def kind(self) -> str:
        """Primitive kind of the property; unknown and complex types map to 'unknown'."""
        return ODATA_PRIMITIVE_TYPES.get(self.type, KIND_UNKNOWN)

    def get_json_schema_type(self) -> str:
        return JSON_SCHEMA_TYPES.get(self.kind, "string")


class EntityType(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    properties: List[EntityProperty] = []
    key_properties: List[str] = []
    description: Optional[str] = None

    @model_validator(mode="after")
    def _check_keys(self):
        names = {prop.name for prop in self.properties}
        missing = [key for key in self.key_properties if key not in names]
        if missing:
            raise ValueError(f"Entity type '{self.name}' declares key properties not in its property list: {missing}")
        return self

    def get_property(self, name: str) -> Optional[EntityProperty]:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def get_key_properties(self) -> List[EntityProperty]:
        """Key properties in key declaration order."""
        return [self.get_property(key) for key in self.key_properties]

    def get_non_key_properties(self) -> List[EntityProperty]:
        return [prop for prop in self.properties if prop.name not in self.key_properties]


class EntitySet(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    entity_type: str
    creatable: bool = True
    updatable: bool = True
    deletable: bool = True
    searchable: bool = False
    description: Optional[str] = None


class FunctionImport(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    http_method: str = "GET"
    return_type: Optional[str] = None
    parameters: List[EntityProperty] = []
    description: Optional[str] = None
    is_action: bool = False  # v4 ActionImport, parameters travel in the request body


class ODataMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_types: Dict[str, EntityType] = {}
    entity_sets: Dict[str, EntitySet] = {}
    function_imports: Dict[str, FunctionImport] = {}
    service_url: str
    service_description: Optional[str] = None
    odata_version: str = "2.0"
    parse_strategy: Optional[str] = None

    @model_validator(mode="after")
    def _check_references(self):
        for entity_set in self.entity_sets.values():
            if entity_set.entity_type not in self.entity_types:
                raise ValueError(
                    f"Entity set '{entity_set.name}' references unknown entity type '{entity_set.entity_type}'"
                )
        return self

    @property
    def is_v4(self) -> bool:
        return self.odata_version.startswith("4")

    def get_entity_type(self, entity_set_name: str) -> EntityType:
        return self.entity_types[self.entity_sets[entity_set_name].entity_type]
