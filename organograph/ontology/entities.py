"""Entity type registry.

Each entity type of the ontology is a closed variant with an explicit
pydantic field struct. The YAML ontology contributes the storage metadata
(name field, display precedence, searchable fields, indexes); this module
joins both into an ``EntityTypeSpec`` per type and exposes the lookup used
by the repository, the relation manager and the query engine.
"""

from __future__ import annotations

import datetime
import functools
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from organograph.core.exceptions import UnknownEntityType, ValidationError
from organograph.ontology.loader import get_entity_type_definitions

FamilyName = Literal["Cordes", "Vents", "Percussions", "Electrophones"]


class _EntityFields(BaseModel):
    model_config = ConfigDict(extra="forbid")


class InstrumentFields(_EntityFields):
    nomInstrument: str = Field(min_length=2, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    anneeCreation: int | None = Field(default=None, ge=1)

    @field_validator("anneeCreation")
    @classmethod
    def not_in_future(cls, v: int | None) -> int | None:
        if v is not None and v > datetime.date.today().year:
            raise ValueError("creation year cannot be in the future")
        return v


class FamilleFields(_EntityFields):
    nomFamille: FamilyName


class GroupeEthniqueFields(_EntityFields):
    nomGroupe: str = Field(min_length=2, max_length=100)
    langue: str | None = Field(default=None, max_length=50)


class RythmeFields(_EntityFields):
    nomRythme: str = Field(min_length=2, max_length=100)
    tempoBPM: int | None = Field(default=None, ge=20, le=300)


class LocaliteFields(_EntityFields):
    nomLocalite: str = Field(min_length=2, max_length=100)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class MateriauFields(_EntityFields):
    nomMateriau: str = Field(min_length=2, max_length=50)
    typeMateriau: str | None = Field(default=None, max_length=50)


class TimbreFields(_EntityFields):
    descriptionTimbre: str = Field(min_length=2, max_length=100)


class TechniqueDeJeuFields(_EntityFields):
    nomTechnique: str = Field(min_length=2, max_length=50)
    descriptionTechnique: str | None = Field(default=None, max_length=200)


class ArtisanFields(_EntityFields):
    nomArtisan: str = Field(min_length=2, max_length=100)
    anneesExperience: int | None = Field(default=None, ge=0, le=80)


class PatrimoineCulturelFields(_EntityFields):
    nomPatrimoine: str = Field(min_length=2, max_length=100)
    descriptionPatrimoine: str | None = Field(default=None, max_length=500)


FIELD_MODELS: dict[str, type[BaseModel]] = {
    "Instrument": InstrumentFields,
    "Famille": FamilleFields,
    "GroupeEthnique": GroupeEthniqueFields,
    "Rythme": RythmeFields,
    "Localite": LocaliteFields,
    "Materiau": MateriauFields,
    "Timbre": TimbreFields,
    "TechniqueDeJeu": TechniqueDeJeuFields,
    "Artisan": ArtisanFields,
    "PatrimoineCulturel": PatrimoineCulturelFields,
}


@dataclass(frozen=True)
class EntityTypeSpec:
    """Schema and storage metadata for one entity type.

    Attributes:
        name: Entity type name (also the primary Neo4j label).
        label: Storage label used in Cypher patterns.
        fields_model: Pydantic field struct validating the property bag.
        name_field: Property holding the type-unique name.
        display_fields: Precedence list used to build a display name.
        search_fields: Properties matched by text search.
        description: Human-readable description.
        indexes: Secondary index property groups.
        sublabel_field: Property whose value is added as an extra label.
    """

    name: str
    label: str
    fields_model: type[BaseModel]
    name_field: str
    display_fields: tuple[str, ...]
    search_fields: tuple[str, ...]
    description: str = ""
    indexes: tuple[tuple[str, ...], ...] = ()
    sublabel_field: str | None = None

    @property
    def field_names(self) -> frozenset[str]:
        return frozenset(self.fields_model.model_fields)

    @property
    def required_fields(self) -> frozenset[str]:
        return frozenset(name for name, info in self.fields_model.model_fields.items() if info.is_required())

    def validate(self, payload: Any) -> dict[str, Any]:
        """Validate a complete payload against the field struct.

        Args:
            payload: Candidate property bag.

        Returns:
            The normalised property bag, without unset optional fields.

        Raises:
            ValidationError: With the first violated field and its reason.
        """
        if not isinstance(payload, Mapping):
            raise ValidationError("payload", f"expected an object, got {type(payload).__name__}")
        try:
            model = self.fields_model.model_validate(dict(payload))
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first["loc"]) or "payload"
            raise ValidationError(field, first["msg"]) from exc
        return model.model_dump(exclude_none=True)

    def labels_for(self, properties: Mapping[str, Any]) -> list[str]:
        """Return the labels a node with these properties is stored under."""
        labels = [self.label]
        if self.sublabel_field:
            sublabel = properties.get(self.sublabel_field)
            if sublabel and sublabel != self.label:
                labels.append(str(sublabel))
        return labels

    def display_name(self, properties: Mapping[str, Any], entity_id: str) -> str:
        """First non-empty property of the precedence list, else ``<type> #<id>``."""
        for field in self.display_fields:
            value = properties.get(field)
            if value is not None and str(value).strip():
                return str(value)
        return f"{self.name} #{entity_id}"


@functools.cache
def get_entity_registry() -> dict[str, EntityTypeSpec]:
    """Build (once) the registry of entity types declared in the ontology."""
    registry: dict[str, EntityTypeSpec] = {}
    for name, defn in get_entity_type_definitions().items():
        model = FIELD_MODELS.get(name)
        if model is None:
            raise RuntimeError(f"Entity type '{name}' has no field struct")
        registry[name] = EntityTypeSpec(
            name=name,
            label=defn.get("label", name),
            fields_model=model,
            name_field=defn["name_field"],
            display_fields=tuple(defn.get("display_fields") or [defn["name_field"]]),
            search_fields=tuple(defn.get("search_fields") or [defn["name_field"]]),
            description=defn.get("description", ""),
            indexes=tuple(tuple(group) for group in defn.get("indexes") or []),
            sublabel_field=defn.get("sublabel_field"),
        )
    return registry


def describe_entity_type(entity_type: str) -> EntityTypeSpec:
    """Look up an entity type.

    Raises:
        UnknownEntityType: If the type is not registered.
    """
    spec = get_entity_registry().get(entity_type)
    if spec is None:
        raise UnknownEntityType(entity_type)
    return spec


def entity_type_names() -> tuple[str, ...]:
    """Registered entity types, in declaration order."""
    return tuple(get_entity_registry())


def resolve_entity_type(labels: Iterable[str]) -> str | None:
    """Return the first label that is a registered entity type."""
    registry = get_entity_registry()
    for label in labels:
        if label in registry:
            return label
    return None


def display_name_for(entity_type: str, properties: Mapping[str, Any], entity_id: str) -> str:
    """Display name for any node, registered type or not."""
    spec = get_entity_registry().get(entity_type)
    if spec is None:
        return f"{entity_type} #{entity_id}"
    return spec.display_name(properties, entity_id)


def schema_statements() -> list[str]:
    """Constraint and index DDL derived from the registry.

    One uniqueness constraint per type on its name field, plus the declared
    secondary indexes (coordinates, numeric range fields, ...).
    """
    statements: list[str] = []
    for spec in get_entity_registry().values():
        statements.append(
            f"CREATE CONSTRAINT {spec.name.lower()}_name_unique IF NOT EXISTS "
            f"FOR (n:{spec.label}) REQUIRE n.{spec.name_field} IS UNIQUE"
        )
    for spec in get_entity_registry().values():
        for group in spec.indexes:
            index_name = f"{spec.name.lower()}_{'_'.join(f.lower() for f in group)}"
            props = ", ".join(f"n.{f}" for f in group)
            statements.append(f"CREATE INDEX {index_name} IF NOT EXISTS FOR (n:{spec.label}) ON ({props})")
    return statements
