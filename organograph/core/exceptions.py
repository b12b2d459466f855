"""Error taxonomy for the ontology engine.

Every engine operation either returns a value or raises one of these.
Validation and constraint errors are deterministic and safe to show to the
caller verbatim; ``StoreError`` wraps infrastructure failures and may be
transient.
"""

from __future__ import annotations


class OntologyError(Exception):
    """Base class for all engine errors.

    Attributes:
        code: Stable machine-readable error kind, used by callers to map
            errors to wire responses.
    """

    code = "ontology_error"


class ValidationError(OntologyError, ValueError):
    """Raised when a payload or argument fails schema validation."""

    code = "validation_error"

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid value for '{field}': {reason}")


class UnknownEntityType(OntologyError, ValueError):
    """Raised when an entity type name is not registered."""

    code = "unknown_entity_type"

    def __init__(self, entity_type: str) -> None:
        self.entity_type = entity_type
        super().__init__(f"Unknown entity type: {entity_type}")


class UnknownRelationType(OntologyError, ValueError):
    """Raised when a relation type name is not registered."""

    code = "unknown_relation_type"

    def __init__(self, relation_type: str) -> None:
        self.relation_type = relation_type
        super().__init__(f"Unknown relation type: {relation_type}")


class NotFound(OntologyError, LookupError):
    """Raised when an entity or relation does not exist."""

    code = "not_found"


class TypeMismatch(OntologyError, ValueError):
    """Raised when an endpoint type is not permitted for a relation type."""

    code = "type_mismatch"


class ConstraintViolation(OntologyError, ValueError):
    """Base class for relation constraint breaches."""

    code = "constraint_violation"


class CardinalityViolation(ConstraintViolation):
    """Raised when a new edge would break the relation's cardinality class."""

    code = "cardinality_violation"


class DuplicateRelation(ConstraintViolation):
    """Raised when the exact (source, target, type) edge already exists."""

    code = "duplicate_relation"


class StoreError(OntologyError, RuntimeError):
    """Raised when the underlying graph store fails; message passed through."""

    code = "store_error"


class UniquenessConflict(StoreError):
    """Raised when a write breaks a store-side uniqueness constraint."""

    code = "uniqueness_conflict"
