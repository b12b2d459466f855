"""Tests for the relation constraint registry."""

from __future__ import annotations

import pytest

from organograph.core.exceptions import (
    CardinalityViolation,
    DuplicateRelation,
    TypeMismatch,
    UnknownRelationType,
)
from organograph.ontology.constraints import (
    Cardinality,
    RelationConstraint,
    describe_relation_type,
    get_constraint_registry,
    relation_type_names,
    relations_from,
    relations_to,
)


def _constraint(cardinality: Cardinality) -> RelationConstraint:
    return RelationConstraint(
        name="linksTo",
        sources=frozenset({"Instrument"}),
        targets=frozenset({"Rythme"}),
        cardinality=cardinality,
        description="Test relation",
    )


class TestRegistry:
    def test_ten_relation_types(self) -> None:
        assert set(relation_type_names()) == {
            "belongsTo",
            "usedBy",
            "producesRhythm",
            "locatedAt",
            "madeOf",
            "playedWith",
            "crafts",
            "characterizes",
            "appliesTo",
            "encompasses",
        }

    def test_cardinality_classes(self) -> None:
        registry = get_constraint_registry()
        assert registry["belongsTo"].cardinality == Cardinality.MANY_TO_ONE
        assert registry["usedBy"].cardinality == Cardinality.ONE_TO_MANY
        assert registry["playedWith"].cardinality == Cardinality.ONE_TO_ONE
        assert registry["crafts"].cardinality == Cardinality.MANY_TO_ONE

    def test_located_at_endpoints(self) -> None:
        constraint = describe_relation_type("locatedAt")
        assert constraint.sources == {"Instrument", "GroupeEthnique", "Rythme"}
        assert constraint.targets == {"Localite"}
        assert constraint.touches("Rythme")
        assert constraint.touches("Localite")
        assert not constraint.touches("Artisan")

    def test_unknown_relation_type(self) -> None:
        with pytest.raises(UnknownRelationType, match="Unknown relation type: plays"):
            describe_relation_type("plays")

    def test_none_relation_type(self) -> None:
        with pytest.raises(UnknownRelationType):
            describe_relation_type(None)

    def test_summary_derived_from_cardinality(self) -> None:
        summary = describe_relation_type("belongsTo").summary
        assert "N:1" in summary
        assert "at most one target" in summary

    def test_relations_from_and_to(self) -> None:
        assert {c.name for c in relations_from("Artisan")} == {"crafts"}
        assert "encompasses" in {c.name for c in relations_to("GroupeEthnique")}
        assert "usedBy" in {c.name for c in relations_to("GroupeEthnique")}


class TestEndpoints:
    def test_valid_endpoints(self) -> None:
        describe_relation_type("belongsTo").check_endpoints("Instrument", "Famille")

    def test_wrong_source(self) -> None:
        with pytest.raises(TypeMismatch, match="belongsTo source must be one of"):
            describe_relation_type("belongsTo").check_endpoints("Rythme", "Famille")

    def test_wrong_target(self) -> None:
        with pytest.raises(TypeMismatch, match="belongsTo target must be one of"):
            describe_relation_type("belongsTo").check_endpoints("Instrument", "Localite")


class TestCardinality:
    """Pure cardinality checks over (from_id, to_id) edge lists."""

    def test_duplicate_detected_for_every_class(self) -> None:
        for cardinality in Cardinality:
            with pytest.raises(DuplicateRelation):
                _constraint(cardinality).check_cardinality("a", "b", [("a", "b")])

    def test_one_to_one_blocks_reused_source(self) -> None:
        with pytest.raises(CardinalityViolation, match="1:1"):
            _constraint(Cardinality.ONE_TO_ONE).check_cardinality("a", "c", [("a", "b")])

    def test_one_to_one_blocks_reused_target(self) -> None:
        with pytest.raises(CardinalityViolation):
            _constraint(Cardinality.ONE_TO_ONE).check_cardinality("c", "b", [("a", "b")])

    def test_many_to_one_blocks_second_target(self) -> None:
        with pytest.raises(CardinalityViolation, match="N:1"):
            _constraint(Cardinality.MANY_TO_ONE).check_cardinality("a", "c", [("a", "b")])

    def test_many_to_one_allows_shared_target(self) -> None:
        _constraint(Cardinality.MANY_TO_ONE).check_cardinality("d", "b", [("a", "b")])

    def test_one_to_many_allows_many_targets(self) -> None:
        _constraint(Cardinality.ONE_TO_MANY).check_cardinality("a", "c", [("a", "b")])

    def test_many_to_many_unrestricted(self) -> None:
        _constraint(Cardinality.MANY_TO_MANY).check_cardinality("a", "c", [("a", "b"), ("d", "c")])
