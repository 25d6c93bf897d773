"""Tests for person record merging in pipeline/merger.py.

Merge safety: a merge never removes or reorders attributes, never lowers
confidence and never replaces the primary name without an explicit,
higher-confidence correction.
"""

import pytest

from identiq.pipeline.merger import (
    link_persons,
    merge_person,
    normalize_value,
    rename_primary,
)


class TestNormalizeValue:
    """Tests for the comparison form."""

    def test_trims_collapses_and_folds(self):
        """Whitespace and case differences vanish."""
        assert normalize_value("  John   SMITH ") == "john smith"

    def test_casefold(self):
        """casefold, not lower: German sharp s folds to ss."""
        assert normalize_value("Straße") == normalize_value("STRASSE")


# =============================================================================
# NEW RECORDS
# =============================================================================

class TestNewRecord:
    """First sighting of a person."""

    def test_fresh_record(self, make_detection, observed_at):
        """All fields populated from the detection."""
        detection = make_detection(
            "John Smith",
            aliases=["Johnny"],
            emails=["john@x.com"],
            phones=["555-1234"],
            addresses=["1 Main St"],
            ids=["A123"],
            confidence=0.75,
        )
        record = merge_person(None, detection, person_id=3, observed_at=observed_at)

        assert record.person_id == 3
        assert record.primary_name == "John Smith"
        assert record.aliases == ("Johnny",)
        assert record.emails == ("john@x.com",)
        assert record.phones == ("555-1234",)
        assert record.addresses == ("1 Main St",)
        assert record.ids == ("A123",)
        assert record.metadata.confidence_score == 0.75
        assert record.metadata.first_seen == observed_at
        assert record.metadata.last_seen == observed_at
        assert record.metadata.session_count == 1
        assert record.relationships == {}

    def test_duplicate_attributes_in_one_detection(self, make_detection, observed_at):
        """Duplicates within the detection collapse, first spelling kept."""
        detection = make_detection(emails=["John@X.com", "john@x.com ", "jane@x.com"])
        record = merge_person(None, detection, person_id=1, observed_at=observed_at)
        assert record.emails == ("John@X.com", "jane@x.com")

    def test_alias_equal_to_primary_is_dropped(self, make_detection, observed_at):
        """The primary name is never listed as its own alias."""
        detection = make_detection("John Smith", aliases=["john  smith", "JS"])
        record = merge_person(None, detection, person_id=1, observed_at=observed_at)
        assert record.aliases == ("JS",)

    def test_corrected_name_on_first_sighting(self, make_detection, observed_at):
        """A correction on a new person becomes the primary, matched name an alias."""
        detection = make_detection("Jon Smith", corrected_name="John Smith")
        record = merge_person(None, detection, person_id=1, observed_at=observed_at)
        assert record.primary_name == "John Smith"
        assert record.aliases == ("Jon Smith",)


# =============================================================================
# MERGING INTO EXISTING RECORDS
# =============================================================================

class TestMergeExisting:
    """Folding later detections into a record."""

    def test_new_attributes_appended(self, make_record, make_detection, later):
        """New values go to the end; existing ordinals are untouched."""
        record = make_record(emails=["a@x.com"], phones=["555-0001"])
        merged = merge_person(
            record,
            make_detection(emails=["b@x.com", "A@X.COM"], phones=["555-0002"]),
            person_id=99,
            observed_at=later,
        )
        assert merged.emails == ("a@x.com", "b@x.com")
        assert merged.phones == ("555-0001", "555-0002")
        assert merged.person_id == record.person_id

    def test_merge_is_pure(self, make_record, make_detection, later):
        """The input record is not modified."""
        record = make_record(emails=["a@x.com"])
        merge_person(record, make_detection(emails=["b@x.com"]), person_id=1, observed_at=later)
        assert record.emails == ("a@x.com",)

    def test_existing_values_never_removed(self, make_record, make_detection, later):
        """A detection omitting attributes removes nothing."""
        record = make_record(emails=["a@x.com"], aliases=["Johnny"])
        merged = merge_person(record, make_detection(), person_id=1, observed_at=later)
        assert merged.emails == ("a@x.com",)
        assert merged.aliases == ("Johnny",)

    def test_matched_name_same_as_primary_is_noop(self, make_record, make_detection, later):
        """Case or spacing variants of the primary name add no alias."""
        record = make_record(matched_name="John Smith")
        merged = merge_person(record, make_detection("JOHN  smith"), person_id=1, observed_at=later)
        assert merged.primary_name == "John Smith"
        assert merged.aliases == ()

    def test_distinct_name_becomes_alias(self, make_record, make_detection, later):
        """Detection never replaces the primary name."""
        record = make_record(matched_name="John Smith", aliases=["Johnny"])
        merged = merge_person(
            record,
            make_detection("Smith", aliases=["johnny", "J. Smith"]),
            person_id=1,
            observed_at=later,
        )
        assert merged.primary_name == "John Smith"
        assert merged.aliases == ("Johnny", "Smith", "J. Smith")

    def test_confidence_is_max(self, make_record, make_detection, later):
        """Confidence never decreases."""
        record = make_record(confidence=0.9)
        lower = merge_person(record, make_detection(confidence=0.3), person_id=1, observed_at=later)
        assert lower.metadata.confidence_score == 0.9
        higher = merge_person(lower, make_detection(confidence=0.95), person_id=1, observed_at=later)
        assert higher.metadata.confidence_score == 0.95

    def test_timestamps(self, make_record, make_detection, observed_at, later):
        """first_seen fixed, last_seen follows the turn."""
        record = make_record()
        merged = merge_person(record, make_detection(), person_id=1, observed_at=later)
        assert merged.metadata.first_seen == observed_at
        assert merged.metadata.last_seen == later

    def test_session_count_once_per_turn(self, make_record, make_detection, later):
        """A second detection in the same turn does not count again."""
        record = make_record()
        merged = merge_person(record, make_detection(), person_id=1, observed_at=later)
        assert merged.metadata.session_count == 2
        again = merge_person(
            merged, make_detection(), person_id=1, observed_at=later, new_turn=False
        )
        assert again.metadata.session_count == 2

    def test_relationships_preserved(self, make_record, make_detection, later):
        """Merging does not touch existing links."""
        john, jane = link_persons(make_record(1), make_record(2, "Jane Doe"), "spouse")
        merged = merge_person(john, make_detection(), person_id=1, observed_at=later)
        assert merged.relationships == {"spouse": frozenset({2})}


class TestCorrections:
    """Explicit primary-name corrections."""

    def test_higher_confidence_correction_applies(self, make_record, make_detection, later):
        """Old primary moves to aliases."""
        record = make_record(matched_name="Jon Smith", confidence=0.6)
        merged = merge_person(
            record,
            make_detection("Jon Smith", corrected_name="John Smith", confidence=0.9),
            person_id=1,
            observed_at=later,
        )
        assert merged.primary_name == "John Smith"
        assert "Jon Smith" in merged.aliases

    def test_equal_confidence_correction_ignored(self, make_record, make_detection, later):
        """Strictly higher confidence is required."""
        record = make_record(matched_name="Jon Smith", confidence=0.9)
        merged = merge_person(
            record,
            make_detection("Jon Smith", corrected_name="John Smith", confidence=0.9),
            person_id=1,
            observed_at=later,
        )
        assert merged.primary_name == "Jon Smith"

    def test_rename_primary(self, make_record):
        """New name leaves the aliases, old name joins them."""
        record = make_record(matched_name="Jon", aliases=["John Smith"])
        renamed = rename_primary(record, "  John   Smith ")
        assert renamed.primary_name == "John Smith"
        assert renamed.aliases == ("Jon",)

    def test_rename_to_same_name_is_noop(self, make_record):
        """Renaming to an equivalent spelling returns the record unchanged."""
        record = make_record(matched_name="John Smith")
        assert rename_primary(record, "john smith") is record

    def test_rename_blank_rejected(self, make_record):
        """Blank names are programming errors."""
        with pytest.raises(ValueError):
            rename_primary(make_record(), "   ")


# =============================================================================
# RELATIONSHIPS
# =============================================================================

class TestLinkPersons:
    """Tests for relationship linking."""

    def test_symmetric_link(self, make_record):
        """Both records point at each other."""
        john, jane = link_persons(make_record(1), make_record(2, "Jane Doe"), "Spouse ")
        assert john.relationships == {"spouse": frozenset({2})}
        assert jane.relationships == {"spouse": frozenset({1})}

    def test_links_accumulate(self, make_record):
        """Links of one kind are a union."""
        john = make_record(1)
        john, _ = link_persons(john, make_record(2, "Jane Doe"), "sibling")
        john, _ = link_persons(john, make_record(3, "Jim Smith"), "sibling")
        assert john.relationships["sibling"] == frozenset({2, 3})

    def test_no_self_link(self, make_record):
        """A person never relates to itself."""
        john = make_record(1)
        source, target = link_persons(john, john, "friend")
        assert source.relationships == {}
        assert target.relationships == {}

    def test_asymmetric_kind(self, make_record, monkeypatch):
        """Kinds listed as asymmetric are recorded only on the source."""
        from identiq.pipeline import merger
        monkeypatch.setattr(merger, "ASYMMETRIC_RELATIONSHIPS", frozenset({"manager"}))

        boss, report = link_persons(make_record(1), make_record(2, "Jane Doe"), "manager")
        assert boss.relationships == {"manager": frozenset({2})}
        assert report.relationships == {}
