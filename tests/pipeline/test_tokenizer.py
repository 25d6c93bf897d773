"""Tests for text tokenization in pipeline/tokenizer.py.

Tests value replacement, pre-existing token handling, word boundaries and
restoration. Every token left in sanitized text must resolve.
"""

import logging

from identiq.constants import REDACTED_MASK
from identiq.pipeline.tokenizer import (
    build_value_tokens,
    resolve_token,
    restore,
    sanitize,
)
from identiq.pipeline.tokens import TokenRef, find_tokens


def all_tokens_resolve(text, persons):
    return all(resolve_token(ref, persons) is not None for ref in find_tokens(text))


# =============================================================================
# VALUE TABLE
# =============================================================================

class TestBuildValueTokens:
    """Tests for the literal -> token table."""

    def test_names_and_attributes(self, john_and_jane):
        """Names map to the name token, attributes to their ordinal token."""
        table = build_value_tokens(john_and_jane)
        assert table["john smith"] == ("John Smith", "[Person1]")
        assert table["john@x.com"] == ("john@x.com", "[Person1:email1]")
        assert table["jane doe"] == ("Jane Doe", "[Person2]")
        assert table["555-1234"] == ("555-1234", "[Person2:phone1]")

    def test_aliases_map_to_name_token(self, make_record):
        persons = {1: make_record(1, "John Smith", aliases=["Johnny"])}
        assert build_value_tokens(persons)["johnny"] == ("Johnny", "[Person1]")

    def test_lower_person_id_keeps_shared_value(self, make_record):
        """A value shared by two persons resolves to the first one."""
        persons = {
            2: make_record(2, "Jane Doe", emails=["family@x.com"]),
            1: make_record(1, "John Smith", emails=["family@x.com"]),
        }
        assert build_value_tokens(persons)["family@x.com"][1] == "[Person1:email1]"

    def test_primary_name_beats_other_persons_alias(self, make_record):
        persons = {
            1: make_record(1, "Alex Kim", aliases=["Sam"]),
            2: make_record(2, "Sam"),
        }
        assert build_value_tokens(persons)["sam"] == ("Sam", "[Person2]")

    def test_turn_resolution_overrides_default(self, make_record):
        """The person a name resolved to this turn gets its token."""
        persons = {
            1: make_record(1, "Alex Kim", aliases=["Sam"]),
            2: make_record(2, "Chris Lee", aliases=["Sam"]),
        }
        assert build_value_tokens(persons)["sam"][1] == "[Person1]"
        assert build_value_tokens(persons, {"sam": 2})["sam"] == ("Sam", "[Person2]")

    def test_resolution_for_unknown_person_ignored(self, john_and_jane):
        table = build_value_tokens(john_and_jane, {"john smith": 9})
        assert table["john smith"] == ("John Smith", "[Person1]")


# =============================================================================
# SANITIZE
# =============================================================================

class TestSanitize:
    """Tests for sanitize()."""

    def test_first_turn_scenario(self, make_record):
        """Name and email replaced in place."""
        persons = {1: make_record(1, "John Smith", emails=["john@x.com"])}
        text = "Hi, I'm John Smith, email john@x.com"
        assert sanitize(text, persons) == "Hi, I'm [Person1], email [Person1:email1]"

    def test_case_and_whitespace_insensitive(self, john_and_jane):
        """Values match regardless of case and inner spacing."""
        assert sanitize("JOHN   smith said hi", john_and_jane) == "[Person1] said hi"

    def test_word_boundaries(self, make_record):
        """An alias never matches inside a longer word."""
        persons = {1: make_record(1, "Jon Smith", aliases=["Jon"])}
        assert sanitize("Jonas met Jon.", persons) == "Jonas met [Person1]."

    def test_longest_value_wins(self, make_record):
        """Full name beats a contained alias; email beats a contained name."""
        persons = {1: make_record(1, "John Smith", aliases=["John"], emails=["john@x.com"])}
        text = "John Smith (john@x.com), or just John"
        assert sanitize(text, persons) == "[Person1] ([Person1:email1]), or just [Person1]"

    def test_multiple_persons(self, john_and_jane):
        text = "John Smith called Jane Doe at 555-1234"
        assert sanitize(text, john_and_jane) == "[Person1] called [Person2] at [Person2:phone1]"

    def test_resolvable_token_in_input_kept(self, john_and_jane):
        """Tokens the session knows pass through unchanged."""
        text = "Tell [Person2] about [Person1:email1]"
        assert sanitize(text, john_and_jane) == text

    def test_unresolvable_token_masked(self, john_and_jane, caplog):
        """Tokens the session cannot resolve are masked and counted."""
        text = "Ask [Person9] or [Person1:phone4]"
        with caplog.at_level(logging.WARNING, logger="identiq"):
            result = sanitize(text, john_and_jane)
        assert result == f"Ask {REDACTED_MASK} or {REDACTED_MASK}"
        assert "Masked 2" in caplog.text

    def test_case_variant_token_left_as_text(self, john_and_jane):
        """A lowercase lookalike is not a token and stays as it is."""
        assert sanitize("see [person1]", john_and_jane) == "see [person1]"

    def test_no_persons(self):
        """Without persons only token handling applies."""
        assert sanitize("Hello John", {}) == "Hello John"
        assert sanitize("Hello [Person1]", {}) == f"Hello {REDACTED_MASK}"

    def test_empty_text(self, john_and_jane):
        assert sanitize("", john_and_jane) == ""
        assert sanitize(None, john_and_jane) == ""

    def test_regex_metacharacters_escaped(self, make_record):
        """Values are matched literally."""
        persons = {1: make_record(1, "Anna (Ann) Lee", phones=["+1 (555) 123.4567"])}
        text = "Anna (Ann) Lee: +1 (555) 123.4567"
        assert sanitize(text, persons) == "[Person1]: [Person1:phone1]"

    def test_shared_name_follows_turn_resolution(self, make_record):
        """A shared alias becomes the token of the person detected this turn."""
        persons = {
            1: make_record(1, "Alex Kim", aliases=["Sam"]),
            2: make_record(2, "Chris Lee", aliases=["Sam"], emails=["sam@x.com"]),
        }
        text = "Sam: sam@x.com"
        assert sanitize(text, persons) == "[Person1]: [Person2:email1]"
        assert sanitize(text, persons, {"sam": 2}) == "[Person2]: [Person2:email1]"

    def test_every_output_token_resolves(self, john_and_jane):
        """Round-trip completeness."""
        text = "John Smith, [Person3], [Person2:phone1], jane doe, [Person1:email2]"
        result = sanitize(text, john_and_jane)
        assert all_tokens_resolve(result, john_and_jane)


# =============================================================================
# RESTORE
# =============================================================================

class TestResolveToken:
    """Tests for token -> value."""

    def test_resolves(self, john_and_jane):
        assert resolve_token(TokenRef(1), john_and_jane) == "John Smith"
        assert resolve_token(TokenRef(2, "phone", 1), john_and_jane) == "555-1234"

    def test_out_of_range(self, john_and_jane):
        assert resolve_token(TokenRef(1, "email", 2), john_and_jane) is None
        assert resolve_token(TokenRef(5), john_and_jane) is None


class TestRestore:
    """Tests for restore()."""

    def test_restores_values(self, john_and_jane):
        result = restore("Mail [Person1] at [Person1:email1]", john_and_jane)
        assert result.restored == "Mail John Smith at john@x.com"
        assert result.tokens_found == ["[Person1]", "[Person1:email1]"]
        assert result.tokens_unknown == []

    def test_unknown_tokens_masked(self, john_and_jane):
        """Stale tokens never reveal anything."""
        result = restore("Ask [Person7] now", john_and_jane)
        assert result.restored == f"Ask {REDACTED_MASK} now"
        assert result.tokens_unknown == ["[Person7]"]

    def test_sanitize_then_restore(self, john_and_jane):
        """Restoring sanitized text gives back the stored spellings."""
        text = "John Smith called Jane Doe at 555-1234"
        assert restore(sanitize(text, john_and_jane), john_and_jane).restored == text

    def test_empty(self, john_and_jane):
        assert restore("", john_and_jane).restored == ""
