"""Tests for layout/text_similarity.py."""

import pytest

from layout_sentinel.layout.text_similarity import (
    TextSimilarityWeights,
    dice_similarity,
    jaro_similarity,
    jaro_winkler_similarity,
    levenshtein_distance,
    levenshtein_similarity,
    normalize_text,
    normalized_text_similarity,
    text_similarity,
    token_jaccard_similarity,
)


class TestLevenshtein:
    """Tests for the edit distance metric."""

    def test_classic_example(self):
        """Test kitten -> sitting needs three edits."""
        assert levenshtein_distance("kitten", "sitting") == 3

    def test_empty_inputs(self):
        """Test distances against empty strings."""
        assert levenshtein_distance("", "abc") == 3
        assert levenshtein_distance("abc", "") == 3
        assert levenshtein_similarity("", "") == 1.0

    def test_similarity_normalised_by_longer(self):
        """Test normalisation by the longer string."""
        assert levenshtein_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)


class TestJaroWinkler:
    """Tests for Jaro and Jaro-Winkler."""

    def test_transposition(self):
        """Test the textbook MARTHA/MARHTA pair."""
        assert jaro_similarity("MARTHA", "MARHTA") == pytest.approx(0.944, abs=1e-3)
        assert jaro_winkler_similarity("MARTHA", "MARHTA") == pytest.approx(0.961, abs=1e-3)

    def test_no_common_characters(self):
        """Test strings sharing no characters."""
        assert jaro_similarity("abc", "xyz") == 0.0

    def test_prefix_bonus(self):
        """Test that a common prefix raises the score."""
        assert jaro_winkler_similarity("prefix-a", "prefix-b") > jaro_similarity("prefix-a", "prefix-b")


class TestDiceAndJaccard:
    """Tests for bigram and token overlap."""

    def test_dice_identical(self):
        """Test identical strings, including single characters."""
        assert dice_similarity("a", "a") == 1.0
        assert dice_similarity("night", "night") == 1.0

    def test_dice_short_strings(self):
        """Test that strings too short for bigrams score 0 unless equal."""
        assert dice_similarity("a", "b") == 0.0
        assert dice_similarity("a", "ab") == 0.0

    def test_dice_partial(self):
        """Test night/nacht sharing one bigram of four each."""
        assert dice_similarity("night", "nacht") == pytest.approx(0.25)

    def test_token_jaccard_order_insensitive(self):
        """Test that word order does not matter."""
        assert token_jaccard_similarity("add to cart", "cart to add") == 1.0
        assert token_jaccard_similarity("add to cart", "add to basket") == pytest.approx(0.5)

    def test_token_jaccard_empty(self):
        """Test empty-set conventions."""
        assert token_jaccard_similarity("", "") == 1.0
        assert token_jaccard_similarity("", "word") == 0.0


class TestTextSimilarity:
    """Tests for the combined score."""

    def test_identical_and_empty(self):
        """Test the identical and one-empty conventions."""
        assert text_similarity("same", "same") == 1.0
        assert text_similarity("", "") == 1.0
        assert text_similarity("", "text") == 0.0

    def test_in_unit_interval(self):
        """Test the score stays within [0, 1]."""
        score = text_similarity("Sign in to continue", "Log in to continue")
        assert 0.0 < score < 1.0

    def test_similar_beats_dissimilar(self):
        """Test that closer strings score higher."""
        reference = "Add to cart"
        assert text_similarity(reference, "Add to cart!") > text_similarity(reference, "Checkout")

    def test_custom_weights(self):
        """Test that a single metric can be isolated by weights."""
        weights = TextSimilarityWeights(levenshtein=1.0, jaro_winkler=0.0, dice=0.0, token_jaccard=0.0)
        assert text_similarity("kitten", "sitting", weights) == pytest.approx(levenshtein_similarity("kitten", "sitting"))


class TestNormalization:
    """Tests for text normalisation."""

    def test_collapses_spaces(self):
        """Test that runs of spaces become one."""
        assert normalize_text("Hello  World") == "Hello World"

    def test_trims_lines_and_line_endings(self):
        """Test line trimming and CRLF handling."""
        assert normalize_text("  first  \r\n\r\n  second ") == "first\nsecond"

    def test_case_folding(self):
        """Test case-insensitive normalisation."""
        assert normalize_text("Hello", case_sensitive=False) == "hello"
        assert normalize_text("Hello") == "Hello"

    def test_spaces_kept_when_disabled(self):
        """Test that extra spaces survive when collapsing is off."""
        assert normalize_text("a  b", remove_extra_spaces=False) == "a  b"

    def test_normalized_similarity_returns_normalised_texts(self):
        """Test the (similarity, a, b) tuple."""
        similarity, a, b = normalized_text_similarity("Hello  World", "hello world", case_sensitive=False)
        assert similarity == 1.0
        assert a == b == "hello world"
