"""Tests for the word forms dictionary."""

from __future__ import annotations

import pytest

from lemmatag.language import CharacterSyllabizer, SyllabicWord
from lemmatag.word_forms import WordFormsDictionary, WordTree

SYLLABIZER = CharacterSyllabizer()
WORDS = ["cat", "cats", "cart", "dog", "dogs", "mouse", "house", "houses", "cat"]


@pytest.fixture
def dictionary() -> WordFormsDictionary:
    return WordFormsDictionary.from_texts(WORDS, SYLLABIZER)


def texts(results):
    return sorted(SYLLABIZER.reassemble(result.word) for result in results)


class TestWordFormsDictionary:
    """Tests for approximate lookups."""

    def test_duplicates_are_indexed_once(self, dictionary) -> None:
        assert len(dictionary) == len(set(WORDS))

    def test_neighbours_within_distance(self, dictionary) -> None:
        results = dictionary.get_neighbours(SYLLABIZER.segment("cat"), 1.0)

        assert texts(results) == ["cart", "cat", "cats"]

    def test_neighbour_distances(self, dictionary) -> None:
        results = {SYLLABIZER.reassemble(r.word): r.edit_distance
                   for r in dictionary.get_neighbours(SYLLABIZER.segment("house"), 2.0)}

        assert results == {"house": 0.0, "houses": 1.0, "mouse": 1.0}

    def test_exact_membership(self, dictionary) -> None:
        assert SyllabicWord("dogs") in dictionary
        assert SyllabicWord("bird") not in dictionary

    def test_negative_distance_finds_nothing(self, dictionary) -> None:
        assert dictionary.get_neighbours(SYLLABIZER.segment("cat"), -1.0) == []


class TestWordTree:
    """Tests for the BK-tree against a linear scan."""

    def test_search_matches_linear_scan(self) -> None:
        tree = WordTree(SYLLABIZER.distance)
        for word in WORDS:
            tree.insert(SYLLABIZER.segment(word))
        query = SYLLABIZER.segment("dots")

        for radius in (0.0, 1.0, 2.0, 3.0):
            expected = sorted(str(w) for w in tree if tree.word_distance(query, w) <= radius)
            assert sorted(str(r.word) for r in tree.search(query, radius)) == expected

    def test_search_with_other_distance(self) -> None:
        """A foreign distance function is honored without pruning."""
        tree = WordTree(SYLLABIZER.distance)
        for word in ("cat", "bat"):
            tree.insert(SYLLABIZER.segment(word))

        results = tree.search(SYLLABIZER.segment("cat"), 0.0, distance=lambda a, b: 0.0)

        assert texts(results) == ["bat", "cat"]
