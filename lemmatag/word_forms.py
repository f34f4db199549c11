"""
Approximate search over known word forms by syllabic edit distance.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence

from .edit_commands import edit_distance
from .language import SyllabicWord, Syllabizer

logger = logging.getLogger(__name__)

SyllableDistance = Callable[[str, str], float]


class SearchResult(NamedTuple):
    word: SyllabicWord
    edit_distance: float


class _Node:
    __slots__ = ("word", "children")

    def __init__(self, word: SyllabicWord):
        self.word = word
        self.children: Dict[float, "_Node"] = {}


class WordTree:
    """
    BK-tree over syllable sequences.

    Pruning relies on the triangle inequality of the edit distance induced
    by the syllable distance the tree was built with.
    """

    def __init__(self, distance: SyllableDistance):
        self.distance = distance
        self._root: Optional[_Node] = None
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def word_distance(self, first: Sequence[str], second: Sequence[str], distance: Optional[SyllableDistance] = None) -> float:
        return edit_distance(first, second, distance or self.distance)

    def insert(self, word: Sequence[str]) -> bool:
        """Add a word; returns False when it is already present."""
        word = SyllabicWord(word)
        if self._root is None:
            self._root = _Node(word)
            self._size = 1
            return True
        node = self._root
        while True:
            d = self.word_distance(word, node.word)
            if d == 0.0 and word == node.word:
                return False
            child = node.children.get(d)
            if child is None:
                node.children[d] = _Node(word)
                self._size += 1
                return True
            node = child

    def search(
        self,
        query: Sequence[str],
        max_distance: float,
        distance: Optional[SyllableDistance] = None,
    ) -> List[SearchResult]:
        """
        Find every indexed word within ``max_distance`` of ``query``.

        A distance function other than the tree's own disables pruning.
        """
        if self._root is None or max_distance < 0.0:
            return []
        if distance is not None and distance != self.distance:
            return [SearchResult(word, d) for word, d in
                    ((word, self.word_distance(query, word, distance)) for word in self)
                    if d <= max_distance]
        results: List[SearchResult] = []
        pending = [self._root]
        while pending:
            node = pending.pop()
            d = self.word_distance(query, node.word)
            if d <= max_distance:
                results.append(SearchResult(node.word, d))
            for edge, child in node.children.items():
                if d - max_distance <= edge <= d + max_distance:
                    pending.append(child)
        return results

    def __iter__(self):
        pending = [self._root] if self._root is not None else []
        while pending:
            node = pending.pop()
            yield node.word
            pending.extend(node.children.values())


class WordFormsDictionary:
    """Known word forms of a language, searchable by edit distance."""

    def __init__(self, words: Iterable[SyllabicWord], syllabizer: Syllabizer):
        self.syllabizer = syllabizer
        self._tree = WordTree(syllabizer.distance)
        self.build(words)

    def build(self, words: Iterable[SyllabicWord]) -> None:
        logger.info("Building word forms dictionary.")
        tree = WordTree(self.syllabizer.distance)
        count = 0
        for word in words:
            tree.insert(word)
            count += 1
        self._tree = tree
        logger.info("Word forms dictionary built from %s words, %s distinct.", count, len(tree))

    def __len__(self) -> int:
        return len(self._tree)

    def __contains__(self, word) -> bool:
        return any(result.word == word for result in self._tree.search(word, 0.0))

    def get_neighbours(self, word: Sequence[str], max_edit_distance: float) -> List[SearchResult]:
        return self._tree.search(word, max_edit_distance)

    @classmethod
    def from_texts(cls, texts: Iterable[str], syllabizer: Syllabizer) -> "WordFormsDictionary":
        return cls((syllabizer.segment(text) for text in texts), syllabizer)
