"""
Edit commands turning a word form into its lemma.

A command sequence is derived from the minimum-cost syllable alignment of a
form and its lemma. Sequences and (sequence, tag) classes are interned so
that equal values share one instance across the process.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, Sequence, Tuple, TypeVar, Union

from .language import SyllabicWord, Tag

T = TypeVar("T")


class InterningCache(Generic[T]):
    """Thread-safe identity map: the first stored instance of a value wins."""

    def __init__(self):
        self._items: Dict[T, T] = {}
        self._lock = threading.Lock()

    def get_or_add(self, value: T) -> T:
        existing = self._items.get(value)
        if existing is not None:
            return existing
        with self._lock:
            return self._items.setdefault(value, value)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, value) -> bool:
        return value in self._items


@dataclass(frozen=True)
class AddCommand:
    syllable: str

    def __str__(self) -> str:
        return f"+{self.syllable}"


@dataclass(frozen=True)
class DeleteCommand:
    def __str__(self) -> str:
        return "-"


@dataclass(frozen=True)
class ReplaceCommand:
    """Substitution of ``existing`` by ``replacing``, carrying the syllabizer's cost."""
    existing: str
    replacing: str
    cost: float

    def __str__(self) -> str:
        return f"{self.existing}>{self.replacing}"


EditCommand = Union[AddCommand, DeleteCommand, ReplaceCommand]


@dataclass(frozen=True)
class IndexedCommand:
    command: EditCommand
    source_index: int

    def __str__(self) -> str:
        return f"{self.command}@{self.source_index}"


_SEQUENCES: "InterningCache[CommandSequence]" = InterningCache()
_CLASSES: "InterningCache[CommandSequenceClass]" = InterningCache()


def _intern_sequence(commands: Tuple[IndexedCommand, ...]) -> "CommandSequence":
    return _SEQUENCES.get_or_add(CommandSequence(commands))


def _intern_class(sequence: "CommandSequence", tag: Tag) -> "CommandSequenceClass":
    return _CLASSES.get_or_add(CommandSequenceClass(sequence, tag))


@dataclass(frozen=True)
class CommandSequence:
    """Ordered edit commands, sorted by source index."""
    commands: Tuple[IndexedCommand, ...] = ()

    def __len__(self) -> int:
        return len(self.commands)

    def __iter__(self):
        return iter(self.commands)

    def __str__(self) -> str:
        return "[" + " ".join(str(command) for command in self.commands) + "]"

    def __reduce__(self):
        # Unpickled sequences rejoin the canonical instances.
        return _intern_sequence, (self.commands,)

    def intern(self) -> "CommandSequence":
        return _SEQUENCES.get_or_add(self)

    def execute(self, word: Sequence[str]) -> SyllabicWord:
        """
        Apply the commands to a word.

        Adds at index i are inserted before syllable i; a delete or replace at
        i consumes syllable i. Commands addressing syllables past the end of
        the word are ignored, except adds, which are appended.
        """
        result: List[str] = []
        position = 0
        length = len(word)
        for indexed in self.commands:
            index = indexed.source_index
            while position < index and position < length:
                result.append(word[position])
                position += 1
            command = indexed.command
            if isinstance(command, AddCommand):
                result.append(command.syllable)
            elif index < length and position == index:
                if isinstance(command, ReplaceCommand):
                    result.append(command.replacing)
                position += 1
        result.extend(word[position:])
        return SyllabicWord(result)


@dataclass(frozen=True)
class CommandSequenceClass:
    """A command sequence qualified by the tag of its source word."""
    sequence: CommandSequence
    tag: Tag

    def __str__(self) -> str:
        return f"{self.tag}{self.sequence}"

    def __reduce__(self):
        return _intern_class, (self.sequence, self.tag)

    def intern(self) -> "CommandSequenceClass":
        return _CLASSES.get_or_add(self)


def _alignment_matrix(source, target, distance) -> List[List[float]]:
    rows, columns = len(source) + 1, len(target) + 1
    matrix = [[0.0] * columns for _ in range(rows)]
    for i in range(1, rows):
        matrix[i][0] = float(i)
    for j in range(1, columns):
        matrix[0][j] = float(j)
    for i in range(1, rows):
        for j in range(1, columns):
            matrix[i][j] = min(
                matrix[i - 1][j - 1] + distance(source[i - 1], target[j - 1]),
                matrix[i - 1][j] + 1.0,
                matrix[i][j - 1] + 1.0,
            )
    return matrix


def edit_distance(
    source: Sequence[str],
    target: Sequence[str],
    distance: Callable[[str, str], float],
) -> float:
    """Minimum alignment cost with unit insertions and deletions."""
    return _alignment_matrix(source, target, distance)[len(source)][len(target)]


def derive_edit_commands(
    source: Sequence[str],
    target: Sequence[str],
    distance: Callable[[str, str], float],
) -> Tuple[IndexedCommand, ...]:
    """
    Compute the edit commands of a minimum-cost alignment.

    Args:
        source: Syllables of the word form
        target: Syllables of the lemma
        distance: Substitution cost between two syllables, 0 for equal syllables

    Returns:
        Commands sorted by source index; matches produce no command
    """
    matrix = _alignment_matrix(source, target, distance)
    commands: List[IndexedCommand] = []
    i, j = len(source), len(target)
    while i > 0 or j > 0:
        if i > 0 and j > 0:
            cost = distance(source[i - 1], target[j - 1])
            if matrix[i][j] == matrix[i - 1][j - 1] + cost:
                if source[i - 1] != target[j - 1]:
                    commands.append(
                        IndexedCommand(ReplaceCommand(source[i - 1], target[j - 1], cost), i - 1))
                i, j = i - 1, j - 1
                continue
        if i > 0 and matrix[i][j] == matrix[i - 1][j] + 1.0:
            commands.append(IndexedCommand(DeleteCommand(), i - 1))
            i -= 1
        else:
            commands.append(IndexedCommand(AddCommand(target[j - 1]), i))
            j -= 1
    commands.reverse()
    return tuple(commands)


def get_command_sequence(
    source: Sequence[str],
    target: Sequence[str],
    distance: Callable[[str, str], float],
) -> CommandSequence:
    """Return the canonical command sequence turning ``source`` into ``target``."""
    return _intern_sequence(derive_edit_commands(source, target, distance))


def get_command_sequence_class(sequence: CommandSequence, tag: Tag) -> CommandSequenceClass:
    return _intern_class(sequence.intern(), tag)
