"""Splitting the genomes of one species into groups of breed-compatible genomes.

Genomes are kept in a table binned by a per-genome number, normally the
masked bit count. Two genomes whose bins differ by more than the maximum
difference can never be compatible, so comparisons are limited to nearby bins.
Groups are the connected components of the "is compatible" relation.
"""

from __future__ import annotations

from bisect import bisect_left, bisect_right
from dataclasses import dataclass, field
from typing import Callable, Iterable, Protocol, Sequence

Genome = tuple[int, ...]
CompatibilityTest = Callable[[Genome, Genome, int], bool]


class _RandomSource(Protocol):
    def randrange(self, stop: int) -> int: ...


@dataclass
class GenomeEntry:
    """One distinct genome of a species, with every place it occurs."""

    genome: Genome
    bin: int
    positions: list[int] = field(default_factory=list)
    group: int = -1

    @property
    def occurrence_count(self) -> int:
        return len(self.positions)


class GenomeTable:
    """Distinct genomes of a species, binned by ``bin_of(genome)``."""

    def __init__(self, bin_of: Callable[[Genome], int]):
        self._bin_of = bin_of
        self._bins: dict[int, list[GenomeEntry]] = {}
        self._by_genome: dict[Genome, GenomeEntry] = {}

    def insert(self, genome: Sequence[int], position: int) -> GenomeEntry:
        """Record one occurrence of ``genome`` at ``position``."""
        key = tuple(genome)
        entry = self._by_genome.get(key)
        if entry is None:
            bin_number = self._bin_of(key)
            if bin_number < 0:
                raise ValueError(f"bin number must not be negative, got {bin_number}")
            entry = GenomeEntry(key, bin_number)
            self._by_genome[key] = entry
            self._bins.setdefault(bin_number, []).append(entry)
        entry.positions.append(position)
        return entry

    def entries(self) -> list[GenomeEntry]:
        """All entries, in bin order and insertion order within a bin."""
        return [entry for _, bin_entries in self._ordered_bins() for entry in bin_entries]

    def __len__(self) -> int:
        return len(self._by_genome)

    def _ordered_bins(self) -> list[tuple[int, list[GenomeEntry]]]:
        return [(number, self._bins[number]) for number in sorted(self._bins)]


@dataclass(frozen=True)
class GroupSummary:
    """Size profile of a set of groups."""

    groups: int
    singletons: int
    under_10: int
    under_100: int
    biggest: int
    total: int


class _Layout:
    """Flattened view of a table: entries with their bin numbers and bin starts."""

    def __init__(self, table: GenomeTable):
        self.bin_numbers: list[int] = []
        self.bin_starts: list[int] = []
        self.entries: list[GenomeEntry] = []
        for number, bin_entries in table._ordered_bins():
            self.bin_numbers.append(number)
            self.bin_starts.append(len(self.entries))
            self.entries.extend(bin_entries)

    def index_window(self, low_bin: int, high_bin: int) -> range:
        """Flat indices of all entries whose bin lies in [low_bin, high_bin]."""
        first = bisect_left(self.bin_numbers, low_bin)
        last = bisect_right(self.bin_numbers, high_bin)
        start = self.bin_starts[first] if first < len(self.bin_starts) else len(self.entries)
        stop = self.bin_starts[last] if last < len(self.bin_starts) else len(self.entries)
        return range(start, stop)


class _Groups:
    """Group codes per entry with a parent lookup for merged codes."""

    def __init__(self, count: int):
        self.codes = [-1] * count
        self.lookup = list(range(count))
        self.next_code = 0

    def root(self, code: int) -> int:
        while self.lookup[code] != code:
            code = self.lookup[code]
        return code

    def base_code(self, index: int) -> int:
        code = self.codes[index]
        if code == -1:
            code = self.next_code
            self.next_code += 1
        code = self.root(code)
        self.codes[index] = code
        return code

    def compare(
        self,
        base_code: int,
        base_genome: Genome,
        second: int,
        second_genome: Genome,
        is_compatible: CompatibilityTest,
        max_difference: int,
    ) -> tuple[bool, bool]:
        """Try to join ``second`` to ``base_code``.

        Returns (already_in_group, joined).
        """
        code = self.codes[second]
        if code != -1:
            parent = self.root(code)
            self.lookup[code] = parent
            if parent == base_code:
                return True, True
            code = parent
        if is_compatible(base_genome, second_genome, max_difference):
            if code == -1:
                self.codes[second] = base_code
            else:
                self.lookup[code] = base_code
            return False, True
        return False, False

    def write_back(self, entries: list[GenomeEntry]) -> int:
        max_code = -1
        for index, entry in enumerate(entries):
            code = self.root(self.codes[index])
            entry.group = code
            max_code = max(max_code, code)
        if max_code < 0:
            raise RuntimeError(f"grouping produced no valid group code ({max_code})")
        return max_code


def group_genomes(table: GenomeTable, is_compatible: CompatibilityTest, max_difference: int) -> int:
    """Exhaustively group every genome in ``table``.

    Sets ``group`` on each entry and returns the highest group code used,
    or -1 when the table is empty.
    """
    layout = _Layout(table)
    count = len(layout.entries)
    if count == 0:
        return -1
    groups = _Groups(count)
    if count == 1:
        groups.codes[0] = 0
        return groups.write_back(layout.entries)

    last_bin = layout.bin_numbers[-1]
    for first, entry in enumerate(layout.entries):
        base = groups.base_code(first)
        max_bin = entry.bin + max_difference
        all_in = max_bin >= last_bin
        window = layout.index_window(entry.bin, max_bin)
        for second in range(first + 1, window.stop):
            already, joined = groups.compare(
                base, entry.genome, second, layout.entries[second].genome,
                is_compatible, max_difference,
            )
            if already:
                continue
            if not joined or groups.codes[second] != base:
                # Either incompatible, or it belonged to another group before merging.
                all_in = False
        if all_in:
            break
    return groups.write_back(layout.entries)


def group_genomes_heuristic(
    table: GenomeTable,
    is_compatible: CompatibilityTest,
    max_difference: int,
    comparisons: int,
    rng: _RandomSource,
) -> int:
    """Group genomes using random pairings followed by a full mop-up.

    Each genome is first compared with up to ``comparisons`` random genomes
    from nearby bins. Every genome outside the largest resulting group is then
    compared with all genomes in nearby bins. Returns the highest group code
    used, or -1 when the table is empty.
    """
    layout = _Layout(table)
    count = len(layout.entries)
    if count == 0:
        return -1
    groups = _Groups(count)
    if count == 1:
        groups.codes[0] = 0
        return groups.write_back(layout.entries)

    for first, entry in enumerate(layout.entries):
        base = groups.base_code(first)
        window = layout.index_window(entry.bin - max_difference, entry.bin + max_difference)
        for _ in range(comparisons):
            if not window:
                continue
            second = window.start + rng.randrange(len(window))
            if second == first:
                break
            groups.compare(
                base, entry.genome, second, layout.entries[second].genome,
                is_compatible, max_difference,
            )

    groups.codes = [groups.root(code) for code in groups.codes]
    members: dict[int, list[int]] = {}
    for index, code in enumerate(groups.codes):
        members.setdefault(code, []).append(index)

    biggest = max(members, key=lambda code: len(members[code]))
    for code, indices in members.items():
        if code == biggest:
            continue
        for first in indices:
            entry = layout.entries[first]
            base = groups.base_code(first)
            window = layout.index_window(entry.bin - max_difference, entry.bin + max_difference)
            for second in window:
                if second == first:
                    continue
                already, _ = groups.compare(
                    base, entry.genome, second, layout.entries[second].genome,
                    is_compatible, max_difference,
                )
                if not already:
                    base = groups.root(base)
    return groups.write_back(layout.entries)


def summarize_groups(group_sizes: Iterable[int]) -> GroupSummary:
    """Count groups of one genome, under 10, under 100, and find the biggest."""
    sizes = list(group_sizes)
    return GroupSummary(
        groups=len(sizes),
        singletons=sum(1 for size in sizes if size == 1),
        under_10=sum(1 for size in sizes if 1 < size < 10),
        under_100=sum(1 for size in sizes if 10 <= size < 100),
        biggest=max(sizes, default=-1),
        total=sum(sizes),
    )