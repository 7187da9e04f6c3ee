"""Per-species analysis: splitting a species into groups and building new species.

A species is analysed by grouping its distinct genomes (see ``grouping``),
then keeping the group with the most distinct genomes as the continuing
species and turning every other group into a new daughter species.
"""

from __future__ import annotations

import dataclasses
import threading
from dataclasses import dataclass, field
from typing import Any, Collection

from .grouping import CompatibilityTest, Genome, GenomeEntry, GenomeTable, group_genomes

BITS_PER_WORD = 32

_X_FACTOR = 65536
_Y_FACTOR = 256
_MAX_X = 65535
_MAX_YZ = 255


def _copy_rows(rows: list[list[float]]) -> list[list[float]]:
    return [list(row) for row in rows]


@dataclass
class Species:
    """A species as seen by the tracker, with its running statistics."""

    id: int = 0
    internal_id: int = -1
    parent: int = 0
    size: int = -1
    genome_diversity: int = -1
    origin_time: int = -1
    fitness: float = -1
    env_fitness: float = -2
    total_energy: float = -1
    total_stolen_energy: float = -1
    trophic_level: float = -1
    ca: float = 0.0
    cr: float = 0.0
    nca: float = 0.0
    ncr: float = 0.0
    type: Genome = ()
    frequencies_at_origination: list[list[float]] = field(default_factory=list)
    frequencies_last_iteration: list[list[float]] = field(default_factory=list)
    log_species: Any = None
    complex_log_data: Any = None

    def copy(self) -> Species:
        """A copy with its own frequency tables; log references are shared."""
        return dataclasses.replace(
            self,
            frequencies_at_origination=_copy_rows(self.frequencies_at_origination),
            frequencies_last_iteration=_copy_rows(self.frequencies_last_iteration),
        )


@dataclass
class GroupData:
    """Summary of one group of genomes found inside a species."""

    group_id: int
    genome_count: int = 0
    occurrence_count: int = 0
    modal_genome: GenomeEntry | None = None
    species_id: int = -1
    species: Species | None = None
    log_species: Any = None
    all_genomes: list[GenomeEntry] = field(default_factory=list)

    def positions(self) -> list[int]:
        """Every encoded position occupied by a member of this group."""
        return [position for entry in self.all_genomes for position in entry.positions]


class SpeciesIdAllocator:
    """Hands out consecutive species identifiers; safe to share between threads."""

    def __init__(self, start: int):
        self._next = start
        self._lock = threading.Lock()

    def next(self) -> int:
        """Return the next unused identifier."""
        with self._lock:
            value = self._next
            self._next += 1
            return value

    @property
    def upcoming(self) -> int:
        """The identifier that the next call to ``next`` will return."""
        with self._lock:
            return self._next


def encode_position(x: int, y: int, z: int) -> int:
    """Pack a grid position and slot into one integer."""
    if not 0 <= x <= _MAX_X:
        raise ValueError(f"x out of range: {x}")
    if not 0 <= y <= _MAX_YZ:
        raise ValueError(f"y out of range: {y}")
    if not 0 <= z <= _MAX_YZ:
        raise ValueError(f"z out of range: {z}")
    return x * _X_FACTOR + y * _Y_FACTOR + z


def decode_position(value: int) -> tuple[int, int, int]:
    """Unpack an integer made by ``encode_position`` into (x, y, z)."""
    if not 0 <= value <= _MAX_X * _X_FACTOR + _MAX_YZ * _Y_FACTOR + _MAX_YZ:
        raise ValueError(f"position value out of range: {value}")
    x, rest = divmod(value, _X_FACTOR)
    y, z = divmod(rest, _Y_FACTOR)
    return x, y, z


def collect_groups(table: GenomeTable) -> tuple[dict[int, GroupData], int]:
    """Gather per-group data from a table whose entries have been grouped.

    Returns the groups keyed by group code, in order of first appearance,
    and the code of the group that first reached the largest number of
    distinct genomes (the one that keeps the old species identity).
    """
    groups: dict[int, GroupData] = {}
    max_count = -1
    keep = -1
    for entry in table.entries():
        if entry.group < 0:
            raise ValueError("table entries have not been grouped")
        data = groups.get(entry.group)
        if data is None:
            data = GroupData(entry.group)
            groups[entry.group] = data
        before = data.genome_count
        data.genome_count += 1
        if before > max_count:
            max_count = before
            keep = entry.group
        data.occurrence_count += entry.occurrence_count
        if data.modal_genome is None or data.modal_genome.occurrence_count < entry.occurrence_count:
            data.modal_genome = entry
        data.all_genomes.append(entry)
    return groups, keep


def _zero_rows(genome_size: int) -> list[list[float]]:
    return [[0.0] * BITS_PER_WORD for _ in range(genome_size)]


def _fitted(rows: list[list[float]], genome_size: int) -> list[list[float]]:
    """Rows padded with zeros (or cut) to exactly ``genome_size`` words."""
    fitted = _copy_rows(rows[:genome_size])
    fitted.extend(_zero_rows(genome_size - len(fitted)))
    return fitted


def record_frequencies(
    species: Species,
    table: GenomeTable,
    group: int,
    genome_size: int,
    environment_words: Collection[int],
    breed_words: Collection[int],
    first_find: bool,
) -> None:
    """Update the bit frequencies and change metrics of ``species``.

    Frequencies are the share of individuals in ``group`` carrying each bit.
    Ca/Cr sum the change from origination/last iteration over words used for
    environmental fitness; NCa/NCr do the same over words used for breeding
    but not for environmental fitness. On a first find the metrics are zero
    and the frequencies become the origination frequencies.
    """
    members = [entry for entry in table.entries() if entry.group == group]
    total = sum(entry.occurrence_count for entry in members)
    if total == 0:
        raise ValueError(f"group {group} has no members")

    frequencies = _zero_rows(genome_size)
    for entry in members:
        weight = entry.occurrence_count
        for row, word in zip(frequencies, entry.genome[:genome_size]):
            for bit in range(BITS_PER_WORD):
                if (word >> bit) & 1:
                    row[bit] += weight
    frequencies = [[value / total for value in row] for row in frequencies]

    if first_find:
        species.frequencies_at_origination = _copy_rows(frequencies)

    ca = cr = nca = ncr = 0.0
    if not first_find:
        origination = _fitted(species.frequencies_at_origination, genome_size)
        last = _fitted(species.frequencies_last_iteration, genome_size)
        for word, (now, orig, previous) in enumerate(zip(frequencies, origination, last)):
            from_origin = sum(abs(a - b) for a, b in zip(now, orig))
            from_last = sum(abs(a - b) for a, b in zip(now, previous))
            if word in environment_words:
                ca += from_origin
                cr += from_last
            elif word in breed_words:
                nca += from_origin
                ncr += from_last

    species.ca, species.cr, species.nca, species.ncr = ca, cr, nca, ncr
    species.frequencies_last_iteration = frequencies


def analyse_species(
    species: Species,
    table: GenomeTable,
    is_compatible: CompatibilityTest,
    max_difference: int,
    allocator: SpeciesIdAllocator,
    iteration: int,
) -> list[GroupData]:
    """Split ``species`` into groups and build the resulting species.

    Returns one ``GroupData`` per group, each with ``species`` and
    ``species_id`` set. The group with most distinct genomes continues the
    old species; every other group becomes a new species descended from it.
    An empty list means the species is extinct.
    """
    if group_genomes(table, is_compatible, max_difference) == -1:
        return []

    groups, keep = collect_groups(table)
    for data in groups.values():
        modal = data.modal_genome.genome
        if data.group_id == keep:
            result = species.copy()
            result.type = modal
        else:
            result = Species(
                id=allocator.next(),
                parent=species.id,
                origin_time=iteration,
                type=modal,
            )
        result.size = data.occurrence_count
        result.genome_diversity = data.genome_count
        data.species = result
        data.species_id = result.id
    return list(groups.values())