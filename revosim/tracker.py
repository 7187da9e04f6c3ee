"""Genealogical species tracking across one iteration of the simulation.

Every living critter is gathered into a genome table for its species. Each
species is then split into groups of breed-compatible genomes. The largest
group keeps the species identity and every other group becomes a new species.
New identifiers are written back into the critters. Per-species averages of
fitness, energy and trophic level are then recomputed from the critters.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Callable, Collection, Iterable, Mapping, Sequence

from .grouping import CompatibilityTest, Genome, GenomeTable
from .species import (
    GroupData,
    Species,
    SpeciesIdAllocator,
    analyse_species,
    decode_position,
    encode_position,
    record_frequencies,
)

EnvironmentLookup = Callable[[int, int], Sequence[int]]


@dataclass
class CritterRecord:
    """The state of one grid slot that species tracking reads and updates."""

    x: int
    y: int
    z: int
    genome: Genome
    species_id: int
    age: int = 1
    fitness: int = 0
    environmental_fitness: int = 0
    lifetime_energy: int = 0
    stolen_energy: int = 0
    trophic_level: float = 0.0

    def __post_init__(self) -> None:
        self.genome = tuple(self.genome)

    @property
    def alive(self) -> bool:
        return self.age > 0

    @property
    def position(self) -> int:
        """The encoded (x, y, z) position of this slot."""
        return encode_position(self.x, self.y, self.z)


@dataclass
class LogDataItem:
    """Per-iteration summary of one species, used for running logs."""

    iteration: int
    genomic_diversity: int = 0
    mean_fitness: int = 0
    sample_genome: Genome = ()
    size: int = 0
    cells_occupied: int = 0
    max_environment: tuple[int, int, int] = (0, 0, 0)
    min_environment: tuple[int, int, int] = (0, 0, 0)
    mean_environment: tuple[int, int, int] = (0, 0, 0)
    centroid_x: int = 0
    centroid_y: int = 0
    geographical_range: int = 0


@dataclass
class _Totals:
    fitness: int = 0
    environmental_fitness: int = 0
    lifetime_energy: int = 0
    stolen_energy: int = 0
    trophic_level: float = 0.0
    population: int = 0


def _truncating_div(numerator: int, denominator: int) -> int:
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


class SpeciesTracker:
    """Tracks species identities from one iteration to the next.

    Optional behaviour is switched on through attributes:
    ``genome_size`` (with ``environment_words`` and ``breed_words``) enables
    gene frequency metrics, ``environment_rgb`` enables running log items,
    and ``speciation_logging`` appends a line to ``speciation_log_text``
    whenever a species splits.
    """

    def __init__(
        self,
        bin_of: Callable[[Genome], int],
        is_compatible: CompatibilityTest,
        max_difference: int,
        next_species_id: int,
    ):
        self.bin_of = bin_of
        self.is_compatible = is_compatible
        self.max_difference = max_difference
        self._allocator = SpeciesIdAllocator(next_species_id)
        self.genome_size: int | None = None
        self.environment_words: Collection[int] = ()
        self.breed_words: Collection[int] = ()
        self.environment_rgb: EnvironmentLookup | None = None
        self.speciation_logging = False
        self.min_species_size = 0
        self.speciation_log_text = ""

    @property
    def next_species_id(self) -> int:
        """The identifier the next new species will receive."""
        return self._allocator.upcoming

    def gather(
        self, critters: Iterable[CritterRecord], species_list: Iterable[Species]
    ) -> dict[int, GenomeTable]:
        """Build one genome table per species from the living critters."""
        tables = {species.id: GenomeTable(self.bin_of) for species in species_list}
        for critter in critters:
            if not critter.alive:
                continue
            table = tables.get(critter.species_id)
            if table is None:
                raise KeyError(
                    f"critter at ({critter.x}, {critter.y}, {critter.z}) "
                    f"belongs to unknown species {critter.species_id}"
                )
            table.insert(critter.genome, critter.position)
        return tables

    def track(
        self,
        critters: Iterable[CritterRecord],
        species_list: Sequence[Species],
        iteration: int,
    ) -> list[Species]:
        """Analyse every species and return the species list for this iteration.

        Extinct species are dropped; split species produce new entries, and
        critters in split-off groups have their ``species_id`` rewritten.
        """
        critters = list(critters)
        tables = self.gather(critters, species_list)
        by_position = {critter.position: critter for critter in critters if critter.alive}

        new_list: list[Species] = []
        for species in species_list:
            table = tables[species.id]
            groups = analyse_species(
                species, table, self.is_compatible, self.max_difference,
                self._allocator, iteration,
            )
            for group in groups:
                is_new = group.species_id != species.id
                if is_new:
                    for position in group.positions():
                        by_position[position].species_id = group.species_id
                if self.genome_size is not None:
                    record_frequencies(
                        group.species, table, group.group_id, self.genome_size,
                        self.environment_words, self.breed_words, is_new,
                    )
                if self.environment_rgb is not None:
                    group.species.complex_log_data = running_log_item(
                        group, by_position, self.environment_rgb, iteration
                    )
                new_list.append(group.species)
            if self.speciation_logging and groups:
                self._log_speciation(groups, iteration)

        self._update_averages(by_position.values(), new_list)
        return new_list

    def _log_speciation(self, groups: list[GroupData], iteration: int) -> None:
        occupancy: dict[tuple[int, int], list[int]] = defaultdict(list)
        for group in groups:
            cells = {decode_position(position)[:2] for position in group.positions()}
            for cell in cells:
                occupancy[cell].append(group.species_id)
        line = speciation_log_line(
            iteration,
            [group.species_id for group in groups],
            [group.occurrence_count for group in groups],
            occupancy,
            self.min_species_size,
        )
        if line is not None:
            self.speciation_log_text += line

    @staticmethod
    def _update_averages(critters: Iterable[CritterRecord], species_list: list[Species]) -> None:
        totals: dict[int, _Totals] = defaultdict(_Totals)
        for critter in critters:
            entry = totals[critter.species_id]
            entry.fitness += critter.fitness
            entry.environmental_fitness += critter.environmental_fitness
            entry.lifetime_energy += critter.lifetime_energy
            entry.stolen_energy += critter.stolen_energy
            entry.trophic_level += critter.trophic_level
            entry.population += 1
        for species in species_list:
            entry = totals[species.id]
            population = entry.population
            species.fitness = _truncating_div(entry.fitness, population)
            species.env_fitness = _truncating_div(entry.environmental_fitness, population)
            species.total_energy = _truncating_div(entry.lifetime_energy, population)
            species.total_stolen_energy = _truncating_div(entry.stolen_energy, population)
            species.trophic_level = entry.trophic_level / population


def running_log_item(
    group: GroupData,
    critters_by_position: Mapping[int, CritterRecord],
    environment_rgb: EnvironmentLookup,
    iteration: int,
) -> LogDataItem:
    """Summarise where a group lives, its environment and its mean fitness."""
    size = group.occurrence_count
    positions = group.positions()
    if size <= 0 or not positions or group.modal_genome is None:
        raise ValueError(f"group {group.group_id} has no members")

    cells: set[tuple[int, int]] = set()
    xs: list[int] = []
    ys: list[int] = []
    colours: list[tuple[int, int, int]] = []
    fitness_sum = 0
    for position in positions:
        x, y, _ = decode_position(position)
        xs.append(x)
        ys.append(y)
        cells.add((x, y))
        fitness_sum += critters_by_position[position].fitness
        red, green, blue = environment_rgb(x, y)[:3]
        colours.append((red, green, blue))

    channels = list(zip(*colours))
    return LogDataItem(
        iteration=iteration,
        genomic_diversity=group.genome_count,
        mean_fitness=((fitness_sum * 1000) // size) & 0xFFFF,
        sample_genome=group.modal_genome.genome,
        size=size,
        cells_occupied=len(cells),
        max_environment=tuple(max(channel) for channel in channels),
        min_environment=tuple(min(channel) for channel in channels),
        mean_environment=tuple((sum(channel) // size) & 0xFF for channel in channels),
        centroid_x=(sum(xs) // size) & 0xFF,
        centroid_y=(sum(ys) // size) & 0xFF,
        # Only the x extent contributes to the recorded range.
        geographical_range=(max(xs) - min(xs)) & 0xFF,
    )


def speciation_log_line(
    iteration: int,
    species_ids: Sequence[int],
    species_sizes: Sequence[int],
    occupancy: Mapping[tuple[int, int], Sequence[int]],
    min_species_size: int,
) -> str | None:
    """Format one speciation log line, or return None if nothing split.

    A line is written only when at least two of the species are larger than
    ``min_species_size``. It holds the iteration, the number of species, the
    number of cells shared by several species, then for each species its id,
    size, cells occupied and cells occupied alone.
    """
    ids = list(species_ids)
    sizes = list(species_sizes)
    if len(ids) != len(sizes):
        raise ValueError("species_ids and species_sizes differ in length")
    if len(sizes) <= 1:
        return None
    if sum(1 for size in sizes if size > min_species_size) <= 1:
        return None

    counts: Counter[int] = Counter()
    sole: Counter[int] = Counter()
    shared = 0
    for present in occupancy.values():
        present = list(present)
        counts.update(present)
        if sum(present) == 0:
            continue
        if len(present) > 1:
            shared += 1
        else:
            sole[present[0]] += 1

    fields: list[int] = [iteration, len(sizes), shared]
    for species_id, size in zip(ids, sizes):
        fields.extend((species_id, size, counts[species_id], sole[species_id]))
    return ",".join(str(value) for value in fields) + "\n"