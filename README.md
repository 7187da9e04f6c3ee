# revosim

Genealogical species identification for an evolutionary ecosystem
simulation.

Every living organism carries a multi-word genome (a tuple of integers).
The genomes of one species are gathered into a `GenomeTable`. Each
distinct genome is placed in a bin by a number you supply, normally its
bit count. The species is then split into groups, where a group is the
connected set of genomes that your compatibility test links together.

When a species falls into more than one group, it splits:

- the group that first reaches the largest number of distinct genomes
  keeps the old species identity;
- every other group becomes a new species, whose parent is the old one.

## Modules

- `revosim.grouping`
  - `GenomeTable` and `GenomeEntry` hold the distinct genomes and the
    encoded positions at which each occurs.
  - `group_genomes` makes every pairwise comparison within reach of the
    maximum difference.
  - `group_genomes_heuristic` compares each genome with a few random
    neighbours, then makes every comparison for genomes outside the
    largest group.
  - `summarize_groups` gives a size profile of the groups as a
    `GroupSummary`.
- `revosim.species`
  - `Species`, `GroupData` and `SpeciesIdAllocator`, a thread-safe
    counter of identifiers.
  - `encode_position` and `decode_position` pack a grid position into
    one integer and unpack it again.
  - `collect_groups` gathers the per-group data.
  - `analyse_species` splits one species.
  - `record_frequencies` computes bit frequencies and the change metrics
    `ca`, `cr`, `nca` and `ncr`.
- `revosim.tracker`
  - `SpeciesTracker` runs one round of tracking over a list of
    `CritterRecord`s. It rewrites the `species_id` of critters in
    split-off groups and returns the new species list, with mean
    fitness, energy and trophic level for each species.
  - `running_log_item` builds a `LogDataItem` for a group.
  - `speciation_log_line` formats one line of the speciation log.

## Installing

```
pip install .
```

No third-party libraries are required.

## Example

```python
from revosim.grouping import GenomeTable, group_genomes
from revosim.species import Species
from revosim.tracker import CritterRecord, SpeciesTracker

def bin_of(genome):
    return sum(bin(word).count("1") for word in genome)

def is_compatible(first, second, max_difference):
    differing = sum(bin(a ^ b).count("1") for a, b in zip(first, second))
    return differing <= max_difference

table = GenomeTable(bin_of)
table.insert((0b1011, 0), 0)
table.insert((0b1010, 0), 1)
table.insert((0xFFFF, 0), 2)
highest_code = group_genomes(table, is_compatible, 2)

tracker = SpeciesTracker(bin_of, is_compatible, 2, next_species_id=2)
critters = [
    CritterRecord(0, 0, 0, (0b1011, 0), species_id=1, fitness=10),
    CritterRecord(0, 0, 1, (0b1010, 0), species_id=1, fitness=12),
    CritterRecord(1, 0, 0, (0xFFFF, 0), species_id=1, fitness=8),
]
species = tracker.track(critters, [Species(id=1)], iteration=1)
```

In this example the third critter ends up in a new species with id 2.

### Optional tracker output

Set these attributes on the tracker to turn on more output:

- `genome_size`, with `environment_words` and `breed_words`: gene
  frequency metrics.
- `environment_rgb`, a function of `(x, y)` that returns an RGB colour:
  a `complex_log_data` item for each species.
- `speciation_logging`: a line added to `speciation_log_text` each time a
  species splits.

## What the package does not do

The package does not run the simulation itself: it has no grid,
breeding, mutation or environment. It does not read or analyse species
log files, draw phylogenies, or write images. It has no command-line
program. It works on the critter records and species lists that you pass
in.

## Running the tests

```
pip install .[test]
pytest
```