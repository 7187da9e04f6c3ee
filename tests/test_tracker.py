import pytest

from revosim.grouping import GenomeEntry
from revosim.species import GroupData, Species, encode_position
from revosim.tracker import (
    CritterRecord,
    LogDataItem,
    SpeciesTracker,
    running_log_item,
    speciation_log_line,
)


def bitcount(genome):
    return sum(bin(word).count("1") for word in genome)


def within(first, second, max_difference):
    return sum(bin(a ^ b).count("1") for a, b in zip(first, second)) <= max_difference


def make_tracker(next_id=10):
    return SpeciesTracker(bitcount, within, 2, next_id)


def split_population():
    return [
        CritterRecord(0, 0, 0, (0b0,), 1),
        CritterRecord(0, 0, 1, (0b0,), 1),
        CritterRecord(1, 0, 0, (0b1,), 1),
        CritterRecord(2, 0, 0, (0xFF00,), 1),
        CritterRecord(2, 0, 1, (0xFF00,), 1),
        CritterRecord(2, 0, 2, (0xFF00,), 1),
    ]


def test_gather_builds_tables_and_skips_dead():
    critters = [
        CritterRecord(0, 0, 0, (1,), 1),
        CritterRecord(0, 0, 1, (1,), 1),
        CritterRecord(3, 4, 5, (1,), 1, age=0),
    ]
    tables = make_tracker().gather(critters, [Species(id=1)])
    entries = tables[1].entries()
    assert len(entries) == 1
    assert entries[0].positions == [encode_position(0, 0, 0), encode_position(0, 0, 1)]


def test_gather_rejects_unknown_species():
    with pytest.raises(KeyError):
        make_tracker().gather([CritterRecord(0, 0, 0, (1,), 99)], [Species(id=1)])


def test_track_single_group_keeps_identity():
    critters = [CritterRecord(0, 0, z, (0b11,), 1) for z in range(4)]
    result = make_tracker().track(critters, [Species(id=1)], 3)
    assert [species.id for species in result] == [1]
    assert result[0].size == 4
    assert result[0].genome_diversity == 1
    assert all(critter.species_id == 1 for critter in critters)


def test_track_splits_species_and_rewrites_critters():
    critters = split_population()
    tracker = make_tracker(10)
    result = tracker.track(critters, [Species(id=1)], 7)
    by_id = {species.id: species for species in result}
    assert set(by_id) == {1, 10}
    assert by_id[10].parent == 1
    assert by_id[10].origin_time == 7
    assert by_id[10].type == (0xFF00,)
    assert by_id[1].size + by_id[10].size == len(critters)
    assert [c.species_id for c in critters if c.x == 2] == [10, 10, 10]
    assert [c.species_id for c in critters if c.x != 2] == [1, 1, 1]
    assert tracker.next_species_id == 11


def test_track_drops_extinct_species():
    critters = [CritterRecord(0, 0, 0, (1,), 1)]
    result = make_tracker().track(critters, [Species(id=1), Species(id=2)], 1)
    assert [species.id for species in result] == [1]


def test_track_averages_truncate_integers():
    critters = [
        CritterRecord(0, 0, 0, (5,), 1, fitness=3, lifetime_energy=10, trophic_level=0.5),
        CritterRecord(0, 0, 1, (5,), 1, fitness=4, lifetime_energy=11, trophic_level=1.0),
    ]
    species = make_tracker().track(critters, [Species(id=1)], 1)[0]
    assert species.fitness == 3
    assert species.total_energy == 10
    assert species.trophic_level == pytest.approx(0.75)


def test_track_records_frequencies_when_enabled():
    critters = [CritterRecord(0, 0, 0, (1,), 1), CritterRecord(0, 0, 1, (3,), 1)]
    tracker = make_tracker()
    tracker.genome_size = 1
    tracker.environment_words = {0}
    species = tracker.track(critters, [Species(id=1)], 1)[0]
    row = species.frequencies_last_iteration[0]
    assert row[0] == pytest.approx(1.0)
    assert row[1] == pytest.approx(0.5)
    assert species.ca == pytest.approx(sum(row))


def test_track_fills_running_log_items():
    critters = [
        CritterRecord(1, 2, 0, (7,), 1, fitness=3),
        CritterRecord(4, 2, 0, (7,), 1, fitness=3),
    ]
    tracker = make_tracker()
    tracker.environment_rgb = lambda x, y: (x * 10, y * 10, 5)
    species = tracker.track(critters, [Species(id=1)], 9)[0]
    item = species.complex_log_data
    assert isinstance(item, LogDataItem)
    assert item.iteration == 9
    assert item.size == 2
    assert item.cells_occupied == 2
    assert item.mean_fitness == 3000
    assert item.min_environment == (10, 20, 5)
    assert item.max_environment == (40, 20, 5)
    assert item.sample_genome == (7,)


def test_running_log_item_direct():
    entry = GenomeEntry((9,), 2, [encode_position(3, 1, 0), encode_position(3, 1, 1)])
    group = GroupData(0, genome_count=1, occurrence_count=2, modal_genome=entry, all_genomes=[entry])
    critters = {position: CritterRecord(3, 1, z, (9,), 1, fitness=2)
                for z, position in enumerate(entry.positions)}
    item = running_log_item(group, critters, lambda x, y: (100, 50, 0), 4)
    assert item.cells_occupied == 1
    assert item.centroid_x == 3
    assert item.centroid_y == 1
    assert item.geographical_range == 0
    assert item.mean_environment == (100, 50, 0)


def test_running_log_item_rejects_empty_group():
    with pytest.raises(ValueError):
        running_log_item(GroupData(0), {}, lambda x, y: (0, 0, 0), 1)


def test_speciation_log_line_worked_example():
    occupancy = {(0, 0): [1], (1, 0): [1, 2], (2, 0): [2]}
    line = speciation_log_line(5, [1, 2], [10, 20], occupancy, 0)
    assert line == "5,2,1,1,10,2,1,2,20,2,1\n"


def test_speciation_log_line_needs_two_large_species():
    occupancy = {(0, 0): [1], (1, 0): [2]}
    assert speciation_log_line(5, [1], [10], occupancy, 0) is None
    assert speciation_log_line(5, [1, 2], [10, 3], occupancy, 5) is None


def test_speciation_log_line_length_mismatch():
    with pytest.raises(ValueError):
        speciation_log_line(1, [1, 2], [3], {}, 0)


def test_track_appends_speciation_log():
    tracker = make_tracker(10)
    tracker.speciation_logging = True
    tracker.track(split_population(), [Species(id=1)], 7)
    assert tracker.speciation_log_text == "7,2,0,1,3,2,2,10,3,1,1\n"