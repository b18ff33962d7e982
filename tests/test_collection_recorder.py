from datetime import timedelta

import pytest

import actors
import collection_recorder
from conftest import NOW
from errors import InvalidTransition, NotFound, ValidationError
from models import BinStatus, BinType, CollectionStatus, Role


def test_recycling_collection_always_empties_bin(make_bin, collector):
    bin_obj = make_bin(fill_level=96, status=BinStatus.FULL, bin_type=BinType.RECYCLING, alert_flag=True)
    collection = collection_recorder.record(bin_obj.id, collector.id, "Recyclables", 10)

    collection_recorder.complete(collection.id, now=NOW)

    assert collection.status == CollectionStatus.COMPLETED
    assert collection.completion_date == NOW
    assert bin_obj.fill_level == 0
    assert bin_obj.status == BinStatus.EMPTY
    assert bin_obj.alert_flag is False
    assert bin_obj.last_emptied == NOW


def test_standard_collection_subtracts_waste_level(make_bin, collector):
    bin_obj = make_bin(fill_level=80, status=BinStatus.PARTIAL)
    collection = collection_recorder.record(bin_obj.id, collector.id, "General", 30)

    collection_recorder.complete(collection.id, now=NOW)

    assert bin_obj.fill_level == 50
    assert bin_obj.status == BinStatus.PARTIAL
    assert bin_obj.last_emptied == NOW


def test_partial_pickup_of_full_bin_keeps_alert(make_bin, collector):
    emptied = NOW - timedelta(days=3)
    bin_obj = make_bin(fill_level=98, status=BinStatus.OVERDUE, alert_flag=True, last_emptied=emptied)
    collection = collection_recorder.record(bin_obj.id, collector.id, "General", 5)

    collection_recorder.complete(collection.id, now=NOW)

    assert bin_obj.fill_level == 93
    assert bin_obj.status == BinStatus.FULL
    assert bin_obj.alert_flag is True
    assert bin_obj.last_emptied == emptied


def test_collection_floors_fill_at_zero(make_bin, collector):
    bin_obj = make_bin(fill_level=20, bin_type=BinType.BULK)
    collection = collection_recorder.record(bin_obj.id, collector.id, "Furniture", 50)
    collection_recorder.complete(collection.id, now=NOW)
    assert bin_obj.fill_level == 0
    assert bin_obj.status == BinStatus.EMPTY


def test_collection_type_follows_bin_type(make_bin, collector):
    bin_obj = make_bin(bin_type=BinType.BULK)
    collection = collection_recorder.record(bin_obj.id, collector.id, "Mixed", 10)
    assert collection.collection_type == BinType.BULK
    assert collection.status == CollectionStatus.ASSIGNED


def test_record_completed_resets_bin_immediately(make_bin, collector):
    bin_obj = make_bin(fill_level=92, status=BinStatus.FULL)
    collection = collection_recorder.record(bin_obj.id, collector.id, "General", 92, completed=True, now=NOW)

    assert collection.status == CollectionStatus.COMPLETED
    assert bin_obj.fill_level == 0
    assert bin_obj.status == BinStatus.EMPTY
    assert collection_recorder.completed_count(collector.id) == 1


def test_record_requires_waste_level(make_bin, collector):
    with pytest.raises(ValidationError):
        collection_recorder.record(make_bin().id, collector.id, "General", None)


def test_record_rejects_non_collector(make_bin, authority):
    with pytest.raises(ValidationError):
        collection_recorder.record(make_bin().id, authority.id, "General", 10)


def test_record_unknown_bin(collector):
    with pytest.raises(NotFound):
        collection_recorder.record(999, collector.id, "General", 10)


def test_completed_collection_cannot_complete_again(make_bin, collector):
    collection = collection_recorder.record(make_bin(fill_level=60).id, collector.id, "General", 10)
    collection_recorder.complete(collection.id)
    with pytest.raises(InvalidTransition):
        collection_recorder.complete(collection.id)


def test_failed_collection_leaves_bin_untouched(make_bin, collector):
    bin_obj = make_bin(fill_level=91, status=BinStatus.FULL)
    collection = collection_recorder.assign(bin_obj.id, collector.id)
    collection_recorder.start(collection.id)

    collection_recorder.fail(collection.id, "Road blocked")

    assert collection.status == CollectionStatus.FAILED
    assert bin_obj.fill_level == 91
    with pytest.raises(InvalidTransition):
        collection_recorder.complete(collection.id)


def test_start_only_from_assigned(make_bin, collector):
    collection = collection_recorder.assign(make_bin().id, collector.id)
    assert collection_recorder.start(collection.id).status == CollectionStatus.IN_PROGRESS
    with pytest.raises(InvalidTransition):
        collection_recorder.start(collection.id)


def test_list_for_collector(make_bin, collector):
    other = actors.create_actor("sunil", Role.COLLECTOR)
    mine = collection_recorder.assign(make_bin().id, collector.id)
    collection_recorder.assign(make_bin().id, other.id)

    assert collection_recorder.list_for_collector(collector.id) == [mine]
    assert collection_recorder.list_for_collector(collector.id, CollectionStatus.COMPLETED) == []
