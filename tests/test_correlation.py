"""Tests for the bounded correlation table."""

import threading

import pytest

from verdict_service.correlation import CorrelationTable


def test_insert_and_pop():
    table = CorrelationTable(max_size=10)
    table.insert("7", "req_42")

    assert table.get("7") == "req_42"
    assert "7" in table
    assert table.pop("7") == "req_42"
    # Second lookup-and-remove finds nothing
    assert table.pop("7") is None
    assert len(table) == 0


def test_fifo_eviction_of_oldest_entry():
    table = CorrelationTable(max_size=3)
    for i in range(3):
        assert table.insert(str(i), f"req_{i}") is None

    evicted = table.insert("3", "req_3")

    assert evicted.protocol_request_id == "0"
    assert evicted.request_context == "req_0"
    assert table.evictions == 1
    assert len(table) == 3
    assert table.get("0") is None
    assert table.snapshot() == {"1": "req_1", "2": "req_2", "3": "req_3"}


def test_eviction_ignores_lookups():
    """Order is insertion order; reading an entry does not refresh it."""
    table = CorrelationTable(max_size=2)
    table.insert("a", "req_a")
    table.insert("b", "req_b")
    table.get("a")

    table.insert("c", "req_c")

    assert "a" not in table
    assert "b" in table


def test_reinsert_replaces_without_eviction():
    table = CorrelationTable(max_size=2)
    table.insert("a", "req_a")
    table.insert("b", "req_b")

    assert table.insert("a", "req_a2") is None
    assert table.get("a") == "req_a2"
    assert table.evictions == 0
    assert len(table) == 2


def test_default_capacity():
    table = CorrelationTable()
    for i in range(1001):
        table.insert(str(i), f"req_{i}")

    assert len(table) == 1000
    assert "0" not in table
    assert "1000" in table


def test_invalid_size():
    with pytest.raises(ValueError):
        CorrelationTable(max_size=0)


def test_concurrent_insert_and_pop():
    table = CorrelationTable(max_size=10000)
    popped = []

    def writer(offset):
        for i in range(500):
            table.insert(f"{offset}-{i}", f"ctx-{offset}-{i}")

    def reader(offset):
        for i in range(500):
            value = table.pop(f"{offset}-{i}")
            if value is not None:
                popped.append(value)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    threads += [threading.Thread(target=reader, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    # Every id is either still present or was popped exactly once
    assert len(popped) + len(table) == 2000
    assert len(set(popped)) == len(popped)
