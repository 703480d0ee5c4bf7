"""Tests for DOI formatting, parsing and atomic allocation."""

import sqlite3
from concurrent.futures import ThreadPoolExecutor

import pytest

from editorial.errors import AllocationFailure, MalformedDOI
from editorial.workflow import DoiAllocator, format_doi


@pytest.fixture
def allocator(db):
    return DoiAllocator(db, org="ISUFST", dept="CICT")


def test_format_pads_serial():
    assert format_doi("ISUFST", "CICT", 2025, 1) == "10.ISUFST.CICT/2025.00001"
    assert format_doi("ISUFST", "CICT", 2025, 12345) == "10.ISUFST.CICT/2025.12345"


def test_allocation_is_sequential_per_year(allocator):
    assert allocator.allocate(2025) == "10.ISUFST.CICT/2025.00001"
    assert allocator.allocate(2025) == "10.ISUFST.CICT/2025.00002"
    assert allocator.allocate(2026) == "10.ISUFST.CICT/2026.00001"
    assert allocator.allocate(2025) == "10.ISUFST.CICT/2025.00003"
    assert allocator.current_serial(2025) == 3
    assert allocator.current_serial(2024) == 0


def test_configured_segments(db):
    allocator = DoiAllocator(db, org="UNIV", dept="PHYS")
    doi = allocator.allocate(2030)
    assert doi == "10.UNIV.PHYS/2030.00001"
    assert allocator.parse(doi) == (2030, 1)


def test_parse(allocator):
    assert allocator.parse("10.ISUFST.CICT/2025.00042") == (2025, 42)
    assert allocator.is_valid("10.ISUFST.CICT/1999.99999")


@pytest.mark.parametrize("doi", [
    "",
    None,
    "10.ISUFST.CICT/2025.1",
    "10.ISUFST.CICT/2025.000001",
    "10.ISUFST.CICT/25.00001",
    "10.OTHER.CICT/2025.00001",
    "doi:10.ISUFST.CICT/2025.00001",
    "10.ISUFST.CICT/2025.00001 ",
])
def test_parse_rejects_malformed(allocator, doi):
    with pytest.raises(MalformedDOI):
        allocator.parse(doi)
    assert not allocator.is_valid(doi)


def test_concurrent_allocation_has_no_duplicates_or_gaps(allocator):
    workers, per_worker = 8, 10

    def allocate_batch(_):
        return [allocator.allocate(2025) for _ in range(per_worker)]

    with ThreadPoolExecutor(max_workers=workers) as pool:
        batches = list(pool.map(allocate_batch, range(workers)))

    dois = [doi for batch in batches for doi in batch]
    serials = sorted(allocator.parse(doi)[1] for doi in dois)
    assert len(set(dois)) == workers * per_worker
    assert serials == list(range(1, workers * per_worker + 1))


def test_rolled_back_transaction_releases_serial(db, allocator):
    with pytest.raises(RuntimeError):
        with db.transaction() as conn:
            assert allocator.allocate(2025, conn=conn).endswith(".00001")
            raise RuntimeError("publish failed")

    assert allocator.current_serial(2025) == 0
    assert allocator.allocate(2025).endswith(".00001")


def test_exhausted_year_fails_without_advancing(db, allocator):
    db.connection.execute("INSERT INTO doi_sequences (year, counter) VALUES (2025, 99999)")
    with pytest.raises(AllocationFailure):
        allocator.allocate(2025)
    assert allocator.current_serial(2025) == 99999


def test_year_out_of_range(allocator):
    with pytest.raises(AllocationFailure):
        allocator.allocate(99)


def test_store_failure_becomes_allocation_failure(db, allocator):
    db.close()
    with pytest.raises(AllocationFailure):
        allocator.allocate(2025)


def test_counter_cannot_move_backwards(db, allocator):
    allocator.allocate(2025)
    allocator.allocate(2025)
    with pytest.raises(sqlite3.IntegrityError):
        db.connection.execute("UPDATE doi_sequences SET counter = 1 WHERE year = 2025")
    with pytest.raises(sqlite3.IntegrityError):
        db.connection.execute("DELETE FROM doi_sequences WHERE year = 2025")
    assert allocator.current_serial(2025) == 2
