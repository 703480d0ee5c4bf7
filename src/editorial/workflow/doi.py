"""
DOI Allocator

Issues identifiers of the form ``10.<ORG>.<DEPT>/<year>.<serial>`` with a
five-digit zero-padded serial. Serials come from a per-year counter bumped
by a single upsert statement under the store write lock, so concurrent
allocations never collide and never skip.
"""

import re
import sqlite3
import logging
from typing import Optional, Tuple

from editorial.errors import AllocationFailure, MalformedDOI, StoreUnavailable
from editorial.storage.database import Database


DOI_PREFIX = "10"
SERIAL_WIDTH = 5


def format_doi(org: str, dept: str, year: int, serial: int) -> str:
    return f"{DOI_PREFIX}.{org}.{dept}/{year}.{serial:0{SERIAL_WIDTH}d}"


class DoiAllocator:
    """
    Atomic per-year DOI allocator.

    Allocation may run inside a caller transaction; if that transaction rolls
    back, the serial is released with it.
    """

    def __init__(self, db: Database, org: str = "ISUFST", dept: str = "CICT"):
        """
        Initialize allocator.

        Args:
            db: Shared database handle
            org: Registrant organization segment
            dept: Department segment
        """
        self.db = db
        self.org = org
        self.dept = dept
        self.pattern = re.compile(
            rf"^{DOI_PREFIX}\.{re.escape(org)}\.{re.escape(dept)}/(\d{{4}})\.(\d{{{SERIAL_WIDTH}}})$"
        )
        self.logger = logging.getLogger(__name__)

    def _next_serial(self, conn: sqlite3.Connection, year: int) -> int:
        # The write lock is held from the upsert until commit, so the read
        # below sees exactly this increment.
        conn.execute("""
            INSERT INTO doi_sequences (year, counter) VALUES (?, 1)
            ON CONFLICT(year) DO UPDATE SET counter = counter + 1
        """, (year,))
        row = conn.execute(
            "SELECT counter FROM doi_sequences WHERE year = ?", (year,)
        ).fetchone()
        if row['counter'] >= 10 ** SERIAL_WIDTH:
            raise AllocationFailure(f"DOI serial space exhausted for {year}")
        return row['counter']

    def allocate(self, year: int, conn: Optional[sqlite3.Connection] = None) -> str:
        """
        Allocate the next DOI for ``year``.

        Args:
            year: Publication year
            conn: Connection of an open transaction to allocate in

        Returns:
            DOI string

        Raises:
            AllocationFailure: If the counter cannot be advanced
        """
        if not 1000 <= year <= 9999:
            raise AllocationFailure(f"Year out of range: {year}")
        try:
            if conn is not None and conn.in_transaction:
                serial = self._next_serial(conn, year)
            else:
                with self.db.transaction() as own_conn:
                    serial = self._next_serial(own_conn, year)
        except (sqlite3.Error, StoreUnavailable) as e:
            self.logger.error(f"DOI allocation failed for {year}: {e}")
            raise AllocationFailure(f"DOI allocation failed: {e}") from e

        doi = format_doi(self.org, self.dept, year, serial)
        self.logger.info(f"Allocated DOI {doi}")
        return doi

    def parse(self, doi: str) -> Tuple[int, int]:
        """
        Split a DOI into (year, serial).

        Raises:
            MalformedDOI: If the string does not match the DOI format
        """
        match = self.pattern.match(doi or "")
        if not match:
            raise MalformedDOI(f"Malformed DOI: {doi!r}")
        return int(match.group(1)), int(match.group(2))

    def is_valid(self, doi: str) -> bool:
        return self.pattern.match(doi or "") is not None

    def current_serial(self, year: int) -> int:
        """Last serial issued for ``year`` (0 if none)."""
        row = self.db.fetchone("SELECT counter FROM doi_sequences WHERE year = ?", (year,))
        return row['counter'] if row else 0
