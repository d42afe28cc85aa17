"""Provisioning of the per-division budget archive tables.

Archive tables are created on first use inside the merge transaction. An
:class:`ArchiveProvisioner` remembers which (division code, schema version)
pairs are known to be in place so later imports skip the catalog round trip.
Callers own the provisioner instance and pass it to the merge writer.
"""

from __future__ import annotations

import threading

from sqlalchemy import Table, inspect
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session

from db.models.budget import ARCHIVE_SCHEMA_VERSION, budget_archive_table

from .logging_setup import get_logger
from .models import division_code

_log = get_logger("budget_planning.schema")


class ArchiveProvisioner:
    """Create-if-absent service for ``<code>_bp_budget_lines_archive`` tables."""

    def __init__(self, schema_version: int = ARCHIVE_SCHEMA_VERSION) -> None:
        self.schema_version = schema_version
        self._ready: set[tuple[str, int]] = set()
        self._lock = threading.Lock()

    def is_provisioned(self, division: str) -> bool:
        return (division_code(division), self.schema_version) in self._ready

    def ensure(self, session: Session, division: str) -> Table:
        """Return the division's archive table, creating or upgrading it if needed.

        DDL runs on the session's connection, so on PostgreSQL it commits or
        rolls back with the surrounding merge.
        """

        code = division_code(division)
        table = budget_archive_table(code)
        key = (code, self.schema_version)
        with self._lock:
            if key in self._ready:
                return table
            conn = session.connection()
            table.create(bind=conn, checkfirst=True)
            added = _add_missing_columns(conn, table)
            if added:
                _log.info("Added archive columns %s to %s", ", ".join(added), table.name)
            self._ready.add(key)
            _log.debug("Archive table %s ready (schema v%d)", table.name, self.schema_version)
        return table

    def invalidate(self, division: str | None = None) -> None:
        """Forget cached state for one division, or for all when ``division`` is None."""

        with self._lock:
            if division is None:
                self._ready.clear()
                return
            code = division_code(division)
            self._ready = {k for k in self._ready if k[0] != code}


def _add_missing_columns(conn: Connection, table: Table) -> list[str]:
    existing = {c["name"] for c in inspect(conn).get_columns(table.name)}
    added: list[str] = []
    for col in table.columns:
        if col.name in existing:
            continue
        col_type = col.type.compile(dialect=conn.dialect)
        conn.exec_driver_sql(f'ALTER TABLE "{table.name}" ADD COLUMN "{col.name}" {col_type}')
        added.append(col.name)
    return added


__all__ = ["ArchiveProvisioner"]
