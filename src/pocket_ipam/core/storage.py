from __future__ import annotations

import ipaddress
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from pocket_ipam.utils.logging import get_logger

from .errors import (
    AmbiguousReferenceError,
    RecordNotFoundError,
    ReferenceNotFoundError,
    StorageError,
    ValidationError,
)
from .identifiers import MAX_ID_ATTEMPTS, new_id
from .models import Discovery, Host, ProbeResult, SearchResults, Subnet

logger = get_logger(__name__)

STATUS_ALIVE = "alive"
STATUS_UNREACHABLE = "unreachable"

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS identifiers (
        id TEXT PRIMARY KEY,
        kind TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS subnets (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL DEFAULT '',
        cidr TEXT NOT NULL,
        parent_id TEXT,
        comment TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS hosts (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL DEFAULT '',
        address TEXT NOT NULL,
        parent_id TEXT,
        comment TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS discoveries (
        id TEXT PRIMARY KEY,
        address TEXT NOT NULL,
        subnet_id TEXT NOT NULL,
        discovered_at TEXT NOT NULL,
        last_seen TEXT NOT NULL,
        status TEXT NOT NULL,
        UNIQUE (subnet_id, address)
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_subnets_name ON subnets (name)",
    "CREATE INDEX IF NOT EXISTS ix_subnets_cidr ON subnets (cidr)",
    "CREATE INDEX IF NOT EXISTS ix_hosts_parent ON hosts (parent_id)",
    "CREATE INDEX IF NOT EXISTS ix_hosts_address ON hosts (address)",
)

SUBNET_COLUMNS = "id, name, cidr, parent_id, comment, created_at"
HOST_COLUMNS = "id, name, address, parent_id, comment, created_at, last_seen"
DISCOVERY_COLUMNS = "id, address, subnet_id, discovered_at, last_seen, status"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _parse_ts(value: str | None) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def clean_text(value: Optional[str]) -> str:
    return (value or "").strip()


def validate_cidr(cidr: str) -> str:
    value = clean_text(cidr)
    if not value:
        raise ValidationError("CIDR is required")
    try:
        ipaddress.ip_network(value, strict=False)
    except ValueError as exc:
        raise ValidationError(f"invalid CIDR '{value}': {exc}") from exc
    return value


def validate_address(address: str) -> str:
    value = clean_text(address)
    if not value:
        raise ValidationError("address is required")
    try:
        ipaddress.ip_address(value)
    except ValueError as exc:
        raise ValidationError(f"invalid address '{value}': {exc}") from exc
    return value


class IpamStore:
    """SQLite-backed store for subnets, hosts and discoveries.

    Every record kind shares one identifier namespace. The ``identifiers`` table
    holds one row per ID ever issued, so its primary key rejects duplicates at
    write time and deleted IDs are never handed out again.
    """

    RECORD_TABLES = ("subnets", "hosts", "discoveries")

    def __init__(self, db_path: Path, id_factory: Callable[[], str] = new_id) -> None:
        self.db_path = Path(db_path)
        self._id_factory = id_factory

    @contextmanager
    def _connect(self, create: bool = False) -> Iterator[sqlite3.Connection]:
        if not create and not self.db_path.exists():
            raise StorageError(
                f"database not initialized at {self.db_path}; run 'pocket-ipam init' first"
            )
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise StorageError(f"failed to open database {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as exc:
            raise StorageError(f"database error: {exc}") from exc
        finally:
            conn.close()

    def init_db(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"failed to create directory {self.db_path.parent}: {exc}") from exc
        with self._connect(create=True) as conn:
            for statement in SCHEMA:
                conn.execute(statement)
            self._ensure_column(conn, "hosts", "last_seen", "TEXT")
        logger.info("database ready at %s", self.db_path)

    def _ensure_column(self, conn: sqlite3.Connection, table: str, column: str, column_type: str) -> None:
        columns = conn.execute(f"PRAGMA table_info({table})").fetchall()
        names = {row[1] for row in columns}
        if column not in names:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")

    # -- identifiers -------------------------------------------------------

    def _id_taken(self, conn: sqlite3.Connection, candidate: str) -> bool:
        for table in ("identifiers",) + self.RECORD_TABLES:
            if conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (candidate,)).fetchone():
                return True
        return False

    def _allocate_id(self, conn: sqlite3.Connection) -> str:
        for _ in range(MAX_ID_ATTEMPTS):
            candidate = self._id_factory()
            if not self._id_taken(conn, candidate):
                return candidate
            logger.debug("identifier %s already in use", candidate)
        raise StorageError(f"no free identifier found after {MAX_ID_ATTEMPTS} attempts")

    def allocate_unique_id(self) -> str:
        """Return an ID unused by any record kind. Not reserved until a record is written."""
        with self._connect() as conn:
            return self._allocate_id(conn)

    def _create(self, kind: str, write: Callable[[sqlite3.Connection, str, str], None]) -> str:
        # The registry insert is the authoritative uniqueness check; a concurrent
        # writer that grabbed the same ID makes it fail and we start over.
        for _ in range(MAX_ID_ATTEMPTS):
            with self._connect() as conn:
                now = _now()
                record_id = self._allocate_id(conn)
                try:
                    conn.execute(
                        "INSERT INTO identifiers (id, kind, created_at) VALUES (?, ?, ?)",
                        (record_id, kind, now),
                    )
                except sqlite3.IntegrityError:
                    logger.warning("identifier %s was taken concurrently, retrying %s", record_id, kind)
                    continue
                try:
                    write(conn, record_id, now)
                except sqlite3.IntegrityError as exc:
                    raise StorageError(f"could not store {kind}: {exc}") from exc
            return record_id
        raise StorageError(f"could not store {kind} after {MAX_ID_ATTEMPTS} attempts")

    # -- parent references -------------------------------------------------

    def _resolve_parent(self, conn: sqlite3.Connection, reference: str | None) -> Optional[str]:
        reference = clean_text(reference)
        if not reference:
            return None

        candidates: set[str] = set()
        for column in ("id", "name", "cidr"):
            rows = conn.execute(f"SELECT id FROM subnets WHERE {column} = ?", (reference,)).fetchall()
            if rows:
                logger.debug("reference %r matched %d subnet(s) by %s", reference, len(rows), column)
            candidates.update(row["id"] for row in rows)

        if not candidates:
            raise ReferenceNotFoundError(reference)
        if len(candidates) > 1:
            raise AmbiguousReferenceError(reference, sorted(candidates))
        return candidates.pop()

    def resolve_parent_reference(self, reference: str) -> Optional[str]:
        """Map a subnet ID, name or CIDR to exactly one subnet ID.

        Returns ``None`` for an empty reference. Raises ``ReferenceNotFoundError``
        when nothing matches and ``AmbiguousReferenceError`` when the reference
        matches more than one distinct subnet.
        """
        with self._connect() as conn:
            return self._resolve_parent(conn, reference)

    def _check_parent_chain(self, conn: sqlite3.Connection, subnet_id: str, parent_id: str) -> None:
        seen: set[str] = set()
        current: Optional[str] = parent_id
        while current and current not in seen:
            if current == subnet_id:
                raise ValidationError(f"subnet {subnet_id} cannot be nested under itself or its children")
            seen.add(current)
            row = conn.execute("SELECT parent_id FROM subnets WHERE id = ?", (current,)).fetchone()
            current = row["parent_id"] if row else None

    def _warn_outside_parent(self, conn: sqlite3.Connection, address: str, parent_id: Optional[str]) -> None:
        if parent_id is None:
            return
        row = conn.execute("SELECT cidr FROM subnets WHERE id = ?", (parent_id,)).fetchone()
        if row is None:
            return
        network = ipaddress.ip_network(row["cidr"], strict=False)
        if ipaddress.ip_address(address) not in network:
            logger.warning("address %s is outside parent subnet %s (%s)", address, parent_id, row["cidr"])

    # -- row mapping -------------------------------------------------------

    @staticmethod
    def _row_to_subnet(row: sqlite3.Row) -> Subnet:
        return Subnet(
            id=row["id"],
            cidr=row["cidr"],
            name=row["name"] or "",
            parent_id=row["parent_id"] or None,
            comment=row["comment"] or "",
            created_at=_parse_ts(row["created_at"]),
        )

    @staticmethod
    def _row_to_host(row: sqlite3.Row) -> Host:
        return Host(
            id=row["id"],
            address=row["address"],
            name=row["name"] or "",
            parent_id=row["parent_id"] or None,
            comment=row["comment"] or "",
            created_at=_parse_ts(row["created_at"]),
            last_seen=_parse_ts(row["last_seen"]),
        )

    @staticmethod
    def _row_to_discovery(row: sqlite3.Row) -> Discovery:
        return Discovery(
            id=row["id"],
            address=row["address"],
            subnet_id=row["subnet_id"],
            discovered_at=_parse_ts(row["discovered_at"]),
            last_seen=_parse_ts(row["last_seen"]),
            status=row["status"],
        )

    # -- writes ------------------------------------------------------------

    def add_subnet(self, cidr: str, name: str = "", parent_ref: str = "", comment: str = "") -> Subnet:
        cidr = validate_cidr(cidr)

        def write(conn: sqlite3.Connection, record_id: str, now: str) -> None:
            parent_id = self._resolve_parent(conn, parent_ref)
            conn.execute(
                """
                INSERT INTO subnets (id, name, cidr, parent_id, comment, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (record_id, clean_text(name), cidr, parent_id, clean_text(comment), now),
            )

        subnet_id = self._create("subnet", write)
        logger.info("added subnet %s (%s)", subnet_id, cidr)
        return self.get_subnet(subnet_id)

    def add_host(self, address: str, name: str = "", parent_ref: str = "", comment: str = "") -> Host:
        address = validate_address(address)

        def write(conn: sqlite3.Connection, record_id: str, now: str) -> None:
            parent_id = self._resolve_parent(conn, parent_ref)
            self._warn_outside_parent(conn, address, parent_id)
            conn.execute(
                """
                INSERT INTO hosts (id, name, address, parent_id, comment, created_at, last_seen)
                VALUES (?, ?, ?, ?, ?, ?, NULL)
                """,
                (record_id, clean_text(name), address, parent_id, clean_text(comment), now),
            )

        host_id = self._create("host", write)
        logger.info("added host %s (%s)", host_id, address)
        return self.get_host(host_id)

    def update_subnet(
        self,
        subnet_id: str,
        cidr: Optional[str] = None,
        name: Optional[str] = None,
        parent_ref: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> Subnet:
        """Change the given fields of a subnet; ``None`` leaves a field as it is.

        An empty ``parent_ref`` turns the subnet into a top-level one.
        """
        values: dict[str, Optional[str]] = {}
        if cidr is not None:
            values["cidr"] = validate_cidr(cidr)
        if name is not None:
            values["name"] = clean_text(name)
        if comment is not None:
            values["comment"] = clean_text(comment)

        with self._connect() as conn:
            self._fetch_row(conn, "subnet", subnet_id)
            if parent_ref is not None:
                parent_id = self._resolve_parent(conn, parent_ref)
                if parent_id is not None:
                    self._check_parent_chain(conn, subnet_id, parent_id)
                values["parent_id"] = parent_id
            if values:
                assignments = ", ".join(f"{column} = ?" for column in values)
                conn.execute(
                    f"UPDATE subnets SET {assignments} WHERE id = ?",
                    (*values.values(), subnet_id),
                )
        logger.info("updated subnet %s: %s", subnet_id, ", ".join(values) or "no changes")
        return self.get_subnet(subnet_id)

    def update_host(
        self,
        host_id: str,
        address: Optional[str] = None,
        name: Optional[str] = None,
        parent_ref: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> Host:
        values: dict[str, Optional[str]] = {}
        if address is not None:
            values["address"] = validate_address(address)
        if name is not None:
            values["name"] = clean_text(name)
        if comment is not None:
            values["comment"] = clean_text(comment)

        with self._connect() as conn:
            row = self._fetch_row(conn, "host", host_id)
            if parent_ref is not None:
                values["parent_id"] = self._resolve_parent(conn, parent_ref)
            if "address" in values or "parent_id" in values:
                self._warn_outside_parent(
                    conn,
                    values.get("address", row["address"]),
                    values.get("parent_id", row["parent_id"]),
                )
            if values:
                assignments = ", ".join(f"{column} = ?" for column in values)
                conn.execute(
                    f"UPDATE hosts SET {assignments} WHERE id = ?",
                    (*values.values(), host_id),
                )
        logger.info("updated host %s: %s", host_id, ", ".join(values) or "no changes")
        return self.get_host(host_id)

    def _delete(self, kind: str, table: str, record_id: str) -> None:
        with self._connect() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            if cursor.rowcount == 0:
                raise RecordNotFoundError(kind, record_id)
        logger.info("deleted %s %s", kind, record_id)

    def delete_subnet(self, subnet_id: str) -> None:
        self._delete("subnet", "subnets", subnet_id)

    def delete_host(self, host_id: str) -> None:
        self._delete("host", "hosts", host_id)

    # -- reads -------------------------------------------------------------

    _KIND_QUERIES = {
        "subnet": f"SELECT {SUBNET_COLUMNS} FROM subnets WHERE id = ?",
        "host": f"SELECT {HOST_COLUMNS} FROM hosts WHERE id = ?",
        "discovery": f"SELECT {DISCOVERY_COLUMNS} FROM discoveries WHERE id = ?",
    }

    def _fetch_row(self, conn: sqlite3.Connection, kind: str, record_id: str) -> sqlite3.Row:
        row = conn.execute(self._KIND_QUERIES[kind], (record_id,)).fetchone()
        if row is None:
            raise RecordNotFoundError(kind, record_id)
        return row

    def get_subnet(self, subnet_id: str) -> Subnet:
        with self._connect() as conn:
            return self._row_to_subnet(self._fetch_row(conn, "subnet", subnet_id))

    def get_host(self, host_id: str) -> Host:
        with self._connect() as conn:
            return self._row_to_host(self._fetch_row(conn, "host", host_id))

    def list_subnets(self) -> list[Subnet]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {SUBNET_COLUMNS} FROM subnets ORDER BY created_at, id"
            ).fetchall()
        return [self._row_to_subnet(row) for row in rows]

    def list_hosts(self, parent_id: Optional[str] = None) -> list[Host]:
        with self._connect() as conn:
            if parent_id is None:
                rows = conn.execute(f"SELECT {HOST_COLUMNS} FROM hosts ORDER BY created_at, id").fetchall()
            else:
                rows = conn.execute(
                    f"SELECT {HOST_COLUMNS} FROM hosts WHERE parent_id = ? ORDER BY created_at, id",
                    (parent_id,),
                ).fetchall()
        return [self._row_to_host(row) for row in rows]

    def list_discoveries(self, subnet_id: Optional[str] = None) -> list[Discovery]:
        with self._connect() as conn:
            if subnet_id is None:
                rows = conn.execute(
                    f"SELECT {DISCOVERY_COLUMNS} FROM discoveries ORDER BY discovered_at, id"
                ).fetchall()
            else:
                rows = conn.execute(
                    f"SELECT {DISCOVERY_COLUMNS} FROM discoveries WHERE subnet_id = ? ORDER BY discovered_at, id",
                    (subnet_id,),
                ).fetchall()
        return [self._row_to_discovery(row) for row in rows]

    def subnet_labels(self) -> dict[str, str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT id, name FROM subnets").fetchall()
        return {row["id"]: row["name"] or "" for row in rows}

    # -- search ------------------------------------------------------------

    def search(self, query: str) -> SearchResults:
        """Case-sensitive substring search over every record kind.

        instr() is used instead of LIKE so that matching is case-sensitive and
        ``%``/``_`` in the query are taken literally.
        """
        with self._connect() as conn:
            subnets = conn.execute(
                f"""
                SELECT {SUBNET_COLUMNS} FROM subnets
                WHERE instr(cidr, ?) > 0 OR instr(name, ?) > 0 OR instr(comment, ?) > 0
                ORDER BY created_at, id
                """,
                (query, query, query),
            ).fetchall()
            hosts = conn.execute(
                f"""
                SELECT {HOST_COLUMNS} FROM hosts
                WHERE instr(address, ?) > 0 OR instr(name, ?) > 0 OR instr(comment, ?) > 0
                ORDER BY created_at, id
                """,
                (query, query, query),
            ).fetchall()
            discoveries = conn.execute(
                f"""
                SELECT {DISCOVERY_COLUMNS} FROM discoveries
                WHERE instr(address, ?) > 0 OR instr(status, ?) > 0
                ORDER BY discovered_at, id
                """,
                (query, query),
            ).fetchall()

        return SearchResults(
            subnets=[self._row_to_subnet(row) for row in subnets],
            hosts=[self._row_to_host(row) for row in hosts],
            discoveries=[self._row_to_discovery(row) for row in discoveries],
        )

    # -- discoveries -------------------------------------------------------

    def record_discoveries(self, subnet_id: str, results: Iterable[ProbeResult]) -> list[Discovery]:
        """Merge one sweep of ``subnet_id`` into the discovery table.

        Answering addresses are created or refreshed as ``alive``; known addresses
        that were probed and stayed silent become ``unreachable``. Registered hosts
        with an answering address get their ``last_seen`` stamped.
        """
        results = list(results)
        alive = {result.address for result in results if result.alive}
        probed = {result.address for result in results}
        now = _now()

        with self._connect() as conn:
            self._fetch_row(conn, "subnet", subnet_id)
            known = {
                row["address"]: row["id"]
                for row in conn.execute(
                    "SELECT id, address FROM discoveries WHERE subnet_id = ?", (subnet_id,)
                ).fetchall()
            }
            for address, discovery_id in known.items():
                if address in alive:
                    conn.execute(
                        "UPDATE discoveries SET last_seen = ?, status = ? WHERE id = ?",
                        (now, STATUS_ALIVE, discovery_id),
                    )
                elif address in probed:
                    conn.execute(
                        "UPDATE discoveries SET status = ? WHERE id = ?",
                        (STATUS_UNREACHABLE, discovery_id),
                    )
            conn.executemany(
                "UPDATE hosts SET last_seen = ? WHERE address = ?",
                [(now, address) for address in sorted(alive)],
            )

        new_addresses = alive - set(known)
        for address in sorted(new_addresses, key=ipaddress.ip_address):

            def write(conn: sqlite3.Connection, record_id: str, stamp: str, address: str = address) -> None:
                conn.execute(
                    """
                    INSERT INTO discoveries (id, address, subnet_id, discovered_at, last_seen, status)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (record_id, address, subnet_id, stamp, stamp, STATUS_ALIVE),
                )

            self._create("discovery", write)

        logger.info(
            "sweep of %s: %d probed, %d alive, %d new",
            subnet_id,
            len(probed),
            len(alive),
            len(new_addresses),
        )
        return sorted(
            (item for item in self.list_discoveries(subnet_id) if item.address in probed),
            key=lambda item: ipaddress.ip_address(item.address),
        )
