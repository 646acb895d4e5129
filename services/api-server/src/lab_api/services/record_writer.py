"""Schema-tolerant persistence for container lifecycle records.

Deployed databases do not agree on the shape of the containers table: older
environments call the name column ``container_name``, some keep a text
``status`` instead of a ``status_id`` lookup, some have no ``metadata`` at all.
Rather than trusting a fixed model, every call here reads the live column set
from the catalog and maps each logical field onto the first acceptable
physical column that actually exists.

Rules:
- FIELD_CANDIDATES order is part of the contract: first present candidate wins.
- A physical column is written at most once. A field whose first present
  candidate was already claimed by an earlier field counts as mapped.
- A column absent from the live schema is never referenced.
- Maps and lists are stored as canonical compact JSON text.
- ``status_id`` is resolved through ``container_statuses`` by name.
- A creation-timestamp column that was not supplied gets the database's now().
"""

import json
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

import sqlalchemy as sa
from pydantic import BaseModel
from sqlalchemy import func, inspect
from sqlalchemy.ext.asyncio import AsyncSession

from lab_shared.errors import InvalidStatusTransition, NotFound, SchemaMismatch
from lab_shared.schemas.container import ContainerDTO, ContainerStatus, can_transition

logger = logging.getLogger(__name__)

CONTAINERS_TABLE = "containers"
STATUS_LOOKUP_TABLE = "container_statuses"

_ID_COLUMN = "id"
_STATUS_LOOKUP_COLUMN = "status_id"

# Logical field -> acceptable physical column names, in priority order.
FIELD_CANDIDATES: dict[str, tuple[str, ...]] = {
    "external_id": (
        "lxc_name", "external_id", "lxd_name", "lxc_hostname", "external_name", "identifier",
    ),
    "container_name": ("lxc_name", "container_name", "name", "hostname", "slug", "label"),
    "image": ("image", "image_name"),
    "task_id": ("task_id", "assignment_id", "related_task_id"),
    "owner_user_id": ("owner_user_id", "user_id", "created_by", "owner_id"),
    "status": ("status_id", "status", "state"),
    "metadata": ("metadata", "meta", "data", "config", "info"),
    "ip_address": ("ip_address", "ip", "ipv4", "address"),
    "created_at": ("created_at", "created_on", "created"),
}

# Insert order: the external identifier goes first so NOT NULL name columns
# are always filled by it.
_INSERT_FIELDS = (
    "external_id",
    "container_name",
    "image",
    "task_id",
    "owner_user_id",
    "metadata",
    "status",
)


class ContainerRecordPayload(BaseModel):
    """Logical content of a new lifecycle record."""

    external_id: str
    container_name: str | None = None
    image: str | None = None
    task_id: int | None = None
    owner_user_id: int
    status: ContainerStatus = ContainerStatus.creating
    metadata: dict | None = None


def resolve_columns(live_columns: list[str] | set[str]) -> dict[str, str]:
    """Return logical field -> first candidate present in ``live_columns``."""
    live = set(live_columns)
    mapping: dict[str, str] = {}
    for field, candidates in FIELD_CANDIDATES.items():
        for candidate in candidates:
            if candidate in live:
                mapping[field] = candidate
                break
    return mapping


def encode_structured(value: Any) -> Any:
    """Serialize maps and lists to canonical compact JSON; pass scalars through."""
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"))
    return value


def _decode_structured(value: Any) -> dict | None:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Container metadata is not valid JSON, ignoring it")
            return None
    return value if isinstance(value, dict) else None


def _coerce_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


async def fetch_live_columns(db: AsyncSession, table_name: str = CONTAINERS_TABLE) -> list[str]:
    """Read the column names the table has right now from the storage catalog."""
    connection = await db.connection()

    def _reflect(sync_connection) -> list[str]:
        return [column["name"] for column in inspect(sync_connection).get_columns(table_name)]

    return await connection.run_sync(_reflect)


def _table_clause(table_name: str, live_columns: list[str]) -> sa.TableClause:
    return sa.table(table_name, *(sa.column(name) for name in live_columns))


async def _status_id_for(db: AsyncSession, status: str) -> int | None:
    result = await db.execute(
        sa.text(f"SELECT id FROM {STATUS_LOOKUP_TABLE} WHERE name = :name LIMIT 1"),
        {"name": status},
    )
    return result.scalar_one_or_none()


async def _status_name_for(db: AsyncSession, status_id: int) -> str | None:
    result = await db.execute(
        sa.text(f"SELECT name FROM {STATUS_LOOKUP_TABLE} WHERE id = :id LIMIT 1"),
        {"id": status_id},
    )
    return result.scalar_one_or_none()


async def _status_column_value(db: AsyncSession, column: str, status: str) -> Any:
    """Return what to store in the status column, or None if unresolvable."""
    if column != _STATUS_LOOKUP_COLUMN:
        return status
    status_id = await _status_id_for(db, status)
    if status_id is None:
        logger.warning("No %s row named %r; status not written", STATUS_LOOKUP_TABLE, status)
    return status_id


async def _row_to_dto(
    db: AsyncSession, row: Mapping[str, Any], mapping: dict[str, str]
) -> ContainerDTO:
    """Build the logical view of a physical row."""

    def value_of(field: str) -> Any:
        column = mapping.get(field)
        return row.get(column) if column else None

    status: str | None = None
    status_column = mapping.get("status")
    if status_column == _STATUS_LOOKUP_COLUMN:
        if row.get(status_column) is not None:
            status = await _status_name_for(db, row[status_column])
    elif status_column:
        status = row.get(status_column)

    ip_address = value_of("ip_address")
    owner = value_of("owner_user_id")
    name = value_of("external_id") or value_of("container_name") or ""

    return ContainerDTO(
        id=row[_ID_COLUMN],
        name=str(name),
        owner_user_id=int(owner) if owner is not None else None,
        image=value_of("image"),
        status=status,
        ip=str(ip_address) if ip_address is not None else None,
        metadata=_decode_structured(value_of("metadata")),
        created_at=_coerce_datetime(value_of("created_at")),
    )


async def create_container_record(
    db: AsyncSession,
    payload: ContainerRecordPayload,
    table_name: str = CONTAINERS_TABLE,
) -> ContainerDTO:
    """Insert a lifecycle record using whichever columns the table has.

    Runs inside the caller's transaction; the caller commits or rolls back.

    Raises:
        SchemaMismatch: If no logical field maps onto a live column.
        sqlalchemy.exc.IntegrityError: On a unique or foreign key violation.
    """
    live_columns = await fetch_live_columns(db, table_name)
    mapping = resolve_columns(live_columns)

    logical_values = {
        "external_id": payload.external_id,
        "container_name": payload.container_name or payload.external_id,
        "image": payload.image,
        "task_id": payload.task_id,
        "owner_user_id": payload.owner_user_id,
        "metadata": payload.metadata,
        "status": payload.status.value,
    }

    values: dict[str, Any] = {}
    mapped_fields: list[str] = []
    for field in _INSERT_FIELDS:
        value = logical_values[field]
        column = mapping.get(field)
        if value is None or column is None:
            continue
        if column in values:
            # Claimed by an earlier field (e.g. lxc_name for both names).
            mapped_fields.append(field)
            continue
        if field == "status":
            value = await _status_column_value(db, column, value)
            if value is None:
                continue
        values[column] = encode_structured(value)
        mapped_fields.append(field)

    if not mapped_fields:
        raise SchemaMismatch(
            f"No insertable columns found in table {table_name!r} "
            f"(live columns: {', '.join(sorted(live_columns)) or 'none'})"
        )

    created_column = mapping.get("created_at")
    if created_column and created_column not in values:
        values[created_column] = func.now()

    table = _table_clause(table_name, live_columns)
    result = await db.execute(sa.insert(table).values(values).returning(*table.c))
    row = result.mappings().one()
    logger.info(
        "Inserted %s record %s (fields=%s)", table_name, row.get(_ID_COLUMN), mapped_fields
    )
    return await _row_to_dto(db, row, mapping)


async def _select_row(
    db: AsyncSession, table: sa.TableClause, record_id: int
) -> Mapping[str, Any] | None:
    result = await db.execute(sa.select(table).where(table.c[_ID_COLUMN] == record_id))
    return result.mappings().one_or_none()


async def get_container_record(
    db: AsyncSession,
    record_id: int,
    table_name: str = CONTAINERS_TABLE,
) -> ContainerDTO | None:
    """Fetch a record's logical view by internal id. Returns None if absent."""
    live_columns = await fetch_live_columns(db, table_name)
    if _ID_COLUMN not in live_columns:
        raise SchemaMismatch(f"Table {table_name!r} has no {_ID_COLUMN!r} column")

    table = _table_clause(table_name, live_columns)
    row = await _select_row(db, table, record_id)
    if row is None:
        return None
    return await _row_to_dto(db, row, resolve_columns(live_columns))


async def update_container_record(
    db: AsyncSession,
    record_id: int,
    *,
    status: ContainerStatus | None = None,
    ip_address: str | None = None,
    metadata: dict | None = None,
    table_name: str = CONTAINERS_TABLE,
) -> ContainerDTO:
    """Apply a lifecycle update through the same column mapping as inserts.

    ``metadata`` is merged into the stored map rather than replacing it.

    Raises:
        NotFound: If the record does not exist.
        InvalidStatusTransition: If ``status`` is not reachable from the current one.
        SchemaMismatch: If none of the requested fields has a live column.
    """
    live_columns = await fetch_live_columns(db, table_name)
    if _ID_COLUMN not in live_columns:
        raise SchemaMismatch(f"Table {table_name!r} has no {_ID_COLUMN!r} column")
    mapping = resolve_columns(live_columns)
    table = _table_clause(table_name, live_columns)

    row = await _select_row(db, table, record_id)
    if row is None:
        raise NotFound(f"Container {record_id} not found")
    current = await _row_to_dto(db, row, mapping)

    values: dict[str, Any] = {}
    if status is not None and "status" in mapping:
        if current.status is not None and not can_transition(current.status, status):
            raise InvalidStatusTransition(current.status.value, ContainerStatus(status).value)
        stored = await _status_column_value(db, mapping["status"], ContainerStatus(status).value)
        if stored is not None:
            values[mapping["status"]] = stored
    if ip_address is not None and "ip_address" in mapping:
        values[mapping["ip_address"]] = ip_address
    if metadata is not None and "metadata" in mapping:
        values[mapping["metadata"]] = encode_structured({**(current.metadata or {}), **metadata})

    if not values:
        raise SchemaMismatch(
            f"None of the requested fields can be stored in table {table_name!r}"
        )

    await db.execute(
        sa.update(table).where(table.c[_ID_COLUMN] == record_id).values(values)
    )
    updated = await _select_row(db, table, record_id)
    return await _row_to_dto(db, updated, mapping)


async def fail_stale_records(
    db: AsyncSession,
    older_than: datetime,
    table_name: str = CONTAINERS_TABLE,
) -> int:
    """Mark records still ``creating`` that were created before ``older_than`` as failed.

    Returns the number of records changed. Tables without a status or a
    creation-timestamp column cannot be swept and return 0.
    """
    live_columns = await fetch_live_columns(db, table_name)
    mapping = resolve_columns(live_columns)
    status_column = mapping.get("status")
    created_column = mapping.get("created_at")
    if status_column is None or created_column is None:
        logger.debug("Table %s cannot be swept (mapping=%s)", table_name, mapping)
        return 0

    creating = await _status_column_value(db, status_column, ContainerStatus.creating.value)
    failed = await _status_column_value(db, status_column, ContainerStatus.failed.value)
    if creating is None or failed is None:
        return 0

    table = _table_clause(table_name, live_columns)
    result = await db.execute(
        sa.update(table)
        .where(
            table.c[status_column] == creating,
            table.c[created_column] < sa.literal(older_than, sa.DateTime()),
        )
        .values({status_column: failed})
    )
    return result.rowcount or 0
