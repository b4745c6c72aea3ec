"""
Target tables written by the commit stage.

These tables belong to the rest of the property-management application; the
ingestion service only inserts into them (and reads building names to
resolve tenant rows). ``create_target_tables`` exists for development and
test databases.
"""
import logging
from typing import Any, Dict, List

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    func,
    select,
    text,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import get_engine

logger = logging.getLogger(__name__)

metadata = MetaData()


def _ownership_columns() -> List[Column]:
    return [
        Column("id", UUID(as_uuid=False), primary_key=True, server_default=text("gen_random_uuid()")),
        Column("company_account_id", String(255), nullable=False, index=True),
        Column("user_id", String(255), nullable=False),
        Column("upload_id", UUID(as_uuid=False), nullable=True),
        Column("created_at", DateTime, server_default=func.now()),
    ]


buildings = Table(
    "buildings",
    metadata,
    *_ownership_columns(),
    Column("name", String(255), nullable=False),
    Column("address", Text, nullable=False),
    Column("city", String(255), nullable=False),
    Column("building_type", String(100)),
    Column("total_units", Integer, nullable=False, server_default="0"),
    Column("floors", Integer),
    Column("year_built", Integer),
    Column("status", String(20), nullable=False, server_default="active"),
)

tenants = Table(
    "tenants",
    metadata,
    *_ownership_columns(),
    Column("name", String(255), nullable=False),
    Column("email", String(255)),
    Column("phone", String(50)),
    Column("building_id", UUID(as_uuid=False)),
    Column("unit", String(50), nullable=False),
    Column("move_in_date", Date, nullable=False),
    Column("move_out_date", Date),
    Column("monthly_rent", Numeric(12, 2), nullable=False, server_default="0"),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("rent_status", String(20), nullable=False, server_default="current"),
    Column("arrears", Numeric(12, 2), nullable=False, server_default="0"),
)

expenses = Table(
    "expenses",
    metadata,
    *_ownership_columns(),
    Column("category", String(100), nullable=False),
    Column("description", Text),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("expense_date", Date, nullable=False),
    Column("vendor", String(255)),
    Column("payment_method", String(100)),
    Column("status", String(20), nullable=False, server_default="pending"),
)

units = Table(
    "units",
    metadata,
    *_ownership_columns(),
    Column("unit_number", String(50), nullable=False),
    Column("bedrooms", Integer, nullable=False, server_default="0"),
    Column("bathrooms", Integer, nullable=False, server_default="0"),
    Column("size_sqft", Numeric(10, 2)),
    Column("rent_amount", Numeric(12, 2), nullable=False, server_default="0"),
    Column("status", String(20), nullable=False, server_default="vacant"),
)

payments = Table(
    "payments",
    metadata,
    *_ownership_columns(),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("payment_type", String(20), nullable=False, server_default="other"),
    Column("payment_method", String(100)),
    Column("payment_date", Date, nullable=False),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("reference_number", String(255)),
    Column("description", Text),
)

TABLES: Dict[str, Table] = {table.name: table for table in (tenants, buildings, expenses, units, payments)}


def create_target_tables() -> None:
    """Create the target tables if they don't exist."""
    engine = get_engine()
    with engine.begin() as conn:
        conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))
        metadata.create_all(conn, checkfirst=True)
    logger.info("Target tables ready: %s", ", ".join(TABLES))


def insert_rows(table_name: str, rows: List[Dict[str, Any]]) -> List[str]:
    """
    Insert one batch in its own transaction and return the new ids.

    Keys that are not columns of the table are dropped. A failure rolls back
    this batch only; batches committed earlier stay.
    """
    if not rows:
        return []
    table = TABLES[table_name]
    columns = set(table.c.keys())
    payload = [{key: value for key, value in row.items() if key in columns} for row in rows]

    engine = get_engine()
    with engine.begin() as conn:
        result = conn.execute(table.insert().returning(table.c.id), payload)
        return [str(row_id) for row_id in result.scalars().all()]


def get_building_ids(company_id: str) -> Dict[str, str]:
    """Lower-cased building name -> id for one company."""
    query = select(buildings.c.id, buildings.c.name).where(buildings.c.company_account_id == company_id)
    engine = get_engine()
    with engine.connect() as conn:
        return {
            str(name).strip().lower(): str(building_id)
            for building_id, name in conn.execute(query)
        }
