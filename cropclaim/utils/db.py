"""
Database Utility
----------------
Manages the SQLAlchemy engine (SQLite by default, Postgres via DB_URL),
session factory, table creation and reference-data seeding.
"""

from datetime import date
from typing import Optional
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from cropclaim.config import config
from cropclaim.utils.logger import logger

# =========================================================
# ⚙️ Database Setup
# =========================================================
Base = declarative_base()


def build_engine(db_url: Optional[str] = None) -> Engine:
    """Create an engine with driver-appropriate connection settings."""
    url = db_url or config.DB_URL
    if not url.startswith("sqlite"):
        return create_engine(
            url,
            echo=config.DB_ECHO,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            connect_args={"connect_timeout": 10},
        )

    # SQLite connections are shared across FastAPI worker threads
    sqlite_engine = create_engine(
        url, echo=config.DB_ECHO, connect_args={"check_same_thread": False, "timeout": 30}
    )

    # Every transaction takes the write lock at BEGIN (waits up to `timeout` seconds)
    @event.listens_for(sqlite_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return sqlite_engine


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


try:
    engine = build_engine()
    logger.info(f"✅ Database engine initialized: {config.DB_URL}")
except Exception as e:
    logger.error(f"❌ Database connection error: {e}")
    raise

SessionLocal = build_session_factory(engine)


# =========================================================
# 🧱 Table Initialization
# =========================================================
def init_db(bind: Optional[Engine] = None) -> None:
    """
    Create all engine tables:
    - farmers / insurers / reviewers / policies (reference data)
    - claims, assessment_requests, assessment_reports
    - review_drafts, decision_records, payout_records, audit_entries
    Called at startup; safe to call repeatedly.
    """
    from cropclaim.store import tables  # noqa: F401  (registers mappers on Base)

    target = bind or engine
    try:
        Base.metadata.create_all(bind=target)
        logger.info("✅ Database tables created.")
    except Exception as e:
        logger.error(f"❌ DB init error: {e}")
        raise


# =========================================================
# 🌐 Seed Data
# =========================================================
def seed_reference_data(session_factory: Optional[sessionmaker] = None) -> None:
    """Insert demo farmers, insurers, reviewers and policies (idempotent)."""
    from cropclaim.store.tables import FarmerRow, InsurerRow, ReviewerRow, PolicyRow

    factory = session_factory or SessionLocal
    rows = [
        InsurerRow(id="INS-001", account_id="acct-ins-001", name="Krishi Suraksha General Insurance"),
        InsurerRow(id="INS-002", account_id="acct-ins-002", name="Bharat Agri Assurance"),
        ReviewerRow(id="REV-001", insurer_id="INS-001", account_id="acct-rev-001", name="Anita Deshmukh"),
        ReviewerRow(id="REV-002", insurer_id="INS-002", account_id="acct-rev-002", name="Farhan Qureshi"),
        FarmerRow(
            id="FRM-001",
            account_id="acct-frm-001",
            name="Ramesh Patil",
            bank_account_number="004512345678",
            bank_ifsc="SBIN0000456",
            bank_account_holder="Ramesh Patil",
        ),
        FarmerRow(
            id="FRM-002",
            account_id="acct-frm-002",
            name="Lakshmi Reddy",
            bank_account_number="110098765432",
            bank_ifsc="HDFC0001234",
            bank_account_holder="Lakshmi Reddy",
        ),
        PolicyRow(
            policy_id="POL-2024-0001",
            farmer_id="FRM-001",
            insurer_id="INS-001",
            crop_type="wheat",
            sum_insured=100000.0,
            status="Active",
            start_date=date(2024, 6, 1),
            end_date=date(2024, 10, 31),
        ),
        PolicyRow(
            policy_id="POL-2023-0007",
            farmer_id="FRM-001",
            insurer_id="INS-001",
            crop_type="cotton",
            sum_insured=80000.0,
            status="Expired",
            start_date=date(2023, 6, 1),
            end_date=date(2023, 10, 31),
        ),
        PolicyRow(
            policy_id="POL-2024-0002",
            farmer_id="FRM-002",
            insurer_id="INS-002",
            crop_type="paddy",
            sum_insured=60000.0,
            status="Active",
            start_date=date(2024, 6, 15),
            end_date=date(2024, 12, 15),
        ),
    ]
    session = factory()
    try:
        for row in rows:
            session.merge(row)
        session.commit()
        logger.info(f"🌱 Seeded {len(rows)} reference rows.")
    except Exception as e:
        session.rollback()
        logger.error(f"❌ Seeding failed: {e}")
        raise
    finally:
        session.close()
