"""
Database setup

SQLAlchemy engine factory and table metadata for the SQL-backed
collaborators. List-valued columns hold JSON text so the same statements run
on PostgreSQL and SQLite; specialties and facility affiliations live in link
tables because candidate-pool queries filter on them.
"""
from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine

from expertmatch.config import DatabaseSettings
from expertmatch.utils import get_logger

logger = get_logger(__name__)

metadata = MetaData()

doctors = Table(
    "doctors",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255), nullable=False, default=""),
    Column("email", String(255), nullable=False, default=""),
    Column("certifications", Text, nullable=False, default="[]"),
    Column("telehealth_enabled", Boolean, nullable=False, default=False),
    Column("availability_status", String(32), nullable=False, default="AVAILABLE"),
    Column("profile_text", Text, nullable=False, default=""),
)

doctor_specialties = Table(
    "doctor_specialties",
    metadata,
    Column("doctor_id", String(64), primary_key=True),
    Column("specialty", String(128), primary_key=True),
)

doctor_facilities = Table(
    "doctor_facilities",
    metadata,
    Column("doctor_id", String(64), primary_key=True),
    Column("facility_id", String(64), primary_key=True),
    Index("ix_doctor_facilities_facility", "facility_id"),
)

facilities = Table(
    "facilities",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255), nullable=False, default=""),
    Column("facility_type", String(64), nullable=False, default=""),
    Column("capabilities", Text, nullable=False, default="[]"),
    Column("capacity", Integer),
    Column("current_occupancy", Integer),
    Column("latitude", Float),
    Column("longitude", Float),
    Column("location_city", String(128), nullable=False, default=""),
    Column("location_country", String(128), nullable=False, default=""),
)

clinical_experiences = Table(
    "clinical_experiences",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("doctor_id", String(64), nullable=False, index=True),
    Column("case_id", String(64), nullable=False),
    Column("specialty", String(128)),
    Column("procedures", Text, nullable=False, default="[]"),
    Column("complexity_level", String(16), nullable=False, default="MEDIUM"),
    Column("outcome", String(16), nullable=False, default="UNKNOWN"),
    Column("complications", Text, nullable=False, default="[]"),
    Column("time_to_resolution_days", Integer),
    Column("rating", Integer),
    Column("completed_at", String(40)),  # ISO-8601
)

consultation_matches = Table(
    "consultation_matches",
    metadata,
    Column("id", String(24), primary_key=True),
    Column("case_id", String(64), nullable=False, index=True),
    Column("doctor_id", String(64), nullable=False),
    Column("match_score", Float, nullable=False),
    Column("match_rationale", Text, nullable=False, default=""),
    Column("rank", Integer, nullable=False),
    Column("status", String(16), nullable=False, default="PENDING"),
    UniqueConstraint("case_id", "rank", name="uq_consultation_matches_case_rank"),
    UniqueConstraint("case_id", "doctor_id", name="uq_consultation_matches_case_doctor"),
)


def create_engine_from_settings(settings: DatabaseSettings, **kwargs) -> Engine:
    engine = create_engine(settings.url, echo=settings.echo, future=True, **kwargs)
    logger.info(f"Database engine created for {engine.url.render_as_string(hide_password=True)}")
    return engine


def create_schema(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    metadata.create_all(engine)
    logger.info(f"Schema ready: {', '.join(sorted(metadata.tables))}")


def drop_schema(engine: Engine) -> None:
    metadata.drop_all(engine)
