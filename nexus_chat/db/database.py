from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from nexus_chat.config import settings
import os
import logging
from sqlalchemy import inspect

logger = logging.getLogger(__name__)


def build_engine(database_url: str = settings.DATABASE_URL, db_type: str = settings.DB_TYPE):
    """Configure a SQLAlchemy engine based on database type"""
    if db_type == "sqlite":
        # SQLite connections are shared across the request threadpool
        return create_engine(database_url, connect_args={"check_same_thread": False})
    # PostgreSQL configuration
    return create_engine(database_url)


engine = build_engine()

# Create SessionLocal class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create Base class
Base = declarative_base()


def _ensure_sqlite_directory(database_url: str) -> None:
    prefix = "sqlite:///"
    if not database_url.startswith(prefix):
        return
    path = database_url[len(prefix):]
    if path and path != ":memory:":
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)


def init_db(bind=None):
    """Create any missing tables. Existing conversation history is kept."""
    from nexus_chat.models.chat import User, ChatSession, Message  # Import models here to avoid circular imports

    bind = bind or engine
    _ensure_sqlite_directory(str(bind.url))

    logger.info("Creating tables...")
    Base.metadata.create_all(bind=bind)

    # Verify tables were created
    inspector = inspect(bind)
    tables = inspector.get_table_names()
    logger.info(f"Available tables: {tables}")

    # Log table schemas
    for table in tables:
        columns = inspector.get_columns(table)
        logger.debug(f"Table {table} schema:")
        for column in columns:
            logger.debug(f"  {column['name']}: {column['type']}")
