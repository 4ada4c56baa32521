"""Create all tables directly (local development; production uses Alembic)."""
import logging

from hirepath.db.base import Base
from hirepath.db.session import engine
import hirepath.db.models  # noqa: F401

logger = logging.getLogger(__name__)


def init_db(bind=None):
    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    logger.info("Database tables created")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
