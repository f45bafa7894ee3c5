import structlog

from app.backend.src.core.logging import configure_logging
from app.backend.src.db import create_schema, get_engine

LOGGER = structlog.get_logger(__name__)


def init_db():
    configure_logging()
    engine = get_engine()
    LOGGER.info("database_init_started", url=engine.url.render_as_string(hide_password=True))
    tables = create_schema(engine)
    LOGGER.info("database_init_finished", table_count=len(tables))


if __name__ == "__main__":
    init_db()
