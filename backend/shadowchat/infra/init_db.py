# shadowchat/infra/init_db.py
#
#   python -m shadowchat.infra.init_db           create missing tables
#   python -m shadowchat.infra.init_db --reset   drop everything first

import argparse

from sqlalchemy import inspect

from shadowchat.infra.postgres import Base, engine, init_db
from shadowchat.utils.logger import get_logger, setup_logger

logger = get_logger(__name__)


def reset_db(bind=None):
    """Drop and recreate all tables"""
    bind = bind or engine
    # Registers every model on Base before dropping
    init_db(bind=bind)
    logger.warning("Dropping all tables...")
    Base.metadata.drop_all(bind=bind)
    init_db(bind=bind)


def describe_tables(bind=None) -> dict[str, list[str]]:
    inspector = inspect(bind or engine)
    return {
        table: [f"{col['name']}: {col['type']}" for col in inspector.get_columns(table)]
        for table in inspector.get_table_names()
    }


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create the shadowchat database schema")
    parser.add_argument("--reset", action="store_true", help="drop all tables before creating them")
    args = parser.parse_args(argv)

    setup_logger()
    if args.reset:
        reset_db()
    else:
        init_db()

    for table, columns in describe_tables().items():
        logger.info(f"{table}: {', '.join(columns)}")


if __name__ == "__main__":
    main()
