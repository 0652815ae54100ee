from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

from hall_booking.core.config import DATABASE_URL


def serialize_sqlite_writers(engine):
    """
    SQLite ignores FOR UPDATE, so every transaction takes the write lock up
    front (BEGIN IMMEDIATE). Concurrent writers then queue on the database
    lock instead of both reading the same snapshot.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        # pysqlite would otherwise emit its own deferred BEGIN
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True
)
if engine.dialect.name == "sqlite":
    serialize_sqlite_writers(engine)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
