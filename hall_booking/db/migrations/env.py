from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

# -----------------------------
# Models + DATABASE_URL (.env is loaded by core.config)
# -----------------------------
from hall_booking.core.config import DATABASE_URL
from hall_booking.db.session import Base
import hall_booking.db.base  # noqa: F401  registers every model on Base.metadata

config = context.config
config.set_main_option("sqlalchemy.url", DATABASE_URL)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Autogenerate cannot compare partial index predicates
IGNORED_INDEXES = {"uq_payments_open_intent"}


def include_object(obj, name, type_, reflected, compare_to):
    return not (type_ == "index" and name in IGNORED_INDEXES)


# ===============================================================
# OFFLINE MIGRATIONS (emit SQL)
# ===============================================================
def run_migrations_offline():
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


# ===============================================================
# ONLINE MIGRATIONS
# ===============================================================
def run_migrations_online():
    connectable = create_engine(config.get_main_option("sqlalchemy.url"), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            include_object=include_object,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
