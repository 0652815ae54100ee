from loguru import logger
import os
import sys

from hall_booking.core.config import LOG_DIR, LOG_LEVEL, LOG_TO_CONSOLE

LOG_FORMAT = "{time} | {level} | {extra[log_type]} | {message}"

# log_type bound through get_logger() -> dedicated file
CATEGORY_SINKS = {
    "booking": "bookings.log",
    "payment": "payments.log",
    "ticket": "tickets.log",
}

# Create folder if missing
os.makedirs(LOG_DIR, exist_ok=True)

# Remove default handler
logger.remove()
logger.configure(extra={"log_type": "app"})

if LOG_TO_CONSOLE:
    logger.add(sys.stderr, level=LOG_LEVEL, format=LOG_FORMAT)

# Everything, whatever the category
logger.add(
    f"{LOG_DIR}/app.log",
    rotation="1 week",
    retention="4 weeks",
    level=LOG_LEVEL,
    enqueue=True,
    format=LOG_FORMAT,
)


def _category_filter(log_type: str):
    return lambda record: record["extra"].get("log_type") == log_type


for log_type, filename in CATEGORY_SINKS.items():
    logger.add(
        f"{LOG_DIR}/{filename}",
        rotation="1 week",
        retention="4 weeks",
        level=LOG_LEVEL,
        enqueue=True,
        filter=_category_filter(log_type),
        format=LOG_FORMAT,
    )

# Errors keep tracebacks longer
logger.add(
    f"{LOG_DIR}/errors.log",
    rotation="1 week",
    retention="8 weeks",
    level="ERROR",
    enqueue=True,
    backtrace=True,
)


def get_logger(log_type: str | None = None):
    """Logger bound to a category ("booking", "payment", "ticket"); plain app logger otherwise."""
    if log_type:
        return logger.bind(log_type=log_type)
    return logger
