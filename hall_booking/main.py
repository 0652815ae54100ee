from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hall_booking.api.routes import halls, bookings, tickets, payments
from hall_booking.core.exceptions import register_exception_handlers
from hall_booking.services import hooks

# ⭐ Import logging system
from hall_booking.core.logging_config import get_logger

logger = get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Hall Booking API starting")
    yield
    # let queued notifications and loyalty awards finish
    hooks.flush(timeout=10)
    logger.info("Hall Booking API stopped")


app = FastAPI(
    title="Hall Booking API",
    version="1.0.0",
    description="Reservation & settlement API: quotes, bookings, tickets and payments",
    lifespan=lifespan,
)

# ⭐ Request Logging Middleware
@app.middleware("http")
async def log_requests(request, call_next):
    logger.info(f"REQUEST: {request.method} {request.url}")

    try:
        response = await call_next(request)
        logger.info(f"RESPONSE: {response.status_code} {request.url}")
        return response

    except Exception as e:
        logger.error(f"ERROR: {request.url} -> {str(e)}")
        raise e


# ⭐ CORS (important for frontend)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # Can restrict later for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# -------- ROUTERS REGISTER ORDER MATTERS --------
app.include_router(halls.router)
app.include_router(bookings.quote_router)
app.include_router(bookings.router)
app.include_router(tickets.router)
app.include_router(payments.router)

@app.get("/", tags=["Root"])
def root():
    return {"message": "Backend running successfully"}
