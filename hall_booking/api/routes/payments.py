from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from hall_booking.db.session import get_db
from hall_booking.core.dependencies import Caller, get_current_caller, require_admin
from hall_booking.schemas.payment import (
    ConfirmOut,
    ConfirmRequest,
    IntentCreate,
    IntentOut,
    PaymentOut,
    RefundOut,
    RefundRequest,
)
from hall_booking.services import settlement
from hall_booking.utils.payment_gateway import PaymentGateway, get_gateway
from hall_booking.core.logging_config import get_logger

router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger("payment")


# ---------------------------------------------------------------------
# CREATE INTENT
# ---------------------------------------------------------------------
@router.post("/intent", response_model=IntentOut)
def create_intent(
    data: IntentCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    gateway: PaymentGateway = Depends(get_gateway),
):
    return settlement.create_intent(db, caller.user_id, data.booking_id, data.method, gateway)


# ---------------------------------------------------------------------
# CONFIRM
# ---------------------------------------------------------------------
@router.post("/confirm", response_model=ConfirmOut)
def confirm(
    data: ConfirmRequest,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    gateway: PaymentGateway = Depends(get_gateway),
):
    return settlement.confirm_payment(
        db, caller.user_id, data.booking_id, data.payment_id, data.gateway_payload, gateway
    )


# ---------------------------------------------------------------------
# WEBHOOK (authenticated by the gateway signature, not by a caller token)
# ---------------------------------------------------------------------
@router.post("/webhook")
async def webhook(request: Request, db: Session = Depends(get_db), gateway: PaymentGateway = Depends(get_gateway)):
    body = await request.body()
    logger.info(f"Webhook received | Gateway={gateway.name} | Bytes={len(body)}")
    # Row locks and DB round trips stay off the event loop
    return await run_in_threadpool(settlement.handle_webhook, db, body, dict(request.headers), gateway)


# ---------------------------------------------------------------------
# ADMIN — REFUND
# ---------------------------------------------------------------------
@router.post("/refund", response_model=RefundOut)
def refund(data: RefundRequest, db: Session = Depends(get_db), admin: Caller = Depends(require_admin)):
    logger.info(f"Refund requested | Payment={data.payment_id} | Admin={admin.user_id} | Amount={data.amount}")
    return settlement.refund_payment(db, data.payment_id, data.amount)


# ---------------------------------------------------------------------
# GET PAYMENT
# ---------------------------------------------------------------------
@router.get("/{payment_id}", response_model=PaymentOut)
def get_payment(payment_id: int, db: Session = Depends(get_db), caller: Caller = Depends(get_current_caller)):
    return settlement.get_payment(db, caller.user_id, payment_id)
