import hashlib
import hmac
import secrets

from hall_booking.core.config import TICKET_TOKEN_SECRET


def generate_ticket_token(booking_id: int, index: int) -> str:
    """Keyed, unguessable token for one admission of a booking."""
    nonce = secrets.token_hex(16)
    message = f"{booking_id}:{index}:{nonce}".encode()
    return hmac.new(TICKET_TOKEN_SECRET.encode(), message, hashlib.sha256).hexdigest()


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def generate_display_token() -> str:
    return secrets.token_urlsafe(24)
