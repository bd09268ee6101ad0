"""Manager PIN hashing."""

from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_pin(pin: str) -> str:
    """Hash a manager PIN with bcrypt."""
    return pwd_context.hash(pin)


def verify_pin(pin: str, pin_hash: str) -> bool:
    """Verify a manager PIN against its hash."""
    return pwd_context.verify(pin, pin_hash)
