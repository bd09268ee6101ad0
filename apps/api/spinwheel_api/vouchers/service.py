"""Voucher issuance, validation, redemption and void."""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from spinwheel_api.audit.service import VOID_VOUCHER, AuditTrail
from spinwheel_api.auth.actor import Actor, ActorRole
from spinwheel_api.db.transaction import TransactionRunner
from spinwheel_api.errors import (
    AccessDenied,
    EngineError,
    InternalError,
    InvalidTransition,
    NotFound,
    Outcome,
)
from spinwheel_api.models import EndUser, Prize, Spin, Tenant, Voucher
from spinwheel_api.settings import get_settings
from spinwheel_api.utils.clock import utcnow

logger = logging.getLogger(__name__)

# No 0/O, 1/I/L
CODE_ALPHABET = "23456789ABCDEFGHJKMNPQRSTUVWXYZ"
MAX_CODE_ATTEMPTS = 3

# Validation reasons
NOT_FOUND = "not_found"
WRONG_TENANT = "wrong_tenant"
EXPIRED = "expired"
REDEEMED = "redeemed"
LIMIT_REACHED = "limit_reached"


@dataclass(frozen=True)
class VoucherView:
    """Voucher details shown to staff."""

    id: int
    code: str
    tenant_id: int
    prize_name: str
    customer_phone_last4: str
    expires_at: datetime
    redemption_count: int
    redemption_limit: int
    is_redeemed: bool
    voided_at: Optional[datetime]

    @classmethod
    def from_row(cls, voucher: Voucher) -> "VoucherView":
        return cls(
            id=voucher.id,
            code=voucher.code,
            tenant_id=voucher.tenant_id,
            prize_name=voucher.prize.name,
            customer_phone_last4=voucher.user.phone[-4:],
            expires_at=voucher.expires_at,
            redemption_count=voucher.redemption_count,
            redemption_limit=voucher.redemption_limit,
            is_redeemed=voucher.is_redeemed,
            voided_at=voucher.voided_at,
        )


@dataclass(frozen=True)
class VoucherCheck:
    """Result of validating a code. ``reason`` is set when invalid."""

    valid: bool
    reason: Optional[str] = None
    voucher: Optional[VoucherView] = None


def code_prefix(tenant_slug: str) -> str:
    """First four alphanumerics of the slug, upper-cased, padded with X."""
    clean = re.sub(r"[^a-zA-Z0-9]", "", tenant_slug)
    return clean[:4].upper().ljust(4, "X")


def generate_code(tenant_slug: str, length: Optional[int] = None) -> str:
    length = length or get_settings().voucher_code_length
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))
    return f"{code_prefix(tenant_slug)}-{suffix}"


def generate_unique_code(db: Session, tenant_slug: str) -> str:
    """Generate a code not yet in use, retrying on collision."""
    for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
        code = generate_code(tenant_slug)
        exists = db.execute(select(Voucher.id).where(Voucher.code == code)).first()
        if exists is None:
            return code
        logger.warning(f"Voucher code collision (attempt {attempt}/{MAX_CODE_ATTEMPTS})")
    raise InternalError(f"Failed to generate unique voucher code after {MAX_CODE_ATTEMPTS} attempts")


def issue_voucher(db: Session, tenant: Tenant, spin: Spin, prize: Prize, user: EndUser) -> Voucher:
    """Issue the voucher for a winning spin, inside the spin transaction."""
    voucher = Voucher(
        tenant_id=tenant.id,
        code=generate_unique_code(db, tenant.slug),
        spin_id=spin.id,
        prize_id=prize.id,
        user_id=user.id,
        expires_at=spin.spin_date + timedelta(days=prize.voucher_validity_days),
        redemption_limit=prize.voucher_redemption_limit or 1,
        redemption_count=0,
        is_redeemed=False,
        created_at=spin.spin_date,
    )
    db.add(voucher)
    db.flush()
    return voucher


def check_voucher(voucher: Optional[Voucher], tenant_id: int, now: datetime) -> Optional[str]:
    """Return the reason a voucher cannot be redeemed, or None."""
    if voucher is None:
        return NOT_FOUND
    if voucher.tenant_id != tenant_id:
        return WRONG_TENANT
    if voucher.expires_at < now:
        return EXPIRED
    if voucher.is_redeemed:
        return REDEEMED
    if voucher.redemption_count >= voucher.redemption_limit:
        return LIMIT_REACHED
    return None


REASON_ERRORS = {
    NOT_FOUND: lambda: NotFound("Voucher not found"),
    WRONG_TENANT: lambda: AccessDenied("Invalid voucher"),
    EXPIRED: lambda: InvalidTransition("Voucher expired"),
    REDEEMED: lambda: InvalidTransition("Voucher already redeemed"),
    LIMIT_REACHED: lambda: InvalidTransition("Voucher redemption limit reached"),
}


class VoucherService:
    """Staff-facing voucher operations."""

    def __init__(self, db: Session):
        """Initialize service."""
        self.db = db

    @staticmethod
    def _staff(actor: Actor) -> Actor:
        return actor.require(ActorRole.MANAGER, ActorRole.TENANT_ADMIN)

    def validate_voucher(self, actor: Actor, code: str) -> Outcome[VoucherCheck]:
        """Check whether a code can be redeemed at the actor's tenant."""

        def work(db: Session) -> VoucherCheck:
            self._staff(actor)
            voucher = db.execute(
                select(Voucher).where(Voucher.code == code.strip().upper())
            ).scalar_one_or_none()
            reason = check_voucher(voucher, actor.tenant_id, utcnow())
            if reason in (NOT_FOUND, WRONG_TENANT):
                return VoucherCheck(valid=False, reason=reason)
            return VoucherCheck(valid=reason is None, reason=reason, voucher=VoucherView.from_row(voucher))

        try:
            return Outcome.success(TransactionRunner(self.db).run("validate_voucher", work))
        except EngineError as e:
            return Outcome.failure(e)

    def redeem_voucher(self, actor: Actor, code: str) -> Outcome[VoucherView]:
        """Redeem one use of a voucher under a row lock."""

        def work(db: Session) -> VoucherView:
            self._staff(actor)
            voucher = db.execute(
                select(Voucher)
                .where(Voucher.code == code.strip().upper())
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            now = utcnow()
            reason = check_voucher(voucher, actor.tenant_id, now)
            if reason is not None:
                raise REASON_ERRORS[reason]()

            voucher.redemption_count += 1
            voucher.is_redeemed = voucher.redemption_count >= voucher.redemption_limit
            voucher.redeemed_at = now
            voucher.redeemed_by = actor.actor_id
            db.flush()
            return VoucherView.from_row(voucher)

        try:
            view = TransactionRunner(self.db).run("redeem_voucher", work)
        except EngineError as e:
            return Outcome.failure(e)
        logger.info(
            "Voucher redeemed",
            extra={"tenant_id": actor.tenant_id, "voucher_id": view.id, "actor_id": actor.actor_id},
        )
        return Outcome.success(view)

    def void_voucher(
        self,
        actor: Actor,
        voucher_id: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Outcome[VoucherView]:
        """Void an active voucher by moving its expiry to now. One-way."""

        def work(db: Session) -> VoucherView:
            actor.require(ActorRole.SUPER_ADMIN)
            voucher = db.execute(
                select(Voucher)
                .where(Voucher.id == voucher_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if voucher is None:
                raise NotFound("Voucher not found")
            if voucher.is_redeemed:
                raise InvalidTransition("Voucher has already been redeemed")
            now = utcnow()
            if voucher.voided_at is not None or voucher.expires_at < now:
                raise InvalidTransition("Voucher has already expired")

            previous_expiry = voucher.expires_at
            voucher.expires_at = now
            voucher.voided_at = now
            db.flush()

            AuditTrail(db).record_admin_action(
                actor.actor_id,
                VOID_VOUCHER,
                "Voucher",
                str(voucher.id),
                tenant_id=voucher.tenant_id,
                changes={
                    "voucher_code": voucher.code,
                    "customer_phone_last4": voucher.user.phone[-4:],
                    "previous_expiry": previous_expiry.isoformat(),
                    "new_expiry": now.isoformat(),
                },
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return VoucherView.from_row(voucher)

        try:
            view = TransactionRunner(self.db).run("void_voucher", work)
        except EngineError as e:
            return Outcome.failure(e)
        logger.info("Voucher voided", extra={"voucher_id": voucher_id, "admin_id": actor.actor_id})
        return Outcome.success(view)
