"""Weighted prize selection."""

import random
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from spinwheel_api.models import Prize, Spin
from spinwheel_api.utils.clock import start_of_day


def wins_today(db: Session, prize_id: int, now: datetime) -> int:
    return db.execute(
        select(func.count(Spin.id)).where(
            Spin.prize_id == prize_id,
            Spin.won_prize.is_(True),
            Spin.spin_date >= start_of_day(now),
        )
    ).scalar_one()


def available_prizes(db: Session, campaign_id: int, now: datetime) -> list[Prize]:
    """Active prizes with stock left and under their daily win limit."""
    prizes = db.execute(
        select(Prize)
        .where(Prize.campaign_id == campaign_id, Prize.is_active.is_(True))
        .order_by(Prize.position, Prize.id)
        .execution_options(populate_existing=True)
    ).scalars().all()

    available = []
    for prize in prizes:
        if prize.current_stock is not None and prize.current_stock <= 0:
            continue
        if prize.daily_limit is not None and wins_today(db, prize.id, now) >= prize.daily_limit:
            continue
        available.append(prize)
    return available


def choose_prize(prizes: Sequence[Prize], rng: random.Random) -> Optional[Prize]:
    """Pick one prize with probability proportional to its weight."""
    weighted = [p for p in prizes if p.probability > 0]
    if not weighted:
        return None
    return rng.choices(weighted, weights=[p.probability for p in weighted], k=1)[0]


def take_stock(db: Session, prize: Prize) -> bool:
    """Decrement finite stock by one. False if another spin took the last unit."""
    if prize.current_stock is None:
        return True
    result = db.execute(
        update(Prize)
        .where(Prize.id == prize.id, Prize.current_stock > 0)
        .values(current_stock=Prize.current_stock - 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    db.refresh(prize)
    return True
