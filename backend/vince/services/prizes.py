"""Prize pool: one open prize at a time, handed to the first winner."""
import hashlib
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, select

from vince import db
from vince.models import ATTEMPT_COMPLETED, Attempt, Prize, PrizeCertificate, utcnow


def _open_prize(lock: bool = False):
    query = select(Prize).where(Prize.status == 'open').order_by(Prize.id.desc()).limit(1)
    if lock:
        query = query.with_for_update()
    return db.session.execute(query).scalar_one_or_none()


def current_prize() -> Prize:
    """The open prize, creating the default one when the pool is empty."""
    prize = _open_prize()
    if prize is None:
        prize = Prize(amount=Decimal(str(current_app.config.get('INITIAL_PRIZE_AMOUNT', 100))), status='open')
        db.session.add(prize)
        db.session.commit()
        current_app.logger.info(f"[prize-open] prize={prize.id} amount={prize.amount}")
    return prize


def certificate_hash(certificate_id: int, winner_id: int, prize_id: int, issued_at) -> str:
    return hashlib.sha256(f"{certificate_id}-{winner_id}-{prize_id}-{issued_at.isoformat()}".encode('utf-8')).hexdigest()


def award_prize(attempt: Attempt):
    """Give the open prize to ``attempt``'s convincer.

    Runs inside the caller's transaction (the completion write), so the
    prize, certificate and next prize commit or roll back with it.
    Returns ``(prize, certificate, next_prize)``.
    """
    prize = _open_prize(lock=True)
    if prize is None:
        prize = Prize(amount=Decimal(str(current_app.config.get('INITIAL_PRIZE_AMOUNT', 100))), status='open')
        db.session.add(prize)
        db.session.flush()

    now = utcnow()
    prize.status = 'distributed'
    prize.winner_convincer_id = attempt.convincer_id
    prize.winning_attempt_id = attempt.id
    prize.distributed_at = now

    certificate = PrizeCertificate(convincer_id=attempt.convincer_id, prize_id=prize.id, status='active', created_at=now)
    db.session.add(certificate)
    db.session.flush()
    certificate.hash = certificate_hash(certificate.id, attempt.convincer_id, prize.id, now)

    increment = Decimal(str(current_app.config.get('PRIZE_INCREMENT', 50)))
    next_prize = Prize(amount=Decimal(prize.amount) + increment, status='open')
    db.session.add(next_prize)
    db.session.flush()

    current_app.logger.info(
        f"[prize-award] prize={prize.id} winner={attempt.convincer_id} attempt={attempt.id} "
        f"certificate={certificate.hash[:12]} next_prize={next_prize.id} amount={next_prize.amount}"
    )
    return prize, certificate, next_prize


def certificate_by_hash(value: str):
    return db.session.execute(
        select(PrizeCertificate).where(PrizeCertificate.hash == value)
    ).scalar_one_or_none()


def statistics() -> dict:
    total = db.session.execute(select(func.count(Attempt.id))).scalar_one()
    successful = db.session.execute(
        select(func.count(Attempt.id)).where(Attempt.status == ATTEMPT_COMPLETED)
    ).scalar_one()
    prize = _open_prize()
    amount = float(prize.amount) if prize else float(current_app.config.get('INITIAL_PRIZE_AMOUNT', 100))
    rate = (successful / total * 100) if total else 0.0
    return {
        'totalAttempts': total,
        'successfulAttempts': successful,
        'failedAttempts': max(0, total - successful),
        'currentPrizeAmount': amount,
        'successRate': f"{rate:.2f}%",
    }
