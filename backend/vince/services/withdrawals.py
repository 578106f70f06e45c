"""Prize payouts: a winner asks to withdraw a prize they hold a certificate for.

    pending -> approved -> completed
    pending | approved -> rejected
"""
from decimal import Decimal
from typing import List, Optional

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from vince import db
from vince.errors import ConflictError, NotFound, OwnershipError, ValidationFailed
from vince.models import WITHDRAWAL_TRANSITIONS, Prize, PrizeCertificate, Withdrawal, utcnow


def request_withdrawal(convincer_id: int, prize_id: int, certificate_id: int,
                       amount: Optional[float] = None, description: Optional[str] = None) -> Withdrawal:
    prize = db.session.get(Prize, prize_id)
    if prize is None:
        raise NotFound('Prize not found')
    if prize.winner_convincer_id != convincer_id:
        raise OwnershipError(f'Access denied: convincer {convincer_id} did not win prize {prize_id}')
    if prize.status != 'distributed':
        raise ValidationFailed('Prize has not been distributed', status=prize.status)

    certificate = db.session.get(PrizeCertificate, certificate_id)
    if certificate is None:
        raise NotFound('Certificate not found')
    if certificate.convincer_id != convincer_id or certificate.prize_id != prize.id:
        raise OwnershipError(f'Access denied: certificate {certificate_id} does not match prize {prize_id}')

    prize_amount = Decimal(prize.amount)
    withdrawn = prize_amount if amount is None else Decimal(str(amount))
    if withdrawn > prize_amount:
        raise ValidationFailed('Amount exceeds the prize', prize_amount=float(prize_amount))

    existing = db.session.execute(
        select(Withdrawal.id).where(Withdrawal.prize_id == prize.id)
    ).scalar_one_or_none()
    if existing is not None:
        raise ConflictError('Withdrawal already requested for this prize', withdrawal_id=existing)

    withdrawal = Withdrawal(
        convincer_id=convincer_id,
        prize_id=prize.id,
        certificate_id=certificate.id,
        hash=certificate.hash,
        amount_withdrawn=withdrawn,
        status='pending',
        description=description,
    )
    db.session.add(withdrawal)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError('Withdrawal already requested for this prize')
    current_app.logger.info(
        f"[withdrawal-request] withdrawal={withdrawal.id} prize={prize.id} convincer={convincer_id} amount={withdrawn}"
    )
    return withdrawal


def get_owned(withdrawal_id: int, convincer_id: int) -> Withdrawal:
    withdrawal = db.session.get(Withdrawal, withdrawal_id)
    if withdrawal is None:
        raise NotFound('Withdrawal not found')
    if withdrawal.convincer_id != convincer_id:
        raise OwnershipError(f'Access denied: withdrawal {withdrawal_id} is not owned by convincer {convincer_id}')
    return withdrawal


def set_status(withdrawal_id: int, convincer_id: int, status: str) -> Withdrawal:
    withdrawal = get_owned(withdrawal_id, convincer_id)
    if status not in WITHDRAWAL_TRANSITIONS.get(withdrawal.status, ()):
        raise ConflictError(f'Cannot move a {withdrawal.status} withdrawal to {status}', status=withdrawal.status)
    withdrawal.status = status
    if status == 'completed':
        withdrawal.completed_at = utcnow()
    db.session.commit()
    current_app.logger.info(f"[withdrawal-{status}] withdrawal={withdrawal.id} prize={withdrawal.prize_id}")
    return withdrawal


def for_convincer(convincer_id: int) -> List[Withdrawal]:
    return db.session.execute(
        select(Withdrawal).where(Withdrawal.convincer_id == convincer_id).order_by(Withdrawal.id)
    ).scalars().all()
