"""Time ledger: purchased-but-unused attempt seconds per convincer.

Balances are only changed with single UPDATE statements evaluated by the
database (``amount = amount + n`` / floored subtraction), never by reading
the value into Python and writing it back.
"""
from flask import current_app
from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError

from vince import db
from vince.errors import ConflictError, ValidationFailed
from vince.models import TimeBalance, TimeCredit, utcnow


def read_balance(convincer_id: int) -> int:
    """Current balance in seconds; 0 when the convincer has no ledger row."""
    amount = db.session.execute(
        select(TimeBalance.amount_time_seconds).where(TimeBalance.convincer_id == convincer_id)
    ).scalar_one_or_none()
    return int(amount or 0)


def credit(convincer_id: int, seconds: int, payment_reference: str, commit: bool = True) -> bool:
    """Add ``seconds`` for a completed payment.

    Returns False when ``payment_reference`` already credited the ledger.
    With ``commit=False`` the credit joins the caller's transaction; a
    failure here rolls back everything the caller staged with it.
    """
    if seconds <= 0:
        raise ValidationFailed('Credit must be a positive number of seconds')
    payment_reference = str(payment_reference)

    db.session.add(TimeCredit(
        convincer_id=convincer_id,
        payment_reference=payment_reference,
        seconds=seconds,
    ))
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        current_app.logger.info(
            f"[ledger-credit-dup] convincer={convincer_id} payment={payment_reference} ignored"
        )
        return False

    exists = db.session.execute(
        select(TimeBalance.id).where(TimeBalance.convincer_id == convincer_id)
    ).scalar_one_or_none()
    if exists is None:
        db.session.add(TimeBalance(convincer_id=convincer_id, amount_time_seconds=0))
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError('Concurrent ledger creation, retry the credit')

    db.session.execute(
        update(TimeBalance)
        .where(TimeBalance.convincer_id == convincer_id)
        .values(
            amount_time_seconds=TimeBalance.amount_time_seconds + seconds,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if commit:
        db.session.commit()
    current_app.logger.info(
        f"[ledger-credit] convincer={convincer_id} payment={payment_reference} seconds={seconds}"
    )
    return True


def debit(convincer_id: int, seconds: int) -> int:
    """Subtract ``seconds`` floored at zero and return the new balance.

    A convincer without a ledger row is left untouched.
    """
    if seconds < 0:
        raise ValidationFailed('Debit must not be negative')
    if seconds:
        result = db.session.execute(
            update(TimeBalance)
            .where(TimeBalance.convincer_id == convincer_id)
            .values(
                amount_time_seconds=case(
                    (TimeBalance.amount_time_seconds > seconds, TimeBalance.amount_time_seconds - seconds),
                    else_=0,
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        if result.rowcount:
            current_app.logger.info(f"[ledger-debit] convincer={convincer_id} seconds={seconds}")
    return read_balance(convincer_id)
