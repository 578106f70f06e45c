"""Attempt state machine.

    active -> active      (score update)
    active -> completed   (score reached WIN_THRESHOLD, awards the open prize)
    active -> expired     (countdown hit zero and the ledger is empty)
    active -> abandoned   (user stopped the attempt)

Terminal states are final. Every mutation locks the attempt row
(SELECT ... FOR UPDATE) so writers on the same attempt are applied one after
the other, and checks ownership before touching anything. Realtime pushes
happen only after the transaction commits.
"""
from typing import Optional, Tuple

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from vince import db
from vince.errors import (
    AttemptNotActive,
    ConflictError,
    ConsistencyError,
    InsufficientTime,
    NotFound,
    OwnershipError,
    ValidationFailed,
)
from vince.models import (
    ATTEMPT_ABANDONED,
    ATTEMPT_ACTIVE,
    ATTEMPT_COMPLETED,
    ATTEMPT_EXPIRED,
    TERMINAL_STATUSES,
    Attempt,
)
from vince.realtime import get_notifier
from vince.services import ledger, prizes
from vince.services.scoring import MAX_SCORE, MIN_SCORE


def win_threshold() -> int:
    return int(current_app.config.get('WIN_THRESHOLD', 95))


def lock_attempt(attempt_id: int) -> Attempt:
    attempt = db.session.execute(
        select(Attempt).where(Attempt.id == attempt_id).with_for_update()
    ).scalar_one_or_none()
    if attempt is None:
        raise NotFound('Attempt not found')
    return attempt


def check_owner(attempt: Attempt, convincer_id: int) -> None:
    if attempt.convincer_id != convincer_id:
        raise OwnershipError(f'Access denied: attempt {attempt.id} is not owned by convincer {convincer_id}')


def lock_owned_active(attempt_id: int, convincer_id: int) -> Attempt:
    attempt = lock_attempt(attempt_id)
    check_owner(attempt, convincer_id)
    if not attempt.is_active:
        raise AttemptNotActive('Attempt is not active', status=attempt.status)
    return attempt


def active_attempt_for(convincer_id: int) -> Optional[Attempt]:
    """The convincer's single active attempt, if any."""
    rows = db.session.execute(
        select(Attempt)
        .where(Attempt.convincer_id == convincer_id, Attempt.status == ATTEMPT_ACTIVE)
        .order_by(Attempt.id)
    ).scalars().all()
    if len(rows) > 1:
        raise ConsistencyError(
            'More than one active attempt for convincer',
            convincer_id=convincer_id,
            attempt_ids=[a.id for a in rows],
        )
    return rows[0] if rows else None


def _transition(attempt: Attempt, status: str) -> None:
    if status not in TERMINAL_STATUSES:
        raise ValidationFailed(f'Unknown terminal status: {status}')
    if not attempt.is_active:
        raise AttemptNotActive('Attempt is not active', status=attempt.status)
    attempt.status = status
    if status == ATTEMPT_COMPLETED:
        prizes.award_prize(attempt)
    current_app.logger.info(
        f"[attempt-{status}] attempt={attempt.id} convincer={attempt.convincer_id} score={attempt.convincing_score}"
    )


def write_score(attempt: Attempt, new_score: int) -> bool:
    """Store a clamped score on a locked active attempt; True if it won."""
    attempt.convincing_score = max(MIN_SCORE, min(MAX_SCORE, int(new_score)))
    if attempt.convincing_score >= win_threshold():
        _transition(attempt, ATTEMPT_COMPLETED)
        return True
    return False


def publish(attempt: Attempt) -> None:
    """Push the committed state of ``attempt`` to its subscribers."""
    notifier = get_notifier()
    notifier.attempt_updated(attempt)
    if attempt.status in TERMINAL_STATUSES:
        notifier.close_attempt(attempt)


def start_or_resume(convincer_id: int) -> Tuple[Attempt, bool]:
    """Resume the convincer's active attempt or open a new one.

    Returns ``(attempt, resumed)``. Either way the attempt's time is
    refreshed from the ledger.
    """
    balance = ledger.read_balance(convincer_id)
    existing = active_attempt_for(convincer_id)
    if existing is not None:
        existing.available_time_seconds = balance
        db.session.commit()
        current_app.logger.info(
            f"[attempt-resume] attempt={existing.id} convincer={convincer_id} time={balance}s score={existing.convincing_score}"
        )
        return existing, True

    if balance <= 0:
        raise InsufficientTime('No attempt time available, buy more time to start')

    attempt = Attempt(
        convincer_id=convincer_id,
        status=ATTEMPT_ACTIVE,
        available_time_seconds=balance,
        convincing_score=0,
    )
    db.session.add(attempt)
    try:
        db.session.commit()
    except IntegrityError:
        # Lost a race with a concurrent start; the winner's row is the one to resume
        db.session.rollback()
        existing = active_attempt_for(convincer_id)
        if existing is None:
            raise ConflictError('Could not start attempt, retry')
        existing.available_time_seconds = ledger.read_balance(convincer_id)
        db.session.commit()
        return existing, True
    current_app.logger.info(
        f"[attempt-start] attempt={attempt.id} convincer={convincer_id} time={balance}s"
    )
    return attempt, False


def set_score(attempt_id: int, convincer_id: int, new_score: int) -> Attempt:
    attempt = lock_owned_active(attempt_id, convincer_id)
    write_score(attempt, new_score)
    db.session.commit()
    publish(attempt)
    return attempt


def apply_delta(attempt_id: int, convincer_id: int, delta: int) -> Attempt:
    attempt = lock_owned_active(attempt_id, convincer_id)
    write_score(attempt, attempt.convincing_score + delta)
    db.session.commit()
    publish(attempt)
    return attempt


def complete(attempt_id: int, convincer_id: int) -> Attempt:
    """Mark a winning attempt completed. Safe to retry."""
    attempt = lock_attempt(attempt_id)
    check_owner(attempt, convincer_id)
    if attempt.status == ATTEMPT_COMPLETED:
        db.session.rollback()
        return attempt
    if not attempt.is_active:
        raise AttemptNotActive('Attempt is not active', status=attempt.status)
    if attempt.convincing_score < win_threshold():
        raise ConflictError('Score is below the win threshold', convincing_score=attempt.convincing_score)
    _transition(attempt, ATTEMPT_COMPLETED)
    db.session.commit()
    publish(attempt)
    return attempt


def stop(attempt_id: int, convincer_id: int) -> Attempt:
    attempt = lock_owned_active(attempt_id, convincer_id)
    _transition(attempt, ATTEMPT_ABANDONED)
    db.session.commit()
    publish(attempt)
    return attempt


def expire(attempt_id: int, convincer_id: int) -> Attempt:
    """Countdown reached zero: expire, or re-arm if the ledger has time.

    The ledger is read inside the row lock, so time bought mid-session keeps
    the attempt alive with its conversation intact.
    """
    attempt = lock_owned_active(attempt_id, convincer_id)
    balance = ledger.read_balance(convincer_id)
    if balance > 0:
        attempt.available_time_seconds = balance
        db.session.commit()
        current_app.logger.info(f"[attempt-rearm] attempt={attempt.id} time={balance}s")
        return attempt
    attempt.available_time_seconds = 0
    _transition(attempt, ATTEMPT_EXPIRED)
    db.session.commit()
    publish(attempt)
    return attempt


def get_owned(attempt_id: int, convincer_id: int) -> Attempt:
    attempt = db.session.get(Attempt, attempt_id)
    if attempt is None:
        raise NotFound('Attempt not found')
    check_owner(attempt, convincer_id)
    return attempt


def update(attempt_id: int, convincer_id: int, status: Optional[str] = None,
           convincing_score: Optional[int] = None) -> Attempt:
    """PATCH semantics: optional score write, then optional status change."""
    attempt = None
    if convincing_score is not None:
        attempt = set_score(attempt_id, convincer_id, convincing_score)
        if status == ATTEMPT_COMPLETED and attempt.status == ATTEMPT_COMPLETED:
            return attempt
    if status is None:
        return attempt or get_owned(attempt_id, convincer_id)
    if status == ATTEMPT_ACTIVE:
        attempt = get_owned(attempt_id, convincer_id)
        if not attempt.is_active:
            raise AttemptNotActive('Attempt cannot be reopened', status=attempt.status)
        return attempt
    if status == ATTEMPT_ABANDONED:
        return stop(attempt_id, convincer_id)
    if status == ATTEMPT_EXPIRED:
        return expire(attempt_id, convincer_id)
    if status == ATTEMPT_COMPLETED:
        return complete(attempt_id, convincer_id)
    raise ValidationFailed(f'Unknown status: {status}')
