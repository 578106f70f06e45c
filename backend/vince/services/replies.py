import time
from typing import Optional

from flask import current_app
from sqlalchemy import select

from vince import db, socketio
from vince.models import AIResponse, Message
from vince.realtime import get_notifier
from . import attempts as attempt_service
from .scoring import apply_delta, reply_for, score


def _unanswered_through(attempt_id: int, message_id: int):
    """Messages of the attempt up to ``message_id`` still waiting for a reply, oldest first."""
    return db.session.execute(
        select(Message)
        .outerjoin(AIResponse, AIResponse.user_message_id == Message.id)
        .where(Message.attempt_id == attempt_id, Message.id <= message_id, AIResponse.id.is_(None))
        .order_by(Message.id)
    ).scalars().all()


def _answer(attempt, message: Message, threshold: int) -> AIResponse:
    delta = score(message.message, attempt.convincing_score)
    new_score = apply_delta(attempt.convincing_score, delta)
    ai_response = AIResponse(
        attempt_id=attempt.id,
        user_message_id=message.id,
        ai_response=reply_for(delta, new_score, threshold),
        convincing_score_snapshot=new_score,
        status='sent',
    )
    db.session.add(ai_response)
    attempt_service.write_score(attempt, new_score)
    current_app.logger.info(
        f"[reply] message={message.id} attempt={attempt.id} delta={delta} score={new_score} status={attempt.status}"
    )
    return ai_response


def generate_reply(message_id: int) -> Optional[AIResponse]:
    """Score a stored user message and record the AI's reply.

    - Returns the existing reply when the message was already answered
    - Returns None without writing when the attempt is no longer active
      (stopped or expired while the reply was pending)
    - Earlier unanswered messages of the attempt are answered first, so
      scores move in the order the messages were sent
    - Publishes ``ai_response_created`` per reply then ``attempt_updated``
      after commit
    """
    message = db.session.get(Message, message_id)
    if message is None:
        current_app.logger.info(f"[reply-abort] message={message_id} missing")
        return None

    attempt = attempt_service.lock_attempt(message.attempt_id)
    existing = db.session.execute(
        select(AIResponse).where(AIResponse.user_message_id == message.id)
    ).scalar_one_or_none()
    if existing is not None:
        db.session.rollback()
        return existing
    if not attempt.is_active:
        db.session.rollback()
        current_app.logger.info(
            f"[reply-abort] message={message_id} attempt={attempt.id} status={attempt.status}"
        )
        return None

    threshold = attempt_service.win_threshold()
    written = []
    for pending in _unanswered_through(attempt.id, message.id):
        # A win on an earlier message closes the attempt
        if not attempt.is_active:
            current_app.logger.info(
                f"[reply-abort] message={pending.id} attempt={attempt.id} status={attempt.status}"
            )
            break
        written.append(_answer(attempt, pending, threshold))
    db.session.commit()

    notifier = get_notifier()
    for ai_response in written:
        notifier.ai_response_created(ai_response, ai_response.convincing_score_snapshot)
    attempt_service.publish(attempt)
    return next((r for r in written if r.user_message_id == message.id), None)


def schedule_reply(app, message_id: int) -> Optional[AIResponse]:
    """Write the AI reply for ``message_id`` after AI_REPLY_DELAY_SEC.

    - Runs inline without delay (and returns the reply) in TESTING mode
      unless ENABLE_SCHEDULER_IN_TESTS is set
    - Otherwise runs as a Socket.IO background task and returns None
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return generate_reply(message_id)

    delay = float(app.config.get('AI_REPLY_DELAY_SEC', 1))

    def _worker(mid: int, wait: float):
        if wait > 0:
            time.sleep(wait)
        with app.app_context():
            try:
                generate_reply(mid)
            except Exception as exc:
                db.session.rollback()
                app.logger.warning(f"[reply-failed] message={mid} err={exc}")

    app.logger.info(f"[reply-scheduled] message={message_id} delay={delay}s")
    socketio.start_background_task(_worker, message_id, delay)
    return None
