from flask import Blueprint, current_app, jsonify, request

from vince import db
from vince.auth import require_convincer
from vince.errors import AttemptNotActive, ConflictError, NotFound
from vince.models import AIResponse, Message
from vince.realtime import get_notifier
from vince.schemas import AIResponseCreateSchema, MessageCreateSchema
from vince.services import attempts as attempt_service
from vince.services.replies import schedule_reply


messages = Blueprint('messages', __name__)


@messages.route('/messages', methods=['POST'])
def create_message():
    """Append a user message; the score is untouched until the reply."""
    convincer = require_convincer()
    body = MessageCreateSchema.model_validate(request.get_json(silent=True) or {})
    attempt = attempt_service.lock_owned_active(body.attempt_id, convincer.id)
    message = Message(
        attempt_id=attempt.id,
        convincer_id=convincer.id,
        message=body.message,
        convincing_score_snapshot=attempt.convincing_score,
        status='sent',
    )
    db.session.add(message)
    db.session.commit()
    current_app.logger.info(f"[message] message={message.id} attempt={attempt.id} length={len(body.message)}")
    return jsonify(message.to_dict()), 201


@messages.route('/messages/<int:message_id>/reply', methods=['POST'])
def reply_to_message(message_id):
    convincer = require_convincer()
    message = db.session.get(Message, message_id)
    if message is None:
        raise NotFound('Message not found')
    attempt = attempt_service.get_owned(message.attempt_id, convincer.id)
    if not attempt.is_active:
        raise AttemptNotActive('Attempt is not active', status=attempt.status)

    ai_response = schedule_reply(current_app._get_current_object(), message.id)
    db.session.refresh(attempt)
    if ai_response is None:
        # An earlier message in the queue won the attempt
        if not attempt.is_active:
            raise AttemptNotActive('Attempt is not active', status=attempt.status)
        return jsonify({'message_id': message.id, 'scheduled': True}), 202

    return jsonify({
        'aiResponse': ai_response.to_dict(),
        'newScore': attempt.convincing_score,
        'status': attempt.status,
        'isWinner': attempt.status == 'completed',
    })


@messages.route('/ai-responses', methods=['POST'])
def create_ai_response():
    """Record an externally generated reply with its score snapshot."""
    convincer = require_convincer()
    body = AIResponseCreateSchema.model_validate(request.get_json(silent=True) or {})
    attempt = attempt_service.lock_owned_active(body.attempt_id, convincer.id)
    message = db.session.get(Message, body.user_message_id)
    if message is None or message.attempt_id != attempt.id:
        raise NotFound('Message not found for this attempt')
    if AIResponse.query.filter_by(user_message_id=message.id).first():
        raise ConflictError('Message already has a response')

    ai_response = AIResponse(
        attempt_id=attempt.id,
        user_message_id=message.id,
        ai_response=body.ai_response,
        convincing_score_snapshot=body.convincing_score_snapshot,
        status='sent',
    )
    db.session.add(ai_response)
    db.session.commit()
    get_notifier().ai_response_created(ai_response, attempt.convincing_score)
    return jsonify(ai_response.to_dict()), 201


@messages.route('/ai-responses/<int:response_id>', methods=['GET'])
def get_ai_response(response_id):
    convincer = require_convincer()
    ai_response = db.session.get(AIResponse, response_id)
    if ai_response is None:
        raise NotFound('AI response not found')
    attempt_service.get_owned(ai_response.attempt_id, convincer.id)
    return jsonify(ai_response.to_dict())
