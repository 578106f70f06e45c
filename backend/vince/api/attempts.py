from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from vince import db
from vince.auth import require_convincer, require_self
from vince.errors import NotFound
from vince.models import Attempt
from vince.schemas import AttemptUpdateSchema
from vince.services import attempts as attempt_service
from vince.services import ledger as ledger_service


attempts = Blueprint('attempts', __name__)


def _attempt_payload(attempt: Attempt) -> dict:
    payload = attempt.to_dict()
    payload['win_threshold'] = attempt_service.win_threshold()
    payload['sync_interval_seconds'] = int(current_app.config.get('SYNC_INTERVAL_SEC', 15))
    return payload


@attempts.route('/attempts', methods=['POST'])
def create_or_resume_attempt():
    convincer = require_convincer()
    attempt, resumed = attempt_service.start_or_resume(convincer.id)
    payload = _attempt_payload(attempt)
    payload['resumed'] = resumed
    return jsonify(payload), (200 if resumed else 201)


@attempts.route('/attempts/<int:attempt_id>', methods=['GET'])
def get_attempt(attempt_id):
    attempt = db.session.get(Attempt, attempt_id)
    if attempt is None:
        raise NotFound('Attempt not found')
    # Non-owners only see the public subset
    if not current_user.is_authenticated or current_user.id != attempt.convincer_id:
        return jsonify(attempt.to_dict(public=True))
    return jsonify(_attempt_payload(attempt))


@attempts.route('/attempts/<int:attempt_id>', methods=['PATCH'])
def update_attempt(attempt_id):
    convincer = require_convincer()
    body = AttemptUpdateSchema.model_validate(request.get_json(silent=True) or {})
    attempt = attempt_service.update(
        attempt_id,
        convincer.id,
        status=body.status,
        convincing_score=body.convincing_score,
    )
    return jsonify(_attempt_payload(attempt))


@attempts.route('/attempts/<int:attempt_id>/messages', methods=['GET'])
def list_attempt_messages(attempt_id):
    convincer = require_convincer()
    attempt = attempt_service.get_owned(attempt_id, convincer.id)
    return jsonify([m.to_dict() for m in attempt.messages])


@attempts.route('/attempts/<int:attempt_id>/ai-responses', methods=['GET'])
def list_attempt_ai_responses(attempt_id):
    convincer = require_convincer()
    attempt = attempt_service.get_owned(attempt_id, convincer.id)
    return jsonify([r.to_dict() for r in attempt.ai_responses])


@attempts.route('/convincers/<int:convincer_id>/attempts/active', methods=['GET'])
def get_active_attempt(convincer_id):
    require_self(convincer_id)
    attempt = attempt_service.active_attempt_for(convincer_id)
    if attempt is None:
        raise NotFound('No active attempt')
    payload = _attempt_payload(attempt)
    payload['time_balance_seconds'] = ledger_service.read_balance(convincer_id)
    return jsonify(payload)
