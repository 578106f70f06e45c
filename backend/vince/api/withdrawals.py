from flask import Blueprint, jsonify, request

from vince.auth import require_convincer, require_self
from vince.schemas import WithdrawalCreateSchema, WithdrawalUpdateSchema
from vince.services import withdrawals as withdrawal_service


withdrawals = Blueprint('withdrawals', __name__)


@withdrawals.route('/withdrawals', methods=['POST'])
def create_withdrawal():
    convincer = require_convincer()
    body = WithdrawalCreateSchema.model_validate(request.get_json(silent=True) or {})
    withdrawal = withdrawal_service.request_withdrawal(
        convincer.id,
        body.prize_id,
        body.certificate_id,
        amount=body.amount_withdrawn,
        description=body.description,
    )
    return jsonify(withdrawal.to_dict()), 201


@withdrawals.route('/withdrawals/<int:withdrawal_id>', methods=['GET'])
def get_withdrawal(withdrawal_id):
    convincer = require_convincer()
    withdrawal = withdrawal_service.get_owned(withdrawal_id, convincer.id)
    payload = withdrawal.to_dict()
    payload['prize'] = withdrawal.prize.to_dict()
    return jsonify(payload)


@withdrawals.route('/withdrawals/<int:withdrawal_id>', methods=['PATCH'])
def update_withdrawal(withdrawal_id):
    convincer = require_convincer()
    body = WithdrawalUpdateSchema.model_validate(request.get_json(silent=True) or {})
    withdrawal = withdrawal_service.set_status(withdrawal_id, convincer.id, body.status)
    return jsonify(withdrawal.to_dict())


@withdrawals.route('/convincers/<int:convincer_id>/withdrawals', methods=['GET'])
def list_convincer_withdrawals(convincer_id):
    require_self(convincer_id)
    return jsonify([w.to_dict() for w in withdrawal_service.for_convincer(convincer_id)])
