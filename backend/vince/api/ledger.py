from decimal import Decimal

from flask import Blueprint, current_app, jsonify, request

from vince import db
from vince.auth import require_convincer, require_self
from vince.errors import ConflictError, NotFound, OwnershipError
from vince.models import Payment
from vince.schemas import PaymentCreateSchema, TimeDebitSchema
from vince.services import ledger as ledger_service


ledger = Blueprint('ledger', __name__)


def _balance_payload(convincer_id: int, balance: int) -> dict:
    return {'convincer_id': convincer_id, 'amount_time_seconds': balance}


@ledger.route('/time-balance/<int:convincer_id>', methods=['GET'])
def read_time_balance(convincer_id):
    require_self(convincer_id)
    return jsonify(_balance_payload(convincer_id, ledger_service.read_balance(convincer_id)))


# POST is the page-unload beacon; it carries the same body as PUT
@ledger.route('/time-balance/<int:convincer_id>', methods=['PUT', 'POST'])
def debit_time_balance(convincer_id):
    require_self(convincer_id)
    body = TimeDebitSchema.model_validate(request.get_json(silent=True, force=True) or {})
    balance = ledger_service.debit(convincer_id, body.seconds_to_subtract)
    return jsonify(_balance_payload(convincer_id, balance))


@ledger.route('/payments', methods=['POST'])
def create_payment():
    convincer = require_convincer()
    body = PaymentCreateSchema.model_validate(request.get_json(silent=True) or {})
    payment = Payment(
        convincer_id=convincer.id,
        amount_paid=Decimal(str(body.amount_paid)),
        time_purchased_seconds=body.time_purchased_seconds,
        status='pending',
    )
    db.session.add(payment)
    db.session.commit()
    current_app.logger.info(
        f"[payment-create] payment={payment.id} convincer={convincer.id} seconds={payment.time_purchased_seconds}"
    )
    return jsonify(payment.to_dict()), 201


def _owned_payment(payment_id: int, convincer_id: int) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if payment is None:
        raise NotFound('Payment not found')
    if payment.convincer_id != convincer_id:
        raise OwnershipError(f'Access denied: payment {payment_id} is not owned by convincer {convincer_id}')
    return payment


@ledger.route('/payments/<int:payment_id>', methods=['GET'])
def get_payment(payment_id):
    convincer = require_convincer()
    return jsonify(_owned_payment(payment_id, convincer.id).to_dict())


@ledger.route('/payments/<int:payment_id>/confirm', methods=['POST'])
def confirm_payment(payment_id):
    """Mark a pending payment completed and credit its seconds.

    Gateway confirmation happens upstream; this records the outcome. The
    status change and the credit commit together, so a failed credit
    leaves the payment pending and the confirm can be retried.
    """
    convincer = require_convincer()
    payment = _owned_payment(payment_id, convincer.id)
    if payment.status != 'pending':
        raise ConflictError('Payment was already processed', status=payment.status)
    payment.status = 'completed'
    reference = f"payment:{payment.id}"
    if not ledger_service.credit(convincer.id, payment.time_purchased_seconds, reference, commit=False):
        # A concurrent confirm credited it first
        raise ConflictError('Payment was already processed', status='completed')
    db.session.commit()
    current_app.logger.info(f"[payment-confirm] payment={payment.id} convincer={convincer.id}")

    balance = ledger_service.read_balance(convincer.id)
    return jsonify({
        'payment': payment.to_dict(),
        'timeBalance': _balance_payload(convincer.id, balance),
    })
