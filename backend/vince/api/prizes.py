from flask import Blueprint, jsonify

from vince import db
from vince.errors import NotFound, ValidationFailed
from vince.models import Convincer
from vince.services import prizes as prize_service


prizes = Blueprint('prizes', __name__)


@prizes.route('/prizes/current', methods=['GET'])
def get_current_prize():
    return jsonify(prize_service.current_prize().to_dict())


@prizes.route('/prizes/statistics', methods=['GET'])
def get_prize_statistics():
    return jsonify(prize_service.statistics())


@prizes.route('/prize-certificates/<string:certificate_hash>', methods=['GET'])
def get_prize_certificate(certificate_hash):
    certificate = prize_service.certificate_by_hash(certificate_hash)
    if certificate is None:
        raise NotFound('Certificate not found')
    payload = certificate.to_dict()
    payload['prize'] = certificate.prize.to_dict() if certificate.prize else None
    return jsonify(payload)


@prizes.route('/prize-certificates/verify/<string:certificate_hash>', methods=['GET'])
def verify_prize_certificate(certificate_hash):
    """Public check that a certificate hash belongs to a real, active win."""
    certificate = prize_service.certificate_by_hash(certificate_hash)
    if certificate is None:
        raise NotFound('Certificate not found or invalid')
    if certificate.status != 'active':
        raise ValidationFailed('Certificate is not active', status=certificate.status)
    winner = db.session.get(Convincer, certificate.convincer_id)
    return jsonify({
        'id': certificate.id,
        'hash': certificate.hash,
        'status': certificate.status,
        'created_at': certificate.to_dict()['created_at'],
        'prize': {
            'amount': float(certificate.prize.amount),
            'distributed_at': certificate.prize.to_dict()['distributed_at'],
        },
        'winner': {'name': winner.name if winner else None},
        'isValid': True,
    })
