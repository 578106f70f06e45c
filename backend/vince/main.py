from flask import Blueprint, current_app, jsonify, request

from vince import db
from vince.auth import issue_token, require_self
from vince.errors import ConflictError, AuthenticationRequired
from vince.models import Convincer
from vince.schemas import LoginSchema, RegisterSchema

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Vince server!'})

@main.route('/health')
def health():
    return jsonify({'status': 'ok'})

@main.route('/convincers', methods=['POST'])
def register():
    body = RegisterSchema.model_validate(request.get_json(silent=True) or {})
    if Convincer.query.filter_by(email=body.email).first():
        raise ConflictError('Email already registered')

    convincer = Convincer(name=body.name, email=body.email, status='active')
    convincer.set_password(body.password)
    db.session.add(convincer)
    db.session.commit()
    current_app.logger.info(f"[register] convincer={convincer.id}")
    return jsonify({'convincer': convincer.to_dict(), 'token': issue_token(convincer)}), 201

@main.route('/login', methods=['POST'])
def login():
    body = LoginSchema.model_validate(request.get_json(silent=True) or {})
    convincer = Convincer.query.filter_by(email=body.email).first()
    if not convincer or not convincer.is_active or not convincer.check_password(body.password):
        raise AuthenticationRequired('Invalid email or password')
    return jsonify({'convincer': convincer.to_dict(), 'token': issue_token(convincer)})

@main.route('/convincers/<int:convincer_id>', methods=['GET'])
def get_convincer(convincer_id):
    convincer = require_self(convincer_id)
    return jsonify(convincer.to_dict())
