"""Bearer tokens for convincers.

Tokens are ``itsdangerous`` signed payloads carrying the convincer id. The
Flask-Login ``request_loader`` registered in the app factory resolves the
``Authorization: Bearer <token>`` header through ``load_convincer_from_token``.
"""
from typing import Optional

from flask import current_app
from flask_login import current_user
from itsdangerous import BadData, SignatureExpired, URLSafeTimedSerializer

from vince import db
from vince.errors import AuthenticationRequired, OwnershipError

TOKEN_SALT = 'vince-convincer-token'


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=TOKEN_SALT)


def issue_token(convincer) -> str:
    return _serializer().dumps({'sub': convincer.id})


def convincer_id_from_token(token: Optional[str]) -> Optional[int]:
    if not token:
        return None
    max_age = int(current_app.config.get('TOKEN_MAX_AGE_SEC', 14 * 24 * 3600))
    try:
        payload = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        current_app.logger.info("[auth] expired token rejected")
        return None
    except BadData:
        return None
    try:
        return int(payload['sub'])
    except (KeyError, TypeError, ValueError):
        return None


def load_convincer_from_token(token: Optional[str]):
    from vince.models import Convincer

    convincer_id = convincer_id_from_token(token)
    if convincer_id is None:
        return None
    convincer = db.session.get(Convincer, convincer_id)
    if convincer is None or not convincer.is_active:
        return None
    return convincer


def bearer_token(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    scheme, _, token = header_value.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def require_convincer():
    """Return the authenticated convincer or raise."""
    if not current_user.is_authenticated:
        raise AuthenticationRequired('Authentication required')
    return current_user._get_current_object()


def require_self(convincer_id: int):
    """The authenticated convincer must be ``convincer_id``."""
    convincer = require_convincer()
    if convincer.id != convincer_id:
        raise OwnershipError(f'Access denied: convincer {convincer.id} acting on {convincer_id}')
    return convincer
