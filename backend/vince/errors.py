"""Error taxonomy shared by services and HTTP handlers.

Each error carries the HTTP status it maps to. Services raise these; the
handlers registered in ``register_error_handlers`` turn them into the JSON
body ``{"error": message}`` used by every endpoint.
"""
from flask import current_app, jsonify
from pydantic import ValidationError

from vince import db


class VinceError(Exception):
    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        body = {'error': self.message}
        if self.details:
            body['details'] = self.details
        return body


class ValidationFailed(VinceError):
    status_code = 400


class AuthenticationRequired(VinceError):
    status_code = 401


class InsufficientTime(VinceError):
    status_code = 402


class OwnershipError(VinceError):
    status_code = 403


class NotFound(VinceError):
    status_code = 404


class ConflictError(VinceError):
    status_code = 409


class AttemptNotActive(ConflictError):
    pass


class ConsistencyError(VinceError):
    """An invariant that must hold by construction was observed broken."""
    status_code = 500


def register_error_handlers(flask_app) -> None:
    @flask_app.errorhandler(VinceError)
    def handle_vince_error(exc: VinceError):
        db.session.rollback()
        if isinstance(exc, OwnershipError):
            current_app.logger.warning(f"[access-denied] {exc.message}")
        elif isinstance(exc, ConsistencyError):
            current_app.logger.error(f"[consistency] {exc.message} {exc.details}")
        return jsonify(exc.to_dict()), exc.status_code

    @flask_app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError):
        errors = [
            {'field': '.'.join(str(p) for p in err['loc']), 'message': err['msg']}
            for err in exc.errors()
        ]
        return jsonify({'error': 'Invalid request body', 'details': errors}), 400
