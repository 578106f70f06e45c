from datetime import datetime, timezone

from flask_login import UserMixin

from vince import db, bcrypt

ATTEMPT_ACTIVE = 'active'
ATTEMPT_COMPLETED = 'completed'
ATTEMPT_EXPIRED = 'expired'
ATTEMPT_ABANDONED = 'abandoned'
ATTEMPT_STATUSES = (ATTEMPT_ACTIVE, ATTEMPT_COMPLETED, ATTEMPT_EXPIRED, ATTEMPT_ABANDONED)
TERMINAL_STATUSES = frozenset({ATTEMPT_COMPLETED, ATTEMPT_EXPIRED, ATTEMPT_ABANDONED})


def utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class Convincer(UserMixin, db.Model):
    __tablename__ = 'convincer'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    status = db.Column(db.String(16), nullable=False, default='active')  # active, inactive
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    time_balance = db.relationship('TimeBalance', back_populates='convincer', uselist=False)
    attempts = db.relationship('Attempt', back_populates='convincer', lazy='dynamic')

    @property
    def is_active(self):
        return self.status == 'active'

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'status': self.status,
            'created_at': _iso(self.created_at),
        }


class Payment(db.Model):
    __tablename__ = 'payment'
    id = db.Column(db.Integer, primary_key=True)
    convincer_id = db.Column(db.Integer, db.ForeignKey('convincer.id'), nullable=False, index=True)
    amount_paid = db.Column(db.Numeric(10, 2), nullable=False)
    time_purchased_seconds = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default='pending')  # pending, completed, failed
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'convincer_id': self.convincer_id,
            'amount_paid': float(self.amount_paid),
            'time_purchased_seconds': self.time_purchased_seconds,
            'status': self.status,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class TimeBalance(db.Model):
    __tablename__ = 'time_balance'
    __table_args__ = (
        db.CheckConstraint('amount_time_seconds >= 0', name='ck_time_balance_non_negative'),
    )
    id = db.Column(db.Integer, primary_key=True)
    convincer_id = db.Column(db.Integer, db.ForeignKey('convincer.id'), unique=True, nullable=False)
    amount_time_seconds = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    convincer = db.relationship('Convincer', back_populates='time_balance')

    def to_dict(self):
        return {
            'convincer_id': self.convincer_id,
            'amount_time_seconds': self.amount_time_seconds,
            'updated_at': _iso(self.updated_at),
        }


class TimeCredit(db.Model):
    """One row per payment that has credited the ledger."""
    __tablename__ = 'time_credit'
    id = db.Column(db.Integer, primary_key=True)
    convincer_id = db.Column(db.Integer, db.ForeignKey('convincer.id'), nullable=False, index=True)
    payment_reference = db.Column(db.String(64), unique=True, nullable=False)
    seconds = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)


class Attempt(db.Model):
    __tablename__ = 'attempt'
    __table_args__ = (
        # At most one active attempt per convincer
        db.Index(
            'uq_attempt_one_active_per_convincer',
            'convincer_id',
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
    )
    id = db.Column(db.Integer, primary_key=True)
    convincer_id = db.Column(db.Integer, db.ForeignKey('convincer.id'), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=ATTEMPT_ACTIVE)
    available_time_seconds = db.Column(db.Integer, nullable=False, default=0)
    convincing_score = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    convincer = db.relationship('Convincer', back_populates='attempts')
    messages = db.relationship('Message', back_populates='attempt', lazy='dynamic', order_by='Message.id')
    ai_responses = db.relationship('AIResponse', back_populates='attempt', lazy='dynamic', order_by='AIResponse.id')

    @property
    def is_active(self):
        return self.status == ATTEMPT_ACTIVE

    def to_dict(self, public=False):
        data = {
            'id': self.id,
            'status': self.status,
            'convincing_score': self.convincing_score,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
        if not public:
            data['convincer_id'] = self.convincer_id
            data['available_time_seconds'] = self.available_time_seconds
        return data


class Message(db.Model):
    __tablename__ = 'message'
    id = db.Column(db.Integer, primary_key=True)
    attempt_id = db.Column(db.Integer, db.ForeignKey('attempt.id'), nullable=False, index=True)
    convincer_id = db.Column(db.Integer, db.ForeignKey('convincer.id'), nullable=False)
    message = db.Column(db.Text, nullable=False)
    convincing_score_snapshot = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default='sent')
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    attempt = db.relationship('Attempt', back_populates='messages')
    ai_response = db.relationship('AIResponse', back_populates='user_message', uselist=False)

    def to_dict(self):
        return {
            'id': self.id,
            'attempt_id': self.attempt_id,
            'convincer_id': self.convincer_id,
            'message': self.message,
            'convincing_score_snapshot': self.convincing_score_snapshot,
            'status': self.status,
            'created_at': _iso(self.created_at),
        }


class AIResponse(db.Model):
    __tablename__ = 'ai_response'
    id = db.Column(db.Integer, primary_key=True)
    attempt_id = db.Column(db.Integer, db.ForeignKey('attempt.id'), nullable=False, index=True)
    user_message_id = db.Column(db.Integer, db.ForeignKey('message.id'), unique=True, nullable=False)
    ai_response = db.Column(db.Text, nullable=False)
    convincing_score_snapshot = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default='sent')
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    attempt = db.relationship('Attempt', back_populates='ai_responses')
    user_message = db.relationship('Message', back_populates='ai_response')

    def to_dict(self):
        return {
            'id': self.id,
            'attempt_id': self.attempt_id,
            'user_message_id': self.user_message_id,
            'ai_response': self.ai_response,
            'convincing_score_snapshot': self.convincing_score_snapshot,
            'status': self.status,
            'created_at': _iso(self.created_at),
        }


class Prize(db.Model):
    __tablename__ = 'prize'
    id = db.Column(db.Integer, primary_key=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(16), nullable=False, default='open')  # open, distributed
    winner_convincer_id = db.Column(db.Integer, db.ForeignKey('convincer.id'), nullable=True)
    winning_attempt_id = db.Column(db.Integer, db.ForeignKey('attempt.id'), nullable=True)
    distributed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'amount': float(self.amount),
            'status': self.status,
            'winner_convincer_id': self.winner_convincer_id,
            'winning_attempt_id': self.winning_attempt_id,
            'distributed_at': _iso(self.distributed_at),
            'created_at': _iso(self.created_at),
        }


class PrizeCertificate(db.Model):
    __tablename__ = 'prize_certificate'
    id = db.Column(db.Integer, primary_key=True)
    convincer_id = db.Column(db.Integer, db.ForeignKey('convincer.id'), nullable=False, index=True)
    prize_id = db.Column(db.Integer, db.ForeignKey('prize.id'), unique=True, nullable=False)
    # Set in the same transaction once the id is assigned
    hash = db.Column(db.String(64), unique=True, nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default='active')
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    prize = db.relationship('Prize')

    def to_dict(self):
        return {
            'id': self.id,
            'convincer_id': self.convincer_id,
            'prize_id': self.prize_id,
            'hash': self.hash,
            'status': self.status,
            'created_at': _iso(self.created_at),
        }


WITHDRAWAL_TRANSITIONS = {
    'pending': ('approved', 'rejected'),
    'approved': ('completed', 'rejected'),
    'completed': (),
    'rejected': (),
}


class Withdrawal(db.Model):
    """Payout request for a won prize; one per prize."""
    __tablename__ = 'withdrawal'
    id = db.Column(db.Integer, primary_key=True)
    convincer_id = db.Column(db.Integer, db.ForeignKey('convincer.id'), nullable=False, index=True)
    prize_id = db.Column(db.Integer, db.ForeignKey('prize.id'), unique=True, nullable=False)
    certificate_id = db.Column(db.Integer, db.ForeignKey('prize_certificate.id'), nullable=False)
    hash = db.Column(db.String(64), nullable=False)
    amount_withdrawn = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(16), nullable=False, default='pending')  # pending, approved, completed, rejected
    description = db.Column(db.String(500), nullable=True)
    requested_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    prize = db.relationship('Prize')
    certificate = db.relationship('PrizeCertificate')

    def to_dict(self):
        return {
            'id': self.id,
            'convincer_id': self.convincer_id,
            'prize_id': self.prize_id,
            'certificate_id': self.certificate_id,
            'hash': self.hash,
            'amount_withdrawn': float(self.amount_withdrawn),
            'status': self.status,
            'description': self.description,
            'requested_at': _iso(self.requested_at),
            'completed_at': _iso(self.completed_at),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
