from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, origins=allowed_origins, allow_headers=['Authorization', 'Content-Type'])

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from vince.errors import register_error_handlers
    register_error_handlers(flask_app)

    # Realtime notifier owns the attempt subscriber registry for this app
    from vince.realtime import EXTENSION_KEY, RealtimeNotifier, register_socketio_handlers
    flask_app.extensions[EXTENSION_KEY] = RealtimeNotifier(socketio)
    register_socketio_handlers()

    # Import and register blueprints here
    from vince.main import main
    flask_app.register_blueprint(main)

    from vince.api.attempts import attempts
    from vince.api.ledger import ledger
    from vince.api.messages import messages
    from vince.api.prizes import prizes
    from vince.api.withdrawals import withdrawals
    flask_app.register_blueprint(attempts)
    flask_app.register_blueprint(ledger)
    flask_app.register_blueprint(messages)
    flask_app.register_blueprint(prizes)
    flask_app.register_blueprint(withdrawals)

    # Bearer token identity for every request
    from vince.auth import bearer_token, load_convincer_from_token
    from vince.models import Convincer

    @login_manager.request_loader
    def load_convincer_from_request(request):
        return load_convincer_from_token(bearer_token(request.headers.get('Authorization')))

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(Convincer, int(user_id))

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from vince.models import Prize
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            db.session.add(Prize(amount=flask_app.config.get('INITIAL_PRIZE_AMOUNT', 100), status='open'))
            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
