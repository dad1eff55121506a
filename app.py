from flask import Flask, jsonify
from flask_cors import CORS
from flask_migrate import Migrate
from extensions import db
from dotenv import load_dotenv
import os

# Model registration is imported up front so the dependency is explicit
from models import register_models

from blueprints.payments import payments_bp
from commands import payments_cli

load_dotenv()


def create_app(config_overrides=None):
    app = Flask(__name__)

    CORS(app)

    # ===== configuration =====
    app.config.update(
        SECRET_KEY=os.getenv('SECRET_KEY'),
        SQLALCHEMY_DATABASE_URI=os.getenv('DB_URI'),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        REDIS_URL=os.getenv('REDIS_URL'),
        WEB3_PROVIDER=os.getenv('WEB3_PROVIDER'),
        ESCROW_KEY_PASSWORD=os.getenv('ESCROW_KEY_PASSWORD'),
        PAYMENT_QUEUE_NAME=os.getenv('PAYMENT_QUEUE_NAME', 'task-payments'),
        PAYMENT_WORKER_CONCURRENCY=int(os.getenv('PAYMENT_WORKER_CONCURRENCY', 2)),
        PAYMENT_MAX_ATTEMPTS=int(os.getenv('PAYMENT_MAX_ATTEMPTS', 3)),
        PAYMENT_RETRY_BASE_SECONDS=int(os.getenv('PAYMENT_RETRY_BASE_SECONDS', 5)),
        PAYMENT_JOB_TIMEOUT=int(os.getenv('PAYMENT_JOB_TIMEOUT', 600)),
        CHAIN_CONFIRMATION_TIMEOUT=int(os.getenv('CHAIN_CONFIRMATION_TIMEOUT', 120)),
        CHAIN_POLL_LATENCY=float(os.getenv('CHAIN_POLL_LATENCY', 2)),
        CHAIN_RPC_TIMEOUT=float(os.getenv('CHAIN_RPC_TIMEOUT', 15)),
        CHAIN_PRIORITY_FEE_GWEI=float(os.getenv('CHAIN_PRIORITY_FEE_GWEI', 2)),
        MONITOR_INTERVAL_MINUTES=int(os.getenv('MONITOR_INTERVAL_MINUTES', 5)),
        MONITOR_WINDOW_HOURS=float(os.getenv('MONITOR_WINDOW_HOURS', 24)),
        RECURRING_PAYMENTS_HOUR=int(os.getenv('RECURRING_PAYMENTS_HOUR', 0)),
        RECURRING_LOCK_TIMEOUT=int(os.getenv('RECURRING_LOCK_TIMEOUT', 3600)),
        ALERT_WEBHOOK_URL=os.getenv('ALERT_WEBHOOK_URL'),
    )
    if config_overrides:
        app.config.update(config_overrides)

    # ===== extensions =====
    db.init_app(app)
    Migrate(app, db)

    with app.app_context():
        register_models()

    # ===== blueprints & commands =====
    app.register_blueprint(payments_bp)
    app.cli.add_command(payments_cli)

    # health check
    @app.route('/')
    def health_check():
        return jsonify({'status': 'healthy'})

    return app


if __name__ == '__main__':
    from scheduler import start_scheduler  # deferred import
    app = create_app()
    start_scheduler(app)
    app.run(host='0.0.0.0', port=5000)
