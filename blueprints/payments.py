from flask import Blueprint, request, jsonify, current_app
from sqlalchemy.exc import SQLAlchemyError

from utils.exceptions import InvalidPaymentJob
from utils.payment_engine import get_payment_engine

payments_bp = Blueprint('payments', __name__, url_prefix='/api/payments')


# Queue a task payment (called once a task is approved)
@payments_bp.route('/tasks', methods=['POST'])
def enqueue_task_payment():
    data = request.get_json(silent=True) or {}
    engine = get_payment_engine()

    try:
        job_id = engine.enqueue_payment(
            task_id=data.get('taskId'),
            project_id=data.get('projectId'),
            destination_wallet=data.get('destinationWallet'),
            amount=data.get('amount'),
            escrow_address=data.get('escrowAddress'),
            key_material=data.get('escrowKeyMaterial'),
        )
    except InvalidPaymentJob as e:
        return jsonify({'success': False, 'message': str(e), 'fields': e.fields}), 400
    except Exception as e:
        current_app.logger.error(f"Error queueing payment for task {data.get('taskId')}: {e}")
        return jsonify({'success': False, 'message': 'Failed to queue payment'}), 500

    return jsonify({'success': True, 'jobId': job_id}), 202


@payments_bp.route('/jobs/<job_id>', methods=['GET'])
def payment_job_status(job_id):
    status = get_payment_engine().get_job_status(job_id)
    if status is None:
        return jsonify({'success': False, 'message': 'Job not found'}), 404
    return jsonify({'success': True, **status}), 200


# Manual triggers for the periodic sweeps (cron / admin)
@payments_bp.route('/recurring/run', methods=['POST'])
def run_recurring_payments():
    try:
        summary = get_payment_engine().run_recurring_payments_batch()
    except SQLAlchemyError as e:
        current_app.logger.error(f"Recurring payment batch failed: {e}")
        return jsonify({'success': False, 'message': 'Ledger store unavailable'}), 503
    return jsonify({'success': True, **summary}), 200


@payments_bp.route('/low-balance/run', methods=['POST'])
def run_low_balance_check():
    try:
        alerted = get_payment_engine().run_low_balance_check()
    except SQLAlchemyError as e:
        current_app.logger.error(f"Low balance check failed: {e}")
        return jsonify({'success': False, 'message': 'Ledger store unavailable'}), 503
    return jsonify({'success': True, 'alertedProjects': alerted}), 200


@payments_bp.route('/monitor/run', methods=['POST'])
def run_confirmation_monitor():
    try:
        summary = get_payment_engine().monitor_pending_transactions()
    except SQLAlchemyError as e:
        current_app.logger.error(f"Confirmation monitor sweep failed: {e}")
        return jsonify({'success': False, 'message': 'Ledger store unavailable'}), 503
    if summary is None:
        return jsonify({'success': True, 'skipped': True}), 200
    return jsonify({'success': True, **summary}), 200
