from apscheduler.schedulers.background import BackgroundScheduler
from utils.logging_utils import get_logger
from utils.payment_engine import get_payment_engine

logger = get_logger("scheduler")

scheduler = BackgroundScheduler(timezone="UTC")


def monitor_pending_transactions_job(app):
    with app.app_context():
        try:
            logger.info("Running confirmation monitor sweep...")
            summary = get_payment_engine(app).monitor_pending_transactions()
            logger.info(f"Confirmation monitor sweep completed: {summary}")
        except Exception:
            logger.exception("Confirmation monitor sweep failed")


def recurring_payments_job(app):
    with app.app_context():
        try:
            logger.info("Running recurring payment batch...")
            summary = get_payment_engine(app).run_recurring_payments_batch()
            logger.info(f"Recurring payment batch completed: {summary}")
        except Exception:
            # store unreachable: the next scheduled run retries
            logger.exception("Recurring payment batch failed")


def low_balance_check_job(app):
    with app.app_context():
        try:
            logger.info("Running low balance check...")
            alerted = get_payment_engine(app).run_low_balance_check()
            logger.info(f"Low balance check completed, {len(alerted)} project(s) alerted")
        except Exception:
            logger.exception("Low balance check failed")


def start_scheduler(app):
    monitor_minutes = app.config.get('MONITOR_INTERVAL_MINUTES', 5)
    payment_hour = app.config.get('RECURRING_PAYMENTS_HOUR', 0)

    # every 5 minutes by default
    scheduler.add_job(lambda: monitor_pending_transactions_job(app), 'interval', minutes=monitor_minutes,
                      id='confirmation_monitor', max_instances=1, coalesce=True, replace_existing=True)
    # once a day
    scheduler.add_job(lambda: recurring_payments_job(app), 'cron', hour=payment_hour, minute=0,
                      id='recurring_payments', max_instances=1, coalesce=True, replace_existing=True)
    scheduler.add_job(lambda: low_balance_check_job(app), 'cron', hour=payment_hour, minute=30,
                      id='low_balance_check', max_instances=1, coalesce=True, replace_existing=True)

    scheduler.start()
    logger.info(f"Scheduler started: monitor every {monitor_minutes}min, "
                f"recurring payments daily at {payment_hour:02d}:00 UTC")
