# utils/payment_engine.py
from datetime import timedelta

from flask import current_app
from rq import Queue, Retry, get_current_job
from rq.exceptions import NoSuchJobError
from rq.job import Job, JobStatus

from extensions import make_redis
from utils.chain_client import ChainClient
from utils.confirmation_monitor import ConfirmationMonitor
from utils.logging_utils import get_logger
from utils.notifications import LoggingNotifier, WebhookNotifier
from utils.recurring_payments import BatchSummary, RecurringPaymentProcessor
from utils.retry_policy import RetryPolicy
from utils.single_flight import single_flight
from utils.task_payments import PaymentJob, TaskPaymentProcessor

logger = get_logger("payment_engine")

DEFAULT_QUEUE_NAME = "task-payments"
EXTENSION_KEY = "payment_engine"

# a job in any other state will not run again and can no longer finish its claim
LIVE_JOB_STATUSES = (JobStatus.QUEUED, JobStatus.STARTED, JobStatus.SCHEDULED, JobStatus.DEFERRED)


class PaymentEngine:
    """
    Owns the Redis connection, the task-payment queue, the chain client and the
    three processors (task payments, confirmation monitor, recurring payments).
    """

    def __init__(self, *, redis_conn, chain_client, notifier=None, retry_policy=None, queue=None,
                 queue_name=DEFAULT_QUEUE_NAME, concurrency=2, job_timeout=600,
                 monitor_window=timedelta(hours=24), sweep_lock_timeout=3600):
        self.redis_conn = redis_conn
        self.chain_client = chain_client
        self.notifier = notifier or LoggingNotifier()
        self.retry_policy = retry_policy or RetryPolicy()
        self.queue = queue if queue is not None else Queue(queue_name, connection=redis_conn)
        self.concurrency = concurrency
        self.job_timeout = job_timeout
        self.sweep_lock_timeout = sweep_lock_timeout

        self.task_processor = TaskPaymentProcessor(chain_client, self.retry_policy, observers=[self.notifier],
                                                   job_is_active=self.job_is_active)
        self.monitor = ConfirmationMonitor(chain_client, alert_sink=self.notifier, window=monitor_window)
        self.recurring = RecurringPaymentProcessor(chain_client, alert_sink=self.notifier)

    @classmethod
    def from_config(cls, config):
        chain_client = ChainClient(
            provider_url=config.get("WEB3_PROVIDER"),
            key_password=config.get("ESCROW_KEY_PASSWORD"),
            confirmation_timeout=int(config.get("CHAIN_CONFIRMATION_TIMEOUT", 120)),
            poll_latency=float(config.get("CHAIN_POLL_LATENCY", 2)),
            rpc_timeout=float(config.get("CHAIN_RPC_TIMEOUT", 15)),
            priority_fee_gwei=config.get("CHAIN_PRIORITY_FEE_GWEI", 2),
        )
        webhook_url = config.get("ALERT_WEBHOOK_URL")
        return cls(
            redis_conn=make_redis(config.get("REDIS_URL")),
            chain_client=chain_client,
            notifier=WebhookNotifier(webhook_url) if webhook_url else LoggingNotifier(),
            retry_policy=RetryPolicy(
                max_attempts=int(config.get("PAYMENT_MAX_ATTEMPTS", 3)),
                base_delay=int(config.get("PAYMENT_RETRY_BASE_SECONDS", 5)),
            ),
            queue_name=config.get("PAYMENT_QUEUE_NAME", DEFAULT_QUEUE_NAME),
            concurrency=int(config.get("PAYMENT_WORKER_CONCURRENCY", 2)),
            job_timeout=int(config.get("PAYMENT_JOB_TIMEOUT", 600)),
            monitor_window=timedelta(hours=float(config.get("MONITOR_WINDOW_HOURS", 24))),
            sweep_lock_timeout=int(config.get("RECURRING_LOCK_TIMEOUT", 3600)),
        )

    # ----------------- task payments -----------------
    def enqueue_payment(self, task_id, project_id, destination_wallet, amount, escrow_address, key_material):
        job = PaymentJob.from_dict({
            "task_id": task_id,
            "project_id": project_id,
            "destination_wallet": destination_wallet,
            "amount": amount,
            "escrow_address": escrow_address,
            "escrow_key_material": key_material,
        })

        retry = None
        if self.retry_policy.max_retries:
            retry = Retry(max=self.retry_policy.max_retries, interval=self.retry_policy.intervals())

        rq_job = self.queue.enqueue(
            process_task_payment,
            job.to_dict(),
            retry=retry,
            job_timeout=self.job_timeout,
            description=f"task payment {job.task_id}",
        )
        logger.info(f"Payment job queued job={rq_job.id} task={job.task_id}")
        return rq_job.id

    def get_job_status(self, job_id):
        try:
            job = Job.fetch(job_id, connection=self.redis_conn)
        except NoSuchJobError:
            return None

        status = job.get_status()
        response = {"job_id": job_id, "status": status}
        if status == "finished":
            response["result"] = job.return_value()
        elif status == "failed":
            response["error"] = str(job.exc_info)
        return response

    def job_is_active(self, job_id):
        """Whether an rq job may still run; a claim held by a dead job can be taken over."""
        try:
            job = Job.fetch(job_id, connection=self.redis_conn)
        except NoSuchJobError:
            return False
        return job.get_status() in LIVE_JOB_STATUSES

    def start_workers(self, concurrency=None, burst=False):
        """Run a bounded pool of rq workers on the payment queue (blocks)."""
        from rq.worker_pool import WorkerPool

        num_workers = concurrency or self.concurrency
        logger.info(f"Starting {num_workers} payment workers on queue '{self.queue.name}'")
        pool = WorkerPool([self.queue.name], connection=self.redis_conn, num_workers=num_workers)
        pool.start(burst=burst)

    # ----------------- sweeps -----------------
    def run_recurring_payments_batch(self):
        with single_flight(self.redis_conn, "recurring-payments", self.sweep_lock_timeout) as acquired:
            if not acquired:
                return BatchSummary(skipped_sweep=True).to_dict()
            return self.recurring.run_batch().to_dict()

    def run_low_balance_check(self):
        return self.recurring.check_low_balances()

    def monitor_pending_transactions(self):
        with single_flight(self.redis_conn, "confirmation-monitor", self.sweep_lock_timeout) as acquired:
            if not acquired:
                return None
            return self.monitor.sweep().to_dict()


def init_payment_engine(app, engine=None):
    engine = engine or PaymentEngine.from_config(app.config)
    app.extensions[EXTENSION_KEY] = engine
    return engine


def get_payment_engine(app=None):
    app = app or current_app
    engine = app.extensions.get(EXTENSION_KEY)
    if engine is None:
        engine = PaymentEngine.from_config(app.config)
        app.extensions[EXTENSION_KEY] = engine
    return engine


# ----------------- rq entry point -----------------
_worker_app = None


def _get_worker_app():
    global _worker_app
    if _worker_app is None:
        from app import create_app
        _worker_app = create_app()
    return _worker_app


def process_task_payment(payload):
    """Run one attempt of a queued task payment inside the worker's app context."""
    app = _get_worker_app()
    rq_job = get_current_job()

    with app.app_context():
        engine = get_payment_engine(app)
        attempt = engine.retry_policy.attempt_number(rq_job.retries_left if rq_job else None)
        outcome = engine.task_processor.execute(
            PaymentJob.from_dict(payload),
            attempt=attempt,
            job_id=rq_job.id if rq_job else None,
        )
        return outcome.to_dict()
