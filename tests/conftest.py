"""Shared test fixtures: in-memory ledger, scripted chain client, fake queue and lock store."""

import os
import tempfile
from datetime import datetime
from decimal import Decimal
from itertools import count

import pytest

os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "escrow-payments-test-logs"))

from app import create_app  # noqa: E402
from extensions import db  # noqa: E402
from models import (  # noqa: E402
    BlockchainTransaction,
    FrequencyEnum,
    Project,
    ProjectEscrow,
    RecurringPayment,
    Task,
    TransactionStatusEnum,
    TransactionTypeEnum,
    User,
    UserRole,
)
from utils.chain_client import Confirmation, TransactionStatus, TransferResult  # noqa: E402
from utils.exceptions import ChainTimeoutError  # noqa: E402
from utils.notifications import AlertSink, PaymentObserver  # noqa: E402
from utils.payment_engine import PaymentEngine, init_payment_engine  # noqa: E402
from utils.retry_policy import RetryPolicy  # noqa: E402
from utils.time_utils import utcnow  # noqa: E402

ESCROW_ADDRESS = "0x1111111111111111111111111111111111111111"
PAYEE_WALLET = "0x2222222222222222222222222222222222222222"
AUTO_WALLET = object()
_wallets = count(0x3000)


class FakeChainClient:
    """
    Scripted stand-in for ChainClient.
    `submit_errors` / `await_errors` are consumed one per call; `statuses` maps tx hash to status.
    """

    def __init__(self, balance=Decimal("1000")):
        self.balances = {}
        self.default_balance = Decimal(balance)
        self.submit_errors = []
        self.await_errors = []
        self.statuses = {}
        self.status_errors = {}
        self.submitted = []
        self.awaited = []
        self._hashes = count(1)

    def submit_transfer(self, from_address, key_material, to_address, amount, note=None):
        self.submitted.append({
            "from": from_address,
            "to": to_address,
            "amount": Decimal(str(amount)),
            "note": note,
        })
        if self.submit_errors:
            error = self.submit_errors.pop(0)
            if error is not None:
                raise error
        tx_hash = f"0x{next(self._hashes):064x}"
        return TransferResult(tx_hash=tx_hash, fee=Decimal("0.0001"))

    def await_confirmation(self, tx_hash):
        self.awaited.append(tx_hash)
        if self.await_errors:
            error = self.await_errors.pop(0)
            if error is not None:
                raise error
        return Confirmation(block_number=100, confirmations=1)

    def get_transaction_status(self, tx_hash):
        if tx_hash in self.status_errors:
            raise self.status_errors[tx_hash]
        return self.statuses.get(tx_hash, TransactionStatus(confirmed=False))

    def get_balance(self, address):
        balance = self.balances.get(address, self.default_balance)
        if isinstance(balance, Exception):
            raise balance
        return balance


class FakeLock:

    def __init__(self, store, name):
        self.store = store
        self.name = name

    def acquire(self, blocking=True):
        if self.name in self.store.held:
            return False
        self.store.held.add(self.name)
        return True

    def release(self):
        self.store.held.discard(self.name)


class FakeRedis:
    """Only the lock surface used by single_flight."""

    def __init__(self):
        self.held = set()
        self.lock_requests = []

    def lock(self, name, timeout=None):
        self.lock_requests.append((name, timeout))
        return FakeLock(self, name)


class FakeRqJob:

    def __init__(self, job_id):
        self.id = job_id


class FakeQueue:

    name = "task-payments"

    def __init__(self):
        self.jobs = []
        # ids of jobs that are still queued or running
        self.live_jobs = set()

    def enqueue(self, func, *args, **kwargs):
        job = FakeRqJob(f"job-{len(self.jobs) + 1}")
        self.live_jobs.add(job.id)
        self.jobs.append({"id": job.id, "func": func, "args": args, "kwargs": kwargs})
        return job


class RecordingNotifier(PaymentObserver, AlertSink):

    def __init__(self):
        self.completed = []
        self.failed = []
        self.low_balances = []
        self.stale = []

    def on_completed(self, outcome):
        self.completed.append(outcome)

    def on_failed(self, outcome):
        self.failed.append(outcome)

    def low_balance(self, project_id, balance, threshold):
        self.low_balances.append((project_id, balance, threshold))

    def stale_transaction(self, transaction):
        self.stale.append(transaction.tx_hash)


@pytest.fixture()
def app():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def chain():
    return FakeChainClient()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def fake_redis():
    return FakeRedis()


@pytest.fixture()
def queue():
    return FakeQueue()


@pytest.fixture()
def engine(app, chain, notifier, fake_redis, queue):
    engine = PaymentEngine(
        redis_conn=fake_redis,
        chain_client=chain,
        notifier=notifier,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=5),
        queue=queue,
    )
    engine.task_processor.job_is_active = queue.live_jobs.__contains__
    init_payment_engine(app, engine)
    return engine


# ----------------- data factories -----------------
def make_project(name="Escrow project", minimum_balance=None, escrow=True, escrow_funded=True,
                 escrow_address=ESCROW_ADDRESS, current_balance=Decimal("1000")):
    project = Project(name=name, minimum_balance=minimum_balance, escrow_funded=escrow_funded,
                      released_funds=Decimal("0"))
    db.session.add(project)
    db.session.flush()
    if escrow:
        db.session.add(ProjectEscrow(
            project_id=project.id,
            escrow_address=escrow_address,
            encrypted_private_key='{"crypto": {}}',
            initial_deposit=current_balance,
            current_balance=current_balance,
        ))
    db.session.commit()
    return project


def make_task(project, amount=Decimal("500"), **kwargs):
    task = Task(project_id=project.id, title=kwargs.pop("title", "Build the thing"),
                payment_amount=amount, **kwargs)
    db.session.add(task)
    db.session.commit()
    return task


def make_transaction(project, tx_hash, task=None, amount=Decimal("500"),
                     status=TransactionStatusEnum.pending, submitted_at=None,
                     tx_type=TransactionTypeEnum.task_payment, recurring_payment=None):
    tx = BlockchainTransaction(
        tx_hash=tx_hash,
        type=tx_type,
        amount=amount,
        fee=Decimal("0.0001"),
        from_address=ESCROW_ADDRESS,
        to_address=PAYEE_WALLET,
        project_id=project.id,
        task_id=task.id if task else None,
        recurring_payment_id=recurring_payment.id if recurring_payment else None,
        status=status,
        submitted_at=submitted_at or utcnow(),
    )
    db.session.add(tx)
    db.session.commit()
    return tx


def make_recurring(project, amount=Decimal("100"), frequency=FrequencyEnum.monthly,
                   start_date=datetime(2025, 1, 15), next_payment_date=None, end_date=None,
                   wallet=AUTO_WALLET, email=None):
    if wallet is AUTO_WALLET:
        wallet = f"0x{next(_wallets):040x}"
    user = User(email=email, wallet_address=wallet)
    db.session.add(user)
    db.session.flush()
    role = UserRole(user_id=user.id, project_id=project.id, role="member")
    db.session.add(role)
    db.session.flush()
    payment = RecurringPayment(
        user_role_id=role.id,
        project_id=project.id,
        amount=amount,
        frequency=frequency,
        start_date=start_date,
        end_date=end_date,
        next_payment_date=next_payment_date or start_date,
    )
    db.session.add(payment)
    db.session.commit()
    return payment


def payment_payload(task, amount="500", wallet=PAYEE_WALLET):
    return {
        "task_id": task.id,
        "project_id": task.project_id,
        "destination_wallet": wallet,
        "amount": amount,
        "escrow_address": ESCROW_ADDRESS,
        "escrow_key_material": '{"crypto": {}}',
    }


def timeout_error():
    return ChainTimeoutError("Transaction not confirmed within 120s")
