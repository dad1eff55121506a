# utils/task_payments.py
import uuid
from dataclasses import dataclass, asdict, fields
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import (
    BlockchainTransaction,
    PaymentStatusEnum,
    Project,
    Task,
    TransactionStatusEnum,
    TransactionTypeEnum,
)
from utils.exceptions import (
    ChainTransactionFailed,
    InvalidPaymentJob,
    RetryablePaymentError,
    UnrecordedTransferError,
)
from utils.logging_utils import get_logger
from utils.retry_policy import RetryPolicy
from utils.time_utils import utcnow

logger = get_logger("task_payments")


@dataclass
class PaymentJob:
    task_id: str
    project_id: str
    destination_wallet: str
    amount: Decimal
    escrow_address: str
    escrow_key_material: str

    @classmethod
    def from_dict(cls, data):
        """Validate a raw job payload. Malformed jobs never reach the queue."""
        if not isinstance(data, dict):
            raise InvalidPaymentJob("Payment job must be a mapping")

        missing = [
            f.name for f in fields(cls)
            if data.get(f.name) is None or (isinstance(data.get(f.name), str) and not data[f.name].strip())
        ]
        if missing:
            raise InvalidPaymentJob(f"Missing payment job fields: {', '.join(missing)}", fields=missing)

        try:
            amount = Decimal(str(data["amount"]))
        except (InvalidOperation, ValueError):
            raise InvalidPaymentJob(f"Invalid amount: {data['amount']!r}", fields=["amount"])
        if not amount.is_finite() or amount <= 0:
            raise InvalidPaymentJob(f"Amount must be positive, got {amount}", fields=["amount"])

        return cls(
            task_id=str(data["task_id"]),
            project_id=str(data["project_id"]),
            destination_wallet=str(data["destination_wallet"]).strip(),
            amount=amount,
            escrow_address=str(data["escrow_address"]).strip(),
            escrow_key_material=data["escrow_key_material"],
        )

    def to_dict(self):
        payload = asdict(self)
        payload["amount"] = str(self.amount)
        return payload


@dataclass
class PaymentOutcome:
    task_id: str
    status: str                      # completed | failed | skipped
    attempt: int = 1
    job_id: Optional[str] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    error: Optional[str] = None

    @property
    def succeeded(self):
        return self.status == "completed"

    def to_dict(self):
        return asdict(self)


def release_task_payment(task_id, project_id, amount, tx_hash, paid_at):
    """
    Move a task to PAID and release its funds on the project.
    Only the writer that performs the transition releases funds; returns whether it did.
    Caller commits.
    """
    result = db.session.execute(
        update(Task)
        .where(Task.id == task_id, Task.payment_status != PaymentStatusEnum.paid)
        .values(
            payment_status=PaymentStatusEnum.paid,
            payment_tx_hash=tx_hash,
            payment_job_id=None,
            paid_at=paid_at,
        )
    )
    if result.rowcount != 1:
        return False

    db.session.execute(
        update(Project)
        .where(Project.id == project_id)
        .values(released_funds=Project.released_funds + amount)
    )
    return True


class TaskPaymentProcessor:
    """Runs one attempt of a task payment job end to end."""

    def __init__(self, chain_client, retry_policy=None, observers=(), job_is_active=None):
        self.chain_client = chain_client
        self.retry_policy = retry_policy or RetryPolicy()
        self.observers = list(observers)
        # job_id -> bool; without it a PROCESSING claim is never taken over
        self.job_is_active = job_is_active

    def execute(self, job, attempt=1, job_id=None):
        job_id = job_id or uuid.uuid4().hex
        logger.info(f"Processing payment task={job.task_id} amount={job.amount} "
                    f"to={job.destination_wallet} attempt={attempt}")

        try:
            skipped = self._claim(job, job_id, attempt)
            if skipped is not None:
                return skipped

            tx = self._active_transaction(job.task_id)
            if tx is not None and tx.status == TransactionStatusEnum.confirmed:
                logger.info(f"Task {job.task_id} already has confirmed tx {tx.tx_hash}, finalizing")
                outcome = self._finalize(job, job_id, attempt, tx.tx_hash, tx.block_number, tx.confirmations)
            else:
                if tx is None:
                    tx = self._submit(job)
                else:
                    logger.info(f"Task {job.task_id} resuming pending tx {tx.tx_hash} instead of resubmitting")
                confirmation = self.chain_client.await_confirmation(tx.tx_hash)
                logger.info(f"Transaction confirmed task={job.task_id} tx={tx.tx_hash} "
                            f"block={confirmation.block_number}")
                outcome = self._finalize(job, job_id, attempt, tx.tx_hash,
                                         confirmation.block_number, confirmation.confirmations)
        except (ChainTransactionFailed, UnrecordedTransferError) as e:
            db.session.rollback()
            logger.error(f"Payment task={job.task_id} failed permanently: {e}")
            return self._fail(job, job_id, attempt, str(e))
        except Exception as e:
            db.session.rollback()
            delay = self.retry_policy.next_delay(attempt)
            if delay is not None:
                logger.warning(f"Payment task={job.task_id} attempt {attempt} failed, "
                               f"retrying in {int(delay.total_seconds())}s: {e}")
                raise RetryablePaymentError(str(e), attempt, delay) from e
            logger.error(f"Payment task={job.task_id} failed after {attempt} attempts: {e}")
            return self._fail(job, job_id, attempt, str(e))

        logger.info(f"Payment completed successfully task={job.task_id} tx={outcome.tx_hash}")
        self._notify("on_completed", outcome)
        return outcome

    # ----------------- steps -----------------
    def _claim(self, job, job_id, attempt):
        task = db.session.get(Task, job.task_id, populate_existing=True)
        if task is None:
            logger.error(f"Task {job.task_id} not found, dropping payment job {job_id}")
            outcome = PaymentOutcome(task_id=job.task_id, status="failed", attempt=attempt,
                                     job_id=job_id, error="Task not found")
            self._notify("on_failed", outcome)
            return outcome

        if task.payment_status == PaymentStatusEnum.paid:
            logger.info(f"Task {job.task_id} already paid, skipping job {job_id}")
            return PaymentOutcome(task_id=job.task_id, status="skipped", attempt=attempt, job_id=job_id,
                                  tx_hash=task.payment_tx_hash, error="Task already paid")

        owners = [job_id]
        owner = task.payment_job_id
        if task.payment_status == PaymentStatusEnum.processing and owner != job_id:
            if self.job_is_active is None or owner is None or self.job_is_active(owner):
                logger.info(f"Task {job.task_id} is being processed by job {owner}, skipping {job_id}")
                return PaymentOutcome(task_id=job.task_id, status="skipped", attempt=attempt, job_id=job_id,
                                      error="Task payment already processing")
            logger.warning(f"Job {owner} holding task {job.task_id} is gone, job {job_id} takes over")
            owners.append(owner)

        result = db.session.execute(
            update(Task)
            .where(
                Task.id == job.task_id,
                or_(
                    Task.payment_status.in_([PaymentStatusEnum.unpaid, PaymentStatusEnum.failed]),
                    and_(Task.payment_status == PaymentStatusEnum.processing, Task.payment_job_id.in_(owners)),
                ),
            )
            .values(payment_status=PaymentStatusEnum.processing, payment_job_id=job_id)
        )
        db.session.commit()
        if result.rowcount != 1:
            logger.info(f"Task {job.task_id} claimed concurrently, skipping job {job_id}")
            return PaymentOutcome(task_id=job.task_id, status="skipped", attempt=attempt, job_id=job_id,
                                  error="Task payment already processing")
        return None

    def _active_transaction(self, task_id):
        return (
            BlockchainTransaction.query
            .filter(
                BlockchainTransaction.task_id == task_id,
                BlockchainTransaction.type == TransactionTypeEnum.task_payment,
                BlockchainTransaction.status != TransactionStatusEnum.failed,
            )
            .order_by(BlockchainTransaction.submitted_at.desc())
            .first()
        )

    def _submit(self, job):
        note = f"Task payment: {job.task_id}"
        result = self.chain_client.submit_transfer(
            job.escrow_address,
            job.escrow_key_material,
            job.destination_wallet,
            job.amount,
            note,
        )
        logger.info(f"Transaction submitted task={job.task_id} tx={result.tx_hash} fee={result.fee}")

        # recorded only once the transfer is actually on its way
        tx = BlockchainTransaction(
            tx_hash=result.tx_hash,
            type=TransactionTypeEnum.task_payment,
            amount=job.amount,
            fee=result.fee,
            from_address=job.escrow_address,
            to_address=job.destination_wallet,
            project_id=job.project_id,
            task_id=job.task_id,
            status=TransactionStatusEnum.pending,
            note=note,
            submitted_at=utcnow(),
        )
        try:
            db.session.add(tx)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.critical(f"Transfer {result.tx_hash} for task {job.task_id} broadcast but not recorded: {e}")
            raise UnrecordedTransferError(
                f"Transfer {result.tx_hash} broadcast but not recorded: {e}", tx_hash=result.tx_hash
            ) from e
        return tx

    def _finalize(self, job, job_id, attempt, tx_hash, block_number, confirmations):
        now = utcnow()
        db.session.execute(
            update(BlockchainTransaction)
            .where(
                BlockchainTransaction.tx_hash == tx_hash,
                BlockchainTransaction.status == TransactionStatusEnum.pending,
            )
            .values(
                status=TransactionStatusEnum.confirmed,
                block_number=block_number,
                confirmations=confirmations,
                confirmed_at=now,
            )
        )
        release_task_payment(job.task_id, job.project_id, job.amount, tx_hash, now)
        db.session.commit()
        return PaymentOutcome(task_id=job.task_id, status="completed", attempt=attempt, job_id=job_id,
                              tx_hash=tx_hash, block_number=block_number)

    def _fail(self, job, job_id, attempt, error_message):
        # never fail a task another live job has claimed
        result = db.session.execute(
            update(Task)
            .where(
                Task.id == job.task_id,
                Task.payment_status != PaymentStatusEnum.paid,
                or_(Task.payment_status != PaymentStatusEnum.processing, Task.payment_job_id == job_id),
            )
            .values(payment_status=PaymentStatusEnum.failed, payment_job_id=None)
        )
        if result.rowcount == 1:
            db.session.execute(
                update(BlockchainTransaction)
                .where(
                    BlockchainTransaction.task_id == job.task_id,
                    BlockchainTransaction.type == TransactionTypeEnum.task_payment,
                    BlockchainTransaction.status == TransactionStatusEnum.pending,
                )
                .values(status=TransactionStatusEnum.failed, error_message=error_message)
            )
        db.session.commit()

        outcome = PaymentOutcome(task_id=job.task_id, status="failed", attempt=attempt,
                                 job_id=job_id, error=error_message)
        self._notify("on_failed", outcome)
        return outcome

    def _notify(self, hook, outcome):
        for observer in self.observers:
            try:
                getattr(observer, hook)(outcome)
            except Exception as e:
                logger.error(f"Observer {observer.__class__.__name__}.{hook} failed: {e}")
