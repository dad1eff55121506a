# utils/confirmation_monitor.py
from dataclasses import dataclass, asdict
from datetime import timedelta

from sqlalchemy import update

from extensions import db
from models import BlockchainTransaction, PaymentStatusEnum, Task, TransactionStatusEnum
from utils.logging_utils import get_logger
from utils.recurring_payments import apply_salary_payment
from utils.task_payments import release_task_payment
from utils.time_utils import utcnow

logger = get_logger("confirmation_monitor")

CHAIN_FAILURE_MESSAGE = "Transaction failed on blockchain"


@dataclass
class MonitorSummary:
    checked: int = 0
    confirmed: int = 0
    failed: int = 0
    still_pending: int = 0
    errors: int = 0
    stale: int = 0

    def to_dict(self):
        return asdict(self)


class ConfirmationMonitor:
    """Reconciles PENDING transactions against chain state."""

    def __init__(self, chain_client, alert_sink=None, window=timedelta(hours=24)):
        self.chain_client = chain_client
        self.alert_sink = alert_sink
        self.window = window

    def sweep(self, now=None):
        now = now or utcnow()
        cutoff = now - self.window
        summary = MonitorSummary()

        pending_txs = (
            BlockchainTransaction.query
            .filter(
                BlockchainTransaction.status == TransactionStatusEnum.pending,
                BlockchainTransaction.submitted_at >= cutoff,
            )
            .order_by(BlockchainTransaction.submitted_at.asc())
            .all()
        )
        logger.info(f"Monitoring {len(pending_txs)} pending transactions")

        for tx in pending_txs:
            tx_hash = tx.tx_hash
            summary.checked += 1
            try:
                outcome = self._reconcile(tx, now)
            except Exception as e:
                db.session.rollback()
                summary.errors += 1
                logger.error(f"Error monitoring transaction {tx_hash}: {e}")
                continue
            if outcome == "confirmed":
                summary.confirmed += 1
            elif outcome == "failed":
                summary.failed += 1
            else:
                summary.still_pending += 1

        summary.stale = self._escalate_stale(cutoff, now)
        logger.info(f"Monitor sweep done: {summary.to_dict()}")
        return summary

    def _reconcile(self, tx, now):
        tx_hash, tx_id = tx.tx_hash, tx.id
        task_id, project_id, amount = tx.task_id, tx.project_id, tx.amount
        recurring_payment_id = tx.recurring_payment_id
        status = self.chain_client.get_transaction_status(tx_hash)

        if status.pending:
            return "pending"

        if status.confirmed:
            if recurring_payment_id:
                apply_salary_payment(tx_id, recurring_payment_id, project_id, amount, now,
                                     status.block_number, status.confirmations)
            else:
                result = db.session.execute(
                    update(BlockchainTransaction)
                    .where(
                        BlockchainTransaction.id == tx_id,
                        BlockchainTransaction.status == TransactionStatusEnum.pending,
                    )
                    .values(
                        status=TransactionStatusEnum.confirmed,
                        block_number=status.block_number,
                        confirmations=status.confirmations,
                        confirmed_at=now,
                    )
                )
                if result.rowcount == 1 and task_id:
                    release_task_payment(task_id, project_id, amount, tx_hash, now)
            db.session.commit()
            logger.info(f"Transaction confirmed during monitoring: {tx_hash} "
                        f"confirmations={status.confirmations}")
            return "confirmed"

        # failed salary transfers need no rollback: the obligation stays due for the next sweep
        result = db.session.execute(
            update(BlockchainTransaction)
            .where(
                BlockchainTransaction.id == tx_id,
                BlockchainTransaction.status == TransactionStatusEnum.pending,
            )
            .values(status=TransactionStatusEnum.failed, error_message=CHAIN_FAILURE_MESSAGE)
        )
        if result.rowcount == 1 and task_id:
            db.session.execute(
                update(Task)
                .where(Task.id == task_id, Task.payment_status != PaymentStatusEnum.paid)
                .values(payment_status=PaymentStatusEnum.failed, payment_job_id=None)
            )
        db.session.commit()
        logger.error(f"Transaction failed during monitoring: {tx_hash}")
        return "failed"

    def _escalate_stale(self, cutoff, now):
        """Flag PENDING transactions older than the window for manual review, once each."""
        stale_txs = (
            BlockchainTransaction.query
            .filter(
                BlockchainTransaction.status == TransactionStatusEnum.pending,
                BlockchainTransaction.submitted_at < cutoff,
                BlockchainTransaction.review_flagged_at.is_(None),
            )
            .all()
        )
        flagged = 0
        for tx in stale_txs:
            try:
                tx.review_flagged_at = now
                db.session.commit()
            except Exception as e:
                db.session.rollback()
                logger.error(f"Could not flag stale transaction {tx.tx_hash}: {e}")
                continue
            flagged += 1
            if self.alert_sink is not None:
                self.alert_sink.stale_transaction(tx)
        return flagged
