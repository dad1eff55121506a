# utils/recurring_payments.py
import calendar
from dataclasses import dataclass, asdict
from datetime import timedelta

from sqlalchemy import or_, update
from sqlalchemy.orm import joinedload

from extensions import db
from models import (
    BlockchainTransaction,
    FrequencyEnum,
    Project,
    ProjectEscrow,
    RecurringPayment,
    RecurringStatusEnum,
    TransactionStatusEnum,
    TransactionTypeEnum,
    UserRole,
)
from utils.exceptions import ChainTimeoutError, ChainTransactionFailed
from utils.logging_utils import get_logger
from utils.time_utils import utcnow

logger = get_logger("recurring_payments", log_file="recurring-payments.log")

PAUSE_NO_ESCROW = "No escrow account"
PAUSE_INSUFFICIENT_BALANCE = "Insufficient balance"
PAUSE_NO_WALLET = "No wallet address"


def _add_months(value, months, anchor_day=None):
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1

    day = value.day
    # undo an earlier month-end clamp (Jan 31 -> Feb 28 -> Mar 31)
    if anchor_day and anchor_day > day and day == calendar.monthrange(value.year, value.month)[1]:
        day = anchor_day
    day = min(day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def calculate_next_payment_date(current, frequency, anchor_day=None):
    """
    Advance a payment date by exactly one period from `current`.
    Monthly steps keep `current`'s day, clamped to short months. `anchor_day` (the start
    date's day) only restores a day that an earlier clamp cut short.
    """
    frequency = FrequencyEnum(frequency)
    if frequency == FrequencyEnum.weekly:
        return current + timedelta(days=7)
    if frequency == FrequencyEnum.biweekly:
        return current + timedelta(days=14)
    return _add_months(current, 1, anchor_day)


@dataclass
class BatchSummary:
    processed: int = 0
    paused: int = 0
    failed: int = 0
    skipped: int = 0
    awaiting_confirmation: int = 0
    total: int = 0
    skipped_sweep: bool = False

    def to_dict(self):
        return asdict(self)


def apply_salary_payment(tx_id, recurring_payment_id, project_id, amount, paid_at,
                         block_number, confirmations=1):
    """
    Confirm a PENDING salary transaction and book it: advance the obligation's schedule,
    count the payment, release the funds and draw down the cached escrow balance.
    Only the writer that confirms the transaction books it; returns whether it did.
    Caller commits.
    """
    confirmed = db.session.execute(
        update(BlockchainTransaction)
        .where(
            BlockchainTransaction.id == tx_id,
            BlockchainTransaction.status == TransactionStatusEnum.pending,
        )
        .values(
            status=TransactionStatusEnum.confirmed,
            block_number=block_number,
            confirmations=confirmations,
            confirmed_at=paid_at,
        )
    )
    if confirmed.rowcount != 1:
        return False

    payment = db.session.get(RecurringPayment, recurring_payment_id, populate_existing=True)
    if payment is None:
        logger.error(f"Salary transaction {tx_id} confirmed for unknown payment {recurring_payment_id}")
    else:
        previous_date = payment.next_payment_date
        anchor_day = payment.start_date.day if payment.start_date else None
        next_date = calculate_next_payment_date(previous_date, payment.frequency, anchor_day)
        advanced = db.session.execute(
            update(RecurringPayment)
            .where(
                RecurringPayment.id == recurring_payment_id,
                RecurringPayment.next_payment_date == previous_date,
            )
            .values(
                next_payment_date=next_date,
                last_paid_date=paid_at,
                total_paid=RecurringPayment.total_paid + amount,
                payment_count=RecurringPayment.payment_count + 1,
            )
        )
        if advanced.rowcount != 1:
            logger.error(f"Payment {recurring_payment_id} schedule moved while transaction {tx_id} was pending")

    db.session.execute(
        update(Project)
        .where(Project.id == project_id)
        .values(released_funds=Project.released_funds + amount)
    )
    db.session.execute(
        update(ProjectEscrow)
        .where(ProjectEscrow.project_id == project_id)
        .values(current_balance=ProjectEscrow.current_balance - amount)
    )
    return True


class RecurringPaymentProcessor:
    """Pays due salary obligations out of project escrows."""

    def __init__(self, chain_client, alert_sink=None):
        self.chain_client = chain_client
        self.alert_sink = alert_sink

    # ----------------- batch -----------------
    def run_batch(self, now=None):
        now = now or utcnow()
        logger.info("Starting recurring payment processing...")

        # selection failures propagate: the caller retries the whole sweep
        due_ids = [
            row.id for row in
            db.session.query(RecurringPayment.id)
            .filter(
                RecurringPayment.status == RecurringStatusEnum.active,
                RecurringPayment.next_payment_date <= now,
                or_(RecurringPayment.end_date.is_(None),
                    RecurringPayment.next_payment_date <= RecurringPayment.end_date),
            )
            .order_by(RecurringPayment.next_payment_date.asc())
            .all()
        ]
        summary = BatchSummary(total=len(due_ids))
        logger.info(f"Found {summary.total} due payments")

        for payment_id in due_ids:
            try:
                outcome = self._process_payment(payment_id, now)
            except Exception as e:
                db.session.rollback()
                logger.error(f"Failed to process payment {payment_id}: {e}")
                self._pause_safely(payment_id, str(e) or e.__class__.__name__, now)
                summary.failed += 1
                continue

            if outcome == "processed":
                summary.processed += 1
            elif outcome == "paused":
                summary.paused += 1
            elif outcome == "awaiting_confirmation":
                summary.awaiting_confirmation += 1
            else:
                summary.skipped += 1

        logger.info(f"Payment processing complete: {summary.processed} processed, "
                    f"{summary.paused} paused, {summary.failed} failed, "
                    f"{summary.awaiting_confirmation} awaiting confirmation")
        return summary

    def _process_payment(self, payment_id, now):
        payment = (
            RecurringPayment.query
            .options(
                joinedload(RecurringPayment.project).joinedload(Project.escrow),
                joinedload(RecurringPayment.user_role).joinedload(UserRole.user),
            )
            .populate_existing()
            .filter(RecurringPayment.id == payment_id)
            .first()
        )
        # re-read: paused or advanced since selection
        if payment is None or payment.status != RecurringStatusEnum.active or payment.next_payment_date > now:
            logger.info(f"Payment {payment_id} no longer due, skipping")
            return "skipped"

        # the current period is already on chain; the confirmation monitor books it
        in_flight = (
            BlockchainTransaction.query
            .filter(
                BlockchainTransaction.recurring_payment_id == payment_id,
                BlockchainTransaction.status == TransactionStatusEnum.pending,
            )
            .first()
        )
        if in_flight is not None:
            logger.info(f"Payment {payment_id} has transfer {in_flight.tx_hash} awaiting confirmation, skipping")
            return "awaiting_confirmation"

        escrow = payment.project.escrow if payment.project else None
        if escrow is None:
            logger.error(f"Project {payment.project_id} has no escrow account")
            self.pause_payment(payment_id, PAUSE_NO_ESCROW, now)
            return "paused"

        balance = self.chain_client.get_balance(escrow.escrow_address)
        if balance < payment.amount:
            logger.warning(f"Insufficient balance for payment {payment_id}. "
                           f"Need {payment.amount}, have {balance}")
            self.pause_payment(payment_id, PAUSE_INSUFFICIENT_BALANCE, now)
            self._alert_low_balance(payment.project_id, balance, payment.amount)
            return "paused"

        wallet = payment.user_role.payee_wallet if payment.user_role else None
        if not wallet:
            logger.error(f"User role {payment.user_role_id} has no wallet address")
            self.pause_payment(payment_id, PAUSE_NO_WALLET, now)
            return "paused"

        return self._pay(payment, escrow, wallet, now)

    def _pay(self, payment, escrow, wallet, now):
        payment_id, project_id = payment.id, payment.project_id
        amount, frequency = payment.amount, payment.frequency

        note = f"Salary payment - {frequency.value}"
        result = self.chain_client.submit_transfer(
            escrow.escrow_address,
            escrow.encrypted_private_key,
            wallet,
            amount,
            note,
        )
        tx = BlockchainTransaction(
            tx_hash=result.tx_hash,
            type=TransactionTypeEnum.salary_payment,
            amount=amount,
            fee=result.fee,
            from_address=escrow.escrow_address,
            to_address=wallet,
            project_id=project_id,
            recurring_payment_id=payment_id,
            status=TransactionStatusEnum.pending,
            note=f"Recurring {frequency.value} salary payment",
            submitted_at=now,
        )
        db.session.add(tx)
        db.session.commit()
        tx_id = tx.id

        try:
            confirmation = self.chain_client.await_confirmation(result.tx_hash)
        except ChainTimeoutError as e:
            logger.warning(f"Transfer {result.tx_hash} for payment {payment_id} not confirmed yet, "
                           f"left to the confirmation monitor: {e}")
            return "awaiting_confirmation"
        except ChainTransactionFailed as e:
            db.session.execute(
                update(BlockchainTransaction)
                .where(
                    BlockchainTransaction.id == tx_id,
                    BlockchainTransaction.status == TransactionStatusEnum.pending,
                )
                .values(status=TransactionStatusEnum.failed, error_message=str(e))
            )
            db.session.commit()
            raise

        apply_salary_payment(tx_id, payment_id, project_id, amount, now,
                             confirmation.block_number, confirmation.confirmations)
        db.session.commit()
        logger.info(f"Successfully processed payment {payment_id} - {amount} to {wallet} tx={result.tx_hash}")
        return "processed"

    # ----------------- pausing -----------------
    def pause_payment(self, payment_id, reason, now=None):
        db.session.execute(
            update(RecurringPayment)
            .where(
                RecurringPayment.id == payment_id,
                RecurringPayment.status == RecurringStatusEnum.active,
            )
            .values(
                status=RecurringStatusEnum.paused,
                pause_reason=reason[:255],
                paused_at=now or utcnow(),
            )
        )
        db.session.commit()
        logger.warning(f"Paused payment {payment_id}: {reason}")

    def _pause_safely(self, payment_id, reason, now):
        try:
            self.pause_payment(payment_id, reason, now)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Could not pause payment {payment_id}: {e}")

    # ----------------- balance alerts -----------------
    def _alert_low_balance(self, project_id, balance, threshold):
        if self.alert_sink is not None:
            self.alert_sink.low_balance(project_id, balance, threshold)

    def check_low_balances(self):
        """Alert every funded project whose live escrow balance is below its minimum."""
        logger.info("Checking for low balance alerts...")
        projects = (
            Project.query
            .options(joinedload(Project.escrow))
            .filter(Project.minimum_balance.isnot(None), Project.escrow_funded.is_(True))
            .all()
        )

        alerted = []
        for project in projects:
            if project.escrow is None:
                continue
            try:
                balance = self.chain_client.get_balance(project.escrow.escrow_address)
            except Exception as e:
                logger.error(f"Balance check failed for project {project.id}: {e}")
                continue
            if balance < project.minimum_balance:
                logger.warning(f"Project {project.id} balance ({balance}) below minimum "
                               f"({project.minimum_balance})")
                self._alert_low_balance(project.id, balance, project.minimum_balance)
                alerted.append(project.id)
        return alerted
