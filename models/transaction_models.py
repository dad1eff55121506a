import uuid
from enum import Enum
from sqlalchemy import ForeignKey, Numeric
from sqlalchemy.orm import relationship
from extensions import db
from utils.time_utils import utcnow


class TransactionTypeEnum(Enum):
    task_payment = "task_payment"
    salary_payment = "salary_payment"


class TransactionStatusEnum(Enum):
    pending = "pending"      # submitted, not yet final
    confirmed = "confirmed"  # terminal
    failed = "failed"        # terminal


class BlockchainTransaction(db.Model):
    """
    One submitted transfer. Created PENDING right after submission,
    moves to CONFIRMED or FAILED exactly once.
    """
    __tablename__ = "blockchain_transactions"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tx_hash = db.Column(db.String(100), unique=True, nullable=False)
    type = db.Column(db.Enum(TransactionTypeEnum), nullable=False, index=True)
    amount = db.Column(Numeric(36, 18), nullable=False)
    fee = db.Column(Numeric(36, 18), nullable=True)
    from_address = db.Column(db.String(66), nullable=False, index=True)
    to_address = db.Column(db.String(66), nullable=False, index=True)
    project_id = db.Column(db.String(36), ForeignKey("projects.id"), nullable=False, index=True)
    task_id = db.Column(db.String(36), ForeignKey("tasks.id"), nullable=True, index=True)
    recurring_payment_id = db.Column(db.String(36), ForeignKey("recurring_payments.id"), nullable=True, index=True)
    status = db.Column(db.Enum(TransactionStatusEnum), nullable=False,
                       default=TransactionStatusEnum.pending, index=True)
    block_number = db.Column(db.BigInteger, nullable=True)
    confirmations = db.Column(db.Integer, nullable=False, default=0)
    note = db.Column(db.Text, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    submitted_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    review_flagged_at = db.Column(db.DateTime, nullable=True)  # stale pending escalated for manual review
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    project = relationship("Project")
    task = relationship("Task", backref="transactions")

    def __repr__(self):
        return f"<BlockchainTransaction {self.tx_hash} {self.status.value if self.status else None}>"

    def to_dict(self):
        return {
            "id": self.id,
            "tx_hash": self.tx_hash,
            "type": self.type.value if self.type else None,
            "amount": str(self.amount) if self.amount is not None else None,
            "fee": str(self.fee) if self.fee is not None else None,
            "from_address": self.from_address,
            "to_address": self.to_address,
            "project_id": self.project_id,
            "task_id": self.task_id,
            "recurring_payment_id": self.recurring_payment_id,
            "status": self.status.value if self.status else None,
            "block_number": self.block_number,
            "confirmations": self.confirmations,
            "error_message": self.error_message,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
        }
