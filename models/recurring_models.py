import uuid
from enum import Enum
from sqlalchemy import ForeignKey, Numeric
from sqlalchemy.orm import relationship
from extensions import db
from utils.time_utils import utcnow


class FrequencyEnum(Enum):
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"


class RecurringStatusEnum(Enum):
    active = "active"
    paused = "paused"  # needs external reactivation


class RecurringPayment(db.Model):
    __tablename__ = "recurring_payments"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_role_id = db.Column(db.String(36), ForeignKey("user_roles.id"), nullable=False, index=True)
    project_id = db.Column(db.String(36), ForeignKey("projects.id"), nullable=False, index=True)
    amount = db.Column(Numeric(36, 18), nullable=False)
    frequency = db.Column(db.Enum(FrequencyEnum), nullable=False)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=True)
    next_payment_date = db.Column(db.DateTime, nullable=False, index=True)
    last_paid_date = db.Column(db.DateTime, nullable=True)
    total_paid = db.Column(Numeric(36, 18), nullable=False, default=0)
    payment_count = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.Enum(RecurringStatusEnum), nullable=False,
                       default=RecurringStatusEnum.active, index=True)
    pause_reason = db.Column(db.String(255), nullable=True)
    paused_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user_role = relationship("UserRole")
    project = relationship("Project")

    def __repr__(self):
        return f"<RecurringPayment {self.id} {self.frequency.value} next={self.next_payment_date}>"
