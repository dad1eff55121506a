import uuid
from enum import Enum
from sqlalchemy import ForeignKey, Numeric
from sqlalchemy.orm import relationship
from extensions import db
from utils.time_utils import utcnow


class PaymentStatusEnum(Enum):
    unpaid = "unpaid"          # approved, not yet picked up by a worker
    processing = "processing"  # a job owns the payment
    paid = "paid"              # confirmed transfer, terminal
    failed = "failed"          # retries exhausted or chain failure, can be re-enqueued


class Project(db.Model):
    __tablename__ = 'projects'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(200), nullable=False)
    released_funds = db.Column(Numeric(36, 18), nullable=False, default=0)
    minimum_balance = db.Column(Numeric(36, 18), nullable=True)
    escrow_funded = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    escrow = relationship("ProjectEscrow", uselist=False, back_populates="project")
    tasks = relationship("Task", back_populates="project")

    def __repr__(self):
        return f"<Project {self.id} released={self.released_funds}>"


class ProjectEscrow(db.Model):
    __tablename__ = 'project_escrows'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = db.Column(db.String(36), ForeignKey('projects.id'), unique=True, nullable=False)
    escrow_address = db.Column(db.String(66), unique=True, nullable=False)
    encrypted_private_key = db.Column(db.Text, nullable=False)     # eth-account keystore JSON
    initial_deposit = db.Column(Numeric(36, 18), nullable=False, default=0)
    current_balance = db.Column(Numeric(36, 18), nullable=False, default=0)  # cached mirror of chain balance
    status = db.Column(db.String(20), nullable=False, default='ACTIVE')
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    project = relationship("Project", back_populates="escrow")

    def __repr__(self):
        return f"<ProjectEscrow {self.escrow_address} balance={self.current_balance}>"


class Task(db.Model):
    __tablename__ = 'tasks'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = db.Column(db.String(36), ForeignKey('projects.id'), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    payment_amount = db.Column(Numeric(36, 18), nullable=True)
    payment_status = db.Column(db.Enum(PaymentStatusEnum), nullable=False,
                               default=PaymentStatusEnum.unpaid, index=True)
    payment_tx_hash = db.Column(db.String(100), nullable=True)
    payment_job_id = db.Column(db.String(64), nullable=True)   # queue job owning the processing state
    paid_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    project = relationship("Project", back_populates="tasks")

    def __repr__(self):
        return f"<Task {self.id} {self.payment_status.value if self.payment_status else None}>"
