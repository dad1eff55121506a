import uuid
from extensions import db
from sqlalchemy.orm import relationship
from sqlalchemy import UniqueConstraint, ForeignKey
from utils.time_utils import utcnow


class User(db.Model):
    # Payee identity; the engine only reads the wallet address
    __tablename__ = 'users'
    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = db.Column(db.String(128), unique=True, nullable=True)
    wallet_address = db.Column(db.String(66), unique=True, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    roles = relationship("UserRole", back_populates="user")


class UserRole(db.Model):
    # Project membership that salary obligations are attached to
    __tablename__ = 'user_roles'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), ForeignKey('users.id'), nullable=False)
    project_id = db.Column(db.String(36), ForeignKey('projects.id'), nullable=False)
    role = db.Column(db.String(32), nullable=False, default='member')
    created_at = db.Column(db.DateTime, default=utcnow)

    user = relationship("User", back_populates="roles")
    project = relationship("Project")

    __table_args__ = (
        UniqueConstraint('user_id', 'project_id', name='uix_user_project'),
    )

    @property
    def payee_wallet(self):
        return self.user.wallet_address if self.user else None
