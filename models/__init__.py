# 1. Explicit model imports (used by __all__ and direct references)
from extensions import db

from .user_models import User, UserRole
from .project_models import Project, ProjectEscrow, Task, PaymentStatusEnum
from .transaction_models import BlockchainTransaction, TransactionTypeEnum, TransactionStatusEnum
from .recurring_models import RecurringPayment, FrequencyEnum, RecurringStatusEnum

# 2. __all__ controls `from models import *`
__all__ = [
    'User',
    'UserRole',
    'Project',
    'ProjectEscrow',
    'Task',
    'PaymentStatusEnum',
    'BlockchainTransaction',
    'TransactionTypeEnum',
    'TransactionStatusEnum',
    'RecurringPayment',
    'FrequencyEnum',
    'RecurringStatusEnum',
]


# 3. Explicit registration so Flask-Migrate discovers every table
def register_models():
    """Import every model module (triggers SQLAlchemy registration)."""
    from . import user_models
    from . import project_models
    from . import transaction_models
    from . import recurring_models
