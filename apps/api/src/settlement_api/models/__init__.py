"""SQLAlchemy models package."""

# Import all models
from .user import User, UserRoleEnum  # noqa: F401
from .store import Product, Store  # noqa: F401
from .reward import Reward, RewardType  # noqa: F401
from .reward_claim import RewardClaim  # noqa: F401
from .transaction import (  # noqa: F401
    TransactionRecord,
    TransactionSettlement,
    TransactionType,
)
from .points import PointsBalance  # noqa: F401
from .pending_transaction import PendingTransaction  # noqa: F401
