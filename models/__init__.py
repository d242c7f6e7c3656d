"""
Database models for the phase engine.
Import all models here for easy access and mapper registration.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Network
from models.member import NetworkMember
from models.subscription import Subscription

# Phases and rewards
from models.phase_record import PhaseRecord
from models.phase_reward import PhaseReward
from models.reward_movement import RewardMovement

# Ledgers
from models.earnings_entry import EarningsEntry
from models.wallet import WalletBalance, WalletTransaction
from models.payout import AutoPayoutConfig, PayoutAccount, Payout

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Network
    'NetworkMember',
    'Subscription',

    # Phases
    'PhaseRecord',
    'PhaseReward',
    'RewardMovement',

    # Ledgers
    'EarningsEntry',
    'WalletBalance',
    'WalletTransaction',
    'AutoPayoutConfig',
    'PayoutAccount',
    'Payout',
]
