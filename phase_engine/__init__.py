# phase_engine/__init__.py
"""
Network phase qualification and reward ledger engine.
"""

# Services
from phase_engine.services.phase_calculator import PhaseQualificationCalculator, PhaseCalculation
from phase_engine.services.reward_ledger import RewardLedger, RewardPeriod
from phase_engine.services.transfer_service import EarningsWalletTransferService
from phase_engine.services.auto_payout_service import AutoPayoutScheduler
from phase_engine.services.phase_service import PhaseService

# Gateways
from phase_engine.gateway.persistence import PersistenceGateway, ConcurrencyConflict
from phase_engine.gateway.payment_rail import PaymentRail, HttpPaymentRail, PaymentRailError, RailResult

# Configuration and results
from phase_engine.config.phases import PhaseConfigProvider, TierValue, TierSource
from phase_engine.results import (
    ResultCode,
    ValidationError,
    DiscountKind,
    DiscountQuote,
    LedgerResult,
    TransferResult,
    PayoutEvaluation,
)

# Utilities
from phase_engine.utils.time_machine import timeMachine

# Events
from phase_engine.events.event_bus import eventBus, PhaseEvents

__all__ = [
    # Services
    'PhaseQualificationCalculator',
    'PhaseCalculation',
    'RewardLedger',
    'RewardPeriod',
    'EarningsWalletTransferService',
    'AutoPayoutScheduler',
    'PhaseService',

    # Gateways
    'PersistenceGateway',
    'ConcurrencyConflict',
    'PaymentRail',
    'HttpPaymentRail',
    'PaymentRailError',
    'RailResult',

    # Config and results
    'PhaseConfigProvider',
    'TierValue',
    'TierSource',
    'ResultCode',
    'ValidationError',
    'DiscountKind',
    'DiscountQuote',
    'LedgerResult',
    'TransferResult',
    'PayoutEvaluation',

    # Utils
    'timeMachine',

    # Events
    'eventBus',
    'PhaseEvents',
]
