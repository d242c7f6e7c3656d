# phase_engine/events/setup.py
"""
Register phase engine event handlers with the event bus.
"""
import logging

from phase_engine.events.event_bus import eventBus, PhaseEvents
from phase_engine.events.handlers import (
    handlerContext,
    handle_subscription_changed,
    handle_wallet_credited,
    handle_payout_completed,
    handle_reward_granted,
)

logger = logging.getLogger(__name__)

HANDLERS = (
    (PhaseEvents.SUBSCRIPTION_CHANGED, handle_subscription_changed),
    (PhaseEvents.MEMBER_REGISTERED, handle_subscription_changed),
    (PhaseEvents.WALLET_CREDITED, handle_wallet_credited),
    (PhaseEvents.PAYOUT_COMPLETED, handle_payout_completed),
    (PhaseEvents.REWARD_GRANTED, handle_reward_granted),
)


def setup_phase_event_handlers(sessionFactory=None, paymentRail=None, emailService=None):
    """
    Register all handlers. Call once during startup.

    Args:
        sessionFactory: Callable returning a new Session, defaults to core.db.get_session
        paymentRail: Rail used for automatic payouts; None disables them
        emailService: Notifier; None disables notifications
    """
    logger.info("Setting up phase event handlers...")

    handlerContext.configure(
        sessionFactory=sessionFactory,
        paymentRail=paymentRail,
        emailService=emailService
    )

    for event, handler in HANDLERS:
        eventBus.subscribe(event, handler)
        logger.debug(f"Registered {handler.__name__} for {event}")

    logger.info("Phase event handlers registered successfully")


def teardown_phase_event_handlers():
    """Unregister all handlers. Used in tests and on shutdown."""
    for event, handler in HANDLERS:
        eventBus.unsubscribe(event, handler)
    handlerContext.reset()

    logger.info("Phase event handlers unregistered")
