# phase_engine/events/handlers.py
"""
Event handlers for the phase engine.
Each handler opens its own session and closes it when done.
"""
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from config import Config
from phase_engine.gateway.persistence import PersistenceGateway
from phase_engine.gateway.payment_rail import PaymentRail
from phase_engine.services.phase_service import PhaseService
from phase_engine.services.auto_payout_service import AutoPayoutScheduler
from phase_engine.utils.referral_tree import ReferralTreeWalker

logger = logging.getLogger(__name__)


class HandlerContext:
    """Collaborators shared by the handlers, set by setup_phase_event_handlers()."""

    def __init__(self):
        self.sessionFactory: Optional[Callable[[], Session]] = None
        self.paymentRail: Optional[PaymentRail] = None
        self.emailService = None

    def configure(self, sessionFactory=None, paymentRail=None, emailService=None):
        if sessionFactory is None:
            from core.db import get_session
            sessionFactory = get_session
        self.sessionFactory = sessionFactory
        self.paymentRail = paymentRail
        self.emailService = emailService

    def reset(self):
        self.__init__()


handlerContext = HandlerContext()


def _open_session() -> Session:
    if handlerContext.sessionFactory is None:
        handlerContext.configure()
    return handlerContext.sessionFactory()


def _member_id(data: Dict[str, Any], event: str) -> Optional[int]:
    memberId = data.get("memberId")
    if not memberId:
        logger.error(f"{event} event missing memberId")
        return None
    return memberId


async def handle_subscription_changed(data: Dict[str, Any]):
    """
    Handle SUBSCRIPTION_CHANGED and MEMBER_REGISTERED events.

    A member's tier depends on two levels below it, so the member and its
    two uplines are recalculated. A failure for one member does not stop
    the others.

    Args:
        data: Event data with 'memberId' key
    """
    memberId = _member_id(data, "SUBSCRIPTION_CHANGED")
    if memberId is None:
        return

    session = _open_session()
    try:
        gateway = PersistenceGateway(session)
        affected = ReferralTreeWalker(gateway).get_affected_members(memberId)
        phaseService = PhaseService(gateway)

        logger.info(f"Recalculating phases for member {memberId} and uplines: {affected}")

        for affectedId in affected:
            try:
                result = await phaseService.recalculatePhase(affectedId)
                logger.debug(
                    f"✓ Member {affectedId}: effective tier {result['effectiveTier']} "
                    f"({result['tierSource']})"
                )
            except Exception as e:
                logger.error(f"Error recalculating phase for member {affectedId}: {e}", exc_info=True)
                session.rollback()

    finally:
        session.close()


async def handle_wallet_credited(data: Dict[str, Any]):
    """Handle WALLET_CREDITED: evaluate automatic payout for the member."""
    memberId = _member_id(data, "WALLET_CREDITED")
    if memberId is None:
        return

    if handlerContext.paymentRail is None:
        logger.debug(f"No payment rail configured, skipping auto payout for member {memberId}")
        return

    session = _open_session()
    try:
        scheduler = AutoPayoutScheduler(PersistenceGateway(session), handlerContext.paymentRail)
        evaluation = await scheduler.evaluate(
            memberId,
            timeout=Config.get(Config.PAYMENT_RAIL_TIMEOUT, 30)
        )
        if evaluation.triggered:
            logger.info(f"✓ Auto payout of {evaluation.amountCents} sent for member {memberId}")
        elif not evaluation.success:
            logger.warning(f"Auto payout for member {memberId} not sent: {evaluation.reason}")

    finally:
        session.close()


def _member_email(memberId: int) -> Optional[str]:
    session = _open_session()
    try:
        member = PersistenceGateway(session).getMember(memberId)
        return member.email if member else None
    finally:
        session.close()


async def handle_payout_completed(data: Dict[str, Any]):
    """Handle PAYOUT_COMPLETED: notify the member."""
    memberId = _member_id(data, "PAYOUT_COMPLETED")
    if memberId is None or handlerContext.emailService is None:
        return

    email = _member_email(memberId)
    if not email:
        logger.debug(f"Member {memberId} has no email, payout notification skipped")
        return

    await handlerContext.emailService.send_payout_notification(
        email,
        data.get("amountCents", 0),
        data.get("externalReference")
    )


async def handle_reward_granted(data: Dict[str, Any]):
    """Handle REWARD_GRANTED: notify the member."""
    memberId = _member_id(data, "REWARD_GRANTED")
    if memberId is None or handlerContext.emailService is None:
        return

    email = _member_email(memberId)
    if not email:
        logger.debug(f"Member {memberId} has no email, reward notification skipped")
        return

    await handlerContext.emailService.send_reward_notification(
        email,
        tier=data.get("tier"),
        periodKey=data.get("periodKey"),
        creditCents=data.get("creditCents", 0),
        freeProduct=data.get("freeProduct", False)
    )
