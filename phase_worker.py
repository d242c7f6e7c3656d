# phase_worker.py
"""
Phase engine worker - main entry point.
Wires configuration, database, notifications and the payout scheduler,
then runs until SIGINT/SIGTERM.
"""
import asyncio
import logging
import signal
import sys

from config import Config
from core.db import setup_database
from background.payout_scheduler import PayoutScheduler
from phase_engine.gateway.payment_rail import HttpPaymentRail
from phase_engine.events.setup import setup_phase_event_handlers, teardown_phase_event_handlers

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler('phase_worker.log')
    ]
)

logger = logging.getLogger(__name__)


async def initialize_worker() -> PayoutScheduler:
    """
    Initialize all services.

    Returns:
        Started PayoutScheduler
    """
    try:
        logger.info("=" * 60)
        logger.info("PHASE ENGINE WORKER INITIALIZATION")
        logger.info("=" * 60)

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 1: Load and validate configuration
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("📋 Loading configuration from .env...")
        Config.initialize_from_env()
        Config.validate_critical_keys()
        logger.info("✓ Configuration loaded")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 2: Setup database
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("💾 Setting up database...")
        setup_database()
        logger.info("✓ Database ready")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 3: Email service
        # ═══════════════════════════════════════════════════════════════════════
        from email_system import EmailService
        email_service = EmailService()
        await email_service.initialize()

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 4: Payment rail and event handlers
        # ═══════════════════════════════════════════════════════════════════════
        payment_rail = HttpPaymentRail.from_config()
        setup_phase_event_handlers(paymentRail=payment_rail, emailService=email_service)
        logger.info("✓ Event handlers registered")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 5: Background jobs
        # ═══════════════════════════════════════════════════════════════════════
        scheduler = PayoutScheduler(payment_rail)
        await scheduler.start()

        logger.info("=" * 60)
        logger.info("✅ INITIALIZATION COMPLETE")
        logger.info("=" * 60)

        return scheduler

    except Exception as e:
        logger.critical(f"❌ Initialization failed: {e}", exc_info=True)
        raise


async def main():
    """Main entry point."""
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Signal handlers not available on Windows
            logger.warning(f"Signal handler for {sig} not available on this platform")

    scheduler = None
    try:
        scheduler = await initialize_worker()
        await stop_event.wait()
        logger.info("⚠️ Shutdown signal received")
    except Exception as e:
        logger.critical(f"❌ Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if scheduler is not None:
            await scheduler.stop()
        teardown_phase_event_handlers()
        logger.info("👋 Worker shutdown complete")


if __name__ == '__main__':
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Worker stopped")
