# main.py
"""
Ledger worker: creates tables, seeds the wallet registry, wires events
and runs the payout scheduler.

    python main.py            run the scheduler loop
    python main.py roi        run one job now and exit
"""
import asyncio
import logging
import sys

from init import Session, _engine, init_tables
from mlm_ledger.events.event_bus import eventBus, EventBus, MLMEvents
from mlm_ledger.scheduler import PayoutScheduler, buildJobs
from mlm_ledger.services.level_service import WithdrawLevelService
from mlm_ledger.services.pool_service import AutopoolService
from mlm_ledger.services.wallet_settings_service import WalletSettingsService

logger = logging.getLogger(__name__)


def setup():
    """Инициализация базы данных и реестра кошельков"""
    init_tables(_engine)
    with Session() as session:
        WalletSettingsService(session).seedDefaults()
    logger.info("Database initialized")


def wire_events(bus: EventBus, sessionFactory):
    """Event-driven distributors"""
    withdrawLevel = WithdrawLevelService(sessionFactory, bus)
    autopool = AutopoolService(sessionFactory, bus)

    bus.subscribe(MLMEvents.WITHDRAWAL_DEBITED, withdrawLevel.runWithdrawLevel)
    bus.subscribe(MLMEvents.POOL_REGISTERED, autopool.runAutopoolIncome)


async def main(jobName: str = None):
    """Основная асинхронная функция"""
    services = []
    try:
        setup()
        wire_events(eventBus, Session)
        scheduler = PayoutScheduler(buildJobs(Session, eventBus), Session)

        if jobName:
            result = await scheduler.runJob(jobName, force=True)
            logger.info(f"Job {jobName} result: {result}")
            return

        services.append(asyncio.create_task(
            scheduler.run(),
            name="payout_scheduler"
        ))
        logger.info("Application setup completed")

        await asyncio.gather(*services)

    except Exception as e:
        logger.error(f"Critical error in main: {e}")
        raise
    finally:
        for task in services:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass


if __name__ == '__main__':
    try:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
    except (KeyboardInterrupt, SystemExit):
        logger.info("Worker stopped.")
    except Exception as e:
        logger.critical(f"Unexpected error: {e}")
        raise
