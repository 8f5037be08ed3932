# mlm_ledger/services/payout_service.py
"""
Base for commission distributors.

A run walks source entities (orders or users) with a bounded worker pool.
Each entity is handled in its own session; each single payout inside it
sits in a savepoint, so one failing beneficiary never aborts the batch.
"""
import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

import config
from mlm_ledger.config.plan import IncomeSource, INCOME_WALLET, ZERO
from mlm_ledger.errors import LedgerError
from mlm_ledger.events.event_bus import eventBus, EventBus, MLMEvents
from mlm_ledger.services.business_service import BusinessService
from mlm_ledger.services.capping_service import CappingService
from mlm_ledger.services.ledger_service import LedgerService
from mlm_ledger.services.network_service import NetworkService
from mlm_ledger.services.settings_service import SettingsService
from mlm_ledger.services.transaction_service import TransactionService
from mlm_ledger.services.wallet_settings_service import WalletSettingsService
from mlm_ledger.utils.money import toDecimal

logger = logging.getLogger(__name__)


@dataclass
class BatchSummary:
    job: str
    processed: int = 0
    paid: int = 0
    skipped: int = 0
    errors: int = 0
    total: Decimal = ZERO
    payouts: List[Dict] = field(default_factory=list)

    def toDict(self) -> Dict:
        return {
            "job": self.job,
            "processed": self.processed,
            "paid": self.paid,
            "skipped": self.skipped,
            "errors": self.errors,
            "total": str(self.total),
        }


class PayoutContext:
    """Services bound to one session."""

    def __init__(self, session: Session):
        self.session = session
        self.registry = WalletSettingsService(session)
        self.ledger = LedgerService(session, self.registry)
        self.network = NetworkService(session)
        self.business = BusinessService(session, self.network)
        self.capping = CappingService(session, self.ledger, self.business)
        self.transactions = TransactionService(session)
        self.settings = SettingsService(session)


class PayoutService:
    """Shared payout algorithm; subclasses enumerate sources and beneficiaries."""

    source: IncomeSource = None

    def __init__(self, sessionFactory: Callable[[], Session] = None, bus: EventBus = None):
        if sessionFactory is None:
            from init import Session as sessionFactory
        self.sessionFactory = sessionFactory
        self.bus = bus or eventBus

    def payIncome(self, ctx: PayoutContext, beneficiaryId: int, amount, sourceRef,
                  level: int = 0, period: str = "", txUCode: Optional[int] = None,
                  source: IncomeSource = None, remark: str = None) -> Optional[Dict]:
        """
        Pay one (beneficiary, source, level) income.
        Returns payout dict, or None when skipped.
        """
        source = source or self.source
        walletSlug = INCOME_WALLET[source]

        if ctx.transactions.incomeExists(beneficiaryId, source.value, sourceRef, level, period):
            logger.debug(f"{source.value}: user {beneficiaryId} already paid for {sourceRef} level {level} {period}")
            return None

        amount = toDecimal(amount)
        if amount <= 0:
            return None

        with ctx.session.begin_nested():
            payable = ctx.capping.consume(beneficiaryId, amount)
            if payable <= 0:
                logger.debug(f"{source.value}: user {beneficiaryId} reached capping, skip")
                return None

            changes = ctx.ledger.credit(beneficiaryId, walletSlug, payable)
            if not all(change.applied for change in changes):
                raise LedgerError(f"Credit of {payable} to {walletSlug} for user {beneficiaryId} not applied")

            tx = ctx.transactions.recordIncome(
                uCode=beneficiaryId,
                source=source.value,
                sourceRef=sourceRef,
                change=changes[0],
                walletType=walletSlug,
                txUCode=txUCode,
                level=level,
                period=period,
                remark=remark or f"{source.value} {config.CURRENCY} {payable} level {level}"
            )

        logger.info(f"{source.value}: paid {payable} to user {beneficiaryId} (ref {sourceRef}, level {level})")
        return {
            "incomeId": tx.incomeID,
            "userId": beneficiaryId,
            "source": source.value,
            "sourceRef": str(sourceRef),
            "level": level,
            "period": period,
            "amount": payable,
        }

    def safePayIncome(self, ctx: PayoutContext, *args, **kwargs) -> Optional[Dict]:
        """payIncome that logs and skips on failure."""
        try:
            return self.payIncome(ctx, *args, **kwargs)
        except IntegrityError:
            # Unique key on the income row: a parallel run paid it first
            logger.debug(f"{self.source.value}: duplicate payout ignored {args}")
            return None
        except LedgerError as e:
            logger.error(f"{self.source.value}: payout failed {args}: {e}")
            return None

    async def runBatch(self, items: Iterable, handler: Callable[[PayoutContext, object], List[Dict]],
                       jobName: str = None) -> Dict:
        """
        Run handler for every item with at most WORKER_POOL_SIZE in flight.
        handler is synchronous and runs in a worker thread with its own session.
        """
        summary = BatchSummary(job=jobName or self.source.value)
        semaphore = asyncio.Semaphore(self.poolSize())

        async def worker(item):
            async with semaphore:
                try:
                    payouts = await asyncio.to_thread(self._processItem, handler, item)
                except Exception as e:
                    summary.errors += 1
                    logger.error(f"{summary.job}: item {item} failed: {e}")
                    return

            summary.processed += 1
            if not payouts:
                summary.skipped += 1
                return
            for payout in payouts:
                summary.paid += 1
                summary.total += payout["amount"]
                summary.payouts.append(payout)
                await self.bus.emit(MLMEvents.INCOME_CREDITED, payout)

        await asyncio.gather(*(worker(item) for item in items))

        logger.info(
            f"{summary.job} finished: {summary.processed} processed, "
            f"{summary.paid} payouts, total {summary.total}, {summary.errors} errors"
        )
        result = summary.toDict()
        result["success"] = True
        await self.bus.emit(MLMEvents.JOB_COMPLETED, dict(result))

        result["payouts"] = summary.payouts
        return result

    def _processItem(self, handler, item) -> List[Dict]:
        with self.sessionFactory() as session:
            try:
                # Outer savepoint keeps the item in one transaction; pysqlite
                # opens none before the first savepoint on its own
                with session.begin_nested():
                    payouts = [p for p in handler(PayoutContext(session), item) if p]
                session.commit()
                return payouts
            except Exception:
                session.rollback()
                raise

    def loadIds(self, query: Callable[[Session], List[int]]) -> List[int]:
        with self.sessionFactory() as session:
            return query(session)

    def poolSize(self) -> int:
        """Worker count; SQLite takes a single writer, so it gets one worker."""
        with self.sessionFactory() as session:
            dialect = session.get_bind().dialect.name
        if dialect == "sqlite":
            return 1
        return max(1, config.WORKER_POOL_SIZE)
