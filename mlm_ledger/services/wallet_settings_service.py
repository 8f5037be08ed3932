# mlm_ledger/services/wallet_settings_service.py
"""
Wallet settings registry - slug to physical wallet column.
"""
from dataclasses import dataclass
from typing import List, Optional
from sqlalchemy.orm import Session
import logging

import config
from models import WalletSetting, WALLET_COLUMNS
from mlm_ledger.errors import UnknownWalletSlug

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletSlot:
    slug: str
    name: str
    column: str
    type: str
    linkedSlug: Optional[str] = None
    status: int = 1
    adminStatus: int = 1


class WalletSettingsService:
    """Resolves wallet slugs; the mapping is data, so new income types need no migration."""

    def __init__(self, session: Session):
        self.session = session

    def find(self, slug: str) -> Optional[WalletSlot]:
        setting = self.session.query(WalletSetting).filter_by(slug=slug).first()
        if not setting:
            return None
        return self._toSlot(setting)

    def resolve(self, slug: str) -> WalletSlot:
        """Get slot for slug or raise UnknownWalletSlug."""
        slot = self.find(slug)
        if slot is None:
            logger.error(f"Wallet slug '{slug}' is not registered")
            raise UnknownWalletSlug(slug)
        if slot.column not in WALLET_COLUMNS:
            logger.error(f"Wallet slug '{slug}' maps to invalid column {slot.column}")
            raise UnknownWalletSlug(slug)
        return slot

    def resolveActiveByType(self, walletType: str) -> List[WalletSlot]:
        settings = self.session.query(WalletSetting).filter_by(
            type=walletType,
            status=1
        ).order_by(WalletSetting.settingID).all()
        return [self._toSlot(s) for s in settings]

    def fanOutChain(self, slug: str) -> List[WalletSlot]:
        """
        Slot for slug followed by its linked wallets.
        A credit to the first slot is mirrored to every following one.
        """
        chain = []
        seen = set()
        current = slug
        while current and current not in seen:
            slot = self.resolve(current)
            chain.append(slot)
            seen.add(current)
            current = slot.linkedSlug

        if current in seen:
            logger.warning(f"Linked wallet loop at '{current}' while resolving '{slug}'")
        return chain

    def seedDefaults(self) -> int:
        """Insert missing registry rows from config. Returns number of rows created."""
        created = 0
        for slug, (name, column, walletType, linked) in config.DEFAULT_WALLET_SETTINGS.items():
            exists = self.session.query(WalletSetting.settingID).filter_by(slug=slug).first()
            if exists:
                continue
            self.session.add(WalletSetting(
                slug=slug,
                name=name,
                column=column,
                type=walletType,
                wallet=linked
            ))
            created += 1

        if created:
            self.session.commit()
            logger.info(f"Seeded {created} wallet settings")
        return created

    @staticmethod
    def _toSlot(setting: WalletSetting) -> WalletSlot:
        return WalletSlot(
            slug=setting.slug,
            name=setting.name,
            column=setting.column,
            type=setting.type,
            linkedSlug=setting.wallet or None,
            status=setting.status,
            adminStatus=setting.adminStatus
        )
