from datetime import datetime, timedelta, timezone
from typing import Optional

from .catalog import EventCatalog
from .config import WalletSettings
from .ledger import LedgerEngine
from .membership import MembershipCoordinator
from .observer import BalanceObserver
from .store import TransactionalStore
from .withdrawals import WithdrawalRequestQueue

DEMO_PLAYER_ID = "demo-player"
DEMO_ADMIN_ID = "demo-admin"


class WalletService:
    """All wallet components bound to one store."""

    def __init__(
        self,
        store: Optional[TransactionalStore] = None,
        settings: Optional[WalletSettings] = None,
        seed: bool = False,
    ):
        self.store = store or TransactionalStore(settings)
        self.settings = self.store.settings
        self.catalog = EventCatalog(self.store)
        self.ledger = LedgerEngine(self.store)
        self.membership = MembershipCoordinator(self.store)
        self.withdrawals = WithdrawalRequestQueue(self.store, self.ledger)
        self.observer = BalanceObserver(self.store)
        if seed:
            self._seed_data()

    def _seed_data(self):
        self.ledger.open_account(DEMO_PLAYER_ID, display_name="Demo Player", email="player@example.com")
        self.ledger.open_account(DEMO_ADMIN_ID, display_name="Demo Admin", email="admin@example.com", is_admin=True)

        now = datetime.now(timezone.utc)
        self.catalog.add_event(
            event_id="friday-fifa-cup", name="Friday FIFA Cup", game_type="FIFA",
            entry_fee=300, start_time=now + timedelta(days=3), location="Online",
            rules_text="Single elimination, best of three.",
        )
        self.catalog.add_event(
            event_id="tekken-open", name="Tekken Open", game_type="Tekken",
            entry_fee=500, start_time=now + timedelta(days=7), location="Lahore Gaming Arena",
            rules_text="Double elimination. Bring your own controller.",
        )
        self.catalog.add_event(
            event_id="valorant-scrims", name="Valorant Community Scrims", game_type="Valorant",
            entry_fee=0, start_time=now + timedelta(days=1), location="Online",
        )
