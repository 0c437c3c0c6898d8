from datetime import datetime
from typing import Optional
from uuid import uuid4

from .errors import EventNotFound
from .ledger import require_amount
from .models import Event
from .store import Transaction, TransactionalStore

EVENTS = "events"


class EventCatalog:
    """Read-only view of tournaments. ``add_event`` is the catalog owner's hook."""

    def __init__(self, store: TransactionalStore):
        self.store = store

    def add_event(
        self,
        name: str,
        entry_fee: int,
        start_time: datetime,
        game_type: str = "",
        location: str = "",
        rules_text: str = "",
        event_id: Optional[str] = None,
    ) -> Event:
        require_amount(entry_fee, "entry_fee", allow_zero=True)
        event = Event(
            id=event_id or str(uuid4()),
            name=name,
            game_type=game_type,
            entry_fee=entry_fee,
            start_time=start_time,
            location=location,
            rules_text=rules_text,
        )

        def attempt(txn: Transaction) -> None:
            txn.set(EVENTS, event.id, event.model_dump())

        self.store.run_transaction(attempt, name="add_event")
        return event

    def get_event(self, event_id: str) -> Event:
        data = self.store.get(EVENTS, event_id)
        if data is None:
            raise EventNotFound()
        return Event(**data)

    def list_events(self) -> list[Event]:
        events = [Event(**e) for e in self.store.query(EVENTS)]
        events.sort(key=lambda e: e.start_time)
        return events

    def search(self, term: str) -> list[Event]:
        term = term.strip().lower()
        if not term:
            return self.list_events()
        return [
            e for e in self.list_events()
            if term in e.name.lower() or term in e.game_type.lower()
        ]
