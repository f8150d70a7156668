"""
Pipeline ledger: quantities in transit, released exactly once when due.

Every echelon owns two kinds of queue per resource kind: a SUPPLY queue
(goods and production travelling toward it) and an ORDERS queue (orders
travelling toward it from its customer). Entries are keyed by the period
in which they arrive.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import DefaultDict, Dict, List, NamedTuple, Optional, Tuple

from ..exceptions import LedgerError

logger = logging.getLogger(__name__)


class Flow(Enum):
    """Direction of a queue relative to its owning echelon"""
    SUPPLY = "supply"
    ORDERS = "orders"


class QueueKey(NamedTuple):
    echelon: str
    flow: Flow
    resource: str

    def __str__(self) -> str:
        return f"{self.echelon}/{self.flow.value}/{self.resource}"


@dataclass(frozen=True)
class PipelineEntry:
    """A quantity due at ``arrival_period``"""
    arrival_period: int
    quantity: int
    scheduled_period: Optional[int] = None


class PipelineLedger:
    """
    Shared in-transit bookkeeping for every echelon of a game.

    ``collect_due`` settles a queue for one period: it releases the sum of
    the entries due in that period and advances the queue's watermark.
    Collecting the same (or an earlier) period again returns 0, and
    scheduling into a period that has already been collected is refused,
    so no entry can be released twice or stranded.
    """

    def __init__(self) -> None:
        self._pending: DefaultDict[QueueKey, List[PipelineEntry]] = defaultdict(list)
        self._released: DefaultDict[QueueKey, List[Tuple[PipelineEntry, int]]] = defaultdict(list)
        self._watermark: Dict[QueueKey, int] = {}
        self._scheduled_total: DefaultDict[QueueKey, int] = defaultdict(int)
        self._released_total: DefaultDict[QueueKey, int] = defaultdict(int)

    def schedule(
        self,
        queue: QueueKey,
        arrival_period: int,
        quantity: int,
        scheduled_period: Optional[int] = None,
    ) -> PipelineEntry:
        """Append an entry due at ``arrival_period``"""
        quantity = int(quantity)
        if quantity < 0:
            raise LedgerError(f"Cannot schedule negative quantity {quantity} on {queue}")
        settled = self._watermark.get(queue)
        if settled is not None and arrival_period <= settled:
            raise LedgerError(
                f"Cannot schedule arrival at period {arrival_period} on {queue}: "
                f"already settled through period {settled}"
            )

        entry = PipelineEntry(arrival_period, quantity, scheduled_period)
        self._pending[queue].append(entry)
        self._scheduled_total[queue] += quantity
        return entry

    def collect_due(self, queue: QueueKey, period: int) -> int:
        """Release and return everything due at ``period`` (0 if nothing is due)"""
        settled = self._watermark.get(queue)
        if settled is not None and period <= settled:
            logger.debug("Queue %s already settled for period %d", queue, period)
            return 0
        self._watermark[queue] = period

        pending = self._pending.get(queue)
        if not pending:
            return 0

        due = [entry for entry in pending if entry.arrival_period == period]
        if not due:
            return 0
        self._pending[queue] = [entry for entry in pending if entry.arrival_period != period]

        quantity = sum(entry.quantity for entry in due)
        self._released[queue].extend((entry, period) for entry in due)
        self._released_total[queue] += quantity
        return quantity

    def peek_due(self, queue: QueueKey, period: int) -> int:
        """Quantity due at ``period`` without releasing it"""
        return sum(e.quantity for e in self._pending.get(queue, []) if e.arrival_period == period)

    def in_transit(self, queue: QueueKey) -> Tuple[PipelineEntry, ...]:
        """Entries still pending on ``queue``, earliest arrival first"""
        return tuple(sorted(self._pending.get(queue, []), key=lambda e: e.arrival_period))

    def released(self, queue: QueueKey) -> Tuple[Tuple[PipelineEntry, int], ...]:
        """(entry, period it was released in) pairs for ``queue``"""
        return tuple(self._released.get(queue, []))

    def pending_total(self, queue: QueueKey) -> int:
        return sum(e.quantity for e in self._pending.get(queue, []))

    def scheduled_total(self, queue: QueueKey) -> int:
        return self._scheduled_total.get(queue, 0)

    def released_total(self, queue: QueueKey) -> int:
        return self._released_total.get(queue, 0)

    def queues(self) -> List[QueueKey]:
        return list(self._scheduled_total)
