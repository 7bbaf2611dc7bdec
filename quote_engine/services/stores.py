"""
Storage interfaces for groups, quotes and affordability calculations,
with thread-safe in-memory implementations.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from quote_engine.models import AffordabilityCalculation, Group, QuoteResult


class GroupRepository(ABC):

    @abstractmethod
    def get_group(self, group_id: str) -> Optional[Group]:
        """Group with its members and ICHRA classes, or None."""


class QuoteStore(ABC):

    @abstractmethod
    def save(self, quote: QuoteResult) -> None:
        pass

    @abstractmethod
    def get(self, quote_id: str) -> Optional[QuoteResult]:
        pass


class AffordabilityStore(ABC):

    @abstractmethod
    def save(self, calculation: AffordabilityCalculation) -> None:
        """Insert or replace by calculation_id."""

    @abstractmethod
    def get(self, calculation_id: str) -> Optional[AffordabilityCalculation]:
        pass

    @abstractmethod
    def latest_for_group(self, group_id: str) -> Optional[AffordabilityCalculation]:
        pass


class InMemoryGroupRepository(GroupRepository):

    def __init__(self, groups: Optional[List[Group]] = None):
        self._groups: Dict[str, Group] = {g.id: g for g in (groups or [])}
        self._lock = threading.Lock()

    def add(self, group: Group):
        with self._lock:
            self._groups[group.id] = group

    def get_group(self, group_id: str) -> Optional[Group]:
        with self._lock:
            return self._groups.get(group_id)


class InMemoryQuoteStore(QuoteStore):

    def __init__(self):
        self._quotes: Dict[str, QuoteResult] = {}
        self._lock = threading.Lock()

    def save(self, quote: QuoteResult) -> None:
        with self._lock:
            self._quotes[quote.quote_id] = quote

    def get(self, quote_id: str) -> Optional[QuoteResult]:
        with self._lock:
            return self._quotes.get(quote_id)


class InMemoryAffordabilityStore(AffordabilityStore):

    def __init__(self):
        self._calculations: Dict[str, AffordabilityCalculation] = {}
        self._lock = threading.Lock()

    def save(self, calculation: AffordabilityCalculation) -> None:
        with self._lock:
            self._calculations[calculation.calculation_id] = calculation

    def get(self, calculation_id: str) -> Optional[AffordabilityCalculation]:
        with self._lock:
            return self._calculations.get(calculation_id)

    def latest_for_group(self, group_id: str) -> Optional[AffordabilityCalculation]:
        with self._lock:
            candidates = [c for c in self._calculations.values() if c.group_id == group_id]
        if not candidates:
            return None
        # Insertion order breaks created_at ties
        latest = max(enumerate(candidates), key=lambda pair: (pair[1].created_at, pair[0]))
        return latest[1]
