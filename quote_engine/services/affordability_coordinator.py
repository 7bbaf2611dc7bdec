"""
Affordability Coordinator

Manages the lifecycle of a group's ICHRA affordability calculation on the
external service:

    NOT_STARTED -> SUBMITTED -> WAITING_SYNC | POLLING_BACKGROUND -> COMPLETED | FAILED

The calculation is submitted once per group per quote run. The service
usually needs a few seconds to finish, so callers that want results wait a
bounded delay and fetch once; anything still pending is handed to a
background retry whose handle can be awaited or cancelled.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from constants import (
    AFFORDABILITY_BACKGROUND_DELAY_SECONDS,
    AFFORDABILITY_BACKGROUND_MAX_ATTEMPTS,
    AFFORDABILITY_RATING_AREA_LOCATION,
    AFFORDABILITY_SYNC_WAIT_SECONDS,
)
from quote_engine import AffordabilityPhase, CalculationStatus
from quote_engine.errors import (
    ComplianceDataUnavailable,
    ExternalRateLimitExceeded,
    ExternalServiceUnavailable,
    NotFoundError,
    QuoteEngineError,
)
from quote_engine.models import (
    AffordabilityCalculation,
    AffordabilityRequest,
    AffordabilitySummary,
    Group,
    MemberCompliance,
)
from quote_engine.services.collaborators import ExternalAffordabilityAPI
from quote_engine.services.rate_scheduler import AFFORDABILITY_SERVICE, RateScheduler
from quote_engine.services.stores import AffordabilityStore

logger = logging.getLogger(__name__)

_COMPLETED_STATUSES = {'complete', 'completed', 'success', 'succeeded'}
_FAILED_STATUSES = {'failed', 'error', 'errored'}


def parse_status(value: Any) -> CalculationStatus:
    status = str(value or '').lower()
    if status in _COMPLETED_STATUSES:
        return CalculationStatus.COMPLETED
    if status in _FAILED_STATUSES:
        return CalculationStatus.FAILED
    return CalculationStatus.PENDING


class BackgroundRetry:
    """Handle for a scheduled background fetch of affordability results."""

    def __init__(self, calculation_id: str, future: Future, cancel_event: threading.Event):
        self.calculation_id = calculation_id
        self._future = future
        self._cancel_event = cancel_event

    def result(self, timeout: Optional[float] = None) -> AffordabilityCalculation:
        """Block until the retry finishes and return the stored calculation."""
        return self._future.result(timeout=timeout)

    def cancel(self) -> bool:
        """Stop before the next attempt. Returns False if the retry already finished."""
        self._cancel_event.set()
        return not self._future.done()

    def done(self) -> bool:
        return self._future.done()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()


class AffordabilityCoordinator:
    """Submits, waits for, and stores group affordability calculations."""

    def __init__(self, api: ExternalAffordabilityAPI, scheduler: RateScheduler,
                 store: AffordabilityStore,
                 sync_wait: float = AFFORDABILITY_SYNC_WAIT_SECONDS,
                 background_delay: float = AFFORDABILITY_BACKGROUND_DELAY_SECONDS,
                 background_max_attempts: int = AFFORDABILITY_BACKGROUND_MAX_ATTEMPTS,
                 sleep: Callable[[float], None] = time.sleep,
                 now: Callable[[], datetime] = datetime.now):
        self.api = api
        self.scheduler = scheduler
        self.store = store
        self.sync_wait = sync_wait
        self.background_delay = background_delay
        self.background_max_attempts = background_max_attempts
        self._sleep = sleep
        self._now = now
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="affordability")
        self._background: Dict[str, BackgroundRetry] = {}
        self._lock = threading.Lock()

    def calculate_group_affordability(self, group: Group,
                                      wait_for_results: bool = True) -> AffordabilityCalculation:
        """
        Submit the group's affordability calculation and collect results when possible.

        Args:
            group: Group to evaluate
            wait_for_results: Block for the sync delay and try one fetch. When
                False, results are only collected in the background.

        Returns:
            The calculation, COMPLETED if results arrived in time, otherwise
            PENDING with a background retry scheduled.

        Raises:
            AffordabilityTrialLimitExceeded: the endpoint's lifetime quota is spent
        """
        request = AffordabilityRequest(
            effective_date=group.effective_date,
            plan_year=group.plan_year,
            rating_area_location=AFFORDABILITY_RATING_AREA_LOCATION,
        )
        logger.info(f"AFFORDABILITY: Submitting calculation for group {group.id} (plan year {request.plan_year})")
        response = self.scheduler.execute(AFFORDABILITY_SERVICE, self.api.submit, group.external_id, request)

        calculation_id = str(response.get('calculation_id') or response.get('id') or '')
        if not calculation_id:
            raise ExternalServiceUnavailable(
                "Affordability submission returned no calculation id",
                {'group_id': group.id, 'response': response},
            )

        now = self._now()
        calculation = AffordabilityCalculation(
            calculation_id=calculation_id,
            group_id=group.id,
            status=CalculationStatus.PENDING,
            phase=AffordabilityPhase.SUBMITTED,
            created_at=now,
            updated_at=now,
        )
        self.store.save(calculation)

        if parse_status(response.get('status')) is CalculationStatus.COMPLETED:
            logger.info(f"AFFORDABILITY: Calculation {calculation_id} completed immediately")
            return self.retrieve_and_store(calculation_id)

        if wait_for_results:
            self._update(calculation_id, phase=AffordabilityPhase.WAITING_SYNC)
            logger.info(f"AFFORDABILITY: Calculation {calculation_id} pending, waiting {self.sync_wait}s")
            self._sleep(self.sync_wait)
            try:
                calculation = self.retrieve_and_store(calculation_id)
                if calculation.status is not CalculationStatus.PENDING:
                    return calculation
            except (ExternalServiceUnavailable, ExternalRateLimitExceeded) as e:
                logger.warning(f"AFFORDABILITY: Sync fetch for {calculation_id} failed: {e}")

        self.schedule_background_retry(calculation_id)
        return self.store.get(calculation_id)

    def retrieve_and_store(self, calculation_id: str) -> AffordabilityCalculation:
        """
        Fetch the calculation's status and, once complete, its member results.

        External determinations are stored verbatim. A summary reporting more
        affordable members than members is rejected and the calculation
        marked FAILED.
        """
        calculation = self.store.get(calculation_id)
        if calculation is None:
            raise NotFoundError(f"Affordability calculation {calculation_id} not found",
                                {'calculation_id': calculation_id})

        data = self.scheduler.execute(AFFORDABILITY_SERVICE, self.api.get, calculation_id)
        status = parse_status(data.get('status'))

        if status is CalculationStatus.PENDING:
            logger.info(f"AFFORDABILITY: Calculation {calculation_id} still pending")
            return self._update(calculation_id, status=CalculationStatus.PENDING)

        if status is CalculationStatus.FAILED:
            return self.mark_failed(calculation_id, str(data.get('error') or 'External calculation failed'))

        try:
            summary = AffordabilitySummary.from_api(data.get('summary') or {})
        except ValueError as e:
            logger.error(f"AFFORDABILITY: Rejected summary for {calculation_id}: {e}")
            return self.mark_failed(calculation_id, f"Invalid affordability summary: {e}")

        members = self.scheduler.execute(AFFORDABILITY_SERVICE, self.api.get_members, calculation_id)

        completed = self._update(
            calculation_id,
            status=CalculationStatus.COMPLETED,
            phase=AffordabilityPhase.COMPLETED,
            member_results=tuple(MemberCompliance.from_api(m) for m in members or []),
            summary=summary,
            overall_affordability=data.get('overall_affordability'),
            error=None,
        )
        logger.info(
            f"AFFORDABILITY: Calculation {calculation_id} completed: "
            f"{summary.affordable_members}/{summary.total_members} affordable"
        )
        return completed

    def schedule_background_retry(self, calculation_id: str) -> BackgroundRetry:
        """Fetch results in the background, up to background_max_attempts times."""
        self._update(calculation_id, phase=AffordabilityPhase.POLLING_BACKGROUND)
        cancel_event = threading.Event()
        future = self._executor.submit(self._run_background, calculation_id, cancel_event)
        handle = BackgroundRetry(calculation_id, future, cancel_event)
        with self._lock:
            self._background[calculation_id] = handle
        future.add_done_callback(lambda _: self._forget(handle))
        logger.info(
            f"AFFORDABILITY: Scheduled background retry for {calculation_id} "
            f"({self.background_max_attempts} attempts, {self.background_delay}s apart)"
        )
        return handle

    def background_retry(self, calculation_id: str) -> Optional[BackgroundRetry]:
        """The calculation's retry while it is still running, else None."""
        with self._lock:
            return self._background.get(calculation_id)

    def _forget(self, handle: BackgroundRetry):
        with self._lock:
            if self._background.get(handle.calculation_id) is handle:
                del self._background[handle.calculation_id]

    def _run_background(self, calculation_id: str, cancel_event: threading.Event) -> AffordabilityCalculation:
        try:
            return self._retry_until_done(calculation_id, cancel_event)
        except Exception as e:
            logger.exception(f"AFFORDABILITY: Background retry for {calculation_id} crashed")
            return self.mark_failed(calculation_id, f"Background retry error: {type(e).__name__}: {e}")

    def _retry_until_done(self, calculation_id: str,
                          cancel_event: threading.Event) -> AffordabilityCalculation:
        last_error = "results still pending"
        for attempt in range(1, self.background_max_attempts + 1):
            if cancel_event.wait(self.background_delay):
                logger.info(f"AFFORDABILITY: Background retry for {calculation_id} cancelled")
                return self.store.get(calculation_id)
            try:
                calculation = self.retrieve_and_store(calculation_id)
            except QuoteEngineError as e:
                last_error = str(e)
                logger.warning(
                    f"AFFORDABILITY: Background attempt {attempt} for {calculation_id} failed: {e}"
                )
                continue
            if calculation.status is not CalculationStatus.PENDING:
                return calculation

        return self.mark_failed(
            calculation_id,
            f"No results after {self.background_max_attempts} background attempts: {last_error}",
        )

    def mark_failed(self, calculation_id: str, error: str) -> AffordabilityCalculation:
        logger.error(f"AFFORDABILITY: Calculation {calculation_id} failed: {error}")
        return self._update(calculation_id, status=CalculationStatus.FAILED,
                            phase=AffordabilityPhase.FAILED, error=error)

    def latest_for_group(self, group_id: str) -> Optional[AffordabilityCalculation]:
        return self.store.latest_for_group(group_id)

    @staticmethod
    def require_completed(calculation: Optional[AffordabilityCalculation]) -> AffordabilityCalculation:
        """
        Raises:
            ComplianceDataUnavailable: no calculation, or not completed yet
        """
        if calculation is None:
            raise ComplianceDataUnavailable("No affordability calculation available for this group")
        if not calculation.is_completed:
            raise ComplianceDataUnavailable(
                f"Affordability calculation {calculation.calculation_id} is {calculation.status.value}",
                {'calculation_id': calculation.calculation_id,
                 'status': calculation.status.value,
                 'phase': calculation.phase.value,
                 'error': calculation.error},
            )
        return calculation

    def shutdown(self, cancel_pending: bool = False):
        if cancel_pending:
            with self._lock:
                handles = list(self._background.values())
            for handle in handles:
                handle.cancel()
        self._executor.shutdown(wait=True)

    def _update(self, calculation_id: str, **changes) -> AffordabilityCalculation:
        with self._lock:
            current = self.store.get(calculation_id)
            updated = replace(current, updated_at=self._now(), **changes)
            self.store.save(updated)
        return updated
