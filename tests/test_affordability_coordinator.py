"""
Test Suite for the group affordability calculation lifecycle
"""

import unittest

from fakes import FakeAffordabilityAPI, group, make_scheduler, member
from quote_engine import AffordabilityPhase, CalculationStatus
from quote_engine.errors import AffordabilityTrialLimitExceeded, ComplianceDataUnavailable
from quote_engine.models import AffordabilityCalculation
from quote_engine.services.affordability_coordinator import AffordabilityCoordinator, parse_status
from quote_engine.services.stores import InMemoryAffordabilityStore


class RecordingSleep:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


class CoordinatorTestCase(unittest.TestCase):
    """Coordinator with no real sync wait and a short background delay."""

    background_delay = 0.0
    background_max_attempts = 1

    def make_coordinator(self, api, scheduler=None):
        self.sleep = RecordingSleep()
        self.store = InMemoryAffordabilityStore()
        coordinator = AffordabilityCoordinator(
            api, scheduler or make_scheduler(), self.store,
            sync_wait=6.0,
            background_delay=self.background_delay,
            background_max_attempts=self.background_max_attempts,
            sleep=self.sleep,
        )
        self.addCleanup(coordinator.shutdown, True)

        self.retries = []
        schedule = coordinator.schedule_background_retry

        def recording_schedule(calculation_id):
            handle = schedule(calculation_id)
            self.retries.append(handle)
            return handle

        coordinator.schedule_background_retry = recording_schedule
        return coordinator

    def setUp(self):
        self.group = group([member('m1'), member('m2')])


class TestParseStatus(unittest.TestCase):

    def test_known_statuses(self):
        self.assertIs(parse_status('complete'), CalculationStatus.COMPLETED)
        self.assertIs(parse_status('Completed'), CalculationStatus.COMPLETED)
        self.assertIs(parse_status('failed'), CalculationStatus.FAILED)

    def test_unknown_is_pending(self):
        self.assertIs(parse_status('processing'), CalculationStatus.PENDING)
        self.assertIs(parse_status(None), CalculationStatus.PENDING)


class TestSynchronousCompletion(CoordinatorTestCase):

    def test_completed_on_submit(self):
        api = FakeAffordabilityAPI(submit_status='complete')
        calculation = self.make_coordinator(api).calculate_group_affordability(self.group)

        self.assertIs(calculation.status, CalculationStatus.COMPLETED)
        self.assertIs(calculation.phase, AffordabilityPhase.COMPLETED)
        self.assertEqual(calculation.compliance_rate, 50.0)
        self.assertEqual(len(calculation.member_results), 2)
        self.assertEqual(self.sleep.calls, [])
        self.assertEqual((api.submit_calls, api.get_calls, api.member_calls), (1, 1, 1))

    def test_member_results_stored_verbatim(self):
        api = FakeAffordabilityAPI()
        calculation = self.make_coordinator(api).calculate_group_affordability(self.group)

        by_id = {r.member_id: r for r in calculation.member_results}
        self.assertTrue(by_id['m1'].is_affordable)
        self.assertFalse(by_id['m2'].is_affordable)
        self.assertEqual(by_id['m2'].compliance_status, 'non_compliant')
        self.assertEqual(self.store.get(calculation.calculation_id), calculation)

    def test_pending_then_complete_after_sync_wait(self):
        api = FakeAffordabilityAPI(submit_status='pending', get_statuses=['complete'])
        coordinator = self.make_coordinator(api)
        calculation = coordinator.calculate_group_affordability(self.group)

        self.assertIs(calculation.status, CalculationStatus.COMPLETED)
        self.assertEqual(self.sleep.calls, [6.0])
        self.assertEqual(self.retries, [])

    def test_external_failure_marks_failed(self):
        api = FakeAffordabilityAPI(submit_status='pending', get_statuses=['failed'])
        calculation = self.make_coordinator(api).calculate_group_affordability(self.group)

        self.assertIs(calculation.status, CalculationStatus.FAILED)
        self.assertIs(calculation.phase, AffordabilityPhase.FAILED)
        self.assertIsNotNone(calculation.error)

    def test_inconsistent_summary_rejected(self):
        api = FakeAffordabilityAPI(summary={'total_members': 2, 'affordable_members': 3})
        calculation = self.make_coordinator(api).calculate_group_affordability(self.group)

        self.assertIs(calculation.status, CalculationStatus.FAILED)
        self.assertIn('Invalid affordability summary', calculation.error)
        self.assertIsNone(calculation.summary)
        self.assertEqual(api.member_calls, 0)

    def test_trial_limit_propagates(self):
        api = FakeAffordabilityAPI()
        coordinator = self.make_coordinator(api, make_scheduler(affordability_limit=0))
        with self.assertRaises(AffordabilityTrialLimitExceeded):
            coordinator.calculate_group_affordability(self.group)
        self.assertEqual(api.submit_calls, 0)

    def test_submission_payload(self):
        api = FakeAffordabilityAPI()
        seen = []
        original_submit = api.submit

        def submit(external_id, request):
            seen.append((external_id, request.to_payload()))
            return original_submit(external_id, request)

        api.submit = submit
        self.make_coordinator(api).calculate_group_affordability(self.group)

        external_id, payload = seen[0]
        self.assertEqual(external_id, 'ext-g1')
        self.assertEqual(payload, {'ichra_affordability_calculation': {
            'effective_date': '2025-01-01', 'plan_year': 2025, 'rating_area_location': 'work'}})


class TestBackgroundRetry(CoordinatorTestCase):

    def test_background_retry_collects_results(self):
        api = FakeAffordabilityAPI(submit_status='pending', get_statuses=['pending', 'complete'])
        coordinator = self.make_coordinator(api)
        calculation = coordinator.calculate_group_affordability(self.group)

        handle = self.retries[0]
        final = handle.result(timeout=5)

        self.assertIs(final.status, CalculationStatus.COMPLETED)
        self.assertTrue(self.store.get(calculation.calculation_id).is_completed)
        self.assertEqual(api.get_calls, 2)

    def test_background_retry_exhausted_marks_failed(self):
        api = FakeAffordabilityAPI(submit_status='pending', get_statuses=['pending'])
        coordinator = self.make_coordinator(api)
        calculation = coordinator.calculate_group_affordability(self.group)

        final = self.retries[0].result(timeout=5)
        self.assertIs(final.status, CalculationStatus.FAILED)
        self.assertIn('1 background attempts', final.error)

    def test_no_wait_skips_sync_fetch(self):
        api = FakeAffordabilityAPI(submit_status='pending', get_statuses=['complete'])
        coordinator = self.make_coordinator(api)
        calculation = coordinator.calculate_group_affordability(self.group, wait_for_results=False)

        self.assertEqual(self.sleep.calls, [])
        final = self.retries[0].result(timeout=5)
        self.assertIs(final.status, CalculationStatus.COMPLETED)
        self.assertEqual(api.get_calls, 1)

    def test_finished_retry_is_forgotten(self):
        api = FakeAffordabilityAPI(submit_status='pending', get_statuses=['pending', 'complete'])
        coordinator = self.make_coordinator(api)
        calculation = coordinator.calculate_group_affordability(self.group)

        self.retries[0].result(timeout=5)
        coordinator.shutdown()

        self.assertIsNone(coordinator.background_retry(calculation.calculation_id))

    def test_unexpected_error_marks_failed(self):
        api = FakeAffordabilityAPI(submit_status='pending')

        def broken_get(calculation_id):
            raise RuntimeError('malformed response')

        api.get = broken_get
        coordinator = self.make_coordinator(api)
        calculation = coordinator.calculate_group_affordability(self.group, wait_for_results=False)

        final = self.retries[0].result(timeout=5)

        self.assertIs(final.status, CalculationStatus.FAILED)
        self.assertIs(final.phase, AffordabilityPhase.FAILED)
        self.assertIn('RuntimeError', final.error)
        self.assertEqual(self.store.get(calculation.calculation_id).status, CalculationStatus.FAILED)

    def test_latest_for_group(self):
        api = FakeAffordabilityAPI()
        coordinator = self.make_coordinator(api)
        coordinator.calculate_group_affordability(self.group)
        second = coordinator.calculate_group_affordability(self.group)
        self.assertEqual(coordinator.latest_for_group('g1').calculation_id, second.calculation_id)
        self.assertIsNone(coordinator.latest_for_group('other'))


class TestBackgroundRetryAttempts(CoordinatorTestCase):
    background_max_attempts = 3

    def test_retries_up_to_max_attempts(self):
        api = FakeAffordabilityAPI(submit_status='pending', get_statuses=['pending'])
        coordinator = self.make_coordinator(api)
        calculation = coordinator.calculate_group_affordability(self.group)

        final = self.retries[0].result(timeout=5)
        self.assertIs(final.status, CalculationStatus.FAILED)
        self.assertEqual(api.get_calls, 4)


class TestBackgroundCancel(CoordinatorTestCase):
    background_delay = 30.0

    def test_cancel_stops_pending_retry(self):
        api = FakeAffordabilityAPI(submit_status='pending', get_statuses=['pending'])
        coordinator = self.make_coordinator(api)
        calculation = coordinator.calculate_group_affordability(self.group, wait_for_results=False)

        handle = self.retries[0]
        self.assertIs(coordinator.background_retry(calculation.calculation_id), handle)
        self.assertTrue(handle.cancel())
        final = handle.result(timeout=5)

        self.assertTrue(handle.cancelled)
        self.assertIs(final.status, CalculationStatus.PENDING)
        self.assertIs(final.phase, AffordabilityPhase.POLLING_BACKGROUND)
        self.assertEqual(api.get_calls, 0)

        coordinator.shutdown()
        self.assertIsNone(coordinator.background_retry(calculation.calculation_id))


class TestRequireCompleted(unittest.TestCase):

    def test_missing_calculation(self):
        with self.assertRaises(ComplianceDataUnavailable):
            AffordabilityCoordinator.require_completed(None)

    def test_pending_calculation(self):
        pending = AffordabilityCalculation('calc-1', 'g1', CalculationStatus.PENDING,
                                           AffordabilityPhase.POLLING_BACKGROUND)
        with self.assertRaises(ComplianceDataUnavailable) as ctx:
            AffordabilityCoordinator.require_completed(pending)
        self.assertEqual(ctx.exception.details['status'], 'pending')
        self.assertEqual(ctx.exception.code, 'COMPLIANCE_DATA_UNAVAILABLE')


if __name__ == '__main__':
    unittest.main()
