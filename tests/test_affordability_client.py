"""
Test Suite for the affordability API HTTP client
"""

import unittest
from datetime import date
from unittest.mock import Mock

import requests

from quote_engine.errors import AffordabilityTrialLimitExceeded, ExternalCallError
from quote_engine.models import AffordabilityRequest
from quote_engine.services.affordability_client import AffordabilityAPIClient


def response(status_code=200, body=None, reason='OK'):
    resp = Mock()
    resp.status_code = status_code
    resp.ok = status_code < 400
    resp.reason = reason
    resp.content = b'{}' if body is not None else b''
    if isinstance(body, Exception):
        resp.json.side_effect = body
    else:
        resp.json.return_value = body
    return resp


class AffordabilityClientTestCase(unittest.TestCase):

    def setUp(self):
        self.session = Mock()
        self.session.headers = {}
        self.client = AffordabilityAPIClient('https://api.example.com/v1/', 'key-123',
                                             timeout=12, session=self.session)


class TestRequests(AffordabilityClientTestCase):

    def test_auth_headers_set(self):
        self.assertEqual(self.session.headers['Vericred-Api-Key'], 'key-123')
        self.assertEqual(self.session.headers['Accept-Version'], 'v6')

    def test_submit(self):
        self.session.request.return_value = response(201, {
            'ichra_affordability_calculation': {'id': 991, 'status': 'processing'}})
        request = AffordabilityRequest(effective_date=date(2025, 1, 1), plan_year=2025)

        result = self.client.submit('ext-g1', request)

        self.assertEqual(result, {'calculation_id': '991', 'status': 'processing'})
        method, url = self.session.request.call_args.args
        self.assertEqual(method, 'POST')
        self.assertEqual(url, 'https://api.example.com/v1/groups/ext-g1/ichra_affordability_calculations')
        self.assertEqual(self.session.request.call_args.kwargs['json'], request.to_payload())
        self.assertEqual(self.session.request.call_args.kwargs['timeout'], 12)

    def test_get(self):
        self.session.request.return_value = response(200, {
            'status': 'complete', 'overall_affordability': True, 'summary': {'total_members': 1}})
        result = self.client.get('991')
        self.assertEqual(result['status'], 'complete')
        self.assertEqual(result['summary'], {'total_members': 1})
        self.assertTrue(self.session.request.call_args.args[1].endswith('/ichra_affordability_calculations/991'))

    def test_get_members_accepts_wrapped_or_bare_list(self):
        self.session.request.return_value = response(200, {'members': [{'member_id': 'm1'}]})
        self.assertEqual(self.client.get_members('991'), [{'member_id': 'm1'}])

        self.session.request.return_value = response(200, [{'member_id': 'm2'}])
        self.assertEqual(self.client.get_members('991'), [{'member_id': 'm2'}])


class TestErrorMapping(AffordabilityClientTestCase):

    def assert_maps_to(self, resp, error_type):
        self.session.request.return_value = resp
        with self.assertRaises(error_type) as ctx:
            self.client.get('991')
        return ctx.exception

    def test_ichra_limit_is_trial_limit(self):
        self.assert_maps_to(response(429, {'message': 'ICHRA calculation limit reached'}),
                            AffordabilityTrialLimitExceeded)

    def test_quota_forbidden_is_trial_limit(self):
        self.assert_maps_to(response(403, {'error': 'Trial quota exceeded'}),
                            AffordabilityTrialLimitExceeded)

    def test_plain_rate_limit_keeps_status_for_retry(self):
        error = self.assert_maps_to(response(429, {'message': 'Too many requests'}), ExternalCallError)
        self.assertEqual(error.status_code, 429)

    def test_auth_failure(self):
        error = self.assert_maps_to(response(401, {}), ExternalCallError)
        self.assertEqual(error.status_code, 401)
        self.assertIn('authentication', error.message)

    def test_server_error_without_json_body(self):
        error = self.assert_maps_to(response(502, ValueError('no json'), reason='Bad Gateway'),
                                    ExternalCallError)
        self.assertEqual(error.status_code, 502)
        self.assertIn('Bad Gateway', error.message)

    def test_timeout_has_no_status(self):
        self.session.request.side_effect = requests.Timeout('read timed out')
        with self.assertRaises(ExternalCallError) as ctx:
            self.client.get('991')
        self.assertIsNone(ctx.exception.status_code)

    def test_connection_error_has_no_status(self):
        self.session.request.side_effect = requests.ConnectionError('reset')
        with self.assertRaises(ExternalCallError) as ctx:
            self.client.submit('ext-g1', AffordabilityRequest(date(2025, 1, 1), 2025))
        self.assertIsNone(ctx.exception.status_code)


if __name__ == '__main__':
    unittest.main()
