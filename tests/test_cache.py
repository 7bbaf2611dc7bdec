"""
Test Suite for the TTL cache
"""

import unittest

from quote_engine.utils.cache import TTLCache


class ManualClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestTTLCache(unittest.TestCase):

    def setUp(self):
        self.clock = ManualClock()
        self.cache = TTLCache(capacity=3, ttl=300, clock=self.clock)

    def test_get_within_ttl(self):
        self.cache.set('a', 1)
        self.clock.now = 299
        self.assertEqual(self.cache.get('a'), 1)
        self.assertEqual(self.cache.hits, 1)

    def test_entry_expires(self):
        self.cache.set('a', 1)
        self.clock.now = 300
        self.assertIsNone(self.cache.get('a'))
        self.assertEqual(len(self.cache), 0)
        self.assertEqual(self.cache.misses, 1)

    def test_overwrite_refreshes_expiry(self):
        self.cache.set('a', 1)
        self.clock.now = 200
        self.cache.set('a', 2)
        self.clock.now = 400
        self.assertEqual(self.cache.get('a'), 2)

    def test_least_recently_used_evicted(self):
        for key in ('a', 'b', 'c'):
            self.cache.set(key, key)
        self.cache.get('a')
        self.cache.set('d', 'd')

        self.assertIsNone(self.cache.get('b'))
        self.assertEqual(self.cache.get('a'), 'a')
        self.assertEqual(len(self.cache), 3)

    def test_invalidate_where(self):
        self.cache.set(('g1', 'x'), 1)
        self.cache.set(('g1', 'y'), 2)
        self.cache.set(('g2', 'x'), 3)

        removed = self.cache.invalidate_where(lambda key: key[0] == 'g1')

        self.assertEqual(removed, 2)
        self.assertEqual(self.cache.get(('g2', 'x')), 3)

    def test_delete_and_clear(self):
        self.cache.set('a', 1)
        self.assertTrue(self.cache.delete('a'))
        self.assertFalse(self.cache.delete('a'))
        self.cache.set('b', 2)
        self.cache.clear()
        self.assertEqual(len(self.cache), 0)

    def test_capacity_must_be_positive(self):
        with self.assertRaises(ValueError):
            TTLCache(capacity=0, ttl=10)


if __name__ == '__main__':
    unittest.main()
