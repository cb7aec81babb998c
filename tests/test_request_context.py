#!/usr/bin/env python3
"""Tests for scope generations and cancellation tokens."""

import unittest

from logfacets.errors import QueryCancelled
from logfacets.request_context import (
    DEFAULT_SCOPE,
    CancellationToken,
    RequestContextRegistry,
    merge_tokens,
)


class TestCancellationToken(unittest.TestCase):
    def test_cancel_runs_callbacks_once(self):
        token = CancellationToken()
        calls = []
        token.add_callback(lambda: calls.append('a'))
        token.cancel()
        token.cancel()
        self.assertTrue(token.cancelled)
        self.assertEqual(calls, ['a'])

    def test_unregister(self):
        token = CancellationToken()
        calls = []
        unregister = token.add_callback(lambda: calls.append('a'))
        unregister()
        token.cancel()
        self.assertEqual(calls, [])

    def test_callback_on_cancelled_token_runs_immediately(self):
        token = CancellationToken()
        token.cancel()
        calls = []
        token.add_callback(lambda: calls.append('late'))
        self.assertEqual(calls, ['late'])

    def test_failing_callback_does_not_stop_others(self):
        token = CancellationToken()
        calls = []

        def boom():
            raise RuntimeError("interrupt failed")

        token.add_callback(boom)
        token.add_callback(lambda: calls.append('b'))
        token.cancel()
        self.assertEqual(calls, ['b'])

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()
        with self.assertRaises(QueryCancelled):
            token.raise_if_cancelled()


class TestMergeTokens(unittest.TestCase):
    def test_none_and_single(self):
        self.assertIsNone(merge_tokens(None, None))
        token = CancellationToken()
        self.assertIs(merge_tokens(None, token), token)

    def test_fires_when_any_fires(self):
        a, b = CancellationToken(), CancellationToken()
        merged = merge_tokens(a, b)
        self.assertFalse(merged.cancelled)
        b.cancel()
        self.assertTrue(merged.cancelled)
        self.assertFalse(a.cancelled)

    def test_already_cancelled_input(self):
        a, b = CancellationToken(), CancellationToken()
        a.cancel()
        self.assertTrue(merge_tokens(a, b).cancelled)
        self.assertEqual(b._callbacks, [])

    def test_fired_merges_detach_from_long_lived_token(self):
        session = CancellationToken()
        for _ in range(5):
            per_request = CancellationToken()
            merged = merge_tokens(per_request, session)
            per_request.cancel()
            self.assertTrue(merged.cancelled)
        self.assertEqual(session._callbacks, [])
        session.cancel()
        self.assertTrue(session.cancelled)

    def test_cancelling_merged_token_detaches_sources(self):
        a, b = CancellationToken(), CancellationToken()
        merged = merge_tokens(a, b)
        merged.cancel()
        self.assertEqual(a._callbacks, [])
        self.assertEqual(b._callbacks, [])
        self.assertFalse(a.cancelled)
        self.assertFalse(b.cancelled)


class TestRequestContextRegistry(unittest.TestCase):
    def test_start_supersedes_previous(self):
        registry = RequestContextRegistry()
        first = registry.start()
        self.assertEqual(first.scope, DEFAULT_SCOPE)
        self.assertTrue(registry.is_current(first))

        second = registry.start()
        self.assertTrue(first.token.cancelled)
        self.assertFalse(registry.is_current(first))
        self.assertTrue(registry.is_current(second))
        self.assertEqual(second.generation, first.generation + 1)
        self.assertIs(registry.current(), second)

    def test_scopes_are_independent(self):
        registry = RequestContextRegistry()
        dashboard = registry.start('dashboard')
        hover = registry.start('hover')
        registry.start('hover')
        self.assertFalse(dashboard.token.cancelled)
        self.assertTrue(registry.is_current(dashboard))
        self.assertTrue(hover.token.cancelled)

    def test_unknown_scope(self):
        registry = RequestContextRegistry()
        self.assertIsNone(registry.current('facets'))


if __name__ == '__main__':
    unittest.main()
