"""
Unit tests for the retry loop.
"""

import random
import threading
from unittest.mock import Mock

import pytest
import requests

from ..resilience import Retrier, RetryPolicy, RetryState
from ..error_tracker import (
    SourceFetchError, TerminalFetchError, TransportSetupError,
    RetriesExhaustedError, FetchCancelledError
)


class RecordingSleep:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


class TestRetryPolicy:

    def test_next_delay_grows_by_at_most_a_sixth(self):
        policy = RetryPolicy(base_delay_seconds=6.0, max_delay_seconds=100.0)
        rng = random.Random(1)
        for _ in range(50):
            delay = policy.next_delay(6.0, rng)
            assert 6.0 <= delay <= 7.0

    def test_next_delay_respects_ceiling(self):
        policy = RetryPolicy(base_delay_seconds=10.0, max_delay_seconds=11.0)
        rng = random.Random(3)
        delay = 10.0
        for _ in range(100):
            delay = policy.next_delay(delay, rng)
        assert delay == 11.0

    def test_pacing_delay(self):
        policy = RetryPolicy(call_delay_seconds=3.0)
        rng = random.Random(7)
        for _ in range(20):
            assert 3.0 <= policy.pacing_delay(rng) <= 4.0
        assert RetryPolicy(call_delay_seconds=0).pacing_delay(rng) == 0.0


class TestRetrier:

    @pytest.fixture
    def sleep(self):
        return RecordingSleep()

    @pytest.fixture
    def factory(self):
        return Mock(side_effect=lambda: Mock(name="client"))

    def make(self, factory, sleep, **policy_args):
        policy = RetryPolicy(**{"max_attempts": 3, "base_delay_seconds": 1.0, **policy_args})
        return Retrier(policy, factory, sleep=sleep, rng=random.Random(0))

    def test_success_first_attempt(self, factory, sleep):
        retrier = self.make(factory, sleep)
        op = Mock(return_value="ok")

        assert retrier.run(op, "GET x") == "ok"
        assert op.call_count == 1
        assert factory.call_count == 1
        assert retrier.state.attempt == 0

    def test_exhaustion_makes_exactly_max_attempts(self, factory, sleep):
        retrier = self.make(factory, sleep, max_attempts=4)
        errors = [SourceFetchError(f"boom {i}") for i in range(4)]
        op = Mock(side_effect=errors)

        with pytest.raises(RetriesExhaustedError) as exc_info:
            retrier.run(op, "GET x")

        assert op.call_count == 4
        assert exc_info.value.attempts == 4
        assert exc_info.value.__cause__ is errors[-1]

    def test_fresh_client_after_each_failure(self, factory, sleep):
        retrier = self.make(factory, sleep)
        clients = []

        def op(client):
            clients.append(client)
            if len(clients) < 3:
                raise requests.ConnectionError("reset")
            return "ok"

        assert retrier.run(op) == "ok"
        assert len(set(map(id, clients))) == 3
        for client in clients[:2]:
            client.close.assert_called_once()

    def test_terminal_failure_is_not_retried(self, factory, sleep):
        retrier = self.make(factory, sleep, max_attempts=5)
        op = Mock(side_effect=TerminalFetchError("noauth"))

        with pytest.raises(TerminalFetchError):
            retrier.run(op)
        assert op.call_count == 1

    def test_other_errors_propagate_unchanged(self, factory, sleep):
        retrier = self.make(factory, sleep)
        op = Mock(side_effect=KeyError("bug"))

        with pytest.raises(KeyError):
            retrier.run(op)
        assert op.call_count == 1

    def test_budget_resets_for_each_request(self, factory, sleep):
        retrier = self.make(factory, sleep, max_attempts=3)
        first = Mock(side_effect=[SourceFetchError("a"), SourceFetchError("b"), "ok"])
        second = Mock(side_effect=[SourceFetchError("c"), SourceFetchError("d"), "ok"])

        assert retrier.run(first) == "ok"
        assert retrier.state.attempt == 0
        assert retrier.state.current_delay == 1.0
        assert retrier.run(second) == "ok"
        assert second.call_count == 3

    def test_backoff_sleeps_grow_until_ceiling(self, factory, sleep):
        retrier = self.make(factory, sleep, max_attempts=6, base_delay_seconds=5.0, max_delay_seconds=5.5)
        op = Mock(side_effect=SourceFetchError("down"))

        with pytest.raises(RetriesExhaustedError):
            retrier.run(op)

        # no pacing delay configured, so every sleep is a backoff
        assert len(sleep.calls) == 5
        assert sleep.calls == sorted(sleep.calls)
        assert all(5.0 <= s <= 5.5 for s in sleep.calls)

    def test_pacing_before_every_attempt(self, factory, sleep):
        retrier = self.make(factory, sleep, call_delay_seconds=0.3, base_delay_seconds=0)
        op = Mock(side_effect=[SourceFetchError("x"), "ok"])

        retrier.run(op)
        assert len(sleep.calls) == 2
        assert all(0.3 <= s <= 0.4 for s in sleep.calls)

    def test_client_factory_failure_is_setup_error(self, sleep):
        factory = Mock(side_effect=RuntimeError("no sockets"))
        retrier = self.make(factory, sleep)

        with pytest.raises(TransportSetupError):
            retrier.run(Mock())

    def test_cancel_during_backoff(self, factory):
        cancel = threading.Event()

        def sleep(seconds):
            cancel.set()

        policy = RetryPolicy(max_attempts=5, base_delay_seconds=1.0)
        retrier = Retrier(policy, factory, sleep=sleep, cancel_event=cancel)
        op = Mock(side_effect=SourceFetchError("down"))

        with pytest.raises(FetchCancelledError):
            retrier.run(op)
        assert op.call_count == 1

    def test_cancel_before_first_attempt(self, factory, sleep):
        cancel = threading.Event()
        cancel.set()
        retrier = Retrier(RetryPolicy(), factory, sleep=sleep, cancel_event=cancel)
        op = Mock()

        with pytest.raises(FetchCancelledError):
            retrier.run(op)
        op.assert_not_called()

    def test_state_is_per_instance(self, factory, sleep):
        a = self.make(factory, sleep)
        b = self.make(factory, sleep)
        assert a.state is not b.state

        shared = RetryState()
        c = Retrier(RetryPolicy(), factory, state=shared, sleep=sleep)
        assert c.state is shared
