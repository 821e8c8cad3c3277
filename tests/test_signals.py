"""Tests for the turn-wide cancel signal."""

from toolbridge.mcp.signals import CancelSignal


class TestCancelSignal:
    def test_initial_state(self):
        signal = CancelSignal()
        assert signal.cancelled is False
        assert signal.reason is None

    def test_callbacks_run_once_in_order(self):
        signal = CancelSignal()
        calls = []
        signal.add_callback(lambda: calls.append("a"))
        signal.add_callback(lambda: calls.append("b"))

        signal.cancel("stop")
        signal.cancel("again")

        assert calls == ["a", "b"]
        assert signal.cancelled is True
        assert signal.reason == "stop"

    def test_removed_callback_does_not_run(self):
        signal = CancelSignal()
        calls = []
        callback = signal.add_callback(lambda: calls.append(1))
        signal.remove_callback(callback)
        signal.remove_callback(callback)
        signal.cancel()
        assert calls == []

    def test_failing_callback_does_not_block_others(self):
        signal = CancelSignal()
        calls = []

        def boom():
            raise RuntimeError("boom")

        signal.add_callback(boom)
        signal.add_callback(lambda: calls.append("ok"))
        signal.cancel()
        assert calls == ["ok"]
