"""Unit tests for cancellation tokens and the process-wide interrupt token."""

import os
import signal
import sys
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kuberc.modules.forward import CancelToken, cancel


class TestCancelToken:
    def test_callbacks_run_once(self):
        token = CancelToken()
        callback = MagicMock()
        token.subscribe(callback)

        token.cancel()
        token.cancel()

        callback.assert_called_once()
        assert token.cancelled
        assert token.wait(0)

    def test_unsubscribe(self):
        token = CancelToken()
        callback = MagicMock()
        handle = token.subscribe(callback)
        token.unsubscribe(handle)

        token.cancel()

        callback.assert_not_called()
        assert token.subscribers() == 0

    def test_failing_callback_does_not_block_others(self):
        token = CancelToken()
        token.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        second = MagicMock()
        token.subscribe(second)

        token.cancel()

        second.assert_called_once()

    def test_wait_times_out(self):
        assert not CancelToken().wait(0.01)


class TestInterruptToken:
    def test_handlers_installed_once(self, monkeypatch):
        monkeypatch.setattr(cancel, "_interrupt_token", None)
        previous = MagicMock()

        with patch("kuberc.modules.forward.cancel.signal.signal") as mock_signal, \
                patch("kuberc.modules.forward.cancel.signal.getsignal", return_value=previous):
            first = cancel.interrupt_token()
            second = cancel.interrupt_token()

        assert first is second
        signals = [c.args[0] for c in mock_signal.call_args_list]
        assert signals == [signal.SIGINT, signal.SIGTERM]

    def test_handler_cancels_and_chains(self, monkeypatch):
        monkeypatch.setattr(cancel, "_interrupt_token", None)
        previous = MagicMock()

        with patch("kuberc.modules.forward.cancel.signal.signal") as mock_signal, \
                patch("kuberc.modules.forward.cancel.signal.getsignal", return_value=previous):
            token = cancel.interrupt_token()

        handler = mock_signal.call_args_list[0].args[1]
        handler(signal.SIGINT, None)

        assert token.wait(2)
        previous.assert_called_once_with(signal.SIGINT, None)
