"""Tests for the connectivity gate and the HTTP health probe."""

from unittest.mock import MagicMock, patch

import httpx

from remindsync.sync.connectivity import ConnectivityGate, HttpHealthProbe, StaticNetworkStatus


class TestConnectivityGate:
    def test_queries_collaborator_every_call(self, network):
        gate = ConnectivityGate(network)
        assert gate.is_connected() is True
        network.reachable = False
        assert gate.is_connected() is False
        assert network.checks == 2

    def test_exception_means_offline(self):
        network = MagicMock()
        network.is_reachable.side_effect = RuntimeError("platform error")
        assert ConnectivityGate(network).is_connected() is False

    def test_callbacks_fire_on_transitions_only(self):
        gate = ConnectivityGate(StaticNetworkStatus())
        events = []
        gate.on_change(events.append)

        gate.notify(False)
        gate.notify(False)
        gate.notify(True)
        gate.notify(True)

        assert events == [False, True]

    def test_unsubscribe(self):
        gate = ConnectivityGate(StaticNetworkStatus())
        events = []
        unsubscribe = gate.on_change(events.append)
        unsubscribe()
        unsubscribe()
        gate.notify(True)
        assert events == []

    def test_failing_callback_does_not_block_others(self):
        gate = ConnectivityGate(StaticNetworkStatus())
        events = []

        def broken(_):
            raise ValueError("bad listener")

        gate.on_change(broken)
        gate.on_change(events.append)
        gate.notify(True)

        assert events == [True]


class TestHttpHealthProbe:
    def test_reachable_on_response(self):
        probe = HttpHealthProbe("https://example.test/health", timeout=1.0)
        with patch("remindsync.sync.connectivity.httpx.get") as get:
            get.return_value = MagicMock(status_code=200)
            assert probe.is_reachable() is True
            get.assert_called_once_with("https://example.test/health", timeout=1.0)

    def test_client_error_still_reachable(self):
        probe = HttpHealthProbe("https://example.test/rest/v1/")
        with patch("remindsync.sync.connectivity.httpx.get") as get:
            get.return_value = MagicMock(status_code=401)
            assert probe.is_reachable() is True

    def test_server_error_unreachable(self):
        probe = HttpHealthProbe("https://example.test/health")
        with patch("remindsync.sync.connectivity.httpx.get") as get:
            get.return_value = MagicMock(status_code=503)
            assert probe.is_reachable() is False

    def test_transport_error_unreachable(self):
        probe = HttpHealthProbe("https://example.test/health")
        with patch(
            "remindsync.sync.connectivity.httpx.get",
            side_effect=httpx.ConnectError("refused"),
        ):
            assert probe.is_reachable() is False
