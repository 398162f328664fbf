"""
Integration tests for Agent main program.

Tests the coordination between the Controller client, the intent watcher,
the Reconciler and the route engine.
"""

import threading
import time
from unittest.mock import Mock, patch

import pytest
import requests

from agent.client import ControllerClient, ControllerUnavailable
from agent.main import Agent, main
from agent.reconciler import Reconciler
from agent.watcher import IntentWatcher, diff_intents
from config.parser import AgentConfig
from models import NodeRouteStatus, ReconcileResult, RouteIntent


def intent(name="office", subnet="192.168.1.0/24", gateway="172.16.0.1", node=None, generation=1):
    return RouteIntent(name=name, subnet=subnet, gateway=gateway, node=node, generation=generation)


class TestControllerClient:
    """Test HTTP client functionality."""

    def test_fetch_intents_success(self):
        """Test successful intent fetching."""
        client = ControllerClient("http://localhost:8000", timeout=5)

        with patch('requests.get') as mock_get:
            mock_response = Mock()
            mock_response.status_code = 200
            mock_response.json.return_value = {
                "intents": [
                    {"name": "office", "subnet": "192.168.1.0/24",
                     "gateway": "10.0.0.1", "node": "node-a", "generation": 3}
                ]
            }
            mock_get.return_value = mock_response

            intents = client.fetch_intents("node-a")

            assert intents is not None
            assert len(intents) == 1
            assert intents[0].subnet == "192.168.1.0/24"
            assert intents[0].generation == 3
            assert mock_get.call_args[1]["params"] == {"node": "node-a"}

    def test_fetch_intents_server_error(self):
        client = ControllerClient("http://localhost:8000", timeout=5)

        with patch('requests.get') as mock_get:
            mock_response = Mock()
            mock_response.status_code = 500
            mock_response.text = "Internal Server Error"
            mock_get.return_value = mock_response

            assert client.fetch_intents("node-a") is None

    def test_fetch_intents_malformed_payload(self):
        client = ControllerClient("http://localhost:8000", timeout=5)

        with patch('requests.get') as mock_get:
            mock_response = Mock()
            mock_response.status_code = 200
            mock_response.json.return_value = {"intents": [{"name": "x", "subnet": "nope"}]}
            mock_get.return_value = mock_response

            assert client.fetch_intents("node-a") is None

    def test_fetch_with_retry(self):
        """Test exponential backoff retry mechanism."""
        client = ControllerClient(
            "http://localhost:8000",
            timeout=5,
            retry_attempts=3,
            retry_backoff=[0.1, 0.2, 0.4]  # Shorter delays for testing
        )

        with patch('requests.get') as mock_get:
            mock_response_success = Mock()
            mock_response_success.status_code = 200
            mock_response_success.json.return_value = {"intents": []}

            mock_get.side_effect = [
                requests.exceptions.ConnectionError("refused"),
                requests.exceptions.Timeout("slow"),
                mock_response_success
            ]

            start_time = time.time()
            intents = client.fetch_intents_with_retry("node-a")
            elapsed = time.time() - start_time

            assert intents == []
            assert mock_get.call_count == 3
            # Should have waited at least 0.1 + 0.2 = 0.3 seconds
            assert elapsed >= 0.3

    def test_retry_exhausted(self):
        """Test retry exhaustion after all attempts fail."""
        client = ControllerClient(
            "http://localhost:8000",
            timeout=5,
            retry_attempts=2,
            retry_backoff=[0.01]
        )

        with patch('requests.get', side_effect=requests.exceptions.ConnectionError("refused")) as mock_get:
            assert client.fetch_intents_with_retry("node-a") is None
            assert mock_get.call_count == 2

            with pytest.raises(ControllerUnavailable):
                client._retry_with_backoff(lambda: client.fetch_intents("node-a"), "fetch_intents")

    def test_report_status(self):
        client = ControllerClient("http://localhost:8000/", timeout=5)
        status = NodeRouteStatus(hostname="node-a", state="applied",
                                 destination="192.168.1.0/24", gateway="10.0.0.1", table=100)

        with patch('requests.put') as mock_put:
            mock_put.return_value = Mock(status_code=200)

            assert client.report_status("office", status) is True

            url = mock_put.call_args[0][0]
            assert url == "http://localhost:8000/api/v1/intents/office/status"
            assert mock_put.call_args[1]["json"]["state"] == "applied"

    def test_report_status_for_deleted_intent(self):
        client = ControllerClient("http://localhost:8000", timeout=5)
        status = NodeRouteStatus(hostname="node-a", state="applied", destination="192.168.1.0/24")

        with patch('requests.put') as mock_put:
            mock_put.return_value = Mock(status_code=404)

            assert client.report_status("office", status) is False

    def test_report_status_connection_error(self):
        client = ControllerClient("http://localhost:8000", timeout=5)
        status = NodeRouteStatus(hostname="node-a", state="failed", destination="192.168.1.0/24")

        with patch('requests.put', side_effect=requests.exceptions.ConnectionError("refused")):
            assert client.report_status("office", status) is False

    def test_clear_status(self):
        client = ControllerClient("http://localhost:8000", timeout=5)

        with patch('requests.delete') as mock_delete:
            mock_delete.return_value = Mock(status_code=200)

            assert client.clear_status("office", "node-a") is True
            assert mock_delete.call_args[0][0] == \
                "http://localhost:8000/api/v1/intents/office/status/node-a"


class TestDiffIntents:

    def test_created_updated_deleted(self):
        known = {"a": intent("a"), "b": intent("b"), "c": intent("c")}
        desired = {
            "a": intent("a"),
            "b": intent("b", subnet="192.168.2.0/24", generation=2),
            "d": intent("d"),
        }

        events = {e.intent.name: e.kind for e in diff_intents(known, desired)}

        assert events == {"b": "updated", "c": "deleted", "d": "created"}

    def test_no_changes(self):
        snapshot = {"a": intent("a")}

        assert diff_intents(snapshot, dict(snapshot)) == []


class TestIntentWatcher:

    def make_watcher(self, fetch, reconcile):
        return IntentWatcher(fetch=fetch, reconcile=reconcile, interval=0.05,
                             stop_event=threading.Event())

    def test_poll_delivers_changes_once(self):
        fetch = Mock(return_value=[intent("a")])
        reconcile = Mock(return_value=ReconcileResult())
        watcher = self.make_watcher(fetch, reconcile)

        first = watcher.poll()
        second = watcher.poll()

        assert [e.kind for e in first] == ["created"]
        assert second == []
        assert reconcile.call_count == 1

    def test_unavailable_source_keeps_state(self):
        fetch = Mock(side_effect=[[intent("a")], None, [intent("a")]])
        reconcile = Mock(return_value=ReconcileResult())
        watcher = self.make_watcher(fetch, reconcile)

        watcher.poll()
        assert watcher.poll() == []
        assert watcher.poll() == []
        assert reconcile.call_count == 1

    def test_requeue_redelivers_after_delay(self):
        fetch = Mock(return_value=[intent("a")])
        reconcile = Mock(side_effect=[
            ReconcileResult(requeue=True, requeue_after=0.0),
            ReconcileResult()
        ])
        watcher = self.make_watcher(fetch, reconcile)

        watcher.poll()
        redelivered = watcher.poll()

        assert [e.kind for e in redelivered] == ["updated"]
        assert watcher.poll() == []
        assert reconcile.call_count == 2

    def test_requeue_waits_for_delay(self):
        fetch = Mock(return_value=[intent("a")])
        reconcile = Mock(return_value=ReconcileResult(requeue=True, requeue_after=60.0))
        watcher = self.make_watcher(fetch, reconcile)

        watcher.poll()

        assert watcher.poll() == []

    def test_failing_reconcile_is_requeued(self):
        fetch = Mock(return_value=[intent("a")])
        reconcile = Mock(side_effect=[RuntimeError("boom"), ReconcileResult()])
        watcher = self.make_watcher(fetch, reconcile)
        watcher._interval = 0.0

        watcher.poll()
        assert [e.intent.name for e in watcher.poll()] == ["a"]

    def test_requeued_delete_redelivered(self):
        fetch = Mock(side_effect=[[intent("a")], [], []])
        reconcile = Mock(side_effect=[
            ReconcileResult(),
            ReconcileResult(requeue=True, requeue_after=0.0),
            ReconcileResult()
        ])
        watcher = self.make_watcher(fetch, reconcile)

        watcher.poll()
        assert [e.kind for e in watcher.poll()] == ["deleted"]
        assert [e.kind for e in watcher.poll()] == ["deleted"]

    def test_thread_stops(self):
        fetch = Mock(return_value=[])
        watcher = self.make_watcher(fetch, Mock())

        watcher.start()
        time.sleep(0.1)
        watcher._stop_event.set()
        watcher.join(timeout=2)

        assert not watcher.is_alive()
        assert fetch.call_count >= 1


class TestWatchToKernel:
    """Watcher, Reconciler and engine together on the fake kernel."""

    def test_intent_life_cycle(self, engine, kernel, reporter):
        reconciler = Reconciler(engine, hostname="node-a", table=100, status_reporter=reporter)
        snapshots = [
            [intent("office", node="node-a")],
            [intent("office", node="node-a", gateway="172.16.0.2", generation=2)],
            [],
        ]
        watcher = IntentWatcher(fetch=lambda: snapshots.pop(0), reconcile=reconciler.reconcile,
                                interval=1, stop_event=threading.Event())

        watcher.poll()
        assert kernel.routes["192.168.1.0/24"].gateway == "172.16.0.1"

        watcher.poll()
        assert kernel.routes["192.168.1.0/24"].gateway == "172.16.0.2"

        watcher.poll()
        assert kernel.routes == {}
        assert reporter.cleared == ["office"]

    def test_parallel_reconciliation(self, engine, kernel, reporter):
        from concurrent.futures import ThreadPoolExecutor

        reconciler = Reconciler(engine, hostname="node-a", table=100, status_reporter=reporter)
        intents = [intent(f"net-{i}", subnet=f"192.168.{i}.0/24") for i in range(20)]
        watcher = IntentWatcher(fetch=lambda: intents, reconcile=reconciler.reconcile,
                                interval=1, stop_event=threading.Event())

        with ThreadPoolExecutor(max_workers=4) as pool:
            watcher.poll(pool)

        assert len(kernel.routes) == 20
        assert all(s.state == "applied" for s in reporter.statuses.values())


class TestAgentInitialization:
    """Test Agent initialization and configuration."""

    def test_agent_initialization(self):
        """Test Agent initializes with valid configuration."""
        config = AgentConfig(
            'node-a',
            table=100,
            config_dict={
                'controller': {'url': 'http://localhost:8000', 'timeout': 5},
                'engine': {'retry_attempts': 2, 'retry_backoff': [1]},
            }
        )

        agent = Agent(config)

        assert agent.engine.table == 100
        assert agent.reconciler.hostname == 'node-a'
        assert agent.reconciler.status_reporter is agent.client
        assert agent.client.controller_url == 'http://localhost:8000'
        assert not agent.watcher.is_alive()
        assert agent.fatal_error is None

    def test_engine_failure_stops_agent(self):
        agent = Agent(AgentConfig('node-a'))
        agent.engine.run = Mock(side_effect=RuntimeError("kernel gone"))

        agent._engine_main()

        assert agent.stop_event.is_set()
        assert isinstance(agent.fatal_error, RuntimeError)

    def test_watcher_not_started_when_engine_fails(self):
        agent = Agent(AgentConfig('node-a'))
        agent.engine.run = Mock(side_effect=RuntimeError("kernel gone"))

        agent.start()
        agent.stop()

        assert not agent.watcher.is_alive()
        assert agent.watcher.ident is None
        assert isinstance(agent.fatal_error, RuntimeError)

    def test_main_without_hostname_exits_nonzero(self, monkeypatch):
        monkeypatch.delenv('NODE_HOSTNAME', raising=False)
        monkeypatch.delenv('AGENT_CONFIG', raising=False)

        assert main([]) == 1

    def test_main_with_invalid_table_exits_nonzero(self, monkeypatch):
        monkeypatch.setenv('NODE_HOSTNAME', 'node-a')
        monkeypatch.setenv('TARGET_TABLE', '300')
        monkeypatch.delenv('AGENT_CONFIG', raising=False)

        assert main([]) == 1
