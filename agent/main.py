"""
Main Agent program for the Static Route Agent.

This module wires the route synchronization engine, the reconciler and the
intent watcher together, runs the engine on its dedicated thread and maps
failures to the process exit status.
"""

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from agent import __version__
from agent.client import ControllerClient
from agent.engine import RouteSyncEngine
from agent.executor import Executor
from agent.guard import ProtectedSubnetGuard
from agent.reconciler import Reconciler
from agent.resolver import GatewayResolver
from agent.watcher import IntentWatcher
from config.parser import AgentConfig, ConfigurationError


logger = logging.getLogger(__name__)


class Agent:
    """
    Main Agent coordinator.

    Owns the engine thread and the watcher thread. The engine thread is the
    only writer of the managed routing table.

    Attributes:
        config: Agent configuration
        engine: Route synchronization engine
        reconciler: Intent reconciler
        client: Controller HTTP client
        watcher: Intent watcher thread
    """

    def __init__(self, config: AgentConfig):
        """
        Initialize Agent.

        Args:
            config: AgentConfig object with all settings
        """
        self.config = config
        self.stop_event = threading.Event()
        self.fatal_error: Optional[BaseException] = None

        executor = Executor(table=config.table, timeout=config.command_timeout)
        self.engine = RouteSyncEngine(
            executor=executor,
            guard=ProtectedSubnetGuard(config.protected_subnets),
            resolver=GatewayResolver(executor),
            reconcile_interval=config.reconcile_interval,
            retry_attempts=config.retry_attempts,
            retry_backoff=config.retry_backoff
        )

        self.client = ControllerClient(
            controller_url=config.controller_url,
            timeout=config.controller_timeout,
            retry_attempts=config.retry_attempts,
            retry_backoff=config.retry_backoff
        )

        # worst case for one command: every attempt times out plus every backoff
        backoff_total = sum(
            config.retry_backoff[min(i, len(config.retry_backoff) - 1)]
            for i in range(config.retry_attempts - 1)
        )
        self.reconciler = Reconciler(
            engine=self.engine,
            hostname=config.hostname,
            table=config.table,
            status_reporter=self.client,
            requeue_after=config.requeue_after,
            command_timeout=config.retry_attempts * config.command_timeout * 2 + backoff_total
        )

        self.watcher = IntentWatcher(
            fetch=lambda: self.client.fetch_intents_with_retry(config.hostname),
            reconcile=self.reconciler.reconcile,
            interval=config.watch_interval,
            stop_event=self.stop_event,
            workers=config.watch_workers
        )
        self.engine_thread: Optional[threading.Thread] = None

        logger.info(f"Agent initialized: node={config.hostname}, table={config.table}")

    def _engine_main(self) -> None:
        try:
            self.engine.run(self.stop_event)
        except BaseException as e:
            logger.critical(f"Route engine terminated: {e}", exc_info=True)
            self.fatal_error = e
        finally:
            self.stop_event.set()

    def start(self) -> None:
        """Launch the engine and watcher threads."""
        logger.info("Starting Agent")
        self.engine_thread = threading.Thread(
            target=self._engine_main,
            name="RouteEngine",
            daemon=True
        )
        self.engine_thread.start()
        while not self.engine.wait_running(timeout=0.1):
            if self.stop_event.is_set():
                logger.error("Route engine did not start; watcher not launched")
                return
        self.watcher.start()
        logger.info("Agent started successfully")

    def stop(self) -> None:
        """Signal both threads to stop and wait for them."""
        logger.info("Stopping Agent")
        self.stop_event.set()
        if self.engine_thread and self.engine_thread.is_alive():
            self.engine_thread.join(timeout=10)
        if self.watcher.is_alive():
            self.watcher.join(timeout=10)
        logger.info("Agent stopped")

    def run(self) -> int:
        """
        Run the Agent (blocking) until stopped.

        Returns:
            Process exit status: 0 on a requested stop, 1 if the engine failed
        """
        self.start()
        try:
            while not self.stop_event.is_set():
                self.stop_event.wait(1.0)
        except KeyboardInterrupt:
            logger.info("Received interrupt signal")
        finally:
            self.stop()
        return 1 if self.fatal_error is not None else 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for Agent program.
    """
    parser = argparse.ArgumentParser(description="Run the static route agent")
    parser.add_argument("--config", help="Path to the YAML tuning file")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info(f"Static route agent version: {__version__}")
    logger.info(f"Python version: {sys.version.split()[0]}")

    try:
        config = AgentConfig.from_env(config_path=args.config)
    except ConfigurationError as e:
        logger.error(f"Failed to load configuration: {e}")
        return 1

    logger.info(f"Node Hostname: {config.hostname}")
    logger.info(f"Table selected: {config.table}")
    logger.info(f"Protected subnets: {[str(s) for s in config.protected_subnets]}")

    agent = Agent(config)

    def _shutdown(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        agent.stop_event.set()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    return agent.run()


if __name__ == "__main__":
    sys.exit(main())
