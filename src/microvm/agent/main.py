"""Main agent implementation."""

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Optional

from watchfiles import awatch

from microvm.agent.config import ConfigManager
from microvm.agent.engine import MicrovmController
from microvm.lifecycle.reconciler import Reconciler
from microvm.providers import ProviderRegistry
from microvm.utils.logging import setup_logging


logger = logging.getLogger(__name__)

SNAPSHOT_FILENAME = "status.json"


class MicrovmAgent:
    """Runs the periodic reconciliation loop."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize the agent."""
        self.config_dir = config_dir or Path("./configs")
        self.state_dir: Optional[Path] = None
        self.config_manager: Optional[ConfigManager] = None
        self.controller: Optional[MicrovmController] = None
        self.shutdown_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    async def initialize(self):
        """Initialize agent components."""
        self.config_manager = ConfigManager(self.config_dir)
        await self.config_manager.load()

        config = self.config_manager.config
        setup_logging(config.agent.log_level)

        self.state_dir = Path(config.agent.state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)

        registry = ProviderRegistry()
        adapter = await registry.initialize(config)

        self.controller = MicrovmController(
            config_manager=self.config_manager,
            adapter=adapter,
            reconciler=Reconciler.from_config(config),
        )
        logger.info(f"Agent initialized with runtime adapter {config.runtime.adapter}")

    @property
    def snapshot_path(self) -> Path:
        return self.state_dir / SNAPSHOT_FILENAME

    async def reconcile_once(self):
        """Run a single reconciliation pass and write the snapshot."""
        results = await self.controller.reconcile()
        self.controller.write_snapshot(self.snapshot_path)
        return results

    async def run(self):
        """Run the agent main loop."""
        await self.initialize()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.shutdown)

        try:
            self._tasks.append(asyncio.create_task(self._reconciliation_loop()))
            self._tasks.append(asyncio.create_task(self._config_watch_loop()))
            logger.info("Agent started, waiting for shutdown signal")
            await self.shutdown_event.wait()
        finally:
            await self._cleanup()

    async def _reconciliation_loop(self):
        """Run periodic reconciliation."""
        interval = self.config_manager.config.agent.reconciliation_interval

        while not self.shutdown_event.is_set():
            try:
                await self.reconcile_once()
            except Exception as e:
                logger.error(f"Reconciliation error: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    async def _config_watch_loop(self):
        """Watch for configuration changes."""
        logger.info(f"Starting config watcher on {self.config_manager.config_dir}")
        try:
            async for _changes in awatch(self.config_manager.config_dir, stop_event=self.shutdown_event):
                if not await self.config_manager.watch_for_changes():
                    continue
                logger.info("Configuration changed, reloading")
                try:
                    await self.config_manager.load()
                    await self.reconcile_once()
                except Exception as e:
                    logger.error(f"Failed to reload configuration: {e}")
        except Exception as e:
            if not self.shutdown_event.is_set():
                logger.error(f"Config watch error: {e}", exc_info=True)

    def shutdown(self):
        """Signal shutdown."""
        logger.info("Shutdown requested")
        self.shutdown_event.set()

    async def _cleanup(self):
        """Cancel background tasks."""
        logger.info("Cleaning up agent resources")
        for task in self._tasks:
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("Agent cleanup completed")


def config_dir_from_env() -> Optional[Path]:
    """Config directory override from MICROVM_CONFIG_DIR."""
    config_dir = os.environ.get("MICROVM_CONFIG_DIR")
    return Path(config_dir) if config_dir else None


async def run_agent(config_dir: Optional[Path] = None):
    """Run the agent."""
    agent = MicrovmAgent(config_dir=config_dir or config_dir_from_env())
    await agent.run()
