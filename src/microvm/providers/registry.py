"""Registry of runtime adapters."""

import logging
from typing import Dict, Optional, Type

from microvm.exceptions import ConfigError
from microvm.providers.base import RuntimeAdapter
from microvm.providers.simulated import SimulatedRuntime


logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry for managing runtime adapters."""

    def __init__(self):
        """Initialize provider registry."""
        self._adapters: Dict[str, RuntimeAdapter] = {}
        self._adapter_classes: Dict[str, Type[RuntimeAdapter]] = {
            "simulated": SimulatedRuntime,
        }

    def register(self, name: str, adapter_class: Type[RuntimeAdapter]) -> None:
        """Make an adapter class available under name."""
        self._adapter_classes[name] = adapter_class

    async def initialize(self, config):
        """Instantiate and initialize the adapter selected in config."""
        name = config.runtime.adapter
        adapter_class = self._adapter_classes.get(name)
        if adapter_class is None:
            raise ConfigError(f"Unknown runtime adapter: {name}")

        try:
            adapter = adapter_class()
            await adapter.initialize(config, self)
        except Exception as e:
            logger.error(f"Failed to initialize runtime adapter {name}: {e}")
            raise
        self._adapters[name] = adapter
        logger.debug(f"Initialized runtime adapter: {name}")
        return adapter

    def get_adapter(self, name: str) -> Optional[RuntimeAdapter]:
        """Get an initialized adapter by name."""
        return self._adapters.get(name)

    def list_adapters(self) -> list[str]:
        """List registered adapter names."""
        return list(self._adapter_classes.keys())
