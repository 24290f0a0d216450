"""Configuration management for the agent."""

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError
from ruamel.yaml import YAML

from microvm.exceptions import ConfigError, SpecValidationError
from microvm.lifecycle.validator import Violation, ViolationKind, parse_spec
from microvm.models.config import MicrovmConfig
from microvm.models.spec import Microvm


logger = logging.getLogger(__name__)


def parse_microvm(name: str, entry: Mapping[str, Any]) -> Microvm:
    """Build a Microvm from a ``{labels, spec}`` declaration.

    Raises SpecValidationError listing everything wrong with it.
    """
    if not isinstance(entry, Mapping):
        raise SpecValidationError([Violation("spec", ViolationKind.MISSING_REQUIRED_FIELD)])

    labels = entry.get("labels") or {}
    label_violations = []
    if not isinstance(labels, Mapping):
        label_violations.append(Violation("labels", ViolationKind.INVALID_FORMAT, "labels must be a mapping"))
        labels = {}

    try:
        spec = parse_spec(entry.get("spec") or {})
    except SpecValidationError as e:
        raise SpecValidationError(label_violations + e.violations) from e
    if label_violations:
        raise SpecValidationError(label_violations)

    return Microvm(name=name, labels={str(k): str(v) for k, v in labels.items()}, spec=spec)


class ConfigManager:
    """Loads the agent configuration and microvm declarations."""

    def __init__(self, config_dir: Path):
        """Initialize configuration manager."""
        self.config_dir = Path(config_dir)
        self.yaml = YAML(typ="safe")
        self.config: Optional[MicrovmConfig] = None
        self.microvms: Dict[str, Microvm] = {}
        self.invalid: Dict[str, List[Violation]] = {}
        self._config_hashes: Dict[str, str] = {}
        self._declarations: Dict[str, Mapping[str, Any]] = {}

    async def load(self):
        """Load all configuration files."""
        logger.info(f"Loading configuration from {self.config_dir}")
        self._config_hashes.clear()
        await self._load_main_config()
        await self._load_microvms()
        logger.info(
            f"Configuration loaded: {len(self.microvms)} microvm(s), {len(self.invalid)} invalid"
        )

    async def _load_main_config(self):
        """Load main configuration file."""
        config_file = self.config_dir / "config.yaml"
        if not config_file.exists():
            raise ConfigError(f"Main config not found: {config_file}")

        try:
            data = await self._read_yaml(config_file) or {}
            self.config = MicrovmConfig(**data)
            logger.debug(f"Loaded main config: {config_file}")
        except ValidationError as e:
            logger.error(f"Invalid main config: {e}")
            raise ConfigError(f"Invalid main config {config_file}: {e}") from e

    async def _load_microvms(self):
        """Load microvm declarations.

        A file that cannot be read keeps the declarations from its last
        good load, so a broken edit never withdraws the microvms it held.
        """
        microvms_dir = self.config_dir / "microvms"
        self.microvms.clear()
        self.invalid.clear()
        previous = self._declarations
        self._declarations = {}
        if not microvms_dir.exists():
            logger.warning(f"Microvms directory not found: {microvms_dir}")
            return

        for yaml_file in sorted(microvms_dir.glob("*.yaml")):
            try:
                data = await self._read_yaml(yaml_file)
                if data is None:
                    data = {}
                if not isinstance(data, Mapping):
                    raise ConfigError(f"{yaml_file} must map microvm names to declarations")
            except Exception as e:
                data = previous.get(str(yaml_file))
                if data is None:
                    logger.error(f"Error loading {yaml_file}: {e}")
                    continue
                logger.error(f"Error loading {yaml_file}, keeping its previous declarations: {e}")

            self._declarations[str(yaml_file)] = data
            for name, entry in data.items():
                self._add_microvm(str(name), entry or {}, yaml_file)
            logger.debug(f"Loaded microvms from {yaml_file}")

    def _add_microvm(self, name: str, entry: Dict[str, Any], source: Path):
        """Parse one declaration, keeping invalid ones out of reconciliation."""
        if name in self.microvms or name in self.invalid:
            logger.error(f"Microvm {name} in {source} is already declared")
            return

        try:
            self.microvms[name] = parse_microvm(name, entry)
        except SpecValidationError as e:
            for violation in e.violations:
                logger.error(f"Microvm {name}: {violation}")
            self.invalid[name] = e.violations

    async def _read_yaml(self, file_path: Path) -> Dict[str, Any]:
        """Read and parse YAML file."""
        content = await asyncio.to_thread(file_path.read_text)
        # Store hash for change detection
        self._config_hashes[str(file_path)] = hashlib.md5(content.encode()).hexdigest()
        return self.yaml.load(content)

    async def watch_for_changes(self) -> bool:
        """Check if configuration files have changed."""
        current = set()
        tracked = [self.config_dir / "config.yaml", *(self.config_dir / "microvms").glob("*.yaml")]
        for yaml_file in tracked:
            if not yaml_file.exists():
                continue
            current.add(str(yaml_file))
            content = yaml_file.read_text()
            current_hash = hashlib.md5(content.encode()).hexdigest()
            if self._config_hashes.get(str(yaml_file)) != current_hash:
                return True

        # A removed file withdraws its microvms
        return bool(set(self._config_hashes) - current)

    def get_microvm(self, name: str) -> Optional[Microvm]:
        """Get a microvm declaration by name."""
        return self.microvms.get(name)
