"""Cached access to the dataset files that ground generated answers."""

from pathlib import Path
from typing import Dict, Optional

from supportbot.config.models import KnowledgeConfig
from supportbot.common.logging import setup_logging

logger = setup_logging("knowledge")


class KnowledgeBase:
    def __init__(self, config: KnowledgeConfig, base_dir: Optional[Path] = None):
        self.config = config
        directory = Path(config.directory)
        if base_dir is not None and not directory.is_absolute():
            directory = base_dir / directory
        self.directory = directory
        self._cache: Dict[str, str] = {}

    def load(self, name: str, default: str = "") -> str:
        """Return the file's text, reading it at most once."""
        if name in self._cache:
            return self._cache[name]

        path = self.directory / name
        if not path.exists():
            logger.warning(f"Dataset file not found: {path}")
            return default

        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to read dataset file {path}: {e}")
            return default

        self._cache[name] = content
        return content

    def reload(self, name: str) -> str:
        self._cache.pop(name, None)
        return self.load(name)

    def clear(self):
        self._cache.clear()
