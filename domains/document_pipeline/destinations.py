"""
Destination stores the bundle stage writes finished notes and attachments to.

Selected by the ``dest_store`` name in the pipeline config.
"""

import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Dict, Type

from loguru import logger

from app.utils.config import ConfigurationError
from app.utils.helpers import copy_stream_to_file


class Destination(ABC):
    """Where bundled output ends up."""

    @abstractmethod
    def write(self, folder: str, name: str, stream: BinaryIO) -> Path:
        """Write ``stream`` as ``name`` into ``folder``."""

    @abstractmethod
    def copy(self, source: Path, folder: str, name: str) -> Path:
        """Copy a local file into ``folder`` as ``name``."""


class LocalDestination(Destination):
    """Writes into folders on the local filesystem (e.g. an Obsidian vault)."""

    def write(self, folder: str, name: str, stream: BinaryIO) -> Path:
        path = Path(folder) / name
        copy_stream_to_file(stream, path)
        logger.debug(f"Wrote {path}")
        return path

    def copy(self, source: Path, folder: str, name: str) -> Path:
        path = Path(folder) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, path)
        logger.debug(f"Copied {source} to {path}")
        return path


DESTINATION_TYPES: Dict[str, Type[Destination]] = {
    "Local": LocalDestination,
}


def build_destination(store_name: str) -> Destination:
    """Create the destination registered under ``store_name``."""
    destination_class = DESTINATION_TYPES.get(store_name)
    if destination_class is None:
        valid = ", ".join(DESTINATION_TYPES)
        raise ConfigurationError(f"Unknown destination store '{store_name}'. Valid stores: {valid}")
    return destination_class()
