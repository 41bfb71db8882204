"""Ranked module sources.

A source yields raw descriptor mappings and never executes module code.  The
registry reads sources concurrently and merges them by ``priority`` (lower
number wins), so the read order of sources never matters.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from stackforge.cache import CacheManager
from stackforge.modules.models import Module

logger = logging.getLogger(__name__)

DESCRIPTOR_NAMES: tuple[str, ...] = ("module.json", "module.yaml", "module.yml")
BUILTIN_MODULES_DIR = Path(__file__).resolve().parent.parent / "builtin_modules"

# Default ranks; lower wins.
ENVIRONMENT_PRIORITY = 0
MEMORY_PRIORITY = 5
PLUGIN_PRIORITY = 10
BUILTIN_PRIORITY = 100


@dataclass
class RawDescriptor:
    """A descriptor as read from a source, before validation."""

    data: Any
    origin: str
    base_dir: Optional[Path] = None
    error: Optional[str] = None

    @property
    def name(self) -> Optional[str]:
        if isinstance(self.data, Module):
            return self.data.name
        if isinstance(self.data, dict) and isinstance(self.data.get("name"), str):
            return self.data["name"]
        return None


class ModuleSource(ABC):
    """Something that yields raw module descriptors."""

    def __init__(self, name: str, priority: int) -> None:
        self.name = name
        self.priority = priority

    @abstractmethod
    def load(self) -> list[RawDescriptor]:
        """Read every descriptor, in a stable discovery order."""

    def load_one(self, module_name: str, origin: Optional[str] = None) -> Optional[RawDescriptor]:
        """Re-read the descriptor for *module_name*, or ``None`` if it is gone."""
        for raw in self.load():
            if raw.name == module_name:
                return raw
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class InMemorySource(ModuleSource):
    """Descriptors supplied directly as mappings or :class:`Module` objects."""

    def __init__(
        self,
        descriptors: Iterable[dict[str, Any] | Module] = (),
        name: str = "memory",
        priority: int = MEMORY_PRIORITY,
        base_dir: str | Path | None = None,
    ) -> None:
        super().__init__(name, priority)
        self.base_dir = Path(base_dir) if base_dir else None
        self._descriptors: list[dict[str, Any] | Module] = list(descriptors)

    def add(self, descriptor: dict[str, Any] | Module) -> None:
        """Add or replace (by name) a descriptor."""
        name = descriptor.name if isinstance(descriptor, Module) else descriptor.get("name")
        for index, existing in enumerate(self._descriptors):
            existing_name = existing.name if isinstance(existing, Module) else existing.get("name")
            if name is not None and existing_name == name:
                self._descriptors[index] = descriptor
                return
        self._descriptors.append(descriptor)

    def remove(self, module_name: str) -> None:
        self._descriptors = [
            d for d in self._descriptors
            if (d.name if isinstance(d, Module) else d.get("name")) != module_name
        ]

    def load(self) -> list[RawDescriptor]:
        return [
            RawDescriptor(
                data=descriptor if isinstance(descriptor, Module) else dict(descriptor),
                origin=f"{self.name}[{index}]",
                base_dir=self.base_dir,
            )
            for index, descriptor in enumerate(self._descriptors)
        ]


# ---------------------------------------------------------------------------
# Filesystem
# ---------------------------------------------------------------------------

class DirectorySource(ModuleSource):
    """Descriptors on disk.

    Each immediate sub-directory holding ``module.json``/``module.yaml`` is a
    module whose template ``source`` files are relative to that directory.
    Loose ``*.json``/``*.yaml`` files directly under *root* are also read.
    Parsed files are memoised in the cache keyed by path, mtime and size.
    """

    def __init__(
        self,
        root: str | Path,
        name: Optional[str] = None,
        priority: int = PLUGIN_PRIORITY,
        cache: Optional[CacheManager] = None,
    ) -> None:
        self.root = Path(root).expanduser()
        super().__init__(name or f"dir:{self.root}", priority)
        self.cache = cache

    def descriptor_files(self) -> list[Path]:
        if not self.root.is_dir():
            logger.debug("Module directory %s does not exist; skipping", self.root)
            return []
        files: list[Path] = []
        for child in sorted(self.root.iterdir()):
            if child.is_dir():
                for candidate in DESCRIPTOR_NAMES:
                    if (child / candidate).is_file():
                        files.append(child / candidate)
                        break
            elif child.suffix in (".json", ".yaml", ".yml") and child.is_file():
                files.append(child)
        return files

    def load(self) -> list[RawDescriptor]:
        return [self._read(path) for path in self.descriptor_files()]

    def load_one(self, module_name: str, origin: Optional[str] = None) -> Optional[RawDescriptor]:
        if origin:
            path = Path(origin)
            if path.is_file():
                raw = self._read(path)
                if raw.name == module_name:
                    return raw
        return super().load_one(module_name)

    def _read(self, path: Path) -> RawDescriptor:
        base_dir = path.parent
        try:
            stat = path.stat()
        except OSError as exc:
            return RawDescriptor(None, str(path), base_dir, error=f"cannot stat: {exc}")

        cache_key = f"descriptor:{path.resolve()}:{stat.st_mtime_ns}:{stat.st_size}"
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return RawDescriptor(cached, str(path), base_dir)

        try:
            data = load_descriptor_file(path)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            logger.warning("Cannot parse module descriptor %s: %s", path, exc)
            return RawDescriptor(None, str(path), base_dir, error=f"cannot parse: {exc}")

        if self.cache is not None and isinstance(data, dict):
            self.cache.set(cache_key, data, persistent=True)
        return RawDescriptor(data, str(path), base_dir)


class BuiltinSource(DirectorySource):
    """The module set shipped inside the package."""

    def __init__(self, cache: Optional[CacheManager] = None, priority: int = BUILTIN_PRIORITY) -> None:
        super().__init__(BUILTIN_MODULES_DIR, name="builtin", priority=priority, cache=cache)


class EnvironmentSource(ModuleSource):
    """Directories listed in an environment variable (``os.pathsep`` separated).

    Read at load time so changes to the environment are picked up by
    :meth:`ModuleRegistry.discover` without rebuilding the source list.
    """

    def __init__(
        self,
        env_var: str = "STACKFORGE_MODULES_PATH",
        priority: int = ENVIRONMENT_PRIORITY,
        cache: Optional[CacheManager] = None,
    ) -> None:
        super().__init__(f"env:{env_var}", priority)
        self.env_var = env_var
        self.cache = cache

    def directories(self) -> list[DirectorySource]:
        raw = os.environ.get(self.env_var, "")
        return [
            DirectorySource(entry, name=self.name, priority=self.priority, cache=self.cache)
            for entry in raw.split(os.pathsep)
            if entry.strip()
        ]

    def load(self) -> list[RawDescriptor]:
        descriptors: list[RawDescriptor] = []
        for directory in self.directories():
            descriptors.extend(directory.load())
        return descriptors

    def load_one(self, module_name: str, origin: Optional[str] = None) -> Optional[RawDescriptor]:
        for directory in self.directories():
            raw = directory.load_one(module_name, origin)
            if raw is not None:
                return raw
        return None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def load_descriptor_file(path: str | Path) -> Any:
    """Parse a JSON or YAML descriptor file."""
    file_path = Path(path)
    text = file_path.read_text(encoding="utf-8")
    if file_path.suffix in (".yaml", ".yml"):
        return yaml.safe_load(text)
    return json.loads(text)
