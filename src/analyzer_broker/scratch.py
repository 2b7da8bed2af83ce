"""Per-request scratch files and directories with guaranteed release."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from uuid import uuid4

logger = logging.getLogger(__name__)


class ScratchManager:
    """Creates collision-free scratch paths under one root directory."""

    def __init__(self, root_dir: Path) -> None:
        # Paths are handed to an engine running in another cwd.
        self.root_dir = Path(root_dir).absolute()

    def create_unique_path(self, prefix: str, suffix: str = "") -> Path:
        """Return a fresh path; nothing is created on disk."""

        self.root_dir.mkdir(parents=True, exist_ok=True)
        return self.root_dir / f"{prefix}-{uuid4().hex}{suffix}"

    def materialize(
        self,
        data: bytes,
        *,
        prefix: str,
        suffix: str = "",
        owned: list[Path] | None = None,
    ) -> Path:
        """Write `data` to a new unique file and return its path.

        The path is appended to `owned` before writing, so a partial file is
        still released by its owner when the write fails.
        """

        path = self.create_unique_path(prefix, suffix)
        if owned is not None:
            owned.append(path)
        path.write_bytes(data)
        return path

    def make_private_dir(self, prefix: str, *, owned: list[Path] | None = None) -> Path:
        path = self.create_unique_path(prefix)
        if owned is not None:
            owned.append(path)
        path.mkdir(parents=True, exist_ok=False)
        return path

    def release(self, paths: Iterable[Path]) -> None:
        """Best-effort delete; failures are logged and swallowed."""

        for path in paths:
            try:
                if path.is_dir() and not path.is_symlink():
                    shutil.rmtree(path)
                else:
                    path.unlink(missing_ok=True)
            except OSError as error:
                logger.warning("Failed to release scratch path %s: %s", path, error)

    @contextmanager
    def scope(self, prefix: str) -> Iterator[ScratchResource]:
        """Yield a resource set that is released on every exit path."""

        resource = ScratchResource(manager=self, prefix=prefix)
        try:
            yield resource
        finally:
            resource.release()


class ScratchResource:
    """Filesystem paths owned by exactly one request."""

    def __init__(self, *, manager: ScratchManager, prefix: str) -> None:
        self.manager = manager
        self.prefix = prefix
        self.paths: list[Path] = []
        self.released = False

    def create_unique_path(self, suffix: str = "", *, label: str | None = None) -> Path:
        path = self.manager.create_unique_path(self._prefix(label), suffix)
        self.paths.append(path)
        return path

    def materialize(self, data: bytes, *, label: str | None = None, suffix: str = "") -> Path:
        return self.manager.materialize(
            data,
            prefix=self._prefix(label),
            suffix=suffix,
            owned=self.paths,
        )

    def make_private_dir(self, *, label: str | None = None) -> Path:
        return self.manager.make_private_dir(self._prefix(label), owned=self.paths)

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        self.manager.release(self.paths)

    def _prefix(self, label: str | None) -> str:
        return f"{self.prefix}-{label}" if label else self.prefix
