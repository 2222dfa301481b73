"""Document store adapters for reading and rewriting notes."""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    """Enumerates, reads and atomically rewrites text documents.

    Documents are identified by opaque string references.
    """

    def list_documents(self) -> list[str]: ...

    def read(self, ref: str) -> str: ...

    def write(self, ref: str, text: str) -> None: ...


class VaultDocumentStore:
    """A directory tree of Markdown notes.

    References are POSIX paths relative to the vault root. Hidden
    directories (``.obsidian``, ``.trash``, ...) are skipped. Line endings
    are preserved on read and write.
    """

    def __init__(self, root: Path | str, pattern: str = "*.md") -> None:
        self.root = Path(root)
        self.pattern = pattern

    def list_documents(self) -> list[str]:
        if not self.root.is_dir():
            logger.warning("Vault directory %s does not exist", self.root)
            return []
        refs = []
        for path in sorted(self.root.rglob(self.pattern)):
            relative = path.relative_to(self.root)
            if any(part.startswith(".") for part in relative.parts):
                continue
            if path.is_file():
                refs.append(relative.as_posix())
        return refs

    def read(self, ref: str) -> str:
        with open(self._resolve(ref), encoding="utf-8", newline="") as f:
            return f.read()

    def write(self, ref: str, text: str) -> None:
        """Replace the document's content in one step via a sibling temp file."""
        path = self._resolve(ref)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(text)
            os.replace(tmp_name, path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise
        logger.debug("Rewrote %s (%d chars)", ref, len(text))

    def _resolve(self, ref: str) -> Path:
        return self.root / ref
