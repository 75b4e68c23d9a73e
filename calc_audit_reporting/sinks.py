"""
Artifact sinks: where rendered export files are stored.

``ExportService`` talks only to ``ArtifactSink``; the returned location is
an opaque string the caller hands back to whatever serves downloads.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from pathlib import Path

from calc_audit_kernel.exceptions import ExportStorageError
from calc_audit_kernel.logging_config import get_logger

logger = get_logger("reporting.sinks")


class ArtifactSink(ABC):
    """Stores export bytes under a file name and returns their location."""

    @abstractmethod
    def store(self, file_name: str, content: bytes, content_type: str) -> str:
        """
        Persist ``content``.

        Raises:
            ExportStorageError: if the artifact could not be stored.
        """


class LocalDirectorySink(ArtifactSink):
    """
    Writes artifacts under a root directory and returns a ``file://`` URI.

    Writes go to a temporary sibling first and are renamed into place, so a
    reader never sees a half-written file.  A later export of the same
    period replaces the earlier file.
    """

    def __init__(self, root: str | Path):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def store(self, file_name: str, content: bytes, content_type: str) -> str:
        if not file_name or os.sep in file_name or file_name in (".", ".."):
            raise ExportStorageError(file_name, "file name must be a bare name")

        target = self._root / file_name
        partial = self._root / f".{file_name}.partial"
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            partial.write_bytes(content)
            os.replace(partial, target)
        except OSError as exc:
            logger.error(
                "export_artifact_store_failed",
                extra={"file_name": file_name, "error": str(exc)},
            )
            raise ExportStorageError(file_name, str(exc)) from exc

        logger.debug(
            "export_artifact_stored",
            extra={
                "file_name": file_name,
                "content_type": content_type,
                "size_bytes": len(content),
            },
        )
        return target.resolve().as_uri()
