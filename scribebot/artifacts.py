"""Temporary file bookkeeping for one pipeline run."""
from __future__ import annotations

import uuid
from pathlib import Path
from typing import Iterator, List, Union

from .utils.logging import get_logger

logger = get_logger(__name__)


class ArtifactSet:
    """Every temporary file created during one pipeline run.

    Paths are registered when they are allocated, before anything is written,
    so cleanup() covers partially-written files too. Names carry a per-run
    prefix, so concurrent runs never share a path.
    """

    def __init__(self, temp_dir: Union[str, Path], run_id: str = ""):
        self.temp_dir = Path(temp_dir)
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self._paths: List[Path] = []
        self.temp_dir.mkdir(parents=True, exist_ok=True)

    def allocate(self, stage: str, suffix: str) -> Path:
        """Reserve and register a unique path for a stage output."""
        if suffix and not suffix.startswith("."):
            suffix = f".{suffix}"
        path = self.temp_dir / f"{self.run_id}_{stage}_{uuid.uuid4().hex[:8]}{suffix}"
        self.register(path)
        return path

    def register(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        if path not in self._paths:
            self._paths.append(path)
        return path

    def __contains__(self, path: object) -> bool:
        return Path(path) in self._paths if isinstance(path, (str, Path)) else False

    def __iter__(self) -> Iterator[Path]:
        return iter(list(self._paths))

    def __len__(self) -> int:
        return len(self._paths)

    def cleanup(self) -> int:
        """Delete every registered file. Failures are logged, never raised.

        Returns the number of files actually removed.
        """
        removed = 0
        for path in list(self._paths):
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(
                    f"⚠️ Failed to remove temp artifact {path}: {e}",
                    extra={"subsys": "artifacts", "event": "cleanup_failed", "detail": {"path": str(path)}},
                )
        self._paths.clear()
        logger.debug(f"🧹 Removed {removed} artifacts for run {self.run_id}")
        return removed
