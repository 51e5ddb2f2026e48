"""
Logfeed - Local File Source
Development source that serves log files from a local directory
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List

import aiofiles

from logfeed.models.events import FileMeta
from logfeed.sources.errors import InvalidPathError, RemoteSourceError

logger = logging.getLogger(__name__)


class LocalFileSource:
    """
    Same contract as NitradoFileSource, but ``path`` is resolved under a local
    root directory. The service id is ignored.
    """

    def __init__(self, root):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path.lstrip("/")).resolve()
        if target != self.root and self.root not in target.parents:
            raise InvalidPathError(path)
        return target

    async def list_files(self, service_id: str, path: str) -> List[FileMeta]:
        directory = self._resolve(path)
        if not directory.is_dir():
            raise RemoteSourceError(f"Directory not found: {directory}", status=404,
                                    endpoint=str(directory))

        entries = []
        for item in sorted(directory.iterdir()):
            stat = item.stat()
            entries.append(FileMeta(
                name=item.name,
                path="/" + str(item.relative_to(self.root)),
                size=stat.st_size,
                modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                is_file=item.is_file(),
            ))
        return entries

    async def download_file(self, service_id: str, path: str) -> bytes:
        target = self._resolve(path)
        try:
            async with aiofiles.open(target, 'rb') as f:
                return await f.read()
        except FileNotFoundError as e:
            raise RemoteSourceError(f"File not found: {target}", status=404,
                                    endpoint=str(target)) from e
        except OSError as e:
            raise RemoteSourceError(f"Failed to read {target}: {e}", endpoint=str(target),
                                    transient=True) from e

    async def test_access(self, service_id: str, path: str) -> bool:
        try:
            await self.list_files(service_id, path)
            return True
        except RemoteSourceError as e:
            logger.error(f"❌ Local log directory unavailable: {e}")
            return False

    async def close(self):
        pass
