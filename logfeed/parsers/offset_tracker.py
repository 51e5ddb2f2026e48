"""
Logfeed - Offset Tracker
Turns "download the whole file" into "read only what is new" by remembering a
byte offset per tracked file. Offsets only advance when the caller commits a
delta it has finished processing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from logfeed.models.events import FileKind, FileMeta, TrackedFile

logger = logging.getLogger(__name__)

ROTATION_MARGIN_BYTES = 16


def file_kind_for(path: str) -> FileKind:
    lowered = path.lower()
    if lowered.endswith('.rpt'):
        return FileKind.SERVER_REPORT
    if lowered.endswith('.adm'):
        return FileKind.ADMIN_LOG
    return FileKind.GENERIC


@dataclass(frozen=True)
class DeltaRead:
    path: str
    content: bytes
    previous_offset: int
    updated_offset: int
    rotated: bool = False

    @property
    def has_content(self) -> bool:
        return bool(self.content)

    def text(self) -> str:
        return self.content.decode('utf-8', errors='replace')


class OffsetTracker:
    """
    Byte offsets for every file one service monitor reads.

    Owned by a single monitor; nothing else mutates it.
    """

    def __init__(self, service_id: str, source, rotation_margin: int = ROTATION_MARGIN_BYTES):
        self.service_id = service_id
        self.source = source
        self.rotation_margin = rotation_margin
        self.files: Dict[str, TrackedFile] = {}
        self.rotations = 0

    def _tracked(self, path: str) -> TrackedFile:
        tracked = self.files.get(path)
        if tracked is None:
            tracked = TrackedFile(self.service_id, path, file_kind_for(path))
            self.files[path] = tracked
            logger.debug(f"Tracking new file {path} for service {self.service_id}")
        return tracked

    def offset_for(self, path: str) -> int:
        tracked = self.files.get(path)
        return tracked.last_known_size if tracked else 0

    async def read_delta(self, meta: FileMeta) -> DeltaRead:
        """
        Return the bytes appended to ``meta.path`` since the last commit.

        Raises RemoteSourceError when the download fails; the stored offset is
        left untouched in that case.
        """
        tracked = self._tracked(meta.path)
        last_known = tracked.last_known_size
        current_size = meta.size

        rotated = False
        if current_size < last_known - self.rotation_margin:
            logger.info(f"🔄 Rotation detected for {meta.path} on service {self.service_id}: "
                        f"size {last_known} -> {current_size}, restarting from offset 0")
            tracked.last_known_size = 0
            self.rotations += 1
            last_known = 0
            rotated = True
        elif current_size <= last_known:
            return DeltaRead(meta.path, b"", last_known, last_known)

        data = await self.source.download_file(self.service_id, meta.path)

        if len(data) < last_known:
            # Shrunk between listing and download: treat as rotation too
            logger.info(f"🔄 {meta.path} shrank to {len(data)} bytes during download, restarting from 0")
            tracked.last_known_size = 0
            self.rotations += 1
            last_known = 0
            rotated = True

        content = data[last_known:]
        logger.debug(f"📖 {meta.path}: {last_known} -> {len(data)} ({len(content)} new bytes)")
        return DeltaRead(meta.path, content, last_known, len(data), rotated)

    def commit(self, delta: DeltaRead, now: Optional[datetime] = None):
        """Advance the stored offset once ``delta`` has been processed"""
        tracked = self._tracked(delta.path)
        if not delta.rotated and delta.updated_offset < tracked.last_known_size:
            # A later delta was already committed
            return
        tracked.last_known_size = delta.updated_offset
        tracked.last_read_at = now or datetime.now(timezone.utc)
        tracked.reads += 1

    def snapshot(self) -> Dict[str, int]:
        return {path: tracked.last_known_size for path, tracked in self.files.items()}

    def restore(self, offsets: Dict[str, int]):
        """Load offsets persisted by a previous run"""
        for path, offset in offsets.items():
            self._tracked(path).last_known_size = max(0, int(offset))
        if offsets:
            logger.info(f"📍 Restored offsets for {len(offsets)} files on service {self.service_id}")

    def forget_missing(self, present_paths: Iterable[str]) -> int:
        """Drop tracked files that are no longer in the directory listing"""
        present = set(present_paths)
        gone = [path for path in self.files if path not in present]
        for path in gone:
            del self.files[path]
        if gone:
            logger.debug(f"Stopped tracking {len(gone)} vanished files on service {self.service_id}")
        return len(gone)
