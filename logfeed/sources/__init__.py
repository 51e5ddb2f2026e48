"""
Logfeed - File Sources
"""

from datetime import datetime, timezone
from typing import List

from logfeed.models.events import FileMeta
from logfeed.sources.errors import InvalidPathError, RateLimitedError, RemoteSourceError
from logfeed.sources.local import LocalFileSource
from logfeed.sources.nitrado import NitradoFileSource, default_log_path
from logfeed.sources.retry import RetryPolicy, run_with_retry

LOG_EXTENSIONS = ('.adm', '.rpt')

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _modified(meta: FileMeta) -> datetime:
    return meta.modified_at or _EPOCH


def select_log_files(entries: List[FileMeta], limit: int = 2) -> List[FileMeta]:
    """
    Pick the files worth polling: the newest admin log and the newest server
    report first, then other .ADM/.RPT files by recency. Plain .log files are
    only used when neither kind is present.
    """
    files = [e for e in entries if e.is_file]
    candidates = [e for e in files if e.name.lower().endswith(LOG_EXTENSIONS)]
    if not candidates:
        candidates = [e for e in files if e.name.lower().endswith('.log')]

    candidates.sort(key=_modified, reverse=True)

    selected = []
    for extension in LOG_EXTENSIONS:
        newest = next((e for e in candidates if e.name.lower().endswith(extension)), None)
        if newest:
            selected.append(newest)

    for entry in candidates:
        if entry not in selected:
            selected.append(entry)

    selected = selected[:limit]
    selected.sort(key=_modified, reverse=True)
    return selected


__all__ = [
    "InvalidPathError",
    "LocalFileSource",
    "NitradoFileSource",
    "RateLimitedError",
    "RemoteSourceError",
    "RetryPolicy",
    "default_log_path",
    "run_with_retry",
    "select_log_files",
]
