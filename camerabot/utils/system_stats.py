"""Process uptime and memory usage for the /status reply."""

import os
from datetime import datetime, timedelta
from typing import Optional

import psutil


def format_uptime(since: datetime, now: Optional[datetime] = None) -> str:
    """Elapsed time since ``since``, rendered like ``2 days, 3:04:05``."""
    now = now or datetime.now()
    elapsed = max(now - since, timedelta(0))
    return str(timedelta(seconds=int(elapsed.total_seconds())))


def format_bytes(size: float) -> str:
    """Human readable byte count."""
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}" if unit != "B" else f"{int(size)} B"
        size /= 1024
    return f"{size:.1f} TB"


def memory_usage(pid: Optional[int] = None) -> str:
    """Resident and virtual memory of this process."""
    info = psutil.Process(pid or os.getpid()).memory_info()
    return f"RSS {format_bytes(info.rss)}, VMS {format_bytes(info.vms)}"
