"""
Asynchronous request log for AI calls.

Each chat/plan/diagnose request appends one JSON line recording its type,
whether it was served from cache and how long it took. Writes go through
a single background thread so disk I/O never delays the response.
"""
import json
import asyncio
import logging
import os
import time
import concurrent.futures
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

LOG_FILE = os.getenv("AI_REQUEST_LOG_FILE", "query_logs.jsonl")
KEY_PREFIX_LENGTH = 8
_executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="logger")


def build_log_record(request_type: str, cached: bool, latency_ms: int, cache_key: Optional[str] = None) -> Dict[str, Any]:
    """Query text is never written; requests that went through the cache log a key prefix."""
    record = {
        "timestamp": int(time.time()),
        "type": request_type,
        "cached": cached,
        "latency_ms": latency_ms,
    }
    if cache_key:
        record["key_prefix"] = cache_key[:KEY_PREFIX_LENGTH]
    return record


def _write_log_sync(log_data: Dict[str, Any], path: Optional[str] = None):
    """Synchronous write, runs in background thread."""
    try:
        with open(path or LOG_FILE, "a", encoding="utf-8") as f:
            f.write(json.dumps(log_data, ensure_ascii=False) + "\n")
    except OSError as e:
        logger.warning("Failed to write request log: %s", e)


async def log_request_async(log_data: Dict[str, Any], path: Optional[str] = None):
    """
    Submit the log write to the background thread.
    Call with: asyncio.create_task(log_request_async(data))
    """
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(_executor, _write_log_sync, log_data, path)
