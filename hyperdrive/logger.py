# hyperdrive/logger.py
import asyncio
import aiofiles
from aiocsv import AsyncWriter
import logging
import sys
import os
from typing import List, Any, Optional

from .models import SubmissionRecord

AUDIT_HEADER = ["timestamp", "network", "endpoint", "nonce", "amount_wei", "ticker", "status", "detail"]

class AsyncAuditLogger:
    """
    Non-blocking audit trail for submission outcomes.
    Completion handlers only enqueue rows; a single background task owns the file,
    so disk I/O never stalls the dispatch loop.
    """
    def __init__(self, filepath: str, max_pending: int = 10000):
        self.filepath = filepath
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._worker_task: Optional[asyncio.Task] = None
        self.dropped = 0

    async def start(self):
        """
        Creates the log directory/file (with header if new) and starts the background writer.
        """
        directory = os.path.dirname(self.filepath)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)

        is_new = not os.path.exists(self.filepath) or os.path.getsize(self.filepath) == 0
        async with aiofiles.open(self.filepath, mode='a', newline='') as f:
            if is_new:
                writer = AsyncWriter(f, dialect='unix')
                await writer.writerow(AUDIT_HEADER)
        self._worker_task = asyncio.create_task(self._writer_worker())

    def log_submission(self, record: SubmissionRecord):
        """
        Called from completion callbacks. Never awaits: if the writer falls
        behind and the queue is full the row is counted as dropped.
        """
        self.log_row(record.as_row())

    def log_row(self, data: List[Any]):
        try:
            self._queue.put_nowait(data)
        except asyncio.QueueFull:
            self.dropped += 1

    async def _writer_worker(self):
        """
        Background consumer that writes to disk.
        """
        while True:
            row = await self._queue.get()
            try:
                async with aiofiles.open(self.filepath, mode='a', newline='') as f:
                    writer = AsyncWriter(f, dialect='unix')
                    await writer.writerow(row)
            except Exception as e:
                # Disk trouble must not take the broadcaster down
                print(f"LOGGING FAILURE: {e}", file=sys.stderr)
            finally:
                self._queue.task_done()

    async def stop(self):
        """Flushes pending rows and stops the writer."""
        if self._worker_task is None:
            return
        await self._queue.join()
        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        self._worker_task = None

def setup_console_logger(name: str, level: str):
    """
    Sets up the standard Python logger for console output.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter('%(asctime)s | %(levelname)s | %(module)s | %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
