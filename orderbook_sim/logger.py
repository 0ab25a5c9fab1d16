# orderbook_sim/logger.py
import asyncio
import aiofiles
from aiocsv import AsyncWriter
import logging
import sys
import os
from typing import List, Any

SIMULATION_HEADER = [
    "logged_at", "order_id", "venue", "symbol", "type", "side", "price",
    "quantity", "timing", "fill_pct", "impact_pct", "slippage", "warnings",
]


class AsyncAuditLogger:
    """
    Non-blocking CSV audit trail for simulated orders.
    Decouples disk I/O from the event loop using an asyncio Queue.
    """
    def __init__(self, filepath: str, header: List[str] = SIMULATION_HEADER):
        self.filepath = filepath
        self.header = header
        self._queue = asyncio.Queue()
        self._worker_task = None

    async def start(self):
        """
        Creates the log file (with header if new) and starts the background writer.
        """
        directory = os.path.dirname(self.filepath)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)

        if not os.path.exists(self.filepath):
            async with aiofiles.open(self.filepath, mode='w', newline='') as f:
                writer = AsyncWriter(f, dialect='unix')
                await writer.writerow(self.header)
        self._worker_task = asyncio.create_task(self._writer_worker())

    async def log_row(self, data: List[Any]):
        await self._queue.put(data)

    async def flush(self):
        """Waits until every queued row has been written."""
        await self._queue.join()

    async def stop(self):
        if self._worker_task:
            await self.flush()
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None

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
                # Disk failures must not take the feeds down
                print(f"LOGGING FAILURE: {e}", file=sys.stderr)
            finally:
                self._queue.task_done()


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
