"""
Block-height collaborator.

The ledger only ever reads the current height; producing blocks is the job
of whatever drives the node (a ticker thread on a live node, explicit
add_block() calls in tests and on devnet).
"""
import time
import logging
import threading
from typing import Callable, Optional

from ..storage.db import StorageDB

logger = logging.getLogger(__name__)

META_BLOCK_HEIGHT = "meta:block_height"


class BlockHeightSource:
    """Interface expected by the ledger."""

    def current_height(self) -> int:
        raise NotImplementedError


class ManualBlockSource(BlockHeightSource):
    """
    Monotonic counter advanced explicitly.

    If a StorageDB is given the height survives restarts.
    """

    def __init__(self, start: int = 0, db: Optional[StorageDB] = None):
        if start < 0:
            raise ValueError("Start height must be non-negative")
        self.db = db
        self._lock = threading.Lock()
        self._height = start
        if db is not None:
            stored = db.get_state(META_BLOCK_HEIGHT)
            if stored is not None:
                self._height = max(start, int(stored))

    def current_height(self) -> int:
        with self._lock:
            return self._height

    def add_block(self) -> int:
        return self.advance(1)

    def advance(self, n: int) -> int:
        """Moves the height forward by n blocks and returns the new height."""
        if n < 0:
            raise ValueError("Block height cannot go backwards")
        with self._lock:
            self._height += n
            if self.db is not None:
                self.db.set_state(META_BLOCK_HEIGHT, str(self._height))
            return self._height


class BlockTicker:
    """Background thread adding one block every block_time_sec."""

    def __init__(self, source: ManualBlockSource, block_time_sec: float,
                 on_block: Optional[Callable[[int], None]] = None):
        self.source = source
        self.block_time_sec = block_time_sec
        self.on_block = on_block
        self.running = False
        self.thread: Optional[threading.Thread] = None

    def start(self):
        self.running = True
        self.thread = threading.Thread(target=self._run_loop, daemon=True)
        self.thread.start()
        logger.info(f"BlockTicker started. Block time: {self.block_time_sec}s")

    def stop(self):
        self.running = False
        if self.thread:
            self.thread.join()

    def _run_loop(self):
        next_tick = time.time() + self.block_time_sec
        while self.running:
            try:
                if time.time() >= next_tick:
                    height = self.source.add_block()
                    next_tick += self.block_time_sec
                    logger.debug(f"Block {height}")
                    if self.on_block:
                        self.on_block(height)
            except Exception as e:
                logger.error(f"Error in block ticker loop: {e}")

            time.sleep(min(0.5, self.block_time_sec))
