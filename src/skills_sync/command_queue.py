"""
Command queue - append-only JSON Lines file shared by every producer.

Producers (CLI, front-ends, widgets) append one JSON object per line. The
single consumer keeps a durable cursor next to the queue and advances it
before running each command, so a crash never re-executes a command
(at-most-once).
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from pydantic import ValidationError

from .fsutil import atomic_write_text
from .models import CommandCursor, SyncCommand

logger = logging.getLogger(__name__)

# Compact the queue once this many bytes have been consumed
COMPACTION_THRESHOLD_BYTES = 64 * 1024

# Number of recent command ids remembered for duplicate suppression
PROCESSED_ID_WINDOW = 256

COMPACTING_SUFFIX = ".compacting"

# A set-aside queue file is removed only after this long without writes
COMPACTING_GRACE_SECONDS = 30.0

CommandHandler = Callable[[SyncCommand], None]


class CommandQueue:
    """Producer side of the queue."""

    def __init__(self, queue_path: Path):
        self.queue_path = Path(queue_path)

    def append(self, command: SyncCommand) -> SyncCommand:
        """
        Append one command as a single JSON line.

        The file is created when missing and never truncated.
        """
        line = command.model_dump_json() + "\n"
        self.queue_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.queue_path, "ab") as f:
            f.write(line.encode("utf-8"))
            f.flush()
            os.fsync(f.fileno())
        logger.debug(f"Queued {format_command(command)}")
        return command


@dataclass
class DrainResult:
    """What one drain pass did."""
    processed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: int = 0
    compacted: bool = False


class CommandQueueConsumer:
    """
    Consumer side of the queue.

    Features:
    - Durable byte-offset cursor persisted before each command runs
    - Bounded window of processed ids so a reset offset never replays
    - Malformed lines are skipped; incomplete trailing lines wait
    - Compaction by renaming the consumed file aside; the set-aside file is
      removed by a later drain once no producer has written to it for
      `compacting_grace` seconds
    """

    def __init__(
        self,
        queue_path: Path,
        cursor_path: Path,
        compaction_threshold: int = COMPACTION_THRESHOLD_BYTES,
        id_window: int = PROCESSED_ID_WINDOW,
        compacting_grace: float = COMPACTING_GRACE_SECONDS,
    ):
        self.queue_path = Path(queue_path)
        self.cursor_path = Path(cursor_path)
        self.compaction_threshold = compaction_threshold
        self.id_window = id_window
        self.compacting_grace = compacting_grace

    @property
    def compacting_path(self) -> Path:
        return self.queue_path.with_name(self.queue_path.name + COMPACTING_SUFFIX)

    # ========== Cursor ==========

    def load_cursor(self) -> CommandCursor:
        try:
            raw = self.cursor_path.read_text(encoding="utf-8")
            return CommandCursor.model_validate_json(raw)
        except FileNotFoundError:
            return CommandCursor()
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Resetting unreadable command cursor {self.cursor_path}: {e}")
            return CommandCursor()

    def save_cursor(self, cursor: CommandCursor) -> None:
        atomic_write_text(self.cursor_path, cursor.model_dump_json(indent=2) + "\n")

    # ========== Draining ==========

    def drain(self, handler: CommandHandler) -> DrainResult:
        """
        Run every complete, unseen command through `handler` in file order.

        Handler failures are logged per command and never stop the drain.
        """
        result = DrainResult()
        cursor = self.load_cursor()

        if os.path.exists(self.compacting_path):
            # Set aside by an earlier compaction; late appends may still land here
            self._drain_compacting(cursor, handler, result, may_remove=True)
        elif cursor.compacting_offset:
            cursor.compacting_offset = 0
            self.save_cursor(cursor)

        try:
            size = self.queue_path.stat().st_size
        except FileNotFoundError:
            if cursor.offset:
                cursor.offset = 0
                self.save_cursor(cursor)
            return result

        if size < cursor.offset:
            logger.warning(
                f"Command queue shrank below cursor ({size} < {cursor.offset}), rewinding"
            )
            cursor.offset = 0
            self.save_cursor(cursor)

        start = cursor.offset
        pending = self._read_from(self.queue_path, start)
        consumed = self._consume(pending, cursor, handler, result, start)
        if consumed:
            self.save_cursor(cursor)

        fully_consumed = consumed == len(pending)
        if (
            fully_consumed
            and cursor.offset >= self.compaction_threshold
            and not os.path.exists(self.compacting_path)
        ):
            self._compact(cursor, handler, result)

        if result.processed or result.failed:
            logger.info(
                f"Drained {len(result.processed)} command(s), {len(result.failed)} failed"
            )
        return result

    def _consume(
        self,
        data: bytes,
        cursor: CommandCursor,
        handler: CommandHandler,
        result: DrainResult,
        start: int,
        position: str = "offset",
    ) -> int:
        """
        Process the complete lines of `data`, read from byte `start`.

        The cursor field named by `position` is advanced and persisted
        before every command runs. Returns the number of bytes consumed.
        """
        consumed = 0
        while True:
            newline = data.find(b"\n", consumed)
            if newline < 0:
                break
            line = data[consumed:newline]
            consumed = newline + 1

            command = self._parse(line)
            if command is None:
                result.skipped += bool(line.strip())
                continue
            if command.id in cursor.processed_ids:
                logger.debug(f"Skipping already processed command {command.id}")
                result.skipped += 1
                continue

            self._remember(cursor, command.id)
            setattr(cursor, position, start + consumed)
            self.save_cursor(cursor)

            try:
                handler(command)
                result.processed.append(command.id)
            except Exception as e:
                logger.error(f"Command {format_command(command)} failed: {e}")
                result.failed.append(command.id)

        setattr(cursor, position, start + consumed)
        return consumed

    def _parse(self, line: bytes) -> Optional[SyncCommand]:
        if not line.strip():
            return None
        try:
            return SyncCommand.model_validate_json(line)
        except (ValidationError, ValueError) as e:
            logger.warning(f"Skipping malformed command line: {e}")
            return None

    def _remember(self, cursor: CommandCursor, command_id: str) -> None:
        cursor.last_processed_id = command_id
        cursor.processed_ids.append(command_id)
        if len(cursor.processed_ids) > self.id_window:
            del cursor.processed_ids[: len(cursor.processed_ids) - self.id_window]

    # ========== Compaction ==========

    def _compact(self, cursor: CommandCursor, handler: CommandHandler, result: DrainResult) -> None:
        """
        Move the consumed queue aside and restart the cursor at zero.

        The set-aside file is never removed in the same pass: a producer that
        opened the queue before the rename may still write to it.
        """
        cursor.compacting_offset = cursor.offset
        self.save_cursor(cursor)
        try:
            os.replace(self.queue_path, self.compacting_path)
        except OSError as e:
            logger.warning(f"Command queue compaction failed: {e}")
            return
        cursor.offset = 0
        self.save_cursor(cursor)
        self._drain_compacting(cursor, handler, result, may_remove=False)
        result.compacted = True
        logger.debug("Compacted command queue")

    def _drain_compacting(
        self,
        cursor: CommandCursor,
        handler: CommandHandler,
        result: DrainResult,
        may_remove: bool,
    ) -> None:
        path = self.compacting_path
        try:
            stat = path.stat()
        except FileNotFoundError:
            return
        if cursor.compacting_offset > stat.st_size:
            cursor.compacting_offset = 0

        start = cursor.compacting_offset
        pending = self._read_from(path, start)
        consumed = self._consume(pending, cursor, handler, result, start, "compacting_offset")
        if consumed:
            self.save_cursor(cursor)

        if not may_remove or time.time() - stat.st_mtime < self.compacting_grace:
            return
        try:
            if path.stat().st_size != start + len(pending):
                # Written to since it was read; the next drain picks it up
                return
        except FileNotFoundError:
            return
        if consumed < len(pending):
            logger.warning(f"Dropping incomplete command line left in {path}")

        path.unlink(missing_ok=True)
        cursor.compacting_offset = 0
        self.save_cursor(cursor)
        logger.debug(f"Removed settled {path.name}")

    @staticmethod
    def _read_from(path: Path, offset: int) -> bytes:
        try:
            with open(path, "rb") as f:
                f.seek(offset)
                return f.read()
        except FileNotFoundError:
            return b""


def format_command(command: SyncCommand) -> str:
    """Compact one-line description used in logs and CLI output."""
    target = command.skill_id or command.skill_path or "-"
    return json.dumps(
        {"id": command.id, "type": command.type.value, "target": target},
        ensure_ascii=False,
    )
