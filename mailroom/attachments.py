"""Local attachment storage with per-cycle mark-and-sweep cleanup.

Every ingestion cycle registers a live set with the store.  Files written
during the cycle are added to that set before they hit the disk; when the
cycle finishes, any file in the attachment root that is neither in the
finishing cycle's live set nor in the live set of a cycle still in flight
is deleted.

One store instance owns one attachment root.  Several processes sharing a
root will delete each other's files.

All filesystem calls are wrapped with ``asyncio.to_thread()``.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote

import structlog

from .config import AttachmentConfig
from .errors import AttachmentWriteError
from .models import StoredAttachment, SweepReport

logger = structlog.get_logger()

# Filesystem NAME_MAX, in bytes
_NAME_MAX_BYTES = 255
_MAX_ID_BYTES = 64


def _now_millis() -> int:
    return time.time_ns() // 1_000_000


@dataclass(eq=False)
class AttachmentCycle:
    """Live filenames of one in-flight ingestion cycle."""

    live: set[str] = field(default_factory=set)


class AttachmentStore:
    """Persist attachment blobs under unique names and sweep stale files."""

    def __init__(
        self,
        config: AttachmentConfig,
        *,
        clock: Callable[[], int] = _now_millis,
    ) -> None:
        self._config = config
        self._root = Path(config.root_dir).resolve()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._known: set[str] = set()
        self._active: list[AttachmentCycle] = []

    @property
    def root(self) -> Path:
        return self._root

    @property
    def known_filenames(self) -> frozenset[str]:
        return frozenset(self._known)

    async def start(self) -> None:
        """Create the attachment root if needed."""
        await asyncio.to_thread(self._root.mkdir, parents=True, exist_ok=True)
        logger.info("attachment_store_started", root=str(self._root))

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def begin_cycle(self) -> AttachmentCycle:
        cycle = AttachmentCycle()
        async with self._lock:
            self._active.append(cycle)
        return cycle

    async def finish_cycle(self, cycle: AttachmentCycle) -> SweepReport:
        """Retire *cycle* and sweep everything no live set references."""
        async with self._lock:
            self._retire(cycle)
            return await self._sweep_locked(cycle.live)

    async def abandon_cycle(self, cycle: AttachmentCycle) -> None:
        """Retire *cycle* without sweeping (its files go on the next sweep)."""
        async with self._lock:
            self._retire(cycle)

    def _retire(self, cycle: AttachmentCycle) -> None:
        self._active = [c for c in self._active if c is not cycle]

    # ------------------------------------------------------------------
    # Persist
    # ------------------------------------------------------------------

    async def persist(
        self,
        payload: bytes,
        original_filename: str,
        message_id: str,
        content_type: str = "application/octet-stream",
        *,
        cycle: AttachmentCycle | None = None,
    ) -> StoredAttachment:
        """Write one attachment and return its stored descriptor.

        The stored name is ``<message_id>-<capture_millis>-<basename>``.  A
        name already known to this store is never reused: the millisecond
        component is advanced until the name is free.  The basename is
        shortened, keeping its extension, so the whole name fits in 255 bytes.
        """
        async with self._lock:
            stored_filename = self._reserve(message_id, original_filename)
            if cycle is not None:
                cycle.live.add(stored_filename)

        path = self._root / stored_filename
        try:
            await asyncio.to_thread(self._write_sync, path, payload)
        except OSError as exc:
            async with self._lock:
                self._known.discard(stored_filename)
                if cycle is not None:
                    cycle.live.discard(stored_filename)
            logger.error(
                "attachment_write_failed",
                stored_filename=stored_filename,
                original_filename=original_filename,
                error=str(exc),
            )
            raise AttachmentWriteError(f"Failed to save attachment {stored_filename}: {exc}") from exc

        logger.debug(
            "attachment_saved",
            stored_filename=stored_filename,
            original_filename=original_filename,
            size=len(payload),
        )
        return StoredAttachment(
            original_filename=original_filename,
            stored_filename=stored_filename,
            content_type=content_type or "application/octet-stream",
            url=self.url_for(stored_filename),
        )

    def _reserve(self, message_id: str, original_filename: str) -> str:
        safe_id = _truncate_utf8(_sanitize_filename(message_id), _MAX_ID_BYTES) or "message"
        safe_name = _sanitize_filename(original_filename) or "attachment"
        millis = self._clock()
        stored = _stored_name(safe_id, millis, safe_name)
        while stored in self._known:
            millis += 1
            stored = _stored_name(safe_id, millis, safe_name)
        self._check_inside_root(stored)
        self._known.add(stored)
        return stored

    def url_for(self, stored_filename: str) -> str:
        prefix = self._config.url_prefix.rstrip("/")
        return f"{prefix}/{quote(stored_filename, safe='')}"

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def sweep(self, live: Iterable[str]) -> SweepReport:
        """Delete every file in the root that no live set references.

        Per-file failures are logged and reported, never raised.
        """
        async with self._lock:
            return await self._sweep_locked(set(live))

    async def _sweep_locked(self, live: set[str]) -> SweepReport:
        keep = set(live)
        for cycle in self._active:
            keep |= cycle.live

        report = await asyncio.to_thread(self._sweep_sync, keep)
        self._known = (self._known & keep) | set(report.failed)
        if report.deleted or report.failed:
            logger.info(
                "attachment_sweep_complete",
                deleted=len(report.deleted),
                failed=len(report.failed),
            )
        return report

    def _write_sync(self, path: Path, payload: bytes) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)

    def _sweep_sync(self, keep: set[str]) -> SweepReport:
        report = SweepReport()
        if not self._root.is_dir():
            return report

        for entry in sorted(self._root.iterdir()):
            if entry.name in keep or not entry.is_file():
                continue
            try:
                entry.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("attachment_delete_failed", filename=entry.name, error=str(exc))
                report.failed.append(entry.name)
                continue
            report.deleted.append(entry.name)
        return report

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def resolve(self, stored_filename: str) -> Path | None:
        """Return the path of a stored file, or ``None`` if unknown or unsafe."""
        if not stored_filename or stored_filename != Path(stored_filename).name:
            return None
        if stored_filename in (".", ".."):
            return None
        path = self._root / stored_filename
        if path.parent != self._root or not path.is_file():
            return None
        return path

    def _check_inside_root(self, stored_filename: str) -> None:
        path = (self._root / stored_filename).resolve()
        if path.parent != self._root:
            raise AttachmentWriteError(f"Refusing to write outside attachment root: {stored_filename}")


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _sanitize_filename(name: str) -> str:
    """Reduce *name* to a bare basename made of filesystem-safe characters."""
    basename = re.split(r"[\\/]", name)[-1]
    cleaned = re.sub(r"[^\w.\-]", "_", basename)
    return cleaned.strip(".")


def _stored_name(safe_id: str, millis: int, safe_name: str) -> str:
    prefix = f"{safe_id}-{millis}-"
    return prefix + _fit_basename(safe_name, _NAME_MAX_BYTES - len(prefix.encode("utf-8")))


def _fit_basename(name: str, max_bytes: int) -> str:
    """Shorten *name* to *max_bytes* of UTF-8, keeping a short extension."""
    if len(name.encode("utf-8")) <= max_bytes:
        return name
    stem, dot, ext = name.rpartition(".")
    ext_bytes = len(ext.encode("utf-8")) + 1
    if dot and stem and ext_bytes <= max_bytes // 2:
        return _truncate_utf8(stem, max_bytes - ext_bytes) + "." + ext
    return _truncate_utf8(name, max_bytes)


def _truncate_utf8(text: str, max_bytes: int) -> str:
    # Cut on a character boundary
    return text.encode("utf-8")[:max_bytes].decode("utf-8", errors="ignore")
