"""Async, read-only IMAP client wrapping stdlib imaplib with asyncio.to_thread."""

from __future__ import annotations

import asyncio
import imaplib
import threading
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TypeVar

import structlog

from .config import ImapConfig
from .errors import MailStoreAuthError, MailStoreConnectionError, MailStoreFolderError

logger = structlog.get_logger()

_T = TypeVar("_T")


@dataclass
class FetchedEmail:
    """Raw email data fetched from IMAP."""

    uid: str
    folder: str
    raw_bytes: bytes


class AsyncImapClient:
    """Async-friendly IMAP client.

    All blocking ``imaplib`` operations are wrapped with
    ``asyncio.to_thread()`` to avoid blocking the event loop.  The client
    never writes to the mailbox: folders are opened with ``EXAMINE`` and
    messages are fetched with ``BODY.PEEK[]`` so the ``\\Seen`` flag is
    left untouched.
    """

    def __init__(self, config: ImapConfig) -> None:
        self._config = config
        self._conn: imaplib.IMAP4_SSL | imaplib.IMAP4 | None = None
        self._folder: str | None = None
        # Held by the worker thread for the whole of each IMAP command
        self._io_lock = threading.Lock()

    @property
    def folder(self) -> str | None:
        return self._folder

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncImapClient]:
        """Connect for the duration of one ingestion cycle.

        The connection is closed on every exit path, including errors
        raised by the caller while the session is open.
        """
        await self.connect()
        try:
            yield self
        finally:
            await self.disconnect()

    async def connect(self) -> None:
        """Connect and login."""
        await asyncio.to_thread(self._connect_sync)
        logger.info("imap_connected", host=self._config.host, username=self._config.username)

    def _connect_sync(self) -> None:
        try:
            if self._config.use_ssl:
                conn = imaplib.IMAP4_SSL(
                    self._config.host, self._config.port, timeout=self._config.timeout_seconds
                )
            else:
                conn = imaplib.IMAP4(
                    self._config.host, self._config.port, timeout=self._config.timeout_seconds
                )
        except (imaplib.IMAP4.error, OSError) as exc:
            raise MailStoreConnectionError(
                f"Could not connect to {self._config.host}:{self._config.port}: {exc}",
                host=self._config.host,
            ) from exc

        try:
            conn.login(self._config.username, self._config.password.get_secret_value())
        except imaplib.IMAP4.error as exc:
            _shutdown_quietly(conn)
            raise MailStoreAuthError(
                f"Login rejected for {self._config.username}: {exc}",
                host=self._config.host,
            ) from exc
        except OSError as exc:
            _shutdown_quietly(conn)
            raise MailStoreConnectionError(
                f"Connection lost during login: {exc}",
                host=self._config.host,
            ) from exc

        self._conn = conn

    async def disconnect(self) -> None:
        """Close the selected folder and logout."""
        if self._conn is not None:
            await asyncio.to_thread(self._disconnect_sync)
            self._conn = None
            self._folder = None
            logger.info("imap_disconnected", host=self._config.host)

    def _disconnect_sync(self) -> None:
        assert self._conn is not None
        if not self._io_lock.acquire(blocking=False):
            # A cancelled command is still running in its worker thread.
            # Closing the socket makes its blocking read fail.
            logger.warning("imap_command_abandoned", host=self._config.host, folder=self._folder)
            _shutdown_quietly(self._conn)
            return
        try:
            if self._folder is not None:
                try:
                    self._conn.close()
                except (imaplib.IMAP4.error, OSError):
                    pass
            try:
                self._conn.logout()
            except (imaplib.IMAP4.error, OSError):
                pass
        finally:
            self._io_lock.release()

    def _locked(self, func: Callable[..., _T], *args: object) -> _T:
        with self._io_lock:
            return func(*args)

    async def is_connected(self) -> bool:
        """Check connection liveness with a NOOP command."""
        if self._conn is None:
            return False
        try:
            status, _ = await asyncio.to_thread(self._locked, self._conn.noop)
            return status == "OK"
        except (imaplib.IMAP4.error, OSError):
            return False

    # ------------------------------------------------------------------
    # Folder access
    # ------------------------------------------------------------------

    async def select_folder(self, folder: str) -> None:
        """Open *folder* read-only."""
        assert self._conn is not None, "Not connected"
        await asyncio.to_thread(self._locked, self._select_sync, folder)
        logger.info("imap_folder_selected", host=self._config.host, folder=folder)

    def _select_sync(self, folder: str) -> None:
        assert self._conn is not None
        try:
            status, data = self._conn.select(_quote_mailbox(folder), readonly=True)
        except imaplib.IMAP4.abort as exc:
            raise MailStoreConnectionError(
                f"Connection lost opening {folder}: {exc}",
                host=self._config.host,
                folder=folder,
            ) from exc
        except imaplib.IMAP4.error as exc:
            raise MailStoreFolderError(
                f"Could not open {folder}: {exc}",
                host=self._config.host,
                folder=folder,
            ) from exc
        except OSError as exc:
            raise MailStoreConnectionError(
                f"Connection lost opening {folder}: {exc}",
                host=self._config.host,
                folder=folder,
            ) from exc
        if status != "OK":
            raise MailStoreFolderError(
                f"Could not open {folder}: {data!r}",
                host=self._config.host,
                folder=folder,
            )
        self._folder = folder

    # ------------------------------------------------------------------
    # Message retrieval
    # ------------------------------------------------------------------

    async def list_uids(self) -> list[str]:
        """Return the UIDs of every message in the selected folder, in store order."""
        assert self._conn is not None, "Not connected"
        assert self._folder is not None, "No folder selected"
        return await asyncio.to_thread(self._locked, self._list_uids_sync)

    def _list_uids_sync(self) -> list[str]:
        assert self._conn is not None
        try:
            status, data = self._conn.uid("SEARCH", None, "ALL")
        except (imaplib.IMAP4.error, OSError) as exc:
            raise MailStoreConnectionError(
                f"SEARCH failed: {exc}",
                host=self._config.host,
                folder=self._folder,
            ) from exc
        if status != "OK":
            raise MailStoreFolderError(
                f"SEARCH rejected in {self._folder}: {data!r}",
                host=self._config.host,
                folder=self._folder,
            )
        if not data or not data[0]:
            return []
        uids = [uid.decode() for uid in data[0].split()]
        logger.debug("imap_search_complete", folder=self._folder, count=len(uids))
        return uids

    async def fetch_raw(self, uid: str) -> FetchedEmail | None:
        """Fetch the raw RFC 822 bytes of one message.

        Returns ``None`` when the store has no data for *uid* (for
        example, the message was expunged after the search).
        """
        assert self._conn is not None, "Not connected"
        assert self._folder is not None, "No folder selected"
        return await asyncio.to_thread(self._locked, self._fetch_sync, uid)

    def _fetch_sync(self, uid: str) -> FetchedEmail | None:
        assert self._conn is not None
        assert self._folder is not None
        try:
            status, msg_data = self._conn.uid("FETCH", uid, "(BODY.PEEK[])")
        except (imaplib.IMAP4.error, OSError) as exc:
            raise MailStoreConnectionError(
                f"FETCH {uid} failed: {exc}",
                host=self._config.host,
                folder=self._folder,
            ) from exc
        if status != "OK" or not msg_data:
            return None

        # The literal arrives as the second element of the first tuple part
        for part in msg_data:
            if isinstance(part, tuple) and len(part) >= 2 and isinstance(part[1], bytes):
                return FetchedEmail(uid=uid, folder=self._folder, raw_bytes=part[1])
        return None


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _quote_mailbox(name: str) -> str:
    """Quote a mailbox name for SELECT/EXAMINE when it needs it."""
    if name.startswith('"') and name.endswith('"'):
        return name
    if any(ch in name for ch in ' []()"\\'):
        escaped = name.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return name


def _shutdown_quietly(conn: imaplib.IMAP4) -> None:
    try:
        conn.shutdown()
    except OSError:
        pass
