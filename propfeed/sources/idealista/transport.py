"""
Feed file transports.

A transport lists the feed files at its endpoint and retrieves one of them.
Every operation opens its own connection and closes it before returning;
nothing is kept open between calls. Retries are left to the caller.

Blocking I/O (ftplib, filesystem) runs in a worker thread via
asyncio.to_thread, bounded by a timeout. Each operation gets its own
OperationHandle holding its connection, so on timeout exactly that
connection is closed, the worker thread stops, and
TransportError(reason="timeout") is raised. Concurrent operations on one
transport never see each other's connection.
"""
import asyncio
import ftplib
import io
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, List, Optional, Tuple, TypeVar

from propfeed.core.errors import (
    REASON_NO_FEEDS,
    REASON_TIMEOUT,
    TransportError,
    transport_error_guard,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

FEED_EXTENSIONS = (".xml", ".json")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class FeedFile:
    """One feed file visible at the transport endpoint."""
    name: str
    modified_at: datetime
    size: Optional[int] = None


def sort_feed_files(files: Iterable[FeedFile]) -> List[FeedFile]:
    """Newest first; equal timestamps ordered by file name."""
    by_name = sorted(files, key=lambda f: f.name)
    return sorted(by_name, key=lambda f: f.modified_at, reverse=True)


def parse_ftp_timestamp(value: Optional[str]) -> datetime:
    """
    Parse an MLSD/MDTM timestamp (YYYYMMDDHHMMSS[.sss], UTC).

    Unparseable values sort last.
    """
    if not value:
        return _EPOCH
    try:
        return datetime.strptime(value.strip()[:14], "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return _EPOCH


class OperationHandle:
    """State of one transport operation, shared with its worker thread."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        self.connection: Optional[Any] = None
        self.aborted = False

    def attach(self, connection: Any) -> None:
        self.connection = connection
        if self.aborted:
            # Timed out before the worker got this far
            raise TimeoutError("operation aborted")

    def detach(self) -> None:
        self.connection = None


class FeedTransport(ABC):
    """
    Base class for feed transports.

    Subclasses implement the blocking _list_files and _retrieve; this class
    applies the timeout, error classification and file selection policy.
    """

    name = "transport"

    def __init__(self, timeout_seconds: float = 60.0):
        self.timeout_seconds = timeout_seconds

    @property
    @abstractmethod
    def location(self) -> str:
        """Human-readable endpoint for logs."""

    @abstractmethod
    def _list_files(self, handle: OperationHandle) -> List[FeedFile]:
        """Blocking: list every file at the endpoint."""

    @abstractmethod
    def _retrieve(self, name: str, handle: OperationHandle) -> bytes:
        """Blocking: read one file completely."""

    def _abort(self, handle: OperationHandle) -> None:
        """Mark a timed-out operation; subclasses also close its connection."""
        handle.aborted = True

    async def _in_thread(self, func: Callable[..., T], *args) -> T:
        with transport_error_guard(self.name):
            return await asyncio.to_thread(func, *args)

    async def _run(self, operation: str, func: Callable[..., T], *args, timeout: Optional[float] = None) -> T:
        limit = self.timeout_seconds if timeout is None else timeout
        handle = OperationHandle(limit)
        try:
            return await asyncio.wait_for(self._in_thread(func, *args, handle), limit)
        except asyncio.TimeoutError:
            self._abort(handle)
            error = TransportError(
                REASON_TIMEOUT,
                f"{operation} at {self.location} timed out after {limit}s",
                self.name,
            )
        except TransportError as e:
            logger.error(f"{operation} at {self.location} failed: {e.reason} ({e.message})")
            raise

        logger.error(f"{operation} at {self.location} failed: {error.reason}")
        raise error

    async def list_available_feeds(self, timeout: Optional[float] = None) -> List[FeedFile]:
        """
        List feed files, most recently modified first.

        Args:
            timeout: Override of the default operation timeout (seconds)

        Returns:
            Feed files sorted by modification time descending, ties by name

        Raises:
            TransportError: On connection/authentication failure, timeout or
                when no feed file is available
        """
        files = await self._run("list", self._list_files, timeout=timeout)
        feeds = [f for f in files if f.name.lower().endswith(FEED_EXTENSIONS)]
        if not feeds:
            raise TransportError(REASON_NO_FEEDS, f"No feed files at {self.location}", self.name)

        ordered = sort_feed_files(feeds)
        logger.info(f"Found {len(ordered)} feed files at {self.location}, newest: {ordered[0].name}")
        return ordered

    async def fetch_feed(self, name: str, timeout: Optional[float] = None) -> bytes:
        """
        Retrieve one feed file.

        Raises:
            TransportError: If the file vanished, the transfer was interrupted
                or timed out
        """
        data = await self._run(f"fetch {name}", self._retrieve, name, timeout=timeout)
        logger.info(f"Fetched {name} from {self.location} ({len(data)} bytes)")
        return data

    async def fetch_latest(self, timeout: Optional[float] = None) -> Tuple[FeedFile, bytes]:
        """
        Fetch the most recent feed file.

        Returns:
            Tuple of (FeedFile, bytes)

        Raises:
            TransportError: reason "no feeds available" when the listing is empty
        """
        feeds = await self.list_available_feeds(timeout=timeout)
        latest = feeds[0]
        return latest, await self.fetch_feed(latest.name, timeout=timeout)


class FtpFeedTransport(FeedTransport):
    """Feed files on an FTP server."""

    name = "ftp"

    def __init__(
        self,
        host: str,
        port: int = 21,
        user: str = "anonymous",
        password: str = "",
        directory: str = "/",
        passive: bool = True,
        timeout_seconds: float = 60.0,
        archive_dir: Optional[str] = None,
        ftp_factory: Callable[[], ftplib.FTP] = ftplib.FTP,
    ):
        """
        Initialize the FTP transport.

        Args:
            host: Server host
            port: Server port
            user: Login user
            password: Login password
            directory: Remote directory holding the feed files
            passive: Use passive data connections
            timeout_seconds: Default timeout per operation
            archive_dir: Keep a copy of every downloaded file here (optional)
            ftp_factory: Creates the ftplib client (injectable for tests)
        """
        super().__init__(timeout_seconds=timeout_seconds)
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.directory = directory
        self.passive = passive
        self.archive_dir = archive_dir
        self._ftp_factory = ftp_factory

    @property
    def location(self) -> str:
        return f"ftp://{self.host}:{self.port}{self.directory}"

    @contextmanager
    def _connection(self, handle: OperationHandle) -> Iterator[ftplib.FTP]:
        ftp = self._ftp_factory()
        try:
            handle.attach(ftp)
            logger.debug(f"Connecting to {self.location}")
            ftp.connect(self.host, self.port, timeout=handle.timeout)
            ftp.login(self.user, self.password)
            ftp.set_pasv(self.passive)
            if self.directory:
                ftp.cwd(self.directory)
            yield ftp
        finally:
            handle.detach()
            _close(ftp)

    def _abort(self, handle: OperationHandle) -> None:
        super()._abort(handle)
        ftp = handle.connection
        if ftp is not None:
            logger.warning(f"Closing connection to {self.location} after timeout")
            ftp.close()

    def _list_files(self, handle: OperationHandle) -> List[FeedFile]:
        with self._connection(handle) as ftp:
            try:
                entries = list(ftp.mlsd(facts=["type", "size", "modify"]))
            except ftplib.error_perm as e:
                logger.debug(f"MLSD not available ({e}), falling back to NLST")
                return self._list_with_nlst(ftp)

        files = []
        for name, facts in entries:
            if facts.get("type", "file") != "file":
                continue
            size = facts.get("size", "")
            files.append(FeedFile(
                name=name,
                modified_at=parse_ftp_timestamp(facts.get("modify")),
                size=int(size) if size.isdigit() else None,
            ))
        return files

    def _list_with_nlst(self, ftp: ftplib.FTP) -> List[FeedFile]:
        files = []
        for entry in ftp.nlst():
            name = entry.rsplit("/", 1)[-1]
            if not name.lower().endswith(FEED_EXTENSIONS):
                continue
            try:
                response = ftp.sendcmd(f"MDTM {name}")
                modified = parse_ftp_timestamp(response[4:])
            except ftplib.error_perm:
                modified = _EPOCH
            files.append(FeedFile(name=name, modified_at=modified))
        return files

    def _retrieve(self, name: str, handle: OperationHandle) -> bytes:
        buffer = io.BytesIO()
        with self._connection(handle) as ftp:
            ftp.retrbinary(f"RETR {name}", buffer.write)
        data = buffer.getvalue()

        if self.archive_dir:
            self._archive(name, data)
        return data

    def _archive(self, name: str, data: bytes) -> None:
        target = Path(self.archive_dir) / Path(name).name
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            logger.debug(f"Archived {name} to {target}")
        except OSError as e:
            logger.warning(f"Could not archive {name} to {target}: {e}")


def _close(ftp: ftplib.FTP) -> None:
    try:
        ftp.quit()
    except (ftplib.Error, OSError, EOFError, AttributeError):
        # Connection already gone; close the socket without the QUIT exchange
        ftp.close()


class LocalDirectoryTransport(FeedTransport):
    """Feed files in a local directory."""

    name = "local"

    def __init__(self, directory: str, timeout_seconds: float = 60.0):
        super().__init__(timeout_seconds=timeout_seconds)
        self.directory = Path(directory)

    @property
    def location(self) -> str:
        return str(self.directory)

    def _list_files(self, handle: OperationHandle) -> List[FeedFile]:
        if not self.directory.is_dir():
            raise FileNotFoundError(f"Feed directory not found: {self.directory}")

        files = []
        for path in self.directory.iterdir():
            if not path.is_file():
                continue
            stat = path.stat()
            files.append(FeedFile(
                name=path.name,
                modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                size=stat.st_size,
            ))
        return files

    def _retrieve(self, name: str, handle: OperationHandle) -> bytes:
        return (self.directory / Path(name).name).read_bytes()
