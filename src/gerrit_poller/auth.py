"""
Credential sources and rotation for the Gerrit poller.

A credential source is a zero-argument callable returning the current secret.
The rotator re-reads it on a fixed interval and pushes changed values into
every registered handler's gateway.
"""

import asyncio
from collections.abc import Callable, Iterable
from pathlib import Path

import structlog

from .exceptions import CredentialSourceError
from .handler import InstanceHandler
from .locks import ReadWriteLock

logger = structlog.get_logger(__name__)

CredentialSource = Callable[[], str]

# Gerrit's authentication cookie name.
AUTH_COOKIE_NAME = "o"

DEFAULT_REFRESH_INTERVAL_SECONDS = 60.0


def cookie_file_source(path: str | Path) -> CredentialSource:
    """Read the credential as the last whitespace-delimited token of a cookie file."""
    cookie_path = Path(path)

    def read() -> str:
        try:
            raw = cookie_path.read_text(encoding="utf-8")
        except (OSError, ValueError) as e:
            raise CredentialSourceError(f"read cookie: {e}") from e
        fields = raw.split()
        if not fields:
            raise CredentialSourceError(f"read cookie: {cookie_path} is empty")
        return fields[-1]

    return read


def token_file_source(path: str | Path) -> CredentialSource:
    """Read the credential as the trimmed contents of a token file."""
    token_path = Path(path)

    def read() -> str:
        try:
            return token_path.read_text(encoding="utf-8").strip()
        except (OSError, ValueError) as e:
            raise CredentialSourceError(f"read token: {e}") from e

    return read


def select_credential_source(
    cookiefile_path: str | None, token_path: str | None
) -> CredentialSource | None:
    """
    Pick the credential source to use.

    The cookie file wins over the token file; with neither configured the
    client stays anonymous and ``None`` is returned.
    """
    if cookiefile_path:
        if token_path:
            logger.warning(
                "Ignoring token path in favor of cookiefile",
                cookiefile=cookiefile_path,
                token=token_path,
            )
        return cookie_file_source(cookiefile_path)
    if token_path:
        return token_file_source(token_path)

    logger.info("Using anonymous authentication to gerrit")
    return None


class CredentialRotator:
    """
    Keeps every handler's gateway authenticated with the freshest credential.

    The rotator shares the registry's lock: reading the configured source is a
    shared operation, pushing a new credential into the handlers is exclusive.
    """

    def __init__(
        self,
        lock: ReadWriteLock,
        handlers: Callable[[], Iterable[InstanceHandler]],
        interval_seconds: float = DEFAULT_REFRESH_INTERVAL_SECONDS,
    ):
        self._lock = lock
        self._handlers = handlers
        self.interval_seconds = interval_seconds
        self.source: CredentialSource | None = None
        self.previous_token = ""
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def set_source(self, source: CredentialSource) -> CredentialSource | None:
        """Swap in a new source and return the one it replaced."""
        async with self._lock.write():
            previous, self.source = self.source, source
        return previous

    async def rotate_once(self) -> bool:
        """
        Re-read the credential and apply it if it changed.

        Returns:
            True if a new credential was pushed to the handlers
        """
        async with self._lock.read():
            source = self.source
        if source is None:
            return False

        try:
            current = await asyncio.to_thread(source)
        except CredentialSourceError as e:
            logger.error("Failed to read gerrit auth token", error=str(e))
            return False

        if current == self.previous_token:
            return False

        async with self._lock.write():
            if current == self.previous_token:
                return False
            logger.info("New gerrit token, updating handler authentication...")
            self.previous_token = current
            for handler in self._handlers():
                handler.auth_service.set_cookie_auth(AUTH_COOKIE_NAME, current)
        return True

    def apply_current(self, handler: InstanceHandler) -> None:
        """Give a newly built handler the credential in use; needs the write lock."""
        if self.previous_token:
            handler.auth_service.set_cookie_auth(AUTH_COOKIE_NAME, self.previous_token)

    def start(self) -> None:
        """Start the background rotation loop; later calls are no-ops."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name="gerrit-credential-rotator")

    async def stop(self) -> None:
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.rotate_once()
            except Exception as e:
                logger.error("Credential rotation failed", error=str(e))
