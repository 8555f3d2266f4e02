"""Advisory repository lock built on top of the object store.

The store has no compare-and-swap, so the lock works by writing a token,
waiting briefly and reading it back. Whoever's owner id survives the
read-back holds the lock. This narrows the race window but cannot close
it entirely. Tokens older than the configured staleness threshold are
treated as left behind by a crashed publisher and reclaimed.
"""

import json
import logging
import os
import random
import socket
import time
import uuid
from collections.abc import Callable

from src.config_manager import LockConfig
from src.errors import IOFailure, LockTimeout
from src.models import LockToken, Visibility
from src.object_store import ObjectStore

logger = logging.getLogger(__name__)


def lock_key(codename: str, component: str, architecture: str) -> str:
    """Object key of the lock token guarding one Packages index."""
    return f"dists/{codename}/{component}/binary-{architecture}/lockfile"


def new_owner_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex}"


class RepositoryLock:
    """Mutual exclusion over one (codename, component, architecture).

    Use as a context manager so the token is removed on every exit path::

        with RepositoryLock(store, "stable", "main", "amd64", config):
            ...
    """

    def __init__(
        self,
        store: ObjectStore,
        codename: str,
        component: str,
        architecture: str,
        config: LockConfig | None = None,
        owner: str | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.key = lock_key(codename, component, architecture)
        self.config = config or LockConfig()
        self.owner = owner or new_owner_id()
        self.clock = clock
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.held = False

    def acquire(self) -> LockToken:
        """Block until the lock is held.

        Returns:
            The token written by this owner

        Raises:
            LockTimeout: If the lock is not obtained within ``max_wait`` seconds
            IOFailure: If the token cannot be written
        """
        deadline = self.clock() + self.config.max_wait
        attempt = 0
        holder: LockToken | None = None

        while True:
            attempt += 1
            token = self._try_acquire()
            if token is not None:
                self.held = True
                logger.info(f"Acquired lock {self.key} after {attempt} attempt(s)")
                return token

            holder = self._read_token_quietly()
            if self.clock() >= deadline:
                holder_id = holder.owner if holder else None
                logger.error(
                    f"Timed out after {self.config.max_wait}s waiting for lock "
                    f"{self.key} (held by {holder_id})"
                )
                raise LockTimeout(
                    f"Could not acquire lock {self.key} within {self.config.max_wait}s",
                    key=self.key,
                    holder=holder_id,
                )

            delay = self.rng.uniform(self.config.min_backoff, self.config.max_backoff)
            logger.debug(
                f"Lock {self.key} busy (attempt {attempt}), retrying in {delay:.2f}s"
            )
            self.sleep(delay)

    def _try_acquire(self) -> LockToken | None:
        """Make one acquisition attempt; None means someone else holds the lock."""
        current = self._read_token_quietly(assume_busy=True)
        if current is not None and current.owner != self.owner:
            age = self.clock() - current.acquired_at
            if age < self.config.stale_after:
                return None
            logger.warning(
                f"Reclaiming stale lock {self.key} held by {current.owner} "
                f"for {age:.0f}s"
            )
            self.store.delete(self.key)

        token = self._write_token()

        self.sleep(self.config.settle)

        confirmed = self._read_token_quietly()
        if confirmed is not None and confirmed.owner == self.owner:
            return token
        return None

    def refresh(self) -> LockToken:
        """Rewrite our token with the current time so it does not turn stale.

        Raises:
            LockTimeout: If another owner has taken the lock over
            IOFailure: If the token cannot be read or written
        """
        current = self.read_token()
        if not self.held or current is None or current.owner != self.owner:
            holder = current.owner if current else None
            self.held = False
            logger.error(f"Lost lock {self.key} (now held by {holder})")
            raise LockTimeout(f"Lost lock {self.key}", key=self.key, holder=holder)

        token = self._write_token()
        logger.debug(f"Refreshed lock {self.key}")
        return token

    def _write_token(self) -> LockToken:
        token = LockToken(owner=self.owner, acquired_at=self.clock())
        self.store.put(
            self.key,
            encode_token(token),
            visibility=Visibility.PRIVATE,
            content_type="application/json",
        )
        return token

    def release(self) -> None:
        """Delete the token if it still belongs to this owner."""
        if not self.held:
            return
        self.held = False

        try:
            current = self.read_token()
        except IOFailure as e:
            logger.warning(f"Could not read lock {self.key} before release: {e}")
            current = LockToken(owner=self.owner, acquired_at=0.0)

        if current is None:
            logger.warning(f"Lock {self.key} vanished before release")
            return
        if current.owner != self.owner:
            logger.warning(f"Lock {self.key} was taken over by {current.owner}")
            return

        self.store.delete(self.key)
        logger.info(f"Released lock {self.key}")

    def read_token(self) -> LockToken | None:
        """Read the current token, or None if no lock object exists."""
        data = self.store.get(self.key)
        if data is None:
            return None
        return decode_token(data)

    def _read_token_quietly(self, assume_busy: bool = False) -> LockToken | None:
        try:
            return self.read_token()
        except IOFailure as e:
            logger.debug(f"Failed to read lock {self.key}: {e}")
            if not assume_busy:
                return None
            # Unknown state: behave as if a fresh holder exists so we back off
            return LockToken(owner="<unreadable>", acquired_at=self.clock())

    def __enter__(self) -> "RepositoryLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.release()
            return
        try:
            self.release()
        except IOFailure as release_error:
            logger.error(
                f"Failed to release lock {self.key} after error {exc!r}: {release_error}"
            )


def encode_token(token: LockToken) -> bytes:
    return json.dumps({"owner": token.owner, "acquired_at": token.acquired_at}).encode(
        "utf-8"
    )


def decode_token(data: bytes) -> LockToken:
    """Decode a token; unreadable content is reported as an ancient token."""
    try:
        payload = json.loads(data.decode("utf-8"))
        return LockToken(owner=str(payload["owner"]), acquired_at=float(payload["acquired_at"]))
    except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
        logger.warning(f"Unreadable lock token ({e}), treating it as abandoned")
        return LockToken(owner="<corrupt>", acquired_at=0.0)
