"""Remote retrieval of mirror files over HTTP."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from repocheck.exceptions import FetchError

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable
    from pathlib import Path

    from repocheck.services.verify_service import ByteCounter

    ProgressCallback = Callable[[int, int | None], None]

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class Fetcher:
    """Downloads files into the mirror with a streaming httpx client.

    A client passed in by the caller is used as-is and left open; otherwise
    the fetcher creates one and closes it in ``close``.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        timeout: float | None = 60.0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        counter: ByteCounter | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self.chunk_size = chunk_size
        self.counter = counter
        self.cancel_event = cancel_event

    def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> Fetcher:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def fetch(self, url: str, destination: Path, progress: ProgressCallback | None = None) -> int:
        """Download ``url`` to ``destination`` and return the number of bytes written.

        Missing parent directories are created. A partially written file is
        removed when the download fails.

        Raises FetchError: ``fatal=True`` when the destination cannot be
        written, ``fatal=False`` for network and HTTP failures, timeouts and
        cancellation.
        """
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"Cannot create directory {destination.parent}: {exc}"
            raise FetchError(msg, fatal=True) from exc

        written = 0
        try:
            with self.client.stream("GET", url) as response:
                response.raise_for_status()
                total = _content_length(response)
                with open(destination, "wb") as f:
                    for chunk in response.iter_bytes(self.chunk_size):
                        if self.cancel_event is not None and self.cancel_event.is_set():
                            msg = f"Download of {url} cancelled"
                            raise FetchError(msg)
                        f.write(chunk)
                        written += len(chunk)
                        if self.counter is not None:
                            self.counter.add(len(chunk))
                        if progress is not None:
                            progress(written, total)
        except FetchError:
            _discard(destination)
            raise
        except httpx.HTTPStatusError as exc:
            _discard(destination)
            msg = f"Server returned {exc.response.status_code} for {url}"
            raise FetchError(msg) from exc
        except httpx.HTTPError as exc:
            _discard(destination)
            msg = f"Download of {url} failed: {exc}"
            raise FetchError(msg) from exc
        except OSError as exc:
            _discard(destination)
            msg = f"Cannot write {destination}: {exc}"
            raise FetchError(msg, fatal=True) from exc

        logger.debug("Fetched %s (%d bytes)", url, written)
        return written


def _content_length(response: httpx.Response) -> int | None:
    raw = response.headers.get("Content-Length")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.warning("Could not remove partial download %s", path)
