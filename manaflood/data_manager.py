"""MTGJSON file fetching and the local download record.

Only HTTPS URLs on mtgjson.com are fetched. Redirects are resolved by hand
so every hop can be checked, and requested file names may not escape the
data directory.
"""

import asyncio
import json
import logging
import re
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable
from urllib.parse import urljoin, urlparse

import httpx

logger = logging.getLogger(__name__)


MTGJSON_HOSTS = frozenset({"mtgjson.com"})

API_BASE = "https://mtgjson.com/api/v5"
META_ENDPOINT = f"{API_BASE}/Meta.json"

DEFAULT_FILE = "AllPrintings"

MAX_HOPS = 5
CHUNK_BYTES = 64 * 1024

_FILE_NAME = re.compile(r"[A-Za-z0-9_.-]+")

ProgressCallback = Callable[[int, int], None]


@dataclass
class DataStatus:
    """Snapshot of what has been downloaded and whether it is current."""

    last_updated: datetime | None
    printing_count: int
    version: str | None
    is_stale: bool

    def to_dict(self) -> dict[str, Any]:
        when = self.last_updated
        return {
            "last_updated": when.isoformat() if when is not None else None,
            "printing_count": self.printing_count,
            "version": self.version,
            "stale": self.is_stale,
        }


class DataManager:
    """Fetches MTGJSON files into a data directory and tracks their build.

    The record of the last download lives in ``metadata.json`` next to the
    data files and is always replaced in a single rename.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir
        self.data_dir.mkdir(parents=True, exist_ok=True)

        self._record_path = data_dir / "metadata.json"
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "DataManager":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None and not client.is_closed:
            await client.aclose()

    def _http(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            # Long read timeout: AllPrintings is several hundred megabytes
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, read=300.0),
                follow_redirects=False,
            )
        return self._client

    # URL and name checks

    def is_valid_download_url(self, url: str) -> bool:
        """True for https URLs whose host is an MTGJSON host."""
        if not url:
            return False
        try:
            parts = urlparse(url)
        except ValueError:
            return False
        return parts.scheme == "https" and parts.netloc in MTGJSON_HOSTS

    def is_safe_filename(self, filename: str) -> bool:
        """True if the name is a bare file name with no path components."""
        if not filename or ".." in filename:
            return False
        return _FILE_NAME.fullmatch(filename) is not None

    def file_url(self, name: str) -> str:
        """URL of an MTGJSON file such as "AllPrintings" or a set code.

        Raises:
            ValueError: If the name is not a safe file name
        """
        if not self.is_safe_filename(name):
            raise ValueError(f"Invalid MTGJSON file name: {name}")
        return f"{API_BASE}/{name}.json"

    # HTTP

    async def _open(self, url: str, stream: bool = False) -> httpx.Response:
        """GET ``url``, following at most MAX_HOPS redirects on MTGJSON hosts.

        Raises:
            ValueError: On a redirect to a non-allowed domain, a redirect
                without a location, or too many hops
        """
        client = self._http()

        for _ in range(MAX_HOPS):
            request = client.build_request("GET", url)
            response = await client.send(request, stream=stream)
            if not response.is_redirect:
                return response

            location = response.headers.get("location")
            await response.aclose()
            if not location:
                raise ValueError("Redirect response missing location header")

            target = urljoin(url, location)
            if not self.is_valid_download_url(target):
                raise ValueError(f"Redirect to non-allowed domain: {target}")
            logger.debug("Following redirect %s -> %s", url, target)
            url = target

        raise ValueError(f"Too many redirects (max {MAX_HOPS})")

    async def fetch_meta(self) -> dict[str, Any]:
        """The ``data`` object of Meta.json: the current build's date and version."""
        response = await self._open(META_ENDPOINT)
        response.raise_for_status()
        payload = response.json()
        return payload.get("data", payload)

    async def _save(
        self, url: str, target: Path, progress_callback: ProgressCallback | None
    ) -> None:
        response = await self._open(url, stream=True)
        try:
            response.raise_for_status()
            expected = int(response.headers.get("Content-Length", 0))
            received = 0
            with target.open("wb") as out:
                async for block in response.aiter_bytes(chunk_size=CHUNK_BYTES):
                    out.write(block)
                    received += len(block)
                    if progress_callback is not None:
                        progress_callback(received, expected)
        finally:
            await response.aclose()

    async def download_file(
        self,
        name: str = DEFAULT_FILE,
        progress_callback: ProgressCallback | None = None,
        max_retries: int = 3,
    ) -> Path:
        """Download ``<name>.json`` into the data directory.

        Failed attempts are retried up to ``max_retries`` times with a
        doubling pause (1s, 2s, 4s ...). A partial file never survives a
        failed attempt. On success the download record is rewritten with the
        build's version and date and a zero printing count.

        Raises:
            ValueError: If the name, or any redirect target, is not allowed
            httpx.HTTPError: If every attempt failed at the HTTP level
            OSError: If every attempt failed writing the file
        """
        url = self.file_url(name)
        meta = await self.fetch_meta()
        target = self.data_dir / f"{name}.json"
        attempts = max_retries + 1

        failure: Exception | None = None
        for number in range(1, attempts + 1):
            if failure is not None:
                pause = 2 ** (number - 2)
                logger.warning(
                    "Attempt %d/%d for %s failed (%s); next try in %ds",
                    number - 1, attempts, url, failure, pause,
                )
                await asyncio.sleep(pause)

            try:
                await self._save(url, target, progress_callback)
            except (httpx.HTTPError, OSError) as e:
                failure = e
                target.unlink(missing_ok=True)
                continue

            if number > 1:
                logger.info("Downloaded %s on attempt %d/%d", url, number, attempts)
            self._write_record({
                "file": target.name,
                "downloaded_at": datetime.now(timezone.utc).isoformat(),
                "version": meta.get("version"),
                "date": meta.get("date"),
                "printing_count": 0,
            })
            return target

        message = f"Download failed after {attempts} attempts: {failure}"
        if isinstance(failure, OSError):
            raise OSError(message) from failure
        raise httpx.HTTPError(message) from failure

    # Download record

    def _read_record(self) -> dict[str, Any] | None:
        try:
            with self._record_path.open() as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable %s: %s", self._record_path, e)
            return None

    def _write_record(self, record: dict[str, Any]) -> None:
        fd, scratch = tempfile.mkstemp(dir=self.data_dir, prefix=".metadata_", suffix=".tmp")
        scratch_path = Path(scratch)
        try:
            with open(fd, "w") as f:
                json.dump(record, f)
            scratch_path.replace(self._record_path)
        except BaseException:
            scratch_path.unlink(missing_ok=True)
            raise

    def update_printing_count(self, count: int) -> None:
        """Record how many printings the last import added."""
        record = self._read_record() or {}
        record["printing_count"] = count
        self._write_record(record)

    async def is_cache_stale(self) -> bool:
        """Whether the local build differs from the published one.

        Missing data, an unreadable record and an unreachable MTGJSON all
        count as stale.
        """
        record = self._read_record()
        local_version = record.get("version") if record else None
        if not local_version:
            return True

        try:
            meta = await self.fetch_meta()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Could not check MTGJSON version: %s", e)
            return True

        published = meta.get("version")
        return not published or published != local_version

    async def get_status(self) -> DataStatus:
        record = self._read_record()
        if not record:
            return DataStatus(last_updated=None, printing_count=0, version=None, is_stale=True)

        stamp = record.get("downloaded_at")
        when = None
        if stamp:
            try:
                when = datetime.fromisoformat(stamp)
            except ValueError:
                logger.warning("Bad downloaded_at in %s: %r", self._record_path, stamp)

        return DataStatus(
            last_updated=when,
            printing_count=record.get("printing_count", 0),
            version=record.get("version"),
            is_stale=await self.is_cache_stale(),
        )
