from __future__ import annotations

import logging
import os
import re
import shutil
import threading
from pathlib import Path
from typing import Callable, Iterable, List, Tuple

import requests

from .cleanup import CleanupScheduler
from .errors import EmptyFileError, FiletypeError, HTTPResponseError

logger = logging.getLogger("streambot.media")

DEFAULT_DIRECTORY = "tweet_pic_temp"
DOWNLOAD_TIMEOUT_SECONDS = float(os.getenv("STREAMBOT_DOWNLOAD_TIMEOUT_SECONDS", "10"))
DOWNLOAD_CHUNK_SIZE = 8192

# Extensions and content types the platform accepts, mapped to the extension we write.
SUPPORTED_FILETYPES = {
    ".jpg": ".jpg",
    ".jpeg": ".jpg",
    "image/jpeg": ".jpg",
    ".png": ".png",
    "image/png": ".png",
    ".gif": ".gif",
    "image/gif": ".gif",
}

_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)


def normalize_extension(value: str | None) -> str:
    """Map an extension or content type onto the extension written to disk.

    ``"JPG"``, ``".JPEG"`` and ``"image/jpeg"`` all become ``".jpg"``.
    """
    raw = (value or "").strip().lower()
    if "/" in raw:
        key = raw.split(";", 1)[0].strip()
    else:
        key = raw if raw.startswith(".") else f".{raw}"
    mapped = SUPPORTED_FILETYPES.get(key)
    if mapped is None:
        raise FiletypeError(f"'{value}' isn't a supported filetype")
    return mapped


def is_url(source: str) -> bool:
    return _URL_PATTERN.match(source) is not None


class MediaStore:
    """Process-wide scratch directory for media waiting to be uploaded.

    The directory handle, the filename counter and the deletion queue are shared
    by every bot in the process, so all of them change under one lock.
    """

    def __init__(
        self,
        preferred_name: str = DEFAULT_DIRECTORY,
        *,
        base_path: str | Path | None = None,
        cleanup: CleanupScheduler | None = None,
        timeout_s: float = DOWNLOAD_TIMEOUT_SECONDS,
    ) -> None:
        self.preferred_name = preferred_name
        self.base_path = Path(base_path) if base_path is not None else Path.cwd()
        self.cleanup = cleanup or CleanupScheduler()
        self.timeout_s = timeout_s
        self._directory: Path | None = None
        self._counter = 0
        self._delete_queue: List[str] = []
        self._lock = threading.RLock()

    def directory(self, preferred_name: str | None = None) -> Path:
        # The name only matters on the first call; the choice then sticks.
        with self._lock:
            if self._directory is None:
                self._directory = self._find_directory(preferred_name or self.preferred_name)
            self._directory.mkdir(parents=True, exist_ok=True)
            return self._directory

    def _find_directory(self, name: str) -> Path:
        candidate = self.base_path / name
        suffix = 0
        while candidate.exists():
            if candidate.is_dir() and not any(candidate.iterdir()):
                break
            candidate = self.base_path / f"{name}_{suffix}"
            suffix += 1
        return candidate

    def path(self, filename: str) -> Path:
        return self.directory() / filename

    def files(self) -> List[str]:
        with self._lock:
            if self._directory is None or not self._directory.is_dir():
                return []
            return sorted(entry.name for entry in self._directory.iterdir())

    @property
    def pending_deletion(self) -> List[str]:
        with self._lock:
            return list(self._delete_queue)

    def next_filename(self, extension: str | None) -> str:
        mapped = normalize_extension(extension)
        with self._lock:
            self._counter += 1
            return f"{self._counter}{mapped}"

    def _reserve(self, extension: str | None) -> Tuple[str, Path]:
        # Creating the file while holding the lock keeps cleanup from removing
        # the directory between allocation and the first write.
        with self._lock:
            filename = self.next_filename(extension)
            destination = self.directory() / filename
            destination.touch()
            return filename, destination

    def fetch(self, source: str) -> str:
        """Place a remote or local image in the scratch directory and return its name."""
        source = str(source)
        if is_url(source):
            return self._download(source)
        return self._copy(source)

    def _download(self, url: str) -> str:
        response = requests.get(url, stream=True, timeout=self.timeout_s)
        try:
            if not 200 <= response.status_code < 300:
                raise HTTPResponseError(
                    f"'{url}' caused HTTP error {response.status_code}: {response.reason}"
                )
            content_type = response.headers.get("content-type", "")
            try:
                extension = normalize_extension(content_type)
            except FiletypeError as exc:
                raise FiletypeError(f"'{url}' is an unsupported content-type: '{content_type}'") from exc

            filename, destination = self._reserve(extension)
            try:
                written = 0
                with destination.open("wb") as handle:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if chunk:
                            handle.write(chunk)
                            written += len(chunk)
                if written == 0:
                    raise EmptyFileError(f"'{url}' produced an empty file")
            except Exception:
                self.enqueue_delete([filename])
                raise
        finally:
            response.close()
        return filename

    def _copy(self, source: str) -> str:
        source_path = Path(source)
        filename, destination = self._reserve(source_path.suffix)
        try:
            shutil.copyfile(source_path, destination)
        except OSError:
            self.enqueue_delete([filename])
            raise
        return filename

    def edit(self, filenames: Iterable[str], edit_fn: Callable[[Path], object] | None = None) -> None:
        if edit_fn is None:
            return
        present = set(self.files())
        for filename in filenames:
            if filename in present:
                edit_fn(self.path(filename))

    def enqueue_delete(self, filenames: Iterable[str] = ()) -> List[str]:
        """Queue files for deletion, delete what we can, and retry the rest in a minute.

        Returns the names still waiting for deletion.
        """
        with self._lock:
            for filename in filenames:
                if filename not in self._delete_queue:
                    self._delete_queue.append(filename)
            present = set(self.files())
            queued = [filename for filename in self._delete_queue if filename in present]

            remaining: List[str] = []
            for filename in queued:
                try:
                    (self._directory / filename).unlink()
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    logger.debug("Could not delete scratch file %s: %s", filename, exc)
                    remaining.append(filename)
            self._delete_queue = remaining

            if remaining:
                self.cleanup.schedule(self.enqueue_delete)

            if self._directory is not None and self._directory.is_dir() and not self.files():
                try:
                    self._directory.rmdir()
                except OSError as exc:
                    logger.debug("Could not remove scratch directory %s: %s", self._directory, exc)
            return list(remaining)

    def status(self) -> dict[str, object]:
        with self._lock:
            return {
                "directory": str(self._directory) if self._directory is not None else None,
                "files": self.files(),
                "pending_deletion": list(self._delete_queue),
            }


_DEFAULT_STORE: MediaStore | None = None
_DEFAULT_STORE_LOCK = threading.Lock()


def get_default_media_store() -> MediaStore:
    global _DEFAULT_STORE
    with _DEFAULT_STORE_LOCK:
        if _DEFAULT_STORE is None:
            _DEFAULT_STORE = MediaStore(os.getenv("STREAMBOT_SCRATCH_DIR", DEFAULT_DIRECTORY))
        return _DEFAULT_STORE
