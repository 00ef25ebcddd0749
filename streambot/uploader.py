from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Sequence

from .errors import NoUploadedFilesError
from .media import MediaStore, get_default_media_store
from .platform import PlatformClient

logger = logging.getLogger("streambot.uploader")

ATTACHMENT_LIMIT = 4


@dataclass(frozen=True)
class ItemResult:
    source: str
    media_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def uploaded(self) -> bool:
        return self.media_id is not None


@dataclass(frozen=True)
class UploadBatch:
    results: Sequence[ItemResult] = field(default_factory=tuple)
    limit: int = ATTACHMENT_LIMIT

    @property
    def uploaded(self) -> List[ItemResult]:
        return [result for result in self.results if result.uploaded][: self.limit]

    @property
    def skipped(self) -> List[ItemResult]:
        return [result for result in self.results if not result.uploaded]

    @property
    def sources(self) -> List[str]:
        return [result.source for result in self.uploaded]

    @property
    def media_ids(self) -> List[str]:
        return [str(result.media_id) for result in self.uploaded]

    def as_options(self) -> dict[str, str]:
        return {"media_ids": ",".join(self.media_ids)}


class MediaUploader:
    """Fetches, edits and uploads images, skipping any item that fails."""

    def __init__(self, store: MediaStore | None = None, limit: int = ATTACHMENT_LIMIT) -> None:
        self._store = store
        self.limit = limit

    @property
    def store(self) -> MediaStore:
        if self._store is None:
            self._store = get_default_media_store()
        return self._store

    def process(
        self,
        client: PlatformClient,
        items: object,
        upload_options: Mapping[str, Any] | None = None,
        edit_fn: Callable[..., object] | None = None,
        *,
        label: str = "",
    ) -> dict[str, str]:
        """Upload up to ``limit`` items and return the ``media_ids`` post option."""
        batch = self.upload_batch(client, items, upload_options, edit_fn)
        if not batch.uploaded:
            raise NoUploadedFilesError("None of the images provided could be uploaded.")
        prefix = f"@{label}: " if label else ""
        logger.info("%sUploaded media: %s", prefix, " ".join(batch.sources))
        return batch.as_options()

    def upload_batch(
        self,
        client: PlatformClient,
        items: object,
        upload_options: Mapping[str, Any] | None = None,
        edit_fn: Callable[..., object] | None = None,
    ) -> UploadBatch:
        sources = items if isinstance(items, (list, tuple)) else [items]
        results: List[ItemResult] = []
        uploaded = 0
        for item in sources:
            if uploaded >= self.limit:
                break
            result = self._upload_one(client, str(item), upload_options, edit_fn)
            results.append(result)
            if result.uploaded:
                uploaded += 1
        return UploadBatch(results=tuple(results), limit=self.limit)

    def _upload_one(
        self,
        client: PlatformClient,
        source: str,
        upload_options: Mapping[str, Any] | None,
        edit_fn: Callable[..., object] | None,
    ) -> ItemResult:
        filename: str | None = None
        try:
            filename = self.store.fetch(source)
            self.store.edit([filename], edit_fn)
            data = self.store.path(filename).read_bytes()
            media_id = client.upload_media(data, dict(upload_options or {}))
        except Exception as exc:
            logger.debug("Skipping media %s: %s", source, exc)
            if filename is not None:
                self.store.enqueue_delete([filename])
            return ItemResult(source=source, error=f"{type(exc).__name__}: {exc}")
        self.store.enqueue_delete([filename])
        return ItemResult(source=source, media_id=str(media_id))
