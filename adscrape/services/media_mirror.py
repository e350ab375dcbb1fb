from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlparse

import httpx

from adscrape.config import settings
from adscrape.errors import MediaDownloadError
from adscrape.services.media_storage import MediaStorage, content_type_for

logger = logging.getLogger(__name__)

# Facebook CDN occasionally rejects atypical UAs; look like a browser fetching a cross-site video.
BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/123.0.0.0 Safari/537.36"
    ),
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    # Only encodings httpx can decode without optional extras.
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Sec-Fetch-Dest": "video",
    "Sec-Fetch-Mode": "no-cors",
    "Sec-Fetch-Site": "cross-site",
}


@dataclass
class DownloadResult:
    content: bytes
    content_type: Optional[str]
    size_bytes: int
    url: str


@dataclass
class MirroredMedia:
    original_url: str
    mirrored_url: str
    key: str
    size_bytes: int
    content_type: str


@dataclass
class MirrorFailure:
    url: str
    error: str


@dataclass
class MirrorResult:
    successful: List[MirroredMedia] = field(default_factory=list)
    failed: List[MirrorFailure] = field(default_factory=list)
    url_mapping: Dict[str, str] = field(default_factory=dict)


def is_valid_media_url(url: object) -> bool:
    if not isinstance(url, str):
        return False
    candidate = url.strip()
    if not candidate or candidate in ("null", "undefined"):
        return False
    try:
        parsed = urlparse(candidate)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


def unique_media_urls(urls: Iterable[object]) -> List[str]:
    seen: Dict[str, None] = {}
    for url in urls:
        if is_valid_media_url(url):
            seen.setdefault(url, None)
    return list(seen)


class MediaMirrorService:
    """
    Copy externally hosted ad media into our bucket and hand back a source → mirrored URL map.

    Mirroring is best-effort: a URL that cannot be downloaded or uploaded is recorded in
    ``MirrorResult.failed`` and simply left out of the mapping.
    """

    def __init__(
        self,
        storage: Optional[MediaStorage] = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_concurrency: int | None = None,
        batch_pause_seconds: float | None = None,
        download_attempts: int | None = None,
        block_private_networks: bool | None = None,
    ) -> None:
        self.storage = storage or MediaStorage()
        self._transport = transport
        self._sleep = sleep
        self.max_bytes = int(settings.MEDIA_MIRROR_MAX_BYTES or 100 * 1024 * 1024)
        self.timeout_seconds = float(settings.MEDIA_MIRROR_TIMEOUT_SECONDS or 45.0)
        self.max_concurrency = max(1, int(max_concurrency or settings.MEDIA_MIRROR_MAX_CONCURRENCY))
        self.batch_pause_seconds = (
            settings.MEDIA_MIRROR_BATCH_PAUSE_SECONDS if batch_pause_seconds is None else batch_pause_seconds
        )
        self.download_attempts = max(1, int(download_attempts or settings.MEDIA_MIRROR_DOWNLOAD_ATTEMPTS))
        self.backoff_base = float(settings.MEDIA_MIRROR_BACKOFF_BASE_SECONDS)
        self.backoff_max = float(settings.MEDIA_MIRROR_BACKOFF_MAX_SECONDS)
        self.block_private_networks = (
            settings.MEDIA_MIRROR_BLOCK_PRIVATE_NETWORKS if block_private_networks is None else block_private_networks
        )

    async def mirror(self, urls: Iterable[object], *, organisation_id: str, ad_type: str) -> MirrorResult:
        unique_urls = unique_media_urls(urls)
        result = MirrorResult()
        logger.info(
            "media_mirror.started",
            extra={"organisation_id": organisation_id, "ad_type": ad_type, "unique_urls": len(unique_urls)},
        )
        if not unique_urls:
            return result

        timeout = httpx.Timeout(self.timeout_seconds, read=self.timeout_seconds)
        async with httpx.AsyncClient(
            timeout=timeout,
            headers=BROWSER_HEADERS,
            follow_redirects=True,
            max_redirects=5,
            transport=self._transport,
        ) as client:
            for start in range(0, len(unique_urls), self.max_concurrency):
                batch = unique_urls[start : start + self.max_concurrency]
                outcomes = await asyncio.gather(
                    *(self._mirror_one(client, url, organisation_id=organisation_id, ad_type=ad_type) for url in batch)
                )
                for outcome in outcomes:
                    if isinstance(outcome, MirroredMedia):
                        result.successful.append(outcome)
                        result.url_mapping[outcome.original_url] = outcome.mirrored_url
                    else:
                        result.failed.append(outcome)
                if start + self.max_concurrency < len(unique_urls) and self.batch_pause_seconds > 0:
                    await self._sleep(self.batch_pause_seconds)

        logger.info(
            "media_mirror.completed",
            extra={
                "organisation_id": organisation_id,
                "ad_type": ad_type,
                "successful": len(result.successful),
                "failed": len(result.failed),
            },
        )
        return result

    async def _mirror_one(
        self,
        client: httpx.AsyncClient,
        url: str,
        *,
        organisation_id: str,
        ad_type: str,
    ) -> MirroredMedia | MirrorFailure:
        try:
            download = await self._download_with_retries(client, url)
            key = self.storage.build_key(organisation_id=organisation_id, ad_type=ad_type, source_url=url)
            content_type = content_type_for(url, download.content_type)
            await asyncio.to_thread(
                self.storage.upload_bytes,
                key=key,
                data=download.content,
                content_type=content_type,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "media_mirror.failed",
                extra={"source_url": url[:200], "organisation_id": organisation_id, "error": str(exc)[:500]},
            )
            return MirrorFailure(url=url, error=str(exc)[:500] or exc.__class__.__name__)
        return MirroredMedia(
            original_url=url,
            mirrored_url=self.storage.public_url(key),
            key=key,
            size_bytes=download.size_bytes,
            content_type=content_type,
        )

    def backoff_seconds(self, attempt: int) -> float:
        return min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)

    async def _download_with_retries(self, client: httpx.AsyncClient, url: str) -> DownloadResult:
        last_error: Exception | None = None
        for attempt in range(1, self.download_attempts + 1):
            try:
                return await self._download(client, url)
            except (httpx.HTTPError, MediaDownloadError) as exc:
                last_error = exc
                if attempt < self.download_attempts:
                    delay = self.backoff_seconds(attempt)
                    logger.warning(
                        "media_mirror.download_retry",
                        extra={"source_url": url[:200], "attempt": attempt, "delay_seconds": delay, "error": str(exc)},
                    )
                    await self._sleep(delay)
        raise MediaDownloadError(f"Download failed after {self.download_attempts} attempts: {last_error}")

    async def _download(self, client: httpx.AsyncClient, url: str) -> DownloadResult:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise MediaDownloadError("unsupported_scheme")
        if not parsed.hostname:
            raise MediaDownloadError("invalid_url")
        if self.block_private_networks:
            await self._assert_public_hostname(parsed.hostname)

        async with client.stream("GET", url) as resp:
            resp.raise_for_status()
            data = bytearray()
            async for chunk in resp.aiter_bytes():
                if len(data) + len(chunk) > self.max_bytes:
                    raise MediaDownloadError("media_too_large")
                data.extend(chunk)

            content_type = resp.headers.get("content-type")
            if content_type:
                content_type = content_type.split(";")[0].strip()
            return DownloadResult(
                content=bytes(data),
                content_type=content_type or None,
                size_bytes=len(data),
                url=str(resp.url),
            )

    async def _assert_public_hostname(self, hostname: str) -> None:
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(hostname, None)
        except socket.gaierror as exc:  # noqa: PERF203
            raise MediaDownloadError(f"dns_lookup_failed:{hostname}") from exc
        for _, _, _, _, sockaddr in infos:
            ip = ipaddress.ip_address(sockaddr[0])
            if ip.is_private or ip.is_loopback or ip.is_reserved or ip.is_link_local or ip.is_multicast:
                raise MediaDownloadError("blocked_private_network")
