from __future__ import annotations


class ScrapeError(RuntimeError):
    """Base class for failures raised by the scrape orchestration pipeline."""


class ApifyApiError(ScrapeError):
    def __init__(self, *, message: str, status_code: int = 502) -> None:
        super().__init__(message)
        self.status_code = status_code


class ScrapeSubmissionError(ScrapeError):
    """The provider refused (or never received) a scrape request; no run was recorded."""


class ScrapeProcessingError(ScrapeError):
    """A result set could not be turned into any storable creative."""


class PersistenceError(ScrapeError):
    pass


class MediaDownloadError(ScrapeError):
    pass
