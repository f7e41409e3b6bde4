from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator

from urlreport.models.submission import Submission


class DuplicateSubmissionError(Exception):
    """Raised when a record with the same URL is already stored."""

    def __init__(self, url: str) -> None:
        super().__init__(f"submission already exists: {url}")
        self.url = url


class AbstractSubmissionRepository(ABC):
    @abstractmethod
    def insert(self, submission: Submission) -> None:
        """Insert one record. Raises DuplicateSubmissionError if the URL is taken."""

    @abstractmethod
    def insert_many(self, submissions: Iterable[Submission]) -> tuple[list[str], list[str]]:
        """Insert records row by row. Returns (inserted_urls, duplicate_urls)."""

    @abstractmethod
    def find_existing_urls(self, urls: Iterable[str]) -> set[str]:
        """Return the subset of urls that already have a record."""

    @abstractmethod
    def get_by_url(self, url: str) -> Submission | None:
        """Return the record stored for url, if any."""

    @abstractmethod
    def update_identifier(self, url: str, identifier: str, expected: str) -> bool:
        """Replace the identifier of url only while it still equals expected."""

    @abstractmethod
    def update_classification(self, url: str, state: str, tags: list[str]) -> bool:
        """Set state and tags of a non-terminal record. Returns True if a row changed."""

    @abstractmethod
    def update_classification_by_identifier(self, identifier: str, state: str, tags: list[str]) -> int:
        """Set state and tags of every non-terminal record sharing identifier."""

    @abstractmethod
    def list_pending(self, limit: int, offset: int = 0) -> list[Submission]:
        """Page through submitted records whose state is not terminal."""

    @abstractmethod
    def list_submissions(self, state: str | None = None, limit: int = 100, offset: int = 0) -> list[Submission]:
        """Page through records, newest first, optionally filtered by state."""

    @abstractmethod
    def iter_urls_with_tag(self, tag: str, page_size: int = 1000) -> Iterator[str]:
        """Yield every stored URL carrying tag."""

    @abstractmethod
    def delete_by_urls(self, urls: Iterable[str]) -> int:
        """Delete records by URL. Returns the number of rows removed."""

    @abstractmethod
    def delete_by_states(self, states: Iterable[str]) -> int:
        """Delete records in any of the given states."""
