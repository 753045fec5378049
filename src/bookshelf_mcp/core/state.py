"""Per-user reading preference state owned by a session actor."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

DEFAULT_USER_NAME = "Book Lover"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_genre(genre: str) -> str:
    """Genres compare case- and whitespace-insensitively."""
    return genre.strip().lower()


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class RatedBook:
    """A rated book; immutable once appended to the history."""

    title: str
    author: str
    rating: int
    added_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "author": self.author,
            "rating": self.rating,
            "dateAdded": self.added_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RatedBook":
        return cls(
            title=str(data["title"]),
            author=str(data["author"]),
            rating=int(data["rating"]),
            added_at=_parse_timestamp(data["dateAdded"]),
        )


@dataclass
class BookPreferences:
    """Durable state of one session actor"""

    user_name: str
    session_started: datetime
    favorite_genres: list[str] = field(default_factory=list)
    books_read: tuple[RatedBook, ...] = ()
    interaction_count: int = 0

    # Wire names of the persisted record
    FIELD_NAMES = ("userName", "favoriteGenres", "booksRead", "sessionStarted", "interactionCount")

    def copy(self) -> "BookPreferences":
        """Working copy for a single tool invocation."""
        return replace(self, favorite_genres=list(self.favorite_genres))

    def add_genre(self, genre: str) -> bool:
        """Add a genre; returns False if it was already present."""
        normalized = normalize_genre(genre)
        if normalized in self.favorite_genres:
            return False
        self.favorite_genres.append(normalized)
        return True

    def add_book(self, book: RatedBook) -> None:
        self.books_read = self.books_read + (book,)

    def recent_books(self, limit: int = 3) -> tuple[RatedBook, ...]:
        return self.books_read[-limit:] if limit > 0 else ()

    def average_rating(self) -> float | None:
        if not self.books_read:
            return None
        return sum(book.rating for book in self.books_read) / len(self.books_read)

    def record_interaction(self) -> int:
        self.interaction_count += 1
        return self.interaction_count

    def session_minutes(self, now: datetime) -> int:
        return round((now - self.session_started).total_seconds() / 60)

    def to_dict(self) -> dict[str, Any]:
        """Convert state to dictionary for JSON serialization"""
        return {
            "userName": self.user_name,
            "favoriteGenres": list(self.favorite_genres),
            "booksRead": [book.to_dict() for book in self.books_read],
            "sessionStarted": self.session_started.isoformat(),
            "interactionCount": self.interaction_count,
        }

    @classmethod
    def from_partial(
        cls, data: dict[str, Any] | None, user_name: str, now: datetime
    ) -> tuple["BookPreferences", list[str]]:
        """Build state from a possibly partial record.

        Absent fields take their defaults; present fields are kept as stored.

        Returns:
            The state and the wire names of the fields that were defaulted
        """
        data = data or {}
        defaulted = [name for name in cls.FIELD_NAMES if data.get(name) is None]

        genres: list[str] = []
        for genre in data.get("favoriteGenres") or []:
            normalized = normalize_genre(str(genre))
            if normalized and normalized not in genres:
                genres.append(normalized)

        state = cls(
            user_name=data.get("userName") if data.get("userName") is not None else user_name,
            session_started=(
                _parse_timestamp(data["sessionStarted"])
                if data.get("sessionStarted") is not None
                else now
            ),
            favorite_genres=genres,
            books_read=tuple(RatedBook.from_dict(b) for b in data.get("booksRead") or []),
            interaction_count=max(int(data.get("interactionCount") or 0), 0),
        )
        return state, defaulted
