"""
Reading preference tools: getProfile, addGenre, rateBook, getRecommendations

Every successful call bumps interactionCount by exactly one.
"""

import logging
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from ..core.state import BookPreferences, RatedBook, normalize_genre
from ..errors import RecommendationError, ToolValidationError
from ..formatting import (
    RECOMMENDATION_APOLOGY,
    format_book_rated,
    format_genre_added,
    format_genre_duplicate,
    format_profile,
    format_recommendations,
)
from .dispatcher import Tool, ToolContext

logger = logging.getLogger(__name__)

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class _Arguments(BaseModel):
    model_config = ConfigDict(extra="ignore")


class GetProfileArgs(_Arguments):
    pass


class AddGenreArgs(_Arguments):
    genre: NonEmptyStr = Field(
        description="A book genre you like (e.g., 'science fiction', 'mystery', 'romance')"
    )


class RateBookArgs(_Arguments):
    title: NonEmptyStr = Field(description="The book title")
    author: NonEmptyStr = Field(description="The book author")
    rating: int = Field(
        strict=True, ge=1, le=5, description="Your rating from 1 (didn't like) to 5 (loved it)"
    )


class GetRecommendationsArgs(_Arguments):
    count: int = Field(
        default=3, strict=True, ge=1, le=5, description="Number of books to recommend (1-5)"
    )


def build_recommendation_prompt(state: BookPreferences, count: int) -> str:
    """Assemble the recommender prompt from the user's preferences."""
    prompt = f"Recommend {count} books for {state.user_name}. "

    if state.favorite_genres:
        prompt += f"They enjoy these genres: {', '.join(state.favorite_genres)}. "

    if state.books_read:
        recent = [
            f'"{b.title}" by {b.author} (rated {b.rating}/5)' for b in state.recent_books(3)
        ]
        prompt += f"Recent reads: {', '.join(recent)}. "
        prompt += f"Average rating: {state.average_rating():.1f}/5. "

    prompt += (
        "Provide specific book recommendations with title, author, and brief explanation "
        "of why they'd enjoy it based on their preferences."
    )
    return prompt


async def get_profile(args: GetProfileArgs, state: BookPreferences, ctx: ToolContext) -> str:
    state.record_interaction()
    return format_profile(state, ctx.login, ctx.now)


async def add_genre(args: AddGenreArgs, state: BookPreferences, ctx: ToolContext) -> str:
    if not normalize_genre(args.genre):
        raise ToolValidationError("genre must not be empty")

    added = state.add_genre(args.genre)
    state.record_interaction()

    if not added:
        return format_genre_duplicate(args.genre, state.favorite_genres)
    return format_genre_added(args.genre, state.favorite_genres)


async def rate_book(args: RateBookArgs, state: BookPreferences, ctx: ToolContext) -> str:
    if not 1 <= args.rating <= 5:
        raise ToolValidationError("rating must be between 1 and 5")

    book = RatedBook(title=args.title, author=args.author, rating=args.rating, added_at=ctx.now)
    state.add_book(book)
    state.record_interaction()
    return format_book_rated(book, state.books_read)


async def get_recommendations(
    args: GetRecommendationsArgs, state: BookPreferences, ctx: ToolContext
) -> str:
    state.record_interaction()
    prompt = build_recommendation_prompt(state, args.count)

    if ctx.recommender is None:
        logger.error("No recommendation service bound")
        return RECOMMENDATION_APOLOGY

    try:
        text = await ctx.recommender.complete(prompt, ctx.max_tokens)
    except RecommendationError as e:
        logger.error(f"AI recommendation error: {e}")
        return RECOMMENDATION_APOLOGY
    except Exception:
        logger.exception("AI recommendation error")
        return RECOMMENDATION_APOLOGY

    return format_recommendations(
        state.user_name, text, len(state.favorite_genres), len(state.books_read)
    )


BOOK_TOOLS = (
    Tool(
        name="getProfile",
        description="View your current reading preferences and statistics",
        arguments=GetProfileArgs,
        handler=get_profile,
    ),
    Tool(
        name="addGenre",
        description="Add a book genre you enjoy reading",
        arguments=AddGenreArgs,
        handler=add_genre,
    ),
    Tool(
        name="rateBook",
        description="Rate a book you've read to improve future recommendations",
        arguments=RateBookArgs,
        handler=rate_book,
    ),
    Tool(
        name="getRecommendations",
        description="Get personalized book recommendations based on your preferences",
        arguments=GetRecommendationsArgs,
        handler=get_recommendations,
    ),
)
