"""
Response formatting utilities for LLM-optimized output
"""

from collections.abc import Sequence
from datetime import datetime

from .core.state import BookPreferences, RatedBook

RECOMMENDATION_APOLOGY = (
    "Sorry, I had trouble generating recommendations right now. "
    "Please try again in a moment."
)


def stars(rating: int) -> str:
    return "⭐" * rating


def reaction_for(rating: int) -> str:
    """Reaction tier for a new rating"""
    if rating >= 4:
        return "Great choice!"
    if rating >= 3:
        return "Nice read!"
    return "Thanks for the honest rating!"


def format_profile(state: BookPreferences, login: str | None, now: datetime) -> str:
    """Format getProfile response"""
    genres = ", ".join(state.favorite_genres) or "None yet - add some with addGenre!"
    recent = "\n".join(
        f'• "{book.title}" by {book.author} - {stars(book.rating)} ({book.rating}/5)'
        for book in state.recent_books(3)
    )

    return f"""📚 **{state.user_name}'s Reading Profile**

**Favorite Genres:** {genres}

**Books You've Rated:** {len(state.books_read)}
{recent}

**Session Info:**
• Active for: {state.session_minutes(now)} minutes
• Interactions: {state.interaction_count}
• GitHub User: {login or 'Anonymous'}

💡 *Use addGenre and rateBook tools to improve recommendations!*"""


def format_genre_duplicate(genre: str, genres: Sequence[str]) -> str:
    """Format addGenre response when the genre is already a favorite"""
    return f""""{genre}" is already in your favorites! 📚

Current genres: {", ".join(genres)}"""


def format_genre_added(genre: str, genres: Sequence[str]) -> str:
    """Format addGenre response"""
    if len(genres) == 1:
        encouragement = "Great start! Add more genres to improve recommendations."
    else:
        encouragement = f"Perfect! With {len(genres)} genres, I'm learning your taste."

    return f"""✅ Added "{genre}" to your favorites!

**Your favorite genres:** {", ".join(genres)}

{encouragement}"""


def format_book_rated(book: RatedBook, history: Sequence[RatedBook]) -> str:
    """Format rateBook response"""
    recent = "\n".join(f'• "{b.title}" - {stars(b.rating)}' for b in history[-3:])

    return f"""📖 Rated "{book.title}" by {book.author}

{stars(book.rating)} **{book.rating}/5** - {reaction_for(book.rating)}

**Your reading history:** {len(history)} books rated
{recent}

💡 *The more books you rate, the better recommendations I can give!*"""


def format_recommendations(
    user_name: str, recommendations: str, genre_count: int, book_count: int
) -> str:
    """Format getRecommendations response with the signals that were used"""
    context_used = []
    if genre_count > 0:
        context_used.append(f"{genre_count} favorite genres")
    if book_count > 0:
        context_used.append(f"{book_count} rated books")

    if context_used:
        context_text = f"🎯 *Personalized based on: {', '.join(context_used)}*"
    else:
        context_text = "💡 *Add genres and rate books for more personalized recommendations!*"

    return f"""📚 **Personalized Recommendations for {user_name}:**

{recommendations}

{context_text}"""


def format_invalid_input(tool_name: str, message: str) -> str:
    """Format a rejected tool call"""
    return f"❌ **Invalid input for {tool_name}**: {message}"
