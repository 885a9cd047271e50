"""
API Dependencies: per-request DB session and shared collaborator clients.
"""

from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from securewatch.database import async_session
from securewatch.services.collaborators import Collaborators


# ── Database session ─────────────────────────────────────────────────────────

def get_session_factory(request: Request) -> async_sessionmaker:
    return getattr(request.app.state, "session_factory", async_session)


async def get_db(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session per request, commit on success, rollback on error."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Collaborators ────────────────────────────────────────────────────────────

def get_collaborators(request: Request) -> Collaborators:
    """Clients built at startup and kept on app.state."""
    return request.app.state.collaborators


def get_text_classifier(request: Request):
    return getattr(request.app.state, "text_classifier", None)
