from fastapi import HTTPException, Request
from ..session import FeedSession


def get_session(request: Request) -> FeedSession:
    """Return the feed session the application started."""
    session = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(503, detail="Feed session not started")
    return session
