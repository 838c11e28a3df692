# circulation/api/deps.py
from fastapi import Request

from circulation.services.library import Library


def get_library(request: Request) -> Library:
    """The process-wide Library built during application startup."""
    return request.app.state.library
