"""Common Pydantic schemas used across the API."""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Body of a 500 response when no fallback snapshot exists."""

    error: str
