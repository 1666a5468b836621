from __future__ import annotations


class TriviaError(Exception):
    """Base class for errors the API layer knows how to render."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TriviaError):
    status_code = 400


class NotFoundError(TriviaError):
    status_code = 404


class ExternalServiceError(TriviaError):
    """Explanation enrichment failed. Absorbed by the explanation chain."""

    status_code = 502


class InternalError(TriviaError):
    status_code = 500
