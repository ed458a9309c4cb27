from __future__ import annotations


class PortfolioError(Exception):
    """Base of the domain error taxonomy.

    ``code`` is a stable snake_case token that the API returns as ``detail``.
    """

    status_code = 400

    def __init__(self, code: str, message: str | None = None) -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code


class ValidationError(PortfolioError):
    status_code = 400


class ForbiddenError(PortfolioError):
    status_code = 403


class NotFoundError(PortfolioError):
    status_code = 404


class ConflictError(PortfolioError):
    status_code = 409


class ExpiredError(PortfolioError):
    status_code = 410


class UpstreamError(PortfolioError):
    status_code = 502
