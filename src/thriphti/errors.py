from __future__ import annotations


class PipelineError(Exception):
    pass


class NetworkError(PipelineError):
    pass


class FetchError(NetworkError):
    def __init__(self, status_code: int, message: str | None = None) -> None:
        self.status_code = status_code
        super().__init__(message or f"HTTP {status_code}")


class FetchTimeoutError(NetworkError):
    pass


class ParseError(PipelineError):
    pass


class ValidationError(PipelineError):
    pass


class UpstreamServiceError(PipelineError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class PersistenceError(PipelineError):
    pass


class NotFoundError(PipelineError):
    pass
