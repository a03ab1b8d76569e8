# lib/errors/app_error.py
import logging

logger = logging.getLogger(__name__)


class AppError(Exception):
    level = logging.ERROR

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def describe(self) -> str:
        """Message followed by the context pairs, as written to the log."""
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{self.message} [{details}]"

    def log(self) -> None:
        logger.log(
            self.level,
            f"{self.__class__.__name__}: {self.describe()}",
            extra={"context": self.context},
        )


class ConfigError(AppError):
    pass


class NetworkError(AppError):
    level = logging.WARNING


class ServiceUnreachable(NetworkError):
    pass


class LedgerError(NetworkError):
    pass


class SubmissionError(LedgerError):
    level = logging.ERROR


class ValidationError(AppError):
    pass


class MalformedResponse(ValidationError):
    pass


class ServiceError(AppError):
    def __init__(self, message: str, status: int, context: dict | None = None):
        super().__init__(message, context={"status": status, **(context or {})})
        self.status = status


class ClockError(AppError):
    pass


class DataInconsistencyError(AppError):
    level = logging.CRITICAL
