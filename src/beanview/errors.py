"""Exception types raised by beanview and its store adapters."""

from __future__ import annotations


class BeanError(Exception):
    """Base class for bean-related failures."""

    code = "BEAN_ERROR"


class FetchError(BeanError):
    """A store call failed while a view was refreshing."""

    code = "FETCH_ERROR"


class AugmentationError(BeanError):
    """An optional enrichment step failed; the un-augmented records are kept."""

    code = "AUGMENTATION_ERROR"


class BeanParseError(BeanError, ValueError):
    code = "PARSE_ERROR"

    def __init__(self, message: str, payload: object = None) -> None:
        super().__init__(message)
        self.payload = payload


class BeanNotFoundError(BeanError, LookupError):
    code = "NOT_FOUND"

    def __init__(self, bean_id: str) -> None:
        super().__init__(f"unknown bean: {bean_id}")
        self.bean_id = bean_id


class BeanConflictError(BeanError):
    """The store rejected an update (stale etag, cycle, invalid parent)."""

    code = "CONFLICT"

    def __init__(self, message: str, *, current_etag: str | None = None) -> None:
        super().__init__(message)
        self.current_etag = current_etag


class ConfigValidationError(ValueError):
    pass


class DragStateError(RuntimeError):
    """A drag session was driven through an illegal transition."""


def user_message(error: BaseException | object) -> str:
    if isinstance(error, BaseException):
        text = str(error).strip()
        return text or type(error).__name__
    return str(error)
