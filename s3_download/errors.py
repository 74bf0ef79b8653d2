from __future__ import annotations
import logging
import functools
from typing import Type, Callable, Any

class S3UtilsError(Exception): pass
class BucketNotFoundError(S3UtilsError): pass
class ListingError(S3UtilsError): pass
class StreamError(S3UtilsError): pass
class IdentityResolutionError(S3UtilsError): pass
class UnsafeKeyError(S3UtilsError): pass


class DestinationExistsError(S3UtilsError, FileExistsError):
    """Local destination already exists and overwriting is not allowed."""

    def __init__(self, path: str, key: str):
        self.path = path
        self.key = key
        super().__init__(
            f"File {path} already exists for key {key} and overwrite is disabled"
        )


def setup_logging(level: int = logging.INFO, logfile: str | None = None) -> None:
    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):  # avoid duplicate handlers
        root.removeHandler(h)
    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    stream = logging.StreamHandler()
    stream.setFormatter(fmt)
    root.addHandler(stream)
    if logfile:
        fh = logging.FileHandler(logfile)
        fh.setFormatter(fmt)
        root.addHandler(fh)
    # botocore is chatty at DEBUG
    logging.getLogger("botocore").setLevel(max(level, logging.INFO))
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))


def log_and_reraise(exception_cls: Type[Exception] = S3UtilsError):
    def deco(func: Callable[..., Any]):
        @functools.wraps(func)
        def wrapper(*a, **kw):
            try:
                return func(*a, **kw)
            except exception_cls:
                raise
            except Exception as e:
                logging.getLogger(func.__module__).error("%s failed: %s", func.__name__, e)
                raise exception_cls(f"{func.__name__} failed: {e}") from e
        return wrapper
    return deco
