"""Error types, cancellation tokens and YAML loading.

Contract:
- SWError is the root of every error this package raises on purpose.
- CancelToken.raise_if_cancelled() is called before each completion call.
- load_yaml(path) -> dict | list | scalar  (framework files for the CLI)
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Optional

import yaml
from yaml.loader import SafeLoader as _PySafeLoader

from .logging import breadcrumb as _breadcrumb


class SWError(Exception):
    pass


class MissingFileError(SWError):
    pass


class InvalidYAMLError(SWError):
    pass


class NotFoundError(SWError):
    """A named blob does not exist in the store."""


class ProjectNotFoundError(NotFoundError):
    pass


class DraftNotFoundError(NotFoundError):
    pass


class CompletionNotReadyError(SWError):
    """The completion service is missing or not configured."""


class CompletionTransportError(SWError):
    """Network or timeout failure while talking to the completion service."""


class OperationCancelled(SWError):
    """Raised when the caller's cancellation token fired or its deadline passed."""


@dataclass
class CancelToken:
    """Externally supplied cancellation signal with an optional deadline.

    `deadline` is an absolute time.monotonic() value.
    """

    event: threading.Event = field(default_factory=threading.Event)
    deadline: Optional[float] = None

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancelToken":
        return cls(deadline=time.monotonic() + float(seconds))

    def cancel(self) -> None:
        self.event.set()

    def cancelled(self) -> bool:
        if self.event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def raise_if_cancelled(self, where: str = "") -> None:
        if self.cancelled():
            _breadcrumb(f"cancel:fired where={where or 'n/a'}")
            reason = "deadline exceeded" if not self.event.is_set() else "cancelled"
            raise OperationCancelled(f"Operation {reason}" + (f" before {where}" if where else ""))


def check_cancelled(token: Optional[CancelToken], where: str = "") -> None:
    if token is not None:
        token.raise_if_cancelled(where)


def load_yaml(path: str):
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except FileNotFoundError:
        _breadcrumb(f"yaml:error:not_found:{path}")
        raise MissingFileError(f"Required file not found: {path}")
    except OSError as e:
        _breadcrumb(f"yaml:error:read_failure:{path}")
        raise SWError(f"Unable to read file {path}: {e}")
    try:
        data = yaml.load(content, Loader=_PySafeLoader)
    except yaml.YAMLError as e:
        _breadcrumb(f"yaml:error:invalid_yaml:{path}")
        raise InvalidYAMLError(f"Invalid YAML in {path}: {e}")
    _breadcrumb(f"yaml:parsed_ok:{path}")
    return data
