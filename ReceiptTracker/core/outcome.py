"""Explicit results for calls to the remote services.

The pipeline branches on an :class:`Outcome` instead of suppressing exceptions at the
call site. :func:`attempt` turns a raising call into an Outcome; :meth:`Outcome.unwrap`
turns it back when the caller wants the error surfaced.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..status import status


class OutcomeState(enum.StrEnum):
    """Enum for remote call outcomes."""
    Ok = enum.auto()
    Skipped = enum.auto()
    Degraded = enum.auto()


@dataclass(frozen=True)
class Outcome:
    """The result of one remote call."""
    state: OutcomeState
    value: Any = None
    reason: str = ''
    error: Optional[BaseException] = None

    @classmethod
    def ok(cls, value: Any = None) -> 'Outcome':
        return cls(OutcomeState.Ok, value=value)

    @classmethod
    def skipped(cls, reason: str) -> 'Outcome':
        """The call was not made because the collaborator is not configured."""
        return cls(OutcomeState.Skipped, reason=reason)

    @classmethod
    def degraded(cls, reason: str, error: Optional[BaseException] = None) -> 'Outcome':
        """The call was made and failed."""
        return cls(OutcomeState.Degraded, reason=reason, error=error)

    @property
    def is_ok(self) -> bool:
        return self.state == OutcomeState.Ok

    def unwrap(self) -> Any:
        """Return the value of an Ok outcome, or raise the error behind any other.

        Raises:
            status.BaseStatusException: The original error of a Degraded outcome.
            status.RemoteError: For a Skipped outcome, or a Degraded one without a status error.
        """
        if self.is_ok:
            return self.value
        if isinstance(self.error, status.BaseStatusException):
            raise self.error
        raise status.RemoteError(self.reason) from self.error


def attempt(func: Callable[..., Any], *args: Any, description: str = 'Remote call', **kwargs: Any) -> Outcome:
    """Run a remote call and capture its result as an Outcome.

    Args:
        func: The callable to run.
        *args, **kwargs: Arguments passed to func.
        description (str): Used in log messages.

    Returns:
        Outcome: Ok with the return value, or Degraded with the error.
    """
    try:
        return Outcome.ok(func(*args, **kwargs))
    except (status.AuthError, status.RemoteError) as ex:
        logging.warning(f'{description} failed: {ex}')
        return Outcome.degraded(str(ex), ex)
    except Exception as ex:
        logging.exception(f'{description} failed due to an unexpected error.')
        return Outcome.degraded(f'{description} failed: {ex}', ex)
