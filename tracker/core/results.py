"""
Error taxonomy and the tagged result type returned by every core operation.

Inside the engine, refusals are raised as `WorkflowError` subclasses so that
authorization checks read top to bottom. At the public boundary the
`returns_result` decorator turns them into a `Result`, which the HTTP layer
inspects by `kind` instead of catching exceptions.

Usage:
    @returns_result
    async def leave(self, principal, project_id): ...

    result = await membership.leave(principal, 7)
    if result.failed and result.error == ErrorKind.INVALID_OPERATION:
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Generic, TypeVar

from tracker.storage.base import DuplicateKeyError, StorageError

if TYPE_CHECKING:
    from tracker.services.activity import Delivery

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Stable machine-readable error kinds."""

    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_OPERATION = "invalid_operation"
    NOT_A_MEMBER = "not_a_member"
    DEPENDENCY_FAILURE = "dependency_failure"


# =============================================================================
# Exceptions (internal control flow)
# =============================================================================


class WorkflowError(Exception):
    """Base exception for refused or failed core operations."""

    kind: ErrorKind = ErrorKind.INVALID_OPERATION
    default_message = "Operation not permitted"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(WorkflowError):
    """No credential, or an invalid/expired/revoked one."""

    kind = ErrorKind.UNAUTHENTICATED
    default_message = "Authentication required"


class Forbidden(WorkflowError):
    """Authenticated, but lacking the role, ownership or membership needed."""

    kind = ErrorKind.FORBIDDEN
    default_message = "You are not authorised to perform this action"


class NotFound(WorkflowError):
    """A referenced entity does not exist."""

    kind = ErrorKind.NOT_FOUND
    default_message = "Not found"


class Conflict(WorkflowError):
    """Uniqueness or duplicate-state violation."""

    kind = ErrorKind.CONFLICT
    default_message = "Conflicts with existing state"


class InvalidOperation(WorkflowError):
    """Semantically illegal given the current state."""

    kind = ErrorKind.INVALID_OPERATION
    default_message = "Invalid operation"


class NotAMember(WorkflowError):
    """The target user is not a member of the project."""

    kind = ErrorKind.NOT_A_MEMBER
    default_message = "User is not a member of the project"


class DependencyFailure(WorkflowError):
    """A collaborator (storage, mail, object store) failed."""

    kind = ErrorKind.DEPENDENCY_FAILURE
    default_message = "A backing service failed, no changes were applied"


ERRORS_BY_KIND: dict[ErrorKind, type[WorkflowError]] = {
    cls.kind: cls
    for cls in (
        Unauthenticated,
        Forbidden,
        NotFound,
        Conflict,
        InvalidOperation,
        NotAMember,
        DependencyFailure,
    )
}


# =============================================================================
# Result
# =============================================================================


class ResultStatus(str, Enum):
    OK = "ok"
    PARTIAL = "partial"  # State changed, notification failed
    FAILED = "failed"


@dataclass
class Result(Generic[T]):
    """
    Outcome of a core operation.

    Exactly one of three shapes:
    - ok: `value` set, `error` None, `notification_error` None
    - partial: `value` set, `notification_error` set (the change is durable)
    - failed: `error` set, nothing was changed
    """

    value: T | None = None
    error: ErrorKind | None = None
    message: str = ""
    notification_error: str | None = None

    @property
    def status(self) -> ResultStatus:
        if self.error is not None:
            return ResultStatus.FAILED
        if self.notification_error is not None:
            return ResultStatus.PARTIAL
        return ResultStatus.OK

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.OK

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def partial(self) -> bool:
        return self.status == ResultStatus.PARTIAL

    def unwrap(self) -> T:
        """
        Return the value of a successful (or partial) result.

        Raises the matching WorkflowError for a failed one.
        """
        if self.error is not None:
            raise ERRORS_BY_KIND[self.error](self.message)
        return self.value  # type: ignore[return-value]

    @classmethod
    def success(cls, value: T | None = None, delivery: Delivery | None = None) -> Result[T]:
        notification_error = delivery.error if delivery is not None else None
        return cls(value=value, notification_error=notification_error)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> Result[T]:
        return cls(error=kind, message=message)


def returns_result(
    func: Callable[..., Awaitable[Any]],
) -> Callable[..., Awaitable[Result[Any]]]:
    """
    Convert a raising coroutine into one that returns a `Result`.

    WorkflowErrors become failed results carrying their kind. Storage
    failures are logged with traceback and reported as DEPENDENCY_FAILURE
    without leaking collaborator details.
    """

    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Result[Any]:
        try:
            outcome = await func(*args, **kwargs)
        except WorkflowError as e:
            logger.info(f"{func.__qualname__} refused ({e.kind.value}): {e.message}")
            return Result.failure(e.kind, e.message)
        except DuplicateKeyError as e:
            logger.info(f"{func.__qualname__} hit unique constraint: {e}")
            return Result.failure(ErrorKind.CONFLICT, Conflict.default_message)
        except StorageError:
            logger.exception(f"Storage failure in {func.__qualname__}")
            return Result.failure(ErrorKind.DEPENDENCY_FAILURE, DependencyFailure.default_message)

        if isinstance(outcome, Result):
            return outcome
        return Result.success(outcome)

    return wrapper
