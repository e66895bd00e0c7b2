"""Explicit outcome type for credential operations."""
from dataclasses import dataclass
from typing import Any, ClassVar, Generic, TypeVar, Union

from ..exceptions import MasterPasswordError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T = None
    ok: ClassVar[bool] = True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    error: MasterPasswordError
    ok: ClassVar[bool] = False

    @property
    def code(self) -> str:
        return self.error.code

    def unwrap(self) -> Any:
        raise self.error


Result = Union[Ok[T], Err]
