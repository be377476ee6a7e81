"""
Small functional utilities used across the package: validation results, model updates, id drawing
"""

from abc import abstractmethod
from typing import Any, Callable, Container, Generic, Iterable, NoReturn, Optional, Protocol, TypeVar, cast, runtime_checkable

from pydantic import BaseModel
from typing_extensions import Self

T = TypeVar("T")
U = TypeVar("U")


def maybe_head(values: Iterable[T]) -> Optional[T]:
    for value in values:
        return value
    return None


def assert_never(value: Any) -> NoReturn:
    """Exhaustiveness guard for isinstance chains over config unions"""
    raise TypeError(f"unexpected {type(value).__name__}: {value!r}")


@runtime_checkable
class Semigroup(Protocol):
    """Errors accumulate by `+`, eg lists of messages"""

    @abstractmethod
    def __add__(self, other: Self) -> Self:
        pass


E = TypeVar("E", bound=Semigroup)


class Either(Generic[T, E]):
    """Either a value or accumulated errors -- validation collects all problems before raising once"""

    def __init__(self, t: Optional[T] = None, e: Optional[E] = None) -> None:
        self.t = t
        self.e = e

    @classmethod
    def ok(cls, t: T) -> Self:
        return cls(t=t)

    @classmethod
    def error(cls, e: E) -> Self:
        return cls(e=e)

    def get_or_raise(self, raiser: Optional[Callable[[E], BaseException]] = None) -> T:
        if not self.e:
            return cast(T, self.t)
        raise (raiser or ValueError)(self.e)

    def chain(self, f: Callable[[T], "Either[U, E]"]) -> "Either[U, E]":
        """Applies `f` to the value, errors pass through untouched"""
        if self.e:
            return Either(e=self.e)
        return f(cast(T, self.t))

    def append(self, other: Optional[E]) -> Self:
        """Adds more errors, turning a value into an error if there are any"""
        if not other:
            return self
        return self.error(self.e + other if self.e else other)


def next_uuid(existing: Container[str], factory: Callable[[], str]) -> str:
    """Draws from `factory` until hitting a value not in `existing`"""
    candidate = factory()
    while candidate in existing:
        candidate = factory()
    return candidate


B = TypeVar("B", bound=BaseModel)


def pyd_replace(model: B, **kwargs: Any) -> B:
    """dataclasses.replace for pydantic models"""
    return model.model_copy(update=kwargs)
