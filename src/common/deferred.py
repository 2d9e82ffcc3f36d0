from __future__ import annotations

from collections.abc import Callable
from typing import Any

import jsii
from aws_cdk import IAnyProducer, IResolvable, IResolveContext, IStringProducer, Lazy


_UNSET = object()


@jsii.implements(IAnyProducer, IStringProducer)
class Deferred:
    """A value computed from a thunk the first time the CDK resolves it.

    The thunk runs at most once, during synthesis, never while the construct
    tree is still being declared. Later resolutions return the cached result,
    so the uncached ``Lazy`` variants are safe to use.
    """

    def __init__(self, thunk: Callable[[], Any]) -> None:
        self._thunk = thunk
        self._value: Any = _UNSET

    @property
    def evaluated(self) -> bool:
        return self._value is not _UNSET

    def produce(self, context: IResolveContext | None = None) -> Any:
        if self._value is _UNSET:
            self._value = self._thunk()
        return self._value

    def as_any(self, *, omit_empty_array: bool | None = None) -> IResolvable:
        return Lazy.uncached_any(self, omit_empty_array=omit_empty_array)

    def as_string(self) -> str:
        return Lazy.uncached_string(self)


def deferred_any(thunk: Callable[[], Any], *, omit_empty_array: bool | None = None) -> IResolvable:
    return Deferred(thunk).as_any(omit_empty_array=omit_empty_array)


def deferred_string(thunk: Callable[[], str]) -> str:
    return Deferred(thunk).as_string()
