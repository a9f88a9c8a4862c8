"""Callable values: host built-ins and user-defined functions.

User functions are created by a ``def`` statement and kept in a
`FunctionRegistry` owned by one run session. A definition remembers the
compiled program it came from and the frame it was defined in; calls push a
new frame whose parent is that defining frame.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


class Builtin:
    """A host-level function exposed to guest expressions under `name`."""

    def __init__(self, name: str, impl: Callable[..., Any]):
        self.name = name
        self.impl = impl

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self.impl(*args, **kwargs)

    def __repr__(self) -> str:
        return f"<built-in function {self.name}>"


@dataclass
class Param:
    name: str
    # default expression source, evaluated at bind time in the caller's frame
    default: Optional[str] = None


@dataclass
class UserFunction:
    name: str
    params: List[Param]
    # line index of the ``def`` header; the body is body_start..body_end
    header: int
    body_start: int
    body_end: int
    program: Any = field(repr=False)
    frame: Any = field(default=None, repr=False)
    # names collecting extra positional/keyword arguments (*args, **kwargs)
    varargs: Optional[str] = None
    varkw: Optional[str] = None

    @property
    def param_names(self) -> List[str]:
        return [p.name for p in self.params]

    def __repr__(self) -> str:
        return f"<function {self.name}>"


class FunctionRegistry:
    """Name -> `UserFunction` table for a single run session."""

    def __init__(self) -> None:
        self._functions: Dict[str, UserFunction] = {}

    def define(self, fn: UserFunction) -> None:
        if fn.name in self._functions:
            logger.debug("Redefining function %s", fn.name)
        else:
            logger.debug("Registered function %s(%s)", fn.name, ", ".join(fn.param_names))
        self._functions[fn.name] = fn

    def get(self, name: str) -> Optional[UserFunction]:
        return self._functions.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def __iter__(self) -> Iterator[str]:
        return iter(self._functions)

    def __len__(self) -> int:
        return len(self._functions)
