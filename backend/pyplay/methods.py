"""Method dispatch on runtime values (``obj.method(args)``).

Methods are looked up by the value's runtime type. List and dict methods
mutate the receiver in place where Python's do. Lookups that would raise in
Python degrade to a neutral value here (``list.index`` gives ``-1``,
``list.pop`` on an empty list gives ``None``); ``str.index`` is the exception
and raises ``substring not found``.
"""

import logging
import string
from typing import Any, Callable, Dict, List

from .errors import EvalError
from .values import apply_format, is_truthy, iterate, loose_equals, to_display, to_repr

logger = logging.getLogger(__name__)

Invoker = Callable[[Any, List[Any]], Any]

_formatter = string.Formatter()


def format_template(template: str, args: List[Any], kwargs: Dict[str, Any]) -> str:
    """Implementation of ``str.format``: ``{}``, ``{0}``, ``{name}`` and ``:spec``."""
    out: List[str] = []
    auto = 0
    try:
        fields = list(_formatter.parse(template))
    except ValueError as e:
        raise EvalError(str(e)) from e
    for literal, field_name, spec, conversion in fields:
        out.append(literal)
        if field_name is None:
            continue
        if field_name == "":
            key: Any = auto
            auto += 1
        elif field_name.isdigit():
            key = int(field_name)
        else:
            key = field_name
        if isinstance(key, int):
            if key >= len(args):
                raise EvalError(f"Replacement index {key} out of range for positional args tuple")
            value = args[key]
        else:
            if key not in kwargs:
                raise EvalError(f"KeyError: {key!r}")
            value = kwargs[key]
        if conversion == "r":
            value = to_repr(value)
        elif conversion == "s":
            value = to_display(value)
        out.append(apply_format(value, spec or ""))
    return "".join(out)


def _str_methods(s: str, args: List[Any], kwargs: Dict[str, Any]) -> Dict[str, Callable[[], Any]]:
    def arg(n: int, default: Any = None) -> Any:
        return args[n] if len(args) > n else default

    def index() -> int:
        pos = s.find(arg(0), *args[1:])
        if pos == -1:
            raise EvalError("substring not found")
        return pos

    def affix(value: Any) -> Any:
        return tuple(value) if isinstance(value, list) else value

    return {
        "upper": s.upper,
        "lower": s.lower,
        "title": s.title,
        "strip": lambda: s.strip(arg(0)),
        "lstrip": lambda: s.lstrip(arg(0)),
        "rstrip": lambda: s.rstrip(arg(0)),
        "split": lambda: s.split(arg(0, kwargs.get("sep")), arg(1, kwargs.get("maxsplit", -1))),
        "join": lambda: s.join(to_display(v) for v in iterate(arg(0))),
        "replace": lambda: s.replace(arg(0), arg(1), arg(2, -1)),
        "startswith": lambda: s.startswith(affix(arg(0))),
        "endswith": lambda: s.endswith(affix(arg(0))),
        "find": lambda: s.find(*args),
        "count": lambda: s.count(*args),
        "isdigit": s.isdigit,
        "isalpha": s.isalpha,
        "isalnum": s.isalnum,
        "isspace": s.isspace,
        "isupper": s.isupper,
        "islower": s.islower,
        "format": lambda: format_template(s, args, kwargs),
        "index": index,
        "capitalize": s.capitalize,
        "swapcase": s.swapcase,
        "center": lambda: s.center(arg(0), arg(1, " ")),
        "ljust": lambda: s.ljust(arg(0), arg(1, " ")),
        "rjust": lambda: s.rjust(arg(0), arg(1, " ")),
        "zfill": lambda: s.zfill(arg(0)),
    }


def _list_methods(
    items: list, args: List[Any], kwargs: Dict[str, Any], invoke: Invoker
) -> Dict[str, Callable[[], Any]]:
    def append() -> None:
        items.append(args[0])

    def pop() -> Any:
        pos = args[0] if args else -1
        try:
            return items.pop(pos)
        except (IndexError, TypeError):
            return None

    def insert() -> None:
        items.insert(args[0], args[1])

    def find() -> int:
        # same equality as == and `in`: 1 matches "1"
        for pos, item in enumerate(items):
            if loose_equals(args[0], item):
                return pos
        return -1

    def remove() -> None:
        pos = find()
        if pos >= 0:
            del items[pos]

    def sort() -> None:
        key = kwargs.get("key")
        fn = (lambda item: invoke(key, [item])) if key is not None else None
        items.sort(key=fn, reverse=is_truthy(kwargs.get("reverse", False)))

    def reverse() -> None:
        items.reverse()

    def extend() -> None:
        items.extend(iterate(args[0]))

    def clear() -> None:
        items.clear()

    return {
        "append": append,
        "pop": pop,
        "insert": insert,
        "remove": remove,
        "sort": sort,
        "reverse": reverse,
        "index": find,
        "count": lambda: sum(1 for item in items if loose_equals(args[0], item)),
        "extend": extend,
        "copy": lambda: list(items),
        "clear": clear,
    }


def _dict_methods(d: dict, args: List[Any], kwargs: Dict[str, Any]) -> Dict[str, Callable[[], Any]]:
    def default() -> Any:
        return args[1] if len(args) > 1 else kwargs.get("default")

    def update() -> None:
        if args:
            other = args[0]
            if isinstance(other, dict):
                d.update(other)
            else:
                # a list of [key, value] pairs
                d.update((pair[0], pair[1]) for pair in iterate(other))
        d.update(kwargs)

    def has_key() -> bool:
        try:
            return args[0] in d
        except TypeError:
            # unhashable keys are never present
            return False

    def pop() -> Any:
        if has_key():
            return d.pop(args[0])
        return default()

    return {
        "keys": lambda: list(d.keys()),
        "values": lambda: list(d.values()),
        "items": lambda: [[k, v] for k, v in d.items()],
        "get": lambda: d[args[0]] if has_key() else default(),
        "update": update,
        "pop": pop,
        "copy": lambda: dict(d),
        "clear": d.clear,
    }


def call_method(obj: Any, name: str, args: List[Any], kwargs: Dict[str, Any], invoke: Invoker) -> Any:
    """Call method `name` on `obj`; unknown methods evaluate to None."""
    if isinstance(obj, str):
        table = _str_methods(obj, args, kwargs)
    elif isinstance(obj, list):
        table = _list_methods(obj, args, kwargs, invoke)
    elif isinstance(obj, dict):
        table = _dict_methods(obj, args, kwargs)
    else:
        table = {}
    method = table.get(name)
    if method is None:
        logger.debug("No method %s on %s", name, type(obj).__name__)
        return None
    return method()


def get_attribute(obj: Any, name: str) -> Any:
    """Plain attribute read: a dict exposes its keys, everything else is None."""
    if isinstance(obj, dict):
        return obj.get(name)
    return None
