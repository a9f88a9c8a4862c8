"""The fixed table of built-in functions visible to guest programs.

Built-ins receive already-evaluated guest values. Python exceptions raised
here (TypeError, ValueError, ...) are converted to `EvalError` by the
evaluator at the call site, so most functions lean on Python's own checks and
messages.
"""

from typing import Any, Callable, Dict, List, Optional

from .errors import EvalError
from .functions import Builtin
from .values import is_truthy, iterate, power, to_display, type_name, unique

# (callable, args) -> value; lets key= accept user functions as well as built-ins
Invoker = Callable[[Any, List[Any]], Any]

BUILTIN_NAMES = (
    "len", "int", "float", "str", "bool", "abs", "max", "min", "sum", "range",
    "type", "round", "sorted", "reversed", "list", "set", "enumerate", "zip",
    "isinstance", "chr", "ord", "hex", "bin", "oct", "pow", "divmod",
)

# type names accepted by isinstance(); tuples and sets are lists at runtime
_ISINSTANCE_ALIASES = {"tuple": "list", "set": "list"}


def build_builtins(invoke: Invoker, max_range_length: int = 1_000_000) -> Dict[str, Builtin]:
    """Return a fresh name -> `Builtin` table for one run session."""

    def keyed(key: Any) -> Optional[Callable[[Any], Any]]:
        if key is None:
            return None
        return lambda item: invoke(key, [item])

    def _len(value: Any) -> int:
        if isinstance(value, (str, list, dict)):
            return len(value)
        raise EvalError(f"object of type '{type_name(value)}' has no len()")

    def _int(value: Any = 0, base: Optional[int] = None) -> int:
        if base is not None:
            return int(value, base)
        if isinstance(value, str):
            text = value.strip()
            try:
                return int(text)
            except ValueError:
                pass
            try:
                return int(float(text))
            except ValueError:
                raise EvalError(f"invalid literal for int() with base 10: {value!r}")
        if value is None or isinstance(value, (list, dict)):
            raise EvalError(
                f"int() argument must be a string or a number, not '{type_name(value)}'"
            )
        return int(value)

    def _float(value: Any = 0.0) -> float:
        if value is None or isinstance(value, (list, dict)):
            raise EvalError(
                f"float() argument must be a string or a number, not '{type_name(value)}'"
            )
        return float(value)

    def _str(value: Any = "") -> str:
        return to_display(value)

    def _bool(value: Any = False) -> bool:
        return is_truthy(value)

    def _extreme(name: str, pick: Callable[..., Any]) -> Callable[..., Any]:
        def impl(*args: Any, key: Any = None, **kwargs: Any) -> Any:
            items = iterate(args[0]) if len(args) == 1 else list(args)
            if not items:
                if "default" in kwargs:
                    return kwargs["default"]
                raise EvalError(f"{name}() arg is an empty sequence")
            fn = keyed(key)
            return pick(items, key=fn) if fn else pick(items)
        return impl

    def _sum(values: Any, start: Any = 0) -> Any:
        total = start
        for v in iterate(values):
            total = total + v
        return total

    def _range(*args: Any) -> List[int]:
        if not 1 <= len(args) <= 3:
            raise EvalError(f"range expected 1 to 3 arguments, got {len(args)}")
        r = range(*args)
        if len(r) > max_range_length:
            raise EvalError(f"range too large (limit {max_range_length} items)")
        return list(r)

    def _type(value: Any) -> str:
        return f"<class '{type_name(value)}'>"

    def _round(value: Any, ndigits: Optional[int] = None) -> Any:
        if ndigits is None:
            return round(value)
        return round(value, ndigits)

    def _sorted(values: Any, key: Any = None, reverse: Any = False) -> list:
        fn = keyed(key)
        return sorted(iterate(values), key=fn, reverse=is_truthy(reverse))

    def _reversed(values: Any) -> list:
        return list(reversed(iterate(values)))

    def _list(values: Any = None) -> list:
        return [] if values is None else iterate(values)

    def _set(values: Any = None) -> list:
        return [] if values is None else unique(iterate(values))

    def _enumerate(values: Any, start: int = 0) -> list:
        return [[i, v] for i, v in enumerate(iterate(values), start)]

    def _zip(*seqs: Any) -> list:
        return [list(group) for group in zip(*(iterate(s) for s in seqs))]

    def _isinstance(value: Any, kind: Any) -> bool:
        if isinstance(kind, list):
            return any(_isinstance(value, k) for k in kind)
        if isinstance(kind, Builtin):
            name = kind.name
        elif isinstance(kind, str):
            name = kind
        else:
            raise EvalError("isinstance() arg 2 must be a type or a list of types")
        name = _ISINSTANCE_ALIASES.get(name, name)
        actual = type_name(value)
        if name == "int" and actual == "bool":
            return True
        return actual == name

    def _ord(value: Any) -> int:
        if not isinstance(value, str) or len(value) != 1:
            raise EvalError("ord() expected a character")
        return ord(value)

    def _divmod(a: Any, b: Any) -> list:
        return list(divmod(a, b))

    impls: Dict[str, Callable[..., Any]] = {
        "len": _len,
        "int": _int,
        "float": _float,
        "str": _str,
        "bool": _bool,
        "abs": abs,
        "max": _extreme("max", max),
        "min": _extreme("min", min),
        "sum": _sum,
        "range": _range,
        "type": _type,
        "round": _round,
        "sorted": _sorted,
        "reversed": _reversed,
        "list": _list,
        "set": _set,
        "enumerate": _enumerate,
        "zip": _zip,
        "isinstance": _isinstance,
        "chr": chr,
        "ord": _ord,
        "hex": hex,
        "bin": bin,
        "oct": oct,
        "pow": power,
        "divmod": _divmod,
    }
    return {name: Builtin(name, impls[name]) for name in BUILTIN_NAMES}
