"""Value helpers: Python-style rendering, truthiness and format specs.

Guest values are plain Python objects (None, bool, int, float, str, list and
dict). Tuples and sets produced by guest syntax are lists, so they render
with square brackets.

Two rendering modes exist:

- display: what ``print`` and ``str()`` show; strings are bare.
- representation: used for items nested in lists and dicts; strings are
  quoted the way Python's ``repr`` quotes them.
"""

import math
from typing import Any, Optional, Set

from .errors import EvalError
from .functions import Builtin, UserFunction


def to_display(value: Any) -> str:
    """Render `value` the way a top-level ``print`` argument is shown."""
    if isinstance(value, str):
        return value
    return _render(value, None)


def to_repr(value: Any) -> str:
    """Render `value` the way it appears inside a list or dict."""
    return _render(value, None)


def _render(value: Any, seen: Optional[Set[int]]) -> str:
    if value is None:
        return "None"
    if value is True:
        return "True"
    if value is False:
        return "False"
    if isinstance(value, str):
        return repr(value)
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (list, dict)):
        # self-referencing containers render as [...] / {...} like Python
        seen = set() if seen is None else seen
        if id(value) in seen:
            return "[...]" if isinstance(value, list) else "{...}"
        seen.add(id(value))
        try:
            if isinstance(value, list):
                return "[" + ", ".join(_render(v, seen) for v in value) + "]"
            items = (f"{_render(k, seen)}: {_render(v, seen)}" for k, v in value.items())
            return "{" + ", ".join(items) + "}"
        finally:
            seen.discard(id(value))
    if isinstance(value, (Builtin, UserFunction)):
        return repr(value)
    return str(value)


def is_truthy(value: Any) -> bool:
    """Python truthiness: None, False, 0, '' and empty containers are falsy."""
    if isinstance(value, (Builtin, UserFunction)):
        return True
    return bool(value)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def type_name(value: Any) -> str:
    if value is None:
        return "NoneType"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "str"
    if isinstance(value, list):
        return "list"
    if isinstance(value, dict):
        return "dict"
    if isinstance(value, Builtin):
        return "builtin_function_or_method"
    if isinstance(value, UserFunction):
        return "function"
    return type(value).__name__


def loose_equals(left: Any, right: Any) -> bool:
    """Equality that lets a number match its numeric string form."""
    if isinstance(left, str) and is_number(right):
        left, right = right, left
    if is_number(left) and isinstance(right, str):
        try:
            return left == float(right.strip())
        except ValueError:
            return False
    return left == right


def as_number(value: Any) -> Any:
    """Coerce `value` to int/float for numeric formatting."""
    if isinstance(value, bool):
        return int(value)
    if is_number(value):
        return value
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            pass
    raise EvalError(f"could not convert {type_name(value)} to a number: {to_repr(value)}")


# exponents above this (with a base other than -1/0/1) would stall the run
MAX_EXPONENT = 10_000
# integer results of ** and << are refused above this many bits
MAX_RESULT_BITS = 100_000


def check_result_bits(bits: float) -> None:
    if bits > MAX_RESULT_BITS:
        raise EvalError(f"Exponent too large; result would exceed {MAX_RESULT_BITS} bits")


def power(base: Any, exp: Any, mod: Any = None) -> Any:
    """``base ** exp`` (or ``pow`` with a modulus) with size guards."""
    if mod is not None:
        # modular exponentiation stays as small as the modulus
        return pow(base, exp, mod)
    if is_number(base) and is_number(exp) and abs(base) > 1:
        if abs(exp) > MAX_EXPONENT:
            raise EvalError(f"Exponent too large; max {MAX_EXPONENT}")
        if isinstance(base, int) and isinstance(exp, int) and exp > 0:
            check_result_bits(exp * math.log2(abs(base)))
    return base ** exp


def apply_format(value: Any, spec: str) -> str:
    """Apply a format spec from an f-string or ``str.format`` field.

    Rules, checked in order:
      - trailing ``f``: fixed-point with the given precision (``.2f``)
      - trailing ``d``: integer (floored), padded to the given width (``5d``)
      - ``[fill]>N`` / ``[fill]<N``: right/left alignment of the display text
      - anything else goes to Python's ``format()``
    """
    if not spec:
        return to_display(value)
    try:
        if spec.endswith("f"):
            return format(float(as_number(value)), spec)
        if spec.endswith("d"):
            return format(int(math.floor(as_number(value))), spec)
        if ">" in spec or "<" in spec or "^" in spec:
            return format(to_display(value), spec)
        if is_number(value) or isinstance(value, str):
            return format(value, spec)
        return format(to_display(value), spec)
    except (ValueError, TypeError, OverflowError) as e:
        raise EvalError(str(e)) from e


def iterate(value: Any) -> list:
    """Return the items a built-in, comprehension or ``for`` loop walks over.

    Strings yield characters and dicts yield keys. Anything that is not a
    sequence is a runtime failure here; ``for`` statements skip such values
    before they get this far.
    """
    if isinstance(value, (str, list)):
        return list(value)
    if isinstance(value, dict):
        return list(value.keys())
    raise EvalError(f"'{type_name(value)}' object is not iterable")


def unique(items: list) -> list:
    """Order-keeping de-duplication that tolerates unhashable items."""
    out: list = []
    seen: Set[Any] = set()
    for item in items:
        try:
            if item in seen:
                continue
            seen.add(item)
        except TypeError:
            if item in out:
                continue
        out.append(item)
    return out
