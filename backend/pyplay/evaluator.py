"""Expression evaluation for PyPlay.

Expressions are parsed with Python's own parser (``ast.parse(mode="eval")``)
and walked by a whitelisting ``ast.NodeVisitor``. Only the node types the
teaching language supports have a ``visit_*`` method; anything else makes the
whole expression evaluate to its raw source text instead of raising, the
same permissive fallback used for text Python cannot parse at all.

Operator semantics follow the playground rather than CPython where the two
differ:

- ``+`` concatenates when either operand is a string (the other operand is
  converted to its display text)
- ``==`` / ``!=`` are loose: ``1 == "1"`` holds
- ``or`` returns the first truthy operand or ``False``
- reading an unknown name gives ``None``; out-of-range indexing and missing
  dict keys give ``None``

Python exceptions raised while evaluating (``1 / 0``, ``"a" - 1``) are turned
into `EvalError` with Python's message.
"""

import ast
import functools
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .environment import Frame
from .errors import EvalError
from .functions import Builtin, UserFunction
from .methods import call_method, get_attribute
from .values import (
    apply_format,
    check_result_bits,
    is_number,
    is_truthy,
    iterate,
    loose_equals,
    power,
    to_display,
    to_repr,
    type_name,
    unique,
)

logger = logging.getLogger(__name__)

# Python errors that surface to the guest program as runtime failures
PYTHON_ERRORS = (
    TypeError,
    ValueError,
    ZeroDivisionError,
    OverflowError,
    IndexError,
    KeyError,
    AttributeError,
)


class UnsupportedSyntax(Exception):
    """An AST node outside the teaching subset was reached."""


def python_error_message(error: BaseException) -> str:
    if isinstance(error, KeyError) and error.args:
        return f"KeyError: {to_repr(error.args[0])}"
    return str(error) or type(error).__name__


@functools.lru_cache(maxsize=4096)
def parse_expression(text: str) -> Optional[ast.Expression]:
    """Parse `text` as a single expression; None when Python cannot parse it."""
    try:
        return ast.parse(text, mode="eval")
    except (SyntaxError, ValueError):
        return None


def destructure(value: Any, count: int) -> Optional[List[Any]]:
    """Split a sequence into `count` positional values (missing ones are None).

    Returns None when `value` is not a list or string.
    """
    if isinstance(value, (list, str)):
        items = list(value)
        return [items[n] if n < len(items) else None for n in range(count)]
    return None


def binary_op(op: ast.operator, left: Any, right: Any) -> Any:
    """Apply a binary operator with the playground's coercions."""
    if isinstance(op, ast.Add):
        if isinstance(left, str) or isinstance(right, str):
            return to_display(left) + to_display(right)
        return left + right
    if isinstance(op, ast.Sub):
        return left - right
    if isinstance(op, ast.Mult):
        # string/list repetition never goes below zero copies
        if isinstance(left, (str, list)) and isinstance(right, int):
            return left * max(0, right)
        if isinstance(right, (str, list)) and isinstance(left, int):
            return right * max(0, left)
        return left * right
    if isinstance(op, ast.Div):
        return left / right
    if isinstance(op, ast.FloorDiv):
        return left // right
    if isinstance(op, ast.Mod):
        return left % right
    if isinstance(op, ast.Pow):
        return power(left, right)
    if isinstance(op, ast.BitAnd):
        return left & right
    if isinstance(op, ast.BitOr):
        return left | right
    if isinstance(op, ast.BitXor):
        return left ^ right
    if isinstance(op, ast.LShift):
        if isinstance(left, int) and isinstance(right, int) and left:
            check_result_bits(right + abs(left).bit_length())
        return left << right
    if isinstance(op, ast.RShift):
        return left >> right
    raise UnsupportedSyntax(type(op).__name__)


_ORDERING: Dict[type, Tuple[str, Callable[[Any, Any], bool]]] = {
    ast.Lt: ("<", lambda a, b: a < b),
    ast.LtE: ("<=", lambda a, b: a <= b),
    ast.Gt: (">", lambda a, b: a > b),
    ast.GtE: (">=", lambda a, b: a >= b),
}


def _numeric(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return value if is_number(value) or isinstance(value, bool) else None


def compare(op: ast.cmpop, left: Any, right: Any) -> bool:
    if isinstance(op, ast.Eq):
        return loose_equals(left, right)
    if isinstance(op, ast.NotEq):
        return not loose_equals(left, right)
    if isinstance(op, ast.In):
        return contains(right, left)
    if isinstance(op, ast.NotIn):
        return not contains(right, left)
    if isinstance(op, ast.Is):
        return left is right
    if isinstance(op, ast.IsNot):
        return left is not right
    symbol, fn = _ORDERING[type(op)]
    try:
        return fn(left, right)
    except TypeError:
        # a numeric string may be ordered against a number
        a, b = _numeric(left), _numeric(right)
        if a is None or b is None or isinstance(left, str) == isinstance(right, str):
            raise EvalError(
                f"'{symbol}' not supported between instances of "
                f"'{type_name(left)}' and '{type_name(right)}'"
            )
        return fn(a, b)


def contains(container: Any, item: Any) -> bool:
    """Membership: substring for str, element for list, key for dict."""
    if isinstance(container, str):
        return isinstance(item, str) and item in container
    if isinstance(container, list):
        return any(loose_equals(item, v) for v in container)
    if isinstance(container, dict):
        try:
            return item in container
        except TypeError:
            return False
    return False


def read_index(container: Any, key: Any) -> Any:
    """``container[key]`` with out-of-range and missing keys reading as None."""
    if isinstance(container, (list, str)):
        if not isinstance(key, int):
            return None
        try:
            return container[key]
        except IndexError:
            return None
    if isinstance(container, dict):
        try:
            return container.get(key)
        except TypeError:
            return None
    return None


def write_index(container: Any, key: Any, value: Any) -> None:
    if isinstance(container, dict):
        container[key] = value
        return
    if isinstance(container, list):
        if not isinstance(key, int):
            raise EvalError(f"list indices must be integers, not {type_name(key)}")
        try:
            container[key] = value
        except IndexError:
            raise EvalError("list assignment index out of range")
        return
    raise EvalError(f"'{type_name(container)}' object does not support item assignment")


class Evaluator(ast.NodeVisitor):
    """Evaluates guest expressions against a `Frame`.

    The evaluator is bound to one run session, which supplies the built-in
    table, the function registry, the ``print``/``input`` special forms and
    user-function invocation (``session.call_function``).

    Args:
        session: the `RunSession` being executed.
    """

    def __init__(self, session: Any):
        self.session = session
        self.frame: Frame = Frame()

    # --- entry points ---------------------------------------------------
    def evaluate(self, expr: str, frame: Frame) -> Any:
        """Evaluate expression text; unparseable text evaluates to itself."""
        text = expr.strip()
        if not text:
            return None
        tree = parse_expression(text)
        if tree is None:
            logger.debug("Unparseable expression kept as text: %r", text)
            return text
        return self.evaluate_node(tree.body, frame, text)

    def evaluate_node(self, node: ast.AST, frame: Frame, source: str = "") -> Any:
        """Evaluate a pre-parsed expression node in `frame`.

        `source` is the text returned when the node uses syntax outside the
        supported subset.
        """
        previous = self.frame
        self.frame = frame
        try:
            return self.visit(node)
        except EvalError:
            raise
        except UnsupportedSyntax as e:
            logger.debug("Unsupported syntax %s in %r", e, source)
            return source.strip()
        except RecursionError:
            raise EvalError("maximum recursion depth exceeded")
        except PYTHON_ERRORS as e:
            raise EvalError(python_error_message(e)) from e
        finally:
            self.frame = previous

    def _eval_in(self, node: ast.AST, frame: Frame) -> Any:
        previous = self.frame
        self.frame = frame
        try:
            return self.visit(node)
        finally:
            self.frame = previous

    def invoke(self, callee: Any, args: List[Any], kwargs: Optional[Dict[str, Any]] = None) -> Any:
        """Call a guest callable value (built-in or user function)."""
        kwargs = kwargs or {}
        if isinstance(callee, Builtin):
            return callee(*args, **kwargs)
        if isinstance(callee, UserFunction):
            return self.session.call_function(callee, args, kwargs, self.frame)
        raise EvalError(f"'{type_name(callee)}' object is not callable")

    # --- assignment targets ------------------------------------------------
    def assign(self, target: ast.AST, value: Any, frame: Frame) -> None:
        """Bind `value` to an assignment target in `frame`.

        Tuple targets destructure lists and strings positionally; any other
        value leaves the targets untouched.
        """
        if isinstance(target, ast.Name):
            frame.set(target.id, value)
        elif isinstance(target, (ast.Tuple, ast.List)):
            parts = destructure(value, len(target.elts))
            if parts is None:
                return
            for elt, part in zip(target.elts, parts):
                self.assign(elt, part, frame)
        elif isinstance(target, ast.Subscript):
            container = self._eval_in(target.value, frame)
            if isinstance(target.slice, ast.Slice):
                raise EvalError("slice assignment is not supported")
            write_index(container, self._eval_in(target.slice, frame), value)
        elif isinstance(target, ast.Attribute):
            container = self._eval_in(target.value, frame)
            write_index(container, target.attr, value)
        elif isinstance(target, ast.Starred):
            self.assign(target.value, value, frame)
        else:
            raise UnsupportedSyntax(type(target).__name__)

    def bind_loop_target(self, target: ast.AST, value: Any, frame: Frame) -> None:
        """Bind a loop variable; ``for i, v in ...`` with a non-sequence item
        binds only the first name."""
        if isinstance(target, (ast.Tuple, ast.List)) and destructure(value, 1) is None:
            if target.elts:
                self.bind_loop_target(target.elts[0], value, frame)
            return
        self.assign(target, value, frame)

    # --- literals ---------------------------------------------------------
    def visit_Expression(self, node):
        return self.visit(node.body)

    def visit_Constant(self, node):
        if isinstance(node.value, (bytes, complex)) or node.value is Ellipsis:
            raise UnsupportedSyntax(type(node.value).__name__)
        return node.value

    def _elements(self, nodes: List[ast.expr]) -> List[Any]:
        out: List[Any] = []
        for elt in nodes:
            if isinstance(elt, ast.Starred):
                out.extend(iterate(self.visit(elt.value)))
            else:
                out.append(self.visit(elt))
        return out

    def visit_List(self, node):
        return self._elements(node.elts)

    def visit_Tuple(self, node):
        return self._elements(node.elts)

    def visit_Set(self, node):
        return unique(self._elements(node.elts))

    def visit_Dict(self, node):
        out: Dict[Any, Any] = {}
        for key, value in zip(node.keys, node.values):
            if key is None:
                other = self.visit(value)
                if not isinstance(other, dict):
                    raise EvalError(f"'{type_name(other)}' object is not a mapping")
                out.update(other)
            else:
                out[self.visit(key)] = self.visit(value)
        return out

    def visit_JoinedStr(self, node):
        parts: List[str] = []
        for value in node.values:
            if isinstance(value, ast.FormattedValue):
                parts.append(self._formatted(value))
            else:
                parts.append(to_display(self.visit(value)))
        return "".join(parts)

    def visit_FormattedValue(self, node):
        return self._formatted(node)

    def _formatted(self, node: ast.FormattedValue) -> str:
        value = self.visit(node.value)
        if node.conversion == ord("r") or node.conversion == ord("a"):
            value = to_repr(value)
        elif node.conversion == ord("s"):
            value = to_display(value)
        spec = self.visit(node.format_spec) if node.format_spec is not None else ""
        return apply_format(value, spec)

    # --- names ------------------------------------------------------------
    def visit_Name(self, node):
        found, value = self.frame.lookup(node.id)
        if found:
            return value
        if node.id in self.session.builtins:
            return self.session.builtins[node.id]
        fn = self.session.functions.get(node.id)
        if fn is not None:
            return fn
        return None

    # --- operators --------------------------------------------------------
    def visit_BinOp(self, node):
        return binary_op(node.op, self.visit(node.left), self.visit(node.right))

    def visit_UnaryOp(self, node):
        operand = self.visit(node.operand)
        if isinstance(node.op, ast.Not):
            return not is_truthy(operand)
        if isinstance(node.op, ast.USub):
            return -operand
        if isinstance(node.op, ast.UAdd):
            return +operand
        if isinstance(node.op, ast.Invert):
            return ~operand
        raise UnsupportedSyntax(type(node.op).__name__)

    def visit_BoolOp(self, node):
        # short-circuit; `or` yields False rather than its last operand
        if isinstance(node.op, ast.Or):
            for v in node.values:
                result = self.visit(v)
                if is_truthy(result):
                    return result
            return False
        result = None
        for v in node.values:
            result = self.visit(v)
            if not is_truthy(result):
                return result
        return result

    def visit_Compare(self, node):
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            if not compare(op, left, right):
                return False
            left = right
        return True

    def visit_IfExp(self, node):
        if is_truthy(self.visit(node.test)):
            return self.visit(node.body)
        return self.visit(node.orelse)

    # --- postfix ----------------------------------------------------------
    def visit_Subscript(self, node):
        container = self.visit(node.value)
        if isinstance(node.slice, ast.Slice):
            lower = self.visit(node.slice.lower) if node.slice.lower else None
            upper = self.visit(node.slice.upper) if node.slice.upper else None
            step = self.visit(node.slice.step) if node.slice.step else None
            if not isinstance(container, (list, str)):
                return None
            return container[slice(lower, upper, step)]
        return read_index(container, self.visit(node.slice))

    def visit_Attribute(self, node):
        return get_attribute(self.visit(node.value), node.attr)

    def _arguments(self, node: ast.Call) -> Tuple[List[Any], Dict[str, Any]]:
        args = self._elements(node.args)
        kwargs: Dict[str, Any] = {}
        for kw in node.keywords:
            value = self.visit(kw.value)
            if kw.arg is None:
                if not isinstance(value, dict):
                    raise EvalError("argument after ** must be a mapping")
                kwargs.update({str(k): v for k, v in value.items()})
            else:
                kwargs[kw.arg] = value
        return args, kwargs

    def visit_Call(self, node):
        func = node.func
        if isinstance(func, ast.Attribute):
            receiver = self.visit(func.value)
            args, kwargs = self._arguments(node)
            return call_method(receiver, func.attr, args, kwargs, self.invoke)
        if isinstance(func, ast.Name):
            return self._call_name(func.id, node)
        callee = self.visit(func)
        args, kwargs = self._arguments(node)
        return self.invoke(callee, args, kwargs)

    def _call_name(self, name: str, node: ast.Call) -> Any:
        # print/input first, then built-ins, then user functions
        args, kwargs = self._arguments(node)
        if name == "print":
            self.session.print_values(args, kwargs)
            return None
        if name == "input":
            prompt = to_display(args[0]) if args else ""
            return self.session.read_input(prompt)
        builtin = self.session.builtins.get(name)
        if builtin is not None:
            return builtin(*args, **kwargs)
        fn = self.session.functions.get(name)
        if fn is not None:
            return self.session.call_function(fn, args, kwargs, self.frame)
        found, value = self.frame.lookup(name)
        if found and isinstance(value, (Builtin, UserFunction)):
            return self.invoke(value, args, kwargs)
        logger.debug("Call to unknown function %s", name)
        return None

    # --- comprehensions ---------------------------------------------------
    def _generate(self, generators: List[ast.comprehension], frame: Frame, emit: Callable[[Frame], None]) -> None:
        first, rest = generators[0], generators[1:]
        for item in iterate(self._eval_in(first.iter, frame)):
            scope = frame.child()
            self.bind_loop_target(first.target, item, scope)
            if all(is_truthy(self._eval_in(cond, scope)) for cond in first.ifs):
                if rest:
                    self._generate(rest, scope, emit)
                else:
                    emit(scope)

    def visit_ListComp(self, node):
        out: List[Any] = []
        self._generate(node.generators, self.frame, lambda scope: out.append(self._eval_in(node.elt, scope)))
        return out

    def visit_GeneratorExp(self, node):
        return self.visit_ListComp(node)

    def visit_SetComp(self, node):
        return unique(self.visit_ListComp(node))

    def visit_DictComp(self, node):
        out: Dict[Any, Any] = {}

        def emit(scope: Frame) -> None:
            out[self._eval_in(node.key, scope)] = self._eval_in(node.value, scope)

        self._generate(node.generators, self.frame, emit)
        return out

    def generic_visit(self, node):
        raise UnsupportedSyntax(type(node).__name__)
