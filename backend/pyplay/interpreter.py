"""PyPlay interpreter: statement executor and run session.

Source text is compiled once into an arena of `Statement` objects indexed by
line number. Each non-blank line is classified with Python's own parser:
simple lines parse as they are, compound headers (``for x in xs:``) are parsed
with a placeholder body appended. Blocks are resolved from indentation, and
``if``/``elif``/``else`` clauses at one indentation are linked into a chain.
Loops then revisit statement indices instead of re-reading text.

Unsupported or unparseable lines never raise; they are skipped (or, for
headers such as ``class``/``with``/``try``, treated as no-op headers whose
indented lines run as ordinary statements). Runtime failures raise
`EvalError` positioned at the failing line.

A shared `IterationBudget` bounds every ``for``/``while`` iteration in one
run: when it runs out, the current loop prints a diagnostic line and every
active loop stops. The budget is restored once the outermost loop exits, so
the rest of the program continues.
"""

import ast
import json
import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from . import subprocess_runner
from .blocks import indent_of, is_blank_or_comment, resolve_block_end
from .builtins import build_builtins
from .environment import RETURN_SLOT, Frame
from .errors import EvalError
from .evaluator import (
    PYTHON_ERRORS,
    Evaluator,
    UnsupportedSyntax,
    binary_op,
    python_error_message,
    read_index,
    write_index,
)
from .functions import FunctionRegistry, Param, UserFunction
from .values import is_truthy, iterate, to_display, type_name

logger = logging.getLogger(__name__)
logging.getLogger(__name__.rpartition(".")[0]).addHandler(logging.NullHandler())

INFINITE_LOOP_MESSAGE = "⚠️ Infinite loop detected"
EXECUTION_LIMIT_MESSAGE = "⚠️ Execution limit reached"
NO_OUTPUT_MESSAGE = "✅ Code executed (no output)"

_ELSE_RE = re.compile(r"else\s*:(.*)$")
_ELIF_RE = re.compile(r"elif\b")

# statements with no effect in the playground
_NO_OPS = (ast.Pass, ast.Import, ast.ImportFrom, ast.Global, ast.Nonlocal)

_COMPOUND_KINDS = {
    ast.FunctionDef: "def",
    ast.For: "for",
    ast.While: "while",
    ast.If: "if",
}


class _ReturnSignal(Exception):
    pass


class _BreakSignal(Exception):
    pass


class _ContinueSignal(Exception):
    pass


@dataclass
class Statement:
    """One classified source line.

    `kind` is one of ``simple``, ``def``, ``for``, ``while``, ``if``,
    ``elif``, ``else``, ``header`` (unsupported compound header) or ``raw``
    (unparseable text).
    """

    index: int
    kind: str
    text: str
    indent: int
    # the text handed to ast.parse; source segments are taken from it
    source: str = ""
    node: Optional[ast.stmt] = field(default=None, repr=False)
    nodes: List[ast.stmt] = field(default_factory=list, repr=False)
    # body written after the colon on the header line
    inline: Optional[List[ast.stmt]] = field(default=None, repr=False)
    end: int = 0
    orelse: Optional[int] = None
    chain_end: int = 0


def _parse_inline(text: str) -> Optional[List[ast.stmt]]:
    text = text.strip()
    if not text or text.startswith("#"):
        return None
    try:
        return ast.parse(text).body
    except (SyntaxError, ValueError):
        logger.debug("Unparseable inline body %r", text)
        return []


class Program:
    """Compiled form of one source text: the statement arena plus the lines."""

    def __init__(self, code: str):
        self.lines: List[str] = code.splitlines()
        self.statements: List[Optional[Statement]] = [
            self._classify(i, raw) for i, raw in enumerate(self.lines)
        ]
        self._link()
        logger.debug(
            "Compiled %d statements from %d lines",
            sum(1 for s in self.statements if s is not None),
            len(self.lines),
        )

    def __len__(self) -> int:
        return len(self.lines)

    def at(self, index: int) -> Optional[Statement]:
        if 0 <= index < len(self.statements):
            return self.statements[index]
        return None

    def next_index(self, index: int) -> int:
        """Index of the first statement at or after `index` (or end of input)."""
        while index < len(self.lines) and is_blank_or_comment(self.lines[index]):
            index += 1
        return index

    def _classify(self, index: int, raw: str) -> Optional[Statement]:
        if is_blank_or_comment(raw):
            return None
        text = raw.strip()
        stmt = Statement(index=index, kind="raw", text=text, indent=indent_of(raw), source=text)

        m = _ELSE_RE.match(text)
        if m:
            stmt.kind = "else"
            stmt.inline = _parse_inline(m.group(1))
            return stmt

        is_elif = bool(_ELIF_RE.match(text))
        source = text[2:] if is_elif else text
        body, source, header_only = self._parse(source)
        if body is None:
            return stmt
        stmt.source = source
        first = body[0] if body else None
        if len(body) == 1 and hasattr(first, "body"):
            stmt.node = first
            kind = _COMPOUND_KINDS.get(type(first), "header")
            stmt.kind = "elif" if is_elif and kind == "if" else kind
            if not header_only:
                stmt.inline = list(first.body)
            return stmt
        if is_elif:
            # "elif" followed by something that is not a condition header
            return stmt
        stmt.kind = "simple"
        stmt.nodes = body
        return stmt

    @staticmethod
    def _parse(source: str) -> Tuple[Optional[List[ast.stmt]], str, bool]:
        try:
            return ast.parse(source).body, source, False
        except (SyntaxError, ValueError):
            pass
        padded = source + "\n pass"
        try:
            return ast.parse(padded).body, padded, True
        except (SyntaxError, ValueError):
            return None, source, False

    def _link(self) -> None:
        # walk backwards so a clause's successor already knows its chain end
        for stmt in reversed(self.statements):
            if stmt is None:
                continue
            if stmt.kind in ("simple", "raw"):
                stmt.end = stmt.chain_end = stmt.index + 1
                continue
            if stmt.inline is not None:
                stmt.end = self.next_index(stmt.index + 1)
            elif stmt.kind == "header":
                stmt.end = stmt.index + 1
            else:
                stmt.end = resolve_block_end(self.lines, stmt.index, stmt.indent)
            stmt.chain_end = stmt.end
            if stmt.kind in ("if", "elif", "for", "while"):
                nxt = self.at(stmt.end)
                follows = ("elif", "else") if stmt.kind in ("if", "elif") else ("else",)
                if nxt is not None and nxt.indent == stmt.indent and nxt.kind in follows:
                    stmt.orelse = nxt.index
                    stmt.chain_end = nxt.chain_end


class OutputBuffer:
    """Printed lines plus the "line still open" flag used by ``end=``."""

    def __init__(self) -> None:
        self.lines: List[str] = []
        self._open = False

    def write(self, text: str) -> None:
        pieces = text.split("\n")
        for piece in pieces[:-1]:
            self._emit(piece)
            self._open = False
        if pieces[-1]:
            self._emit(pieces[-1])
            self._open = True

    def append_line(self, text: str) -> None:
        self._open = False
        self.lines.append(text)

    def _emit(self, piece: str) -> None:
        if self._open and self.lines:
            self.lines[-1] += piece
        else:
            self.lines.append(piece)


class IterationBudget:
    """Loop iteration allowance shared by every loop of one run.

    One allowance covers the outermost running loop together with every loop
    nested in it, including loops inside called functions. Once it runs out
    all of those loops stop, and only the first one to notice prints a
    diagnostic. The allowance is restored when the outermost loop exits.
    """

    def __init__(self, limit: int):
        self.limit = limit
        self.used = 0
        self.total = 0
        self.exhausted = False
        self.reported = False
        self._active = 0

    @contextmanager
    def loop(self) -> Iterator[None]:
        self._active += 1
        try:
            yield
        finally:
            self._active -= 1
            if not self._active:
                self.reset()

    def tick(self) -> bool:
        """Draw one iteration; False once the allowance is exhausted."""
        if self.exhausted:
            return False
        self.used += 1
        if self.used > self.limit:
            self.exhausted = True
            return False
        self.total += 1
        return True

    def reset(self) -> None:
        self.used = 0
        self.exhausted = False
        self.reported = False


def _no_input(prompt: str) -> str:
    return ""


class RunSession:
    """State of one program execution: frames, functions, output, budget."""

    def __init__(
        self,
        program: Program,
        *,
        max_iterations: int,
        max_call_depth: int,
        max_range_length: int,
        input_func: Callable[[str], Any],
    ):
        self.program = program
        self.max_call_depth = max_call_depth
        self.input_func = input_func
        self.globals = Frame()
        self.functions = FunctionRegistry()
        self.output = OutputBuffer()
        self.budget = IterationBudget(max_iterations)
        self.evaluator = Evaluator(self)
        self.builtins = build_builtins(self.evaluator.invoke, max_range_length)
        self.calls = 0
        self._depth = 0
        self._handlers: Dict[str, Callable[[Statement, Frame], int]] = {
            "simple": self._exec_simple,
            "def": self._exec_def,
            "for": self._exec_for,
            "while": self._exec_while,
            "if": self._exec_if,
            "elif": self._exec_orphan,
            "else": self._exec_orphan,
            "header": self._exec_orphan,
            "raw": self._exec_raw,
        }

    def run(self) -> None:
        try:
            self._exec_range(0, len(self.program), self.globals)
        except (_ReturnSignal, _BreakSignal, _ContinueSignal):
            # a stray return/break/continue at top level ends the program
            logger.debug("Program ended by top-level control statement")

    def stats(self) -> Dict[str, int]:
        return {
            "iterations": self.budget.total,
            "calls": self.calls,
            "output_lines": len(self.output.lines),
        }

    # --- hooks used by the evaluator ----------------------------------------
    def print_values(self, args: List[Any], kwargs: Dict[str, Any]) -> None:
        sep = kwargs.get("sep")
        end = kwargs.get("end")
        sep = " " if sep is None else to_display(sep)
        end = "\n" if end is None else to_display(end)
        self.output.write(sep.join(to_display(a) for a in args) + end)

    def read_input(self, prompt: str) -> str:
        answer = self.input_func(prompt)
        return "" if answer is None else to_display(answer)

    def call_function(
        self, fn: UserFunction, args: List[Any], kwargs: Dict[str, Any], caller: Frame
    ) -> Any:
        """Invoke a user function and return its ``__return__`` slot.

        The new frame's parent is the frame the function was defined in.
        Missing arguments fall back to their default expression evaluated in
        the caller's frame, or None.
        """
        if self._depth >= self.max_call_depth:
            raise EvalError("maximum recursion depth exceeded")
        frame = Frame(parent=fn.frame)
        names = fn.param_names
        for name, value in zip(names, args):
            frame.set(name, value)
        if fn.varargs:
            frame.set(fn.varargs, list(args[len(names):]))
        extra: Dict[str, Any] = {}
        for key, value in kwargs.items():
            if key in names:
                frame.set(key, value)
            elif fn.varkw:
                extra[key] = value
            else:
                raise EvalError(f"{fn.name}() got an unexpected keyword argument '{key}'")
        if fn.varkw:
            frame.set(fn.varkw, extra)
        for param in fn.params[len(args):]:
            if param.name in kwargs:
                continue
            value = self.evaluator.evaluate(param.default, caller) if param.default else None
            frame.set(param.name, value)

        self._depth += 1
        self.calls += 1
        try:
            self._exec_body(fn.program.statements[fn.header], frame)
        except _ReturnSignal:
            pass
        except (_BreakSignal, _ContinueSignal):
            # break/continue outside a loop ends the function body
            pass
        finally:
            self._depth -= 1
        return frame.vars.get(RETURN_SLOT)

    # --- block execution ----------------------------------------------------
    def _exec_range(self, start: int, end: int, frame: Frame) -> None:
        statements = self.program.statements
        i = start
        while i < end:
            stmt = statements[i]
            if stmt is None:
                i += 1
                continue
            try:
                i = self._handlers[stmt.kind](stmt, frame)
            except EvalError as e:
                raise self._position(e, stmt)
            except UnsupportedSyntax as e:
                logger.debug("Skipping line %d, unsupported syntax %s", stmt.index + 1, e)
                i = stmt.chain_end
            except RecursionError:
                raise self._position(EvalError("maximum recursion depth exceeded"), stmt)
            except PYTHON_ERRORS as e:
                raise self._position(EvalError(python_error_message(e)), stmt) from e

    def _exec_body(self, stmt: Statement, frame: Frame) -> None:
        if stmt.inline is not None:
            for node in stmt.inline:
                self._exec_node(stmt, node, frame)
        else:
            self._exec_range(stmt.index + 1, stmt.end, frame)

    @staticmethod
    def _position(error: EvalError, stmt: Statement) -> EvalError:
        if error.line is None:
            error.line = stmt.index + 1
            error.text = stmt.text
        return error

    @staticmethod
    def _segment(stmt: Statement, node: ast.AST) -> str:
        return ast.get_source_segment(stmt.source, node) or stmt.text

    def _value(self, stmt: Statement, node: ast.AST, frame: Frame) -> Any:
        try:
            return self.evaluator.evaluate_node(node, frame, self._segment(stmt, node))
        except EvalError as e:
            raise self._position(e, stmt)

    def _trip(self, stmt: Statement, message: str) -> None:
        if self.budget.reported:
            return
        logger.debug(
            "Iteration budget of %d exhausted in loop on line %d",
            self.budget.limit,
            stmt.index + 1,
        )
        self.output.append_line(message)
        self.budget.reported = True

    # --- statement handlers -------------------------------------------------
    def _exec_simple(self, stmt: Statement, frame: Frame) -> int:
        for node in stmt.nodes:
            self._exec_node(stmt, node, frame)
        return stmt.index + 1

    def _exec_raw(self, stmt: Statement, frame: Frame) -> int:
        logger.debug("Ignoring unparseable line %d: %r", stmt.index + 1, stmt.text)
        return stmt.index + 1

    def _exec_orphan(self, stmt: Statement, frame: Frame) -> int:
        # unlinked else/elif or unsupported header: the indented lines that
        # follow run as ordinary statements
        if stmt.inline:
            self._exec_body(stmt, frame)
        return stmt.index + 1

    def _exec_def(self, stmt: Statement, frame: Frame) -> int:
        node = stmt.node
        args = node.args
        positional = list(args.posonlyargs) + list(args.args)
        defaults: List[Optional[str]] = [None] * (len(positional) - len(args.defaults))
        defaults += [self._segment(stmt, d) for d in args.defaults]
        params = [Param(a.arg, d) for a, d in zip(positional, defaults)]
        for a, d in zip(args.kwonlyargs, args.kw_defaults):
            params.append(Param(a.arg, self._segment(stmt, d) if d is not None else None))
        self.functions.define(
            UserFunction(
                name=node.name,
                params=params,
                header=stmt.index,
                body_start=stmt.index + 1,
                body_end=stmt.end,
                program=self.program,
                frame=frame,
                varargs=args.vararg.arg if args.vararg else None,
                varkw=args.kwarg.arg if args.kwarg else None,
            )
        )
        return stmt.end

    def _exec_for(self, stmt: Statement, frame: Frame) -> int:
        node = stmt.node
        # the iterable is evaluated once, before the first iteration
        iterable = self._value(stmt, node.iter, frame)
        if not isinstance(iterable, (str, list, dict)):
            # unset names and scalars give the loop nothing to walk over
            logger.debug("Skipping for loop over %s on line %d", type_name(iterable), stmt.index + 1)
            iterable = []
        with self.budget.loop():
            for item in iterate(iterable):
                if not self.budget.tick():
                    self._trip(stmt, EXECUTION_LIMIT_MESSAGE)
                    return stmt.chain_end
                self.evaluator.bind_loop_target(node.target, item, frame)
                try:
                    self._exec_body(stmt, frame)
                except _BreakSignal:
                    return stmt.chain_end
                except _ContinueSignal:
                    continue
            self._exec_loop_else(stmt, frame)
        return stmt.chain_end

    def _exec_while(self, stmt: Statement, frame: Frame) -> int:
        test = stmt.node.test
        with self.budget.loop():
            while is_truthy(self._value(stmt, test, frame)):
                if not self.budget.tick():
                    self._trip(stmt, INFINITE_LOOP_MESSAGE)
                    return stmt.chain_end
                try:
                    self._exec_body(stmt, frame)
                except _BreakSignal:
                    return stmt.chain_end
                except _ContinueSignal:
                    continue
            self._exec_loop_else(stmt, frame)
        return stmt.chain_end

    def _exec_loop_else(self, stmt: Statement, frame: Frame) -> None:
        if stmt.orelse is not None:
            self._exec_body(self.program.statements[stmt.orelse], frame)

    def _exec_if(self, stmt: Statement, frame: Frame) -> int:
        clause: Optional[Statement] = stmt
        while clause is not None:
            if clause.kind == "else" or is_truthy(self._value(clause, clause.node.test, frame)):
                self._exec_body(clause, frame)
                break
            clause = self.program.at(clause.orelse) if clause.orelse is not None else None
        return stmt.chain_end

    # --- simple statements --------------------------------------------------
    def _exec_node(self, stmt: Statement, node: ast.stmt, frame: Frame) -> None:
        evaluator = self.evaluator
        if isinstance(node, ast.Expr):
            self._value(stmt, node.value, frame)
        elif isinstance(node, ast.Assign):
            value = self._value(stmt, node.value, frame)
            for target in node.targets:
                evaluator.assign(target, value, frame)
        elif isinstance(node, ast.AugAssign):
            self._exec_augmented(stmt, node, frame)
        elif isinstance(node, ast.AnnAssign):
            if node.value is not None:
                evaluator.assign(node.target, self._value(stmt, node.value, frame), frame)
        elif isinstance(node, ast.Return):
            value = self._value(stmt, node.value, frame) if node.value is not None else None
            frame.set(RETURN_SLOT, value)
            raise _ReturnSignal()
        elif isinstance(node, ast.Break):
            raise _BreakSignal()
        elif isinstance(node, ast.Continue):
            raise _ContinueSignal()
        elif isinstance(node, ast.Delete):
            for target in node.targets:
                self._exec_delete(stmt, target, frame)
        elif isinstance(node, _NO_OPS):
            pass
        else:
            logger.debug("Skipping unsupported %s on line %d", type(node).__name__, stmt.index + 1)

    def _exec_augmented(self, stmt: Statement, node: ast.AugAssign, frame: Frame) -> None:
        # an unset target counts as 0
        rhs = self._value(stmt, node.value, frame)
        target = node.target
        if isinstance(target, ast.Name):
            current = frame.get(target.id)
            frame.set(target.id, self._combine(node.op, current, rhs))
            return
        container = self._value(stmt, target.value, frame)
        if isinstance(target, ast.Attribute):
            key: Any = target.attr
        elif isinstance(target.slice, ast.Slice):
            raise EvalError("slice assignment is not supported")
        else:
            key = self._value(stmt, target.slice, frame)
        write_index(container, key, self._combine(node.op, read_index(container, key), rhs))

    @staticmethod
    def _combine(op: ast.operator, current: Any, rhs: Any) -> Any:
        if current is None:
            current = 0
        if isinstance(op, ast.Add) and isinstance(current, list) and isinstance(rhs, list):
            # list += list extends in place like Python
            current.extend(rhs)
            return current
        return binary_op(op, current, rhs)

    def _exec_delete(self, stmt: Statement, target: ast.expr, frame: Frame) -> None:
        if isinstance(target, ast.Name):
            frame.delete(target.id)
        elif isinstance(target, ast.Subscript) and not isinstance(target.slice, ast.Slice):
            container = self._value(stmt, target.value, frame)
            key = self._value(stmt, target.slice, frame)
            if isinstance(container, dict):
                container.pop(key, None)
            elif isinstance(container, list):
                del container[key]
        elif isinstance(target, (ast.Tuple, ast.List)):
            for elt in target.elts:
                self._exec_delete(stmt, elt, frame)


class Interpreter:
    """Top-level PyPlay interpreter.

    Each `execute`/`run` call is an independent run session: variables,
    functions and output never carry over between calls.

    Tunable attributes:
    - max_iterations: loop iterations allowed before a loop is cut off
    - max_call_depth: nested user-function calls allowed
    - max_range_length: largest list ``range()`` may build
    - input_func: callable answering ``input(prompt)``; answers '' when unset
    """

    def __init__(self, input_func: Optional[Callable[[str], Any]] = None):
        self.max_iterations = 50_000
        self.max_call_depth = 50
        self.max_range_length = 1_000_000
        self.input_func = input_func
        # stats of the most recent session
        self.last_stats: Dict[str, int] = {}

    def compile(self, code: str) -> Program:
        return Program(code)

    def execute(self, code: str) -> List[str]:
        """Run `code` and return its output lines.

        Raises `EvalError` on a runtime failure; the error carries the
        1-based `line` of the failing statement and the `output` printed
        before the failure.
        """
        return self._execute(code, self.input_func or _no_input)

    def _execute(self, code: str, input_func: Callable[[str], Any]) -> List[str]:
        session = RunSession(
            self.compile(code),
            max_iterations=self.max_iterations,
            max_call_depth=self.max_call_depth,
            max_range_length=self.max_range_length,
            input_func=input_func,
        )
        try:
            session.run()
        except EvalError as e:
            e.output = list(session.output.lines)
            raise
        finally:
            self.last_stats = session.stats()
        return session.output.lines

    def run(
        self,
        code: str,
        inputs: Optional[List[str]] = None,
        settings: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Run `code` and return a result dict for the HTTP and CLI shells.

        `inputs` are queued answers for ``input()`` (an exhausted queue
        answers ''). `settings` may override max_iterations, max_call_depth
        and max_range_length, or request ``use_subprocess`` execution.

        Returns {"output": [lines], "errors": None | {"code", "message",
        "line"}, "stats": {...}}.
        """
        settings = settings or {}
        if settings.get("use_subprocess"):
            return self._run_in_subprocess(code, inputs, settings)

        self.max_iterations = int(settings.get("max_iterations", self.max_iterations))
        self.max_call_depth = int(settings.get("max_call_depth", self.max_call_depth))
        self.max_range_length = int(settings.get("max_range_length", self.max_range_length))
        input_func = self.input_func
        if inputs is not None or input_func is None:
            answers = iter(inputs or [])
            input_func = lambda prompt: next(answers, "")  # noqa: E731

        try:
            output = self._execute(code, input_func)
        except EvalError as e:
            return {
                "output": e.output,
                "errors": {"code": "RUNTIME_ERROR", "message": str(e), "line": e.line},
                "stats": self.last_stats,
            }
        return {"output": output, "errors": None, "stats": self.last_stats}

    def _run_in_subprocess(
        self, code: str, inputs: Optional[List[str]], settings: Dict[str, Any]
    ) -> Dict[str, Any]:
        # Execute in the sandboxed worker process; the worker replies with the
        # same result dict `run` produces in-process.
        forwarded = {k: v for k, v in settings.items() if k != "use_subprocess"}
        try:
            rc, out, err = subprocess_runner.run_code_in_subprocess(
                code,
                inputs,
                forwarded,
                timeout_s=float(settings.get("timeout_s", 2)),
            )
        except Exception as e:
            logger.warning("Subprocess launch failed: %s", e)
            return {
                "output": [],
                "errors": {"code": "SUBPROCESS_ERROR", "message": str(e), "line": None},
                "stats": {},
            }
        if rc != 0:
            return {
                "output": [],
                "errors": {
                    "code": "TIMEOUT" if err == "TIMEOUT" else "SUBPROCESS_FAILED",
                    "message": err.strip() or f"worker exited with status {rc}",
                    "line": None,
                },
                "stats": {},
            }
        try:
            return json.loads(out)
        except ValueError:
            return {
                "output": out.splitlines(),
                "errors": {"code": "SUBPROCESS_FAILED", "message": "malformed worker reply", "line": None},
                "stats": {},
            }


def render_display(output: List[str], errors: Optional[Dict[str, Any]] = None) -> str:
    """Render a run result the way the playground's output panel shows it."""
    if errors:
        return f"❌ Error: {errors.get('message')}"
    if not output:
        return NO_OUTPUT_MESSAGE
    return "\n".join(output)
