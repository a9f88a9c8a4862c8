"""Command line shell for PyPlay.

Usage:
  pyplay program.py
  pyplay - < program.py
  pyplay program.py --input Ada --input 42
  python -m backend.cli program.py --max-iterations 1000 --verbose

Prints the same text the playground's output panel shows and exits with
status 1 when the program fails at runtime.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .pyplay.interpreter import Interpreter, render_display


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="pyplay", description="Run a PyPlay program")
    p.add_argument("file", help="Program file to run, or '-' to read stdin")
    p.add_argument(
        "--input",
        dest="inputs",
        action="append",
        default=None,
        help="Answer for the next input() call (repeatable). Without it input() reads the terminal.",
    )
    p.add_argument("--max-iterations", type=int, default=None, help="Loop iterations allowed before a loop is cut off")
    p.add_argument("--max-call-depth", type=int, default=None, help="Nested function calls allowed")
    p.add_argument("--subprocess", action="store_true", help="Run the program in an isolated worker process")
    p.add_argument("--timeout", type=float, default=2.0, help="Worker timeout in seconds (with --subprocess)")
    p.add_argument("--stats", action="store_true", help="Print run statistics to stderr")
    p.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def read_source(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def main(argv: Optional[List[str]] = None) -> int:
    ns = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if ns.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        code = read_source(ns.file)
    except OSError as e:
        sys.stderr.write(f"pyplay: cannot read {ns.file}: {e}\n")
        return 2

    settings = {}
    if ns.max_iterations is not None:
        settings["max_iterations"] = ns.max_iterations
    if ns.max_call_depth is not None:
        settings["max_call_depth"] = ns.max_call_depth
    if ns.subprocess:
        settings["use_subprocess"] = True
        settings["timeout_s"] = ns.timeout

    it = Interpreter(input_func=input)
    result = it.run(code, inputs=ns.inputs, settings=settings)
    errors = result.get("errors")

    output = result.get("output") or []
    if errors and output:
        # lines printed before the failure
        print("\n".join(output))
    print(render_display(output, errors))
    if errors and errors.get("line"):
        sys.stderr.write(f"line {errors['line']}: {errors.get('message')}\n")
    if ns.stats:
        sys.stderr.write(" ".join(f"{k}={v}" for k, v in (result.get("stats") or {}).items()) + "\n")
    return 1 if errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
