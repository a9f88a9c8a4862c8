"""Subprocess worker that runs one PyPlay program.

Executed as ``python -m backend.pyplay._subprocess_worker``. It reads a single
JSON object from stdin with shape {"code": "...", "inputs": [...],
"settings": {...}}, runs the program with a fresh `Interpreter` and writes the
`Interpreter.run` result dict to stdout as JSON.

The calling process enforces wall-clock timeouts and resource caps.
"""

import json
import sys

from backend.pyplay.interpreter import Interpreter


def main() -> None:
    raw = sys.stdin.read()
    try:
        payload = json.loads(raw)
        code = payload.get("code", "")
        inputs = payload.get("inputs") or []
        settings = payload.get("settings") or {}
    except (ValueError, AttributeError) as e:
        # Communicate payload decoding errors via JSON to the parent process
        print(json.dumps({
            "output": [],
            "errors": {"code": "BAD_PAYLOAD", "message": str(e), "line": None},
            "stats": {},
        }))
        sys.exit(1)

    settings.pop("use_subprocess", None)
    result = Interpreter().run(code, inputs=inputs, settings=settings)
    print(json.dumps(result))


if __name__ == "__main__":
    main()
