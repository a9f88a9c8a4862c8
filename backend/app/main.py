"""FastAPI application entrypoints for PyPlay.

This module exposes the HTTP endpoints used by the playground page and the
tests. Handlers stay small: each `/run` request constructs a fresh
`Interpreter` so no variables or functions leak between requests, and
server-side caps stop clients from raising the interpreter's safety limits.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import FastAPI
from pydantic import BaseModel

from .. import db
from ..pyplay.interpreter import Interpreter, render_display

logger = logging.getLogger(__name__)

app = FastAPI(title="PyPlay API", version="0.1")

# longest wall-clock time a subprocess run may take, in seconds
MAX_SUBPROCESS_TIMEOUT_S = 5.0


def _cap_settings(settings: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Enforce server-side caps for runtime tunables.

    Clients may send a `settings` object with per-run tunables. The defaults
    of a fresh `Interpreter()` are the ceiling; requested values are applied
    up to those ceilings.

    Returns a dict suitable for passing directly into `Interpreter.run`.
    """
    defaults = Interpreter()
    safe: Dict[str, Any] = {
        "max_iterations": defaults.max_iterations,
        "max_call_depth": defaults.max_call_depth,
        "max_range_length": defaults.max_range_length,
    }
    if not settings:
        return safe
    caps: Dict[str, Any] = {}
    # coerce and clamp numeric values to the server's maximums
    for key, ceiling in safe.items():
        caps[key] = max(1, min(int(settings.get(key, ceiling)), ceiling))
    if settings.get("use_subprocess"):
        caps["use_subprocess"] = True
        caps["timeout_s"] = min(float(settings.get("timeout_s", 2)), MAX_SUBPROCESS_TIMEOUT_S)
    return caps


@app.on_event('startup')
def startup():
    """FastAPI startup event: initialize the database schema."""
    db.init_db()


class RunRequest(BaseModel):
    """Body of a `/run` request.

    Fields:
        code: program source text.
        inputs: optional queued answers for ``input()`` calls.
        settings: optional runtime tunables; capped server-side.
        script_id: optional id to associate this run with a saved script.
    """
    code: str
    inputs: Optional[List[str]] = None
    settings: Optional[Dict[str, Any]] = None
    script_id: Optional[int] = None


@app.post("/run")
async def run_code(req: RunRequest):
    """Handle a code execution request.

    Builds a fresh `Interpreter` per request, applies the capped settings and
    calls `Interpreter.run`. Successful runs are recorded in the run history.
    Unexpected exceptions become a SERVER_ERROR payload so callers always
    receive the same JSON shape.
    """
    start = time.time()
    try:
        capped = _cap_settings(req.settings or {})
        it = Interpreter()
        result = it.run(req.code, inputs=req.inputs or [], settings=capped)
    except Exception as e:
        logger.exception("Run failed")
        errors = {"code": "SERVER_ERROR", "message": str(e), "line": None}
        return {
            "output": [],
            "errors": errors,
            "stats": {},
            "warnings": [],
            "display": render_display([], errors),
            "duration_ms": int((time.time() - start) * 1000),
        }
    result["duration_ms"] = int((time.time() - start) * 1000)
    result["display"] = render_display(result.get("output") or [], result.get("errors"))
    result["warnings"] = []

    # persist successful runs (non-fatal; on failure we append a warning)
    try:
        if result.get("errors") is None:
            stats = result.get("stats") or {}
            db.save_run(
                req.script_id,
                result.get("output"),
                stats.get("iterations"),
                stats.get("calls"),
                result["duration_ms"],
            )
    except Exception as e:
        logger.warning("Failed to persist run: %s", e)
        result["warnings"].append(f"Failed to persist run: {e}")

    return result


class SaveScriptRequest(BaseModel):
    title: str
    code: str


@app.post('/save')
async def save_script(req: SaveScriptRequest):
    try:
        script_id = db.save_script(req.title, req.code)
    except Exception as e:
        return {'error': str(e)}
    return {'script_id': script_id}


@app.get('/scripts')
async def list_scripts():
    return db.list_scripts()


@app.get('/scripts/{script_id}')
async def get_script(script_id: int):
    s = db.get_script(script_id)
    if not s:
        return {'error': 'not found'}
    return s


@app.get('/stats')
async def list_stats(script_id: Optional[int] = None):
    return db.list_runs(script_id)
