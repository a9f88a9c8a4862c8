"""Variable frames.

Each run session starts with one global frame. A user-function call pushes a
new frame whose parent is the frame the function was defined in (not the
caller's), and comprehensions evaluate every element in a throwaway child
frame. Reads walk the parent chain; writes always land in the innermost
frame, so a callee can never rebind a name in its caller.
"""

from typing import Any, Dict, Iterator, Optional, Tuple

# reserved slot a function body stores its result under
RETURN_SLOT = "__return__"


class Frame:
    def __init__(self, parent: Optional["Frame"] = None, values: Optional[Dict[str, Any]] = None):
        self.vars: Dict[str, Any] = dict(values) if values else {}
        self.parent = parent

    def lookup(self, name: str) -> Tuple[bool, Any]:
        """Return (found, value) searching this frame then its parents."""
        frame: Optional[Frame] = self
        while frame is not None:
            if name in frame.vars:
                return True, frame.vars[name]
            frame = frame.parent
        return False, None

    def get(self, name: str, default: Any = None) -> Any:
        found, value = self.lookup(name)
        return value if found else default

    def set(self, name: str, value: Any) -> None:
        self.vars[name] = value

    def delete(self, name: str) -> None:
        self.vars.pop(name, None)

    def child(self) -> "Frame":
        return Frame(parent=self)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.lookup(name)[0]

    def __iter__(self) -> Iterator[str]:
        return iter(self.vars)
