"""Restricted evaluation of user-authored chart transforms.

The transform source is the body of a function ``transform(rows)``. Before
compiling, a denylist regex strips names tied to dynamic evaluation, timer
scheduling, thread/process spawning and module loading, and the function
runs with a ``__builtins__`` allow-list of container types and a few pure
helpers. This keeps honest mistakes contained; it is NOT a security
boundary. The denylist over-matches (a column called ``sleep`` disappears
from the source) and under-matches (attribute walks on row values still
reach the interpreter), and nothing bounds CPU or memory use. Only run
transforms written by people who already hold the connection's credentials.
"""

from __future__ import annotations

import builtins
import re
import textwrap
from typing import Any, Callable, Mapping, Sequence

DENYLIST = re.compile(
    r"\b(?:"
    r"eval|exec|compile|breakpoint"
    r"|Timer|sched|sleep|call_later|asyncio"
    r"|threading|Thread|multiprocessing|subprocess|concurrent"
    r"|__import__|importlib"
    r"|import"
    r")\b[ \t]*"
)

ALLOWED_BUILTINS: tuple[str, ...] = (
    "dict",
    "list",
    "tuple",
    "set",
    "frozenset",
    "str",
    "int",
    "float",
    "bool",
    "len",
    "range",
    "enumerate",
    "zip",
    "sorted",
    "reversed",
    "min",
    "max",
    "sum",
    "abs",
    "round",
    "any",
    "all",
    "isinstance",
)

TRANSFORM_NAME = "transform"

Transform = Callable[[list[dict[str, Any]]], object]


def strip_denied(source: str) -> str:
    """Remove denylisted names from transform source."""

    return DENYLIST.sub("", source)


def _restricted_builtins() -> dict[str, Any]:
    return {name: getattr(builtins, name) for name in ALLOWED_BUILTINS}


def compile_transform(source: str) -> Transform:
    """Wrap and compile a transform body; raises ``SyntaxError`` on bad source."""

    body = textwrap.dedent(strip_denied(source)).strip("\n")
    wrapped = f"def {TRANSFORM_NAME}(rows):\n{textwrap.indent(body, '    ')}\n    pass\n"
    code = compile(wrapped, "<chart transform>", "exec")
    namespace: dict[str, Any] = {"__builtins__": _restricted_builtins()}
    exec(code, namespace)
    return namespace[TRANSFORM_NAME]


def run_transform(source: str, rows: Sequence[Mapping[str, Any]]) -> object:
    """Run a transform against copies of ``rows`` and return whatever it returns."""

    transform = compile_transform(source)
    return transform([dict(row) for row in rows])


__all__ = [
    "ALLOWED_BUILTINS",
    "DENYLIST",
    "compile_transform",
    "run_transform",
    "strip_denied",
]
