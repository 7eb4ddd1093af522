"""Command-line entry points for magic_server."""

from __future__ import annotations

import re
import sys
from typing import List, Optional

from uvicorn.main import main as uvicorn_main

DEFAULT_APP = "magic_server.app.main:app"

_APP_TARGET_RE = re.compile(r"^[\w.]+:[\w.]+$")


def _with_default_app(args: List[str]) -> List[str]:
    if any(_APP_TARGET_RE.match(a) for a in args):
        return args
    return [DEFAULT_APP, *args]


def main(argv: Optional[List[str]] = None) -> None:
    """Delegate to uvicorn's CLI, serving the workspace app unless another target is given.

        $ magic-server --host 127.0.0.1 --port 8081
        $ magic-server magic_server.app.main:app --reload
    """
    args = _with_default_app(list(sys.argv[1:] if argv is None else argv))
    uvicorn_main.main(args=args, prog_name="magic-server")
