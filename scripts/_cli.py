"""Zero-arg CLI wrappers for console_scripts entry points.

Each script's ``main(argv)`` accepts ``sys.argv[1:]``.  The wrappers here
adapt that signature to the zero-arg callable that setuptools
console_scripts expects.
"""
from __future__ import annotations

import sys


def siterefresh_scheduler() -> None:
    from scripts.scheduler_cli import main
    raise SystemExit(main(sys.argv[1:]))
