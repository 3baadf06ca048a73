#!/usr/bin/env python3
"""
Container entry point: run the release phase, then exec gunicorn on $PORT.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scripts.release import run_release


def gunicorn_argv(port: str, workers: str) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", workers,
        "--timeout", os.environ.get("GUNICORN_TIMEOUT", "60"),
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    port = (os.environ.get("PORT") or "8080").strip()
    if not port.isdigit() or not 0 < int(port) < 65536:
        sys.exit(f"Invalid PORT {port!r}")
    workers = (os.environ.get("WEB_CONCURRENCY") or "2").strip()

    run_release()
    # Replace this process so gunicorn receives signals directly.
    os.execvp("gunicorn", gunicorn_argv(port, workers))


if __name__ == "__main__":
    main()
