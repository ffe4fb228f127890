#!/usr/bin/env python3
"""
Container entrypoint: release phase, then exec gunicorn in place of this
process so it receives signals directly.

Env: PORT (default 8080), WEB_CONCURRENCY (default 2), GUNICORN_TIMEOUT (default 60).
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _int_env(name: str, default: int, *, lo: int, hi: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        value = lo - 1
    if not lo <= value <= hi:
        print(f"ERROR: {name}={raw!r} must be an integer between {lo} and {hi}.", flush=True)
        sys.exit(1)
    return value


def gunicorn_argv(port: int, workers: int, timeout: int) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        "--timeout", str(timeout),
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    port = _int_env("PORT", 8080, lo=1, hi=65535)
    workers = _int_env("WEB_CONCURRENCY", 2, lo=1, hi=64)
    timeout = _int_env("GUNICORN_TIMEOUT", 60, lo=1, hi=3600)

    from scripts.release import run_release

    try:
        run_release()
    except Exception as e:
        print(f"Release failed, not starting web workers: {e}", flush=True)
        sys.exit(1)

    print(f"=== gunicorn on :{port} ({workers} workers) ===", flush=True)
    os.execvp("gunicorn", gunicorn_argv(port, workers, timeout))


if __name__ == "__main__":
    main()
