"""
CLI entry point for the Anim Codex web server.

Run:  anim-codex [--port 8765] [--dir /path/to/project]
"""

import argparse
import logging
import os

import web.state as _state
from config import app_config, get_credentials_info


def _install_log_handler() -> None:
    """Make app logs visible; uvicorn's log_level only affects its own loggers."""
    level = getattr(logging, app_config.log_level.upper(), logging.INFO)
    formatter = logging.Formatter("%(asctime)s %(levelname)s [web] %(message)s")
    for name in ("web", "agent", "tools"):
        log = logging.getLogger(name)
        log.setLevel(level)
        if not log.handlers:
            h = logging.StreamHandler()
            h.setLevel(level)
            h.setFormatter(formatter)
            log.addHandler(h)


def main():
    import uvicorn

    parser = argparse.ArgumentParser(description="Anim Codex: animation generation server")
    parser.add_argument("--port", type=int, default=8765, help="Server port (default: 8765)")
    parser.add_argument("--host", default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    parser.add_argument("--dir", default=None, help="Project root the agent reads from and runs tests in")
    args = parser.parse_args()

    if args.dir is not None:
        project_root = os.path.abspath(os.path.expanduser(args.dir))
        if not os.path.isdir(project_root):
            print(f"\n  Error: directory not found: {project_root}\n")
            raise SystemExit(1)
        _state._project_root = project_root
    else:
        project_root = app_config.project_root

    print(f"\n  Anim Codex")
    print(f"  ws://{args.host}:{args.port}/ws")
    print(f"  Project root: {project_root}")
    print(f"  Sessions dir: {_state.sessions_dir()}")
    print(f"  {get_credentials_info()}\n")

    _install_log_handler()

    from web import app
    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")
