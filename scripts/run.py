from __future__ import annotations

import argparse
import os
import subprocess
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 56471


def _python() -> str:
    venv_bin = ROOT_DIR / ".venv" / ("Scripts" if os.name == "nt" else "bin")
    candidate = venv_bin / ("python.exe" if os.name == "nt" else "python")
    return str(candidate) if candidate.exists() else sys.executable


def _forward(module_or_script: list[str], extra: list[str]) -> int:
    if extra and extra[0] == "--":
        extra = extra[1:]
    cmd = [_python(), *module_or_script, *extra]
    print("+ " + " ".join(cmd))
    return subprocess.run(cmd, cwd=ROOT_DIR).returncode


def cmd_web(args: argparse.Namespace) -> int:
    import uvicorn

    if args.database_url:
        os.environ["DATABASE_URL"] = args.database_url
    if str(ROOT_DIR) not in sys.path:
        sys.path.insert(0, str(ROOT_DIR))
    print(f"starting risk workflow API at http://{args.host}:{args.port}")
    uvicorn.run("app.main:app", host=args.host, port=args.port, reload=args.reload, app_dir=str(ROOT_DIR))
    return 0


def cmd_test(args: argparse.Namespace) -> int:
    return _forward(["-m", "pytest"], list(args.pytest_args or []))


def cmd_cli(args: argparse.Namespace) -> int:
    extra = list(args.cli_args or []) or ["examples/ratings.json", "--out", "output/ratings.json"]
    return _forward(["-m", "risk_lifecycle.cli.main"], extra)


def cmd_seed(args: argparse.Namespace) -> int:
    return _forward([str(ROOT_DIR / "scripts" / "seed_demo.py")], ["--org", args.org])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Task runner for the GRC risk lifecycle service.")
    sub = parser.add_subparsers(dest="command", required=True)

    web_parser = sub.add_parser("web", help="Run the FastAPI service with uvicorn.")
    web_parser.add_argument("--host", default=DEFAULT_HOST, help="Bind host (default: 127.0.0.1).")
    web_parser.add_argument("--port", type=int, default=DEFAULT_PORT, help=f"Bind port (default: {DEFAULT_PORT}).")
    web_parser.add_argument("--reload", action="store_true", help="Enable autoreload.")
    web_parser.add_argument("--database-url", default="", help="Override DATABASE_URL for this run.")
    web_parser.set_defaults(func=cmd_web)

    test_parser = sub.add_parser("test", help="Run pytest.")
    test_parser.add_argument("pytest_args", nargs=argparse.REMAINDER, help="Optional pytest args.")
    test_parser.set_defaults(func=cmd_test)

    cli_parser = sub.add_parser("cli", help="Run the risk-score CLI.")
    cli_parser.add_argument("cli_args", nargs=argparse.REMAINDER, help="Args forwarded to risk-score.")
    cli_parser.set_defaults(func=cmd_cli)

    seed_parser = sub.add_parser("seed", help="Push demo risks through the workflow.")
    seed_parser.add_argument("--org", default="demo-org", help="Organization id to seed (default: demo-org).")
    seed_parser.set_defaults(func=cmd_seed)

    return parser


def main() -> int:
    args = build_parser().parse_args()
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
