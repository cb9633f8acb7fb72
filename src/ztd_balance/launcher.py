from __future__ import annotations

import argparse
import os
from pathlib import Path

import uvicorn


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="ztd-balance-api",
        description="Run the balance analytics API server.",
    )
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--config", default="", help="JSON/YAML engine config.")
    parser.add_argument("--root", default="", help="Directory that receives runtime/sessions and runtime/reports.")
    parser.add_argument("--backend", default="numpy", choices=("numpy", "python"))
    parser.add_argument("--log-level", default="info")
    args = parser.parse_args(argv)

    if args.config:
        os.environ["ZTD_BALANCE_CONFIG"] = str(Path(args.config).expanduser().resolve())
    if args.root:
        os.environ["ZTD_BALANCE_ROOT"] = str(Path(args.root).expanduser().resolve())
    os.environ["ZTD_BALANCE_BACKEND"] = args.backend

    # Import after env setup so api.py picks up the config and backend.
    from ztd_balance.api import app as api_app

    print(f"Balance API on http://{args.host}:{args.port} (backend: {args.backend})")
    uvicorn.run(api_app, host=args.host, port=args.port, log_level=args.log_level)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
