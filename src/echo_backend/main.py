"""CLI entrypoint for serving the voice backend with uvicorn."""

from __future__ import annotations

import argparse
from typing import Sequence

import uvicorn


def main(argv: Sequence[str] | None = None) -> None:
    """Run the ASGI server."""

    parser = argparse.ArgumentParser(description="Serve the Echo voice backend")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument(
        "--reload", action="store_true", help="Restart on source changes"
    )
    args = parser.parse_args(argv)

    uvicorn.run(
        "echo_backend.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
