"""Operator command line: run the server, sweep expired sessions, upload a file."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from datetime import timedelta


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="upload-pipeline",
        description="Chunked upload and reassembly service.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes")

    sweep = subparsers.add_parser("sweep", help="Delete expired upload sessions")
    sweep.add_argument(
        "--max-age-hours",
        type=float,
        default=None,
        help="Override UPLOAD_PIPELINE_SESSION_TTL_HOURS",
    )

    upload = subparsers.add_parser("upload", help="Upload a file through the HTTP API")
    upload.add_argument("path", help="File to upload")
    upload.add_argument("--category", required=True)
    upload.add_argument("--user", required=True, help="User id sent as X-User-Id")
    upload.add_argument("--base-url", default="http://localhost:8000")
    upload.add_argument("--content-type", default=None)
    upload.add_argument("--chunk-size", type=int, default=None, help="Bytes per part")
    upload.add_argument("--workers", type=int, default=1, help="Parts sent concurrently")

    return parser


def _run_sweep(max_age_hours: float | None) -> int:
    from upload_pipeline.data.db import init_db
    from upload_pipeline.services.pipeline import build_default_pipeline

    init_db()
    max_age = timedelta(hours=max_age_hours) if max_age_hours is not None else None
    removed = build_default_pipeline().sweep_expired_sessions(max_age)
    print(f"Removed {removed} expired upload session(s)")
    return 0


def _run_upload(args: argparse.Namespace) -> int:
    from upload_pipeline.client import DEFAULT_CHUNK_SIZE, ChunkedUploader, UploadClientError

    uploader = ChunkedUploader(
        args.base_url,
        args.user,
        chunk_size=args.chunk_size or DEFAULT_CHUNK_SIZE,
        max_workers=args.workers,
    )
    try:
        result = uploader.upload_file(args.path, args.category, content_type=args.content_type)
    except FileNotFoundError:
        print(f"Error: file not found: {args.path}", file=sys.stderr)
        return 1
    except UploadClientError as exc:
        print(f"Error ({exc.code or 'unknown'}): {exc}", file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``upload-pipeline`` command.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    from upload_pipeline.config import configure_logging

    args = _build_parser().parse_args(argv)
    configure_logging()

    if args.command == "serve":
        from upload_pipeline.api.main import main as serve

        serve(host=args.host, port=args.port, reload=args.reload)
        return 0
    if args.command == "sweep":
        return _run_sweep(args.max_age_hours)
    return _run_upload(args)


if __name__ == "__main__":
    raise SystemExit(main())
