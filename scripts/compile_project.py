#!/usr/bin/env python
"""Compile a project directory or JSON file map into a single bundle."""
from __future__ import annotations

import argparse
import asyncio
import base64
import json
import logging
import mimetypes
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from app_constants import DEFAULT_ENTRY_FILE
from compiler import compile_project_bundle
from project_errors import ProjectError
from virtual_files import has_supported_extension

REPO_ROOT = Path(__file__).resolve().parents[1]
ENV_PATH = REPO_ROOT / ".env"


def load_env() -> None:
    if ENV_PATH.is_file():
        load_dotenv(ENV_PATH, override=False)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compile a virtual video project into one JavaScript bundle.")
    parser.add_argument(
        "source",
        type=Path,
        help="Project directory, or a JSON file mapping virtual paths to source text",
    )
    parser.add_argument("--entry", default=DEFAULT_ENTRY_FILE, help="Entry file virtual path")
    parser.add_argument("--output", type=Path, help="Write the bundle here instead of stdout")
    parser.add_argument(
        "--log-level",
        default=(os.getenv("LOG_LEVEL") or "WARNING").strip().upper(),
        help="Logging level (default: LOG_LEVEL or WARNING)",
    )
    return parser.parse_args(argv)


def _read_project_file(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        encoded = base64.b64encode(path.read_bytes()).decode("ascii")
        return f"data:{mime_type};base64,{encoded}"


def load_file_map(source: Path) -> dict[str, str]:
    """Virtual file map from a directory tree or a JSON object file.

    Directory files keep their path relative to ``source`` as the virtual
    path; binary assets are inlined as data URLs.
    """

    if source.is_dir():
        files: dict[str, str] = {}
        for path in sorted(source.rglob("*")):
            if not path.is_file() or not has_supported_extension(path.name):
                continue
            relative = path.relative_to(source).as_posix()
            files[f"/{relative}"] = _read_project_file(path)
        return files

    try:
        data = json.loads(source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SystemExit(f"Failed to parse JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise SystemExit("Top-level JSON value must be an object mapping paths to file contents.")
    return data


def main(argv: list[str] | None = None) -> int:
    load_env()
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(levelname)s %(name)s: %(message)s")

    files = load_file_map(args.source)
    if not files:
        print(f"No project files found in {args.source}", file=sys.stderr)
        return 1

    try:
        bundle = asyncio.run(compile_project_bundle(files, args.entry))
    except ProjectError as exc:
        print(f"Project compilation error: {exc}", file=sys.stderr)
        return 1

    if args.output:
        args.output.write_text(bundle, encoding="utf-8")
        print(f"Wrote {len(bundle)} characters to {args.output}")
    else:
        sys.stdout.write(bundle)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
