#!/usr/bin/env python3
"""CLI: Analyze interview recordings or transcripts and store the result as a project."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path

# Ensure the package is importable when running as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from researchoo import config
from researchoo.ai.ingest import resolve_mime_type
from researchoo.errors import describe_failure
from researchoo.models import detect_file_type
from researchoo.project.session import ProjectSession
from researchoo.storage.blob_store import BlobStore


def _print_progress(name: str):
    def callback(status: str, progress: int | None):
        pct = f"{progress:3d}%" if progress is not None else "   ?"
        print(f"  [{name}] {pct} {status}")
    return callback


def main() -> None:
    parser = argparse.ArgumentParser(description="Analyze user interview material with Gemini")
    parser.add_argument("files", nargs="+", type=Path, help="Video, audio or text files to analyze")
    parser.add_argument("--name", type=str, default=None, help="Project name")
    parser.add_argument(
        "--language",
        choices=("en", "uk"),
        default=config.DEFAULT_LANGUAGE,
        help="Language of the generated analysis (default: %(default)s)",
    )
    parser.add_argument(
        "--json",
        type=Path,
        default=None,
        help="Also write the open document as JSON to this path",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show how each file would be submitted without calling the API",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    missing = [f for f in args.files if not f.is_file()]
    if missing:
        for f in missing:
            print(f"Error: {f} is not a file.", file=sys.stderr)
        sys.exit(1)

    # ── Dry run: report what would happen, then exit ──
    if args.dry_run:
        for f in args.files:
            file_type = detect_file_type(f.name)
            size = f.stat().st_size
            if size > config.MAX_UPLOAD_BYTES:
                mode = "REJECTED (over size limit)"
            elif size <= config.INLINE_LIMIT_BYTES:
                mode = "inline"
            else:
                mode = "upload + poll"
            mime = resolve_mime_type(f, file_type)
            print(f"{f.name}: {file_type}, {mime}, {size / (1024 * 1024):.1f} MB -> {mode}")
        return

    if not config.GEMINI_API_KEY:
        print("Error: GEMINI_API_KEY is not set. Add it to .env.", file=sys.stderr)
        sys.exit(1)

    store = BlobStore(config.SQLITE_PATH)
    store.init_db()
    session = ProjectSession(store, language=args.language)
    session.load()
    session.new_project()
    if args.name:
        session.rename(args.name)

    start = time.time()
    added = session.add_files([(f.name, f.resolve(), None) for f in args.files])
    failed = 0
    for pf in added:
        print(f"\nAnalyzing {pf.name} ({pf.type})...")
        try:
            data = session.analyze_file(pf.id, on_progress=_print_progress(pf.name))
        except Exception as e:
            failed += 1
            print(f"  Failed: {describe_failure(e)}", file=sys.stderr)
            continue
        if data is not None:
            print(f"  Tags: {len(data.tags)}")
            print(f"  Highlights: {len(data.highlights)}")
            print(f"  Clusters: {len(data.clusters)}")
            print(f"  Insight rows: {len(data.insights.table)}")

    elapsed = time.time() - start
    print(f"\nDone in {elapsed:.1f}s ({len(added) - failed}/{len(added)} files analyzed)")
    print(f"  Project: {session.project_name} ({session.id})")
    print(f"  Database: {config.SQLITE_PATH}")

    if args.json and session.data is not None:
        args.json.write_text(json.dumps(session.data.to_dict(), indent=2, ensure_ascii=False))
        print(f"  JSON: {args.json}")

    store.close()
    if failed == len(added):
        sys.exit(1)


if __name__ == "__main__":
    main()
