#!/usr/bin/env python
"""Index plain-text files into the fragment store.

Usage:
    python scripts/index_files.py docs/             # Every .txt under docs/
    python scripts/index_files.py a.txt b.txt       # Specific files
    python scripts/index_files.py docs/ --verbose   # Show detailed progress
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import List

import httpx
import structlog

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from ragserve import config
from ragserve.bootstrap import build_service
from ragserve.errors import RAGError
from ragserve.logging_setup import configure_logging

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        """Start progress reporting."""
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, file_path: Path):
        """Update progress."""
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {file_path.name[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, stats: dict):
        """Finish progress reporting."""
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Indexing Complete!")
        print(f"{'=' * 60}\n")
        print(f"  Files processed:    {stats['files_processed']}")
        print(f"  Files failed:       {stats['files_failed']}")
        print(f"  Fragments stored:   {stats['fragments_indexed']}")
        print(f"  Time elapsed:       {elapsed_seconds:.1f}s")

        if stats["fragments_indexed"] > 0 and elapsed_seconds > 0:
            rate = stats["fragments_indexed"] / elapsed_seconds
            print(f"  Indexing rate:      {rate:.1f} fragments/sec")

        print(f"\n{'=' * 60}\n")

        if stats["files_failed"] > 0:
            print(f"Warning: {stats['files_failed']} file(s) failed to index.")
            print("   Check logs for details.\n")


def discover_text_files(paths: List[Path]) -> List[Path]:
    """Expand directories into the allowed files they contain."""
    files = []
    for path in paths:
        if path.is_dir():
            files.extend(
                sorted(
                    p for p in path.rglob("*")
                    if p.is_file() and p.suffix.lower() in config.ALLOWED_UPLOAD_EXTENSIONS
                )
            )
        elif path.is_file():
            files.append(path)
        else:
            raise FileNotFoundError(f"Path not found: {path}")
    return files


async def index_files(files: List[Path], progress: ProgressReporter) -> dict:
    """Index each file through the service, continuing past failures."""
    stats = {"files_processed": 0, "files_failed": 0, "fragments_indexed": 0}

    async with httpx.AsyncClient(timeout=config.HTTP_TIMEOUT) as http_client:
        service = await build_service(http_client)
        try:
            for idx, file_path in enumerate(files, 1):
                progress.update(idx, len(files), file_path)
                try:
                    content = file_path.read_text(encoding="utf-8")
                    result = await service.index_document(content, file_path.name)
                except (OSError, UnicodeDecodeError, RAGError) as e:
                    logger.error(
                        "file_indexing_failed",
                        path=str(file_path),
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    stats["files_failed"] += 1
                    continue

                stats["files_processed"] += 1
                stats["fragments_indexed"] += result.fragments_indexed
        finally:
            await service.store.close()

    return stats


async def main():
    """Main entry point for the indexing script."""
    parser = argparse.ArgumentParser(
        description="Index .txt files for retrieval",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/index_files.py docs/
  python scripts/index_files.py notes.txt --verbose
        """,
    )

    parser.add_argument("paths", nargs="+", type=Path, help="Files or directories")

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose progress output",
    )

    args = parser.parse_args()
    configure_logging("DEBUG" if args.verbose else "WARNING")

    progress = ProgressReporter(verbose=args.verbose)

    try:
        print("\nConfiguration:")
        print(f"   Database:         {config.DB_PATH}")
        print(f"   Embedding model:  {config.EMBEDDING_MODEL}")
        print(f"   Chunk size:       {config.CHUNK_SIZE} words")
        print(f"   Chunk overlap:    {config.CHUNK_OVERLAP} words")

        files = discover_text_files(args.paths)
        if not files:
            print("\nNo .txt files found.\n")
            sys.exit(1)

        progress.start(f"Indexing {len(files)} file(s)")
        stats = await index_files(files, progress)
        progress.finish(stats)

        if stats["files_failed"] > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\nIndexing cancelled by user.\n")
        sys.exit(1)

    except FileNotFoundError as e:
        print(f"\nError: {e}\n")
        sys.exit(1)

    except RAGError as e:
        print(f"\nError: {e}\n")
        logger.error("index_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
