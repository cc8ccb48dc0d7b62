#!/usr/bin/env python3
"""
CLI tool for the call detail ingestion pipeline

This provides a command-line interface for:
- Splitting a large CSV into bounded chunk files
- Splitting and ingesting an upload into the destination
- Querying ingested call details
- Creating the destination tables
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from .config import settings
from .errors import CdrPipelineError
from .ingestion import CallDetailsUploader, name_prefix_for
from .logging_config import configure_logging
from .models import SourceStream
from .parsers import DateTimeMergeTransformer, StreamSplitter, bound_from_config
from .utils.database import CallDetailRepository


def split_file(args) -> int:
    """Split a CSV file into chunk files and print their descriptors"""

    file_path = Path(args.file)
    if not file_path.exists():
        print(f"Error: File {file_path} does not exist")
        return 1

    splitter = StreamSplitter(
        temp_dir=args.output_dir or settings.temp_dir,
        validate_header=not args.no_validate,
    )
    if args.max_rows or args.max_bytes:
        bound = bound_from_config(args.max_rows, args.max_bytes)
    else:
        bound = bound_from_config(settings.ingest_max_lines, settings.ingest_max_bytes)
    transform = None if args.no_transform else DateTimeMergeTransformer()

    with open(file_path, "rb") as stream:
        chunks = splitter.split(
            SourceStream(stream=stream, encoding=args.encoding),
            name_prefix=args.prefix or name_prefix_for(file_path.name),
            bound=bound,
            transform=transform,
        )

    print(f"Split {file_path.name} into {len(chunks)} chunk(s) in {splitter.directory}")
    print("-" * 50)
    for chunk in chunks:
        print(f"{chunk.sequence_number:>5}  {chunk.row_count:>10} rows  {chunk.byte_size:>14} bytes  {chunk.file_name}")

    if args.output:
        with open(args.output, 'w') as f:
            json.dump([chunk.to_dict() for chunk in chunks], f, indent=2)
        print(f"\nChunk list saved to: {args.output}")

    return 0


def upload_file(args) -> int:
    """Split a CSV file and ingest every chunk"""

    file_path = Path(args.file)
    if not file_path.exists():
        print(f"Error: File {file_path} does not exist")
        return 1

    run_settings = settings
    if args.max_concurrency:
        run_settings = settings.model_copy(update={"ingest_max_concurrency": args.max_concurrency})

    uploader = CallDetailsUploader.from_settings(
        run_settings, lambda: CallDetailRepository.from_settings(run_settings)
    )
    with open(file_path, "rb") as stream:
        result = uploader.upload(stream, file_path.name)

    print(f"Ingested {result.total_rows} row(s) from {file_path.name} in {len(result.chunks)} chunk(s)")
    skipped = sum(1 for outcome in result.outcomes if outcome.skipped_duplicate)
    if skipped:
        print(f"Skipped {skipped} chunk(s) already ingested")

    if args.verbose:
        for outcome in result.outcomes:
            print(f"  {outcome.task.dedup_key}: attempts={outcome.attempts} skipped={outcome.skipped_duplicate}")

    return 0


def query_calls(args) -> int:
    """Print call details for a caller"""

    records = CallDetailRepository.from_settings(settings).get_by_caller(args.caller, args.take)
    for record in records:
        print(json.dumps(record.to_dict(), default=str))
    if args.verbose:
        print(f"{len(records)} record(s)", file=sys.stderr)
    return 0


def init_db(args) -> int:
    """Create destination tables"""

    CallDetailRepository.from_settings(settings).ensure_schema()
    print(f"Tables {settings.destination_table} and {settings.ingestion_tags_table} are ready")
    return 0


def setup_parser() -> argparse.ArgumentParser:
    """Setup command line argument parser"""

    parser = argparse.ArgumentParser(
        prog="cdr-ingest",
        description="Call detail record chunking and ingestion",
    )
    parser.add_argument('--log-level', default=None, help='Override the configured log level')
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    split_parser = subparsers.add_parser('split', help='Split a CSV file into chunk files')
    split_parser.add_argument('file', help='Path to the CSV file')
    split_parser.add_argument('--prefix', help='Chunk file name prefix (default: file name)')
    split_parser.add_argument('--output-dir', help='Directory for chunk files (default: temp dir)')
    split_parser.add_argument('--max-rows', type=int, help='Maximum data rows per chunk')
    split_parser.add_argument('--max-bytes', type=int, help='Maximum encoded bytes per chunk')
    split_parser.add_argument('--encoding', help='Input encoding (default: BOM or UTF-8)')
    split_parser.add_argument('--no-validate', action='store_true', help='Skip header validation')
    split_parser.add_argument('--no-transform', action='store_true', help='Keep call_date and end_time separate')
    split_parser.add_argument('--output', '-o', help='Write the chunk list as JSON')

    upload_parser = subparsers.add_parser('upload', help='Split a CSV file and ingest it')
    upload_parser.add_argument('file', help='Path to the CSV file')
    upload_parser.add_argument('--max-concurrency', type=int, help='Chunks ingested in parallel')
    upload_parser.add_argument('--verbose', '-v', action='store_true', help='Per-chunk output')

    query_parser = subparsers.add_parser('query', help='Query call details')
    query_parser.add_argument('--caller', help='Caller id to filter by')
    query_parser.add_argument('--take', type=int, help='Maximum number of records')
    query_parser.add_argument('--verbose', '-v', action='store_true', help='Print record count')

    subparsers.add_parser('init-db', help='Create destination tables')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI function"""

    parser = setup_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(args.log_level or settings.log_level, settings.log_json)

    commands = {
        'split': split_file,
        'upload': upload_file,
        'query': query_calls,
        'init-db': init_db,
    }

    try:
        return commands[args.command](args)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1
    except CdrPipelineError as e:
        print(f"Error: {e.message}")
        return 1
    except OSError as e:
        print(f"Error: {str(e)}")
        return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
