#!/usr/bin/env python3
"""Command-line access to ACMI recordings.

Usage:
    tacview-acmi <command> [options]

Commands:
    dump      Print one line per frame
    stats     Print object/frame/error counts as JSON
    convert   Re-encode a recording (compress, decompress, full state)

Examples:
    # List the frames of a recording
    tacview-acmi dump flight.zip.acmi

    # Unzip a recording, writing every update in full
    tacview-acmi convert flight.zip.acmi flight.txt.acmi --decompress --full-state
"""
from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import time
from collections import Counter
from pathlib import Path
from typing import Optional, Sequence

from tacview.compression import Compression
from tacview.config import AcmiConfig, load_config
from tacview.errors import AcmiError
from tacview.line_codec import format_number
from tacview.properties import format_tags, object_tags
from tacview.reader import open_reader
from tacview.writer import open_writer

LOGGER = logging.getLogger(__name__)


def _load_settings(args: argparse.Namespace) -> AcmiConfig:
    config = load_config(args.config)
    if args.strict:
        config = dataclasses.replace(config, strict=True)
    return config


def _reader_config(args: argparse.Namespace) -> AcmiConfig:
    # Input containers are always detected from content
    return dataclasses.replace(_load_settings(args), compression=None)


def _check_input(path: Path) -> bool:
    if not path.exists():
        LOGGER.error("ACMI file not found: %s", path)
        return False
    return True


def cmd_dump(args: argparse.Namespace) -> int:
    """Handle the dump subcommand."""
    if not _check_input(args.acmi_path):
        return 1

    config = _reader_config(args)
    start = time.perf_counter()
    errors = 0
    try:
        with open_reader(args.acmi_path, config) as reader:
            for key, value in reader.session.metadata.items():
                print(f"{key}={value}")
            for frame in reader:
                errors += len(frame.errors)
                print(
                    f"#{format_number(frame.time)} updates={len(frame.updates)} "
                    f"removals={len(frame.removals)} globals={len(frame.global_updates)} "
                    f"events={len(frame.events)} errors={len(frame.errors)}"
                )
    except (AcmiError, OSError) as e:
        LOGGER.error("%s: %s", args.acmi_path, e)
        return 1

    if errors:
        LOGGER.warning("%d line(s) skipped", errors)
    print(f"Took: {time.perf_counter() - start:.4f}s")
    return 0


def collect_stats(path: Path, config: AcmiConfig) -> dict:
    """Read a whole recording and summarize it."""
    objects = set()
    types: dict[int, str] = {}
    frames = 0
    removals = 0
    events = 0
    errors = 0
    first_time: Optional[float] = None
    last_time: Optional[float] = None

    with open_reader(path, config) as reader:
        metadata = dict(reader.session.metadata)
        version = reader.session.file_version
        for frame in reader:
            frames += 1
            if first_time is None:
                first_time = frame.time
            last_time = frame.time
            objects.update(update.object_id for update in frame.updates)
            for update in frame.updates:
                value = update.properties.get("Type")
                if isinstance(value, str):
                    types[update.object_id] = value
            removals += len(frame.removals)
            events += len(frame.events)
            errors += len(frame.errors)
        live = len(reader.session.tracker)

    tags: Counter = Counter()
    for value in types.values():
        tags.update(format_tags([tag]) for tag in object_tags(value))

    return {
        "file": str(path),
        "file_version": version,
        "title": metadata.get("Title"),
        "frames": frames,
        "objects": len(objects),
        "removed_objects": removals,
        "live_objects": live,
        "tags": dict(sorted(tags.items())),
        "events": events,
        "errors": errors,
        "start_time": first_time,
        "duration": (last_time - first_time) if frames else 0.0,
    }


def cmd_stats(args: argparse.Namespace) -> int:
    """Handle the stats subcommand."""
    if not _check_input(args.acmi_path):
        return 1

    try:
        stats = collect_stats(args.acmi_path, _reader_config(args))
    except (AcmiError, OSError) as e:
        LOGGER.error("%s: %s", args.acmi_path, e)
        return 1

    print(json.dumps(stats, indent=2))
    return 0


def cmd_convert(args: argparse.Namespace) -> int:
    """Handle the convert subcommand."""
    if not _check_input(args.input):
        return 1

    settings = _load_settings(args)
    reader_config = dataclasses.replace(settings, compression=None)
    compression = settings.compression
    if args.compress:
        compression = Compression.ZIP
    elif args.decompress:
        compression = Compression.RAW
    writer_config = dataclasses.replace(
        settings,
        compression=compression,
        full_state=args.full_state or settings.full_state,
    )

    errors = 0
    try:
        with open_reader(args.input, reader_config) as reader:
            with open_writer(args.output, writer_config, reader.session.metadata) as writer:
                for frame in reader:
                    errors += len(frame.errors)
                    writer.write_frame(frame)
                frames = writer.frames_written
    except (AcmiError, OSError) as e:
        LOGGER.error("Conversion of %s failed: %s", args.input, e)
        return 1

    if errors:
        LOGGER.warning("%d line(s) skipped while reading %s", errors, args.input)
    LOGGER.info("Wrote %d frames to %s", frames, args.output)
    return 0


def add_dump_parser(subparsers: argparse._SubParsersAction) -> None:
    """Add the dump subcommand parser."""
    parser_dump = subparsers.add_parser(
        "dump",
        help="Print one line per frame",
        description="Print the header metadata and a summary line for every frame.",
    )
    parser_dump.add_argument("acmi_path", type=Path, help="Path to TacView ACMI file")
    parser_dump.set_defaults(func=cmd_dump)


def add_stats_parser(subparsers: argparse._SubParsersAction) -> None:
    """Add the stats subcommand parser."""
    parser_stats = subparsers.add_parser(
        "stats",
        help="Print recording statistics as JSON",
    )
    parser_stats.add_argument("acmi_path", type=Path, help="Path to TacView ACMI file")
    parser_stats.set_defaults(func=cmd_stats)


def add_convert_parser(subparsers: argparse._SubParsersAction) -> None:
    """Add the convert subcommand parser."""
    parser_convert = subparsers.add_parser(
        "convert",
        help="Re-encode a recording",
        description="Read a recording and write it again. Output compression "
        "follows the output file name unless --compress or --decompress is given.",
    )
    parser_convert.add_argument("input", type=Path, help="Recording to read")
    parser_convert.add_argument("output", type=Path, help="Recording to write")
    group = parser_convert.add_mutually_exclusive_group()
    group.add_argument(
        "--compress",
        action="store_true",
        help="Write a zip-compressed recording",
    )
    group.add_argument(
        "--decompress",
        action="store_true",
        help="Write a plain text recording",
    )
    parser_convert.add_argument(
        "--full-state",
        dest="full_state",
        action="store_true",
        help="Write every update in full instead of only changed properties",
    )
    parser_convert.set_defaults(func=cmd_convert)


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    main_parser = argparse.ArgumentParser(
        prog="tacview-acmi",
        description="Read, inspect and convert Tacview ACMI recordings",
        epilog="Use '%(prog)s <command> --help' for more information on each command.",
    )
    main_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    main_parser.add_argument(
        "--config",
        type=Path,
        help="Path to reader/writer settings JSON",
    )
    main_parser.add_argument(
        "--strict",
        action="store_true",
        help="Stop at the first malformed line instead of skipping it",
    )

    subparsers = main_parser.add_subparsers(
        title="commands",
        dest="command",
        required=True,
        metavar="<command>",
    )

    add_dump_parser(subparsers)
    add_stats_parser(subparsers)
    add_convert_parser(subparsers)

    return main_parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=log_level, format="%(levelname)s: %(message)s")

    try:
        return args.func(args)
    except ValueError as e:
        LOGGER.error("%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
