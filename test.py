#!/usr/bin/env python3
"""
MediaShift smoke check.

Converts synthetic media (encoded in memory, see tests/media.py) with every
operation kind through the real controller and prints one line per case.

Usage:
    python test.py                       # local ffmpeg first, embedded engine as fallback
    python test.py --embedded            # embedded engine only
    python test.py compress-video gif-to-video   # only these operations
"""

import argparse
import asyncio
import sys
import tempfile
import time
from pathlib import Path

PROJECT_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_DIR))
sys.path.insert(0, str(PROJECT_DIR / "tests"))

from mediashift.errors import MediaShiftError
from mediashift.transcoding import (
    EmbeddedEngine,
    EmbeddedEngineBackend,
    JobTrace,
    LocalProcessBackend,
    SourceFile,
    TempResourceManager,
    TranscodeController,
    TranscodeRequest,
)

from media import ROUND_TRIPS, sources_for


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run every conversion once on synthetic media")
    parser.add_argument("operations", nargs="*", help="Limit the run to these operation names")
    parser.add_argument("--embedded", action="store_true", help="Skip the local ffmpeg backend")
    return parser.parse_args(argv)


async def run_cases(controller: TranscodeController, cases) -> int:
    failures = 0
    for operation, sample, options in cases:
        label = f"{operation} ({sample}{', ' if options else ''}{', '.join(f'{k}={v}' for k, v in options.items())})"
        request = TranscodeRequest(
            operation=operation,
            sources=tuple(SourceFile(name, data, ctype) for name, data, ctype in sources_for(sample)),
            options=options,
        )
        trace = JobTrace(operation)
        started = time.monotonic()
        try:
            result = await controller.run(request, trace=trace)
        except MediaShiftError as e:
            failures += 1
            print(f"[FAIL] {label}: {e.message}")
            for line in trace.attempt_summary():
                print(f"         {line}")
            continue

        backend = trace.attempts[-1][0].value
        print(
            f"[PASS] {label}: {result.original_size} -> {result.output_size} bytes "
            f"{result.mime_type} via {backend} in {time.monotonic() - started:.2f}s"
        )
    return failures


def main(argv=None) -> int:
    args = parse_args(argv)
    cases = [case for case in ROUND_TRIPS if not args.operations or case[0] in args.operations]
    if not cases:
        print(f"[ERROR] No cases match: {', '.join(args.operations)}")
        return 2

    engine = EmbeddedEngine(threads=2)
    backends = [EmbeddedEngineBackend(engine)]
    if not args.embedded:
        backends.insert(0, LocalProcessBackend())

    with tempfile.TemporaryDirectory(prefix="mediashift_smoke_") as scratch:
        controller = TranscodeController(TempResourceManager(scratch), backends)
        try:
            failures = asyncio.run(run_cases(controller, cases))
        finally:
            engine.shutdown()

    print(f"\n{len(cases) - failures}/{len(cases)} conversions succeeded")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
