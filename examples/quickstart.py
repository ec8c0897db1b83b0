#!/usr/bin/env python3
"""
MediaShift Quick Start
======================

Run the server first:
    mediashift --port 8080

Then convert a file:
    python examples/quickstart.py compress-video clip.mp4 quality=high resolution=720p
    python examples/quickstart.py extract-audio talk.mkv bitrate=128
    python examples/quickstart.py image-sequence-to-gif a.png b.png c.png delay=200
"""

import asyncio
import mimetypes
import sys
from pathlib import Path

from mediashift.client import MediaShiftClient, MediaShiftClientError

MEDIASHIFT_SERVER = "http://localhost:8080"


async def convert(operation: str, paths, options) -> int:
    client = MediaShiftClient(MEDIASHIFT_SERVER)

    if not await client.health_check():
        print(f"MediaShift is not reachable at {MEDIASHIFT_SERVER}")
        return 1

    files = [
        (path.name, path.read_bytes(), mimetypes.guess_type(path.name)[0] or "application/octet-stream")
        for path in paths
    ]

    try:
        result = await client.convert(operation, files=files, options=options)
    except MediaShiftClientError as e:
        print(f"Conversion failed ({e.status_code} {e.kind}): {e.detail}")
        return 1

    output = paths[0].with_name(f"{Path(result.filename).stem}-{operation}{Path(result.filename).suffix}")
    output.write_bytes(result.data)
    print(f"{result.original_size} -> {result.output_size} bytes ({result.ratio:.0%}), saved to {output}")
    return 0


def main() -> int:
    if len(sys.argv) < 3:
        print(__doc__)
        return 1

    operation = sys.argv[1]
    paths = [Path(arg) for arg in sys.argv[2:] if "=" not in arg]
    options = dict(arg.split("=", 1) for arg in sys.argv[2:] if "=" in arg)
    return asyncio.run(convert(operation, paths, options))


if __name__ == "__main__":
    sys.exit(main())
