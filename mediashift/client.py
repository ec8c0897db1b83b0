"""
MediaShift Client - for scripts and other services that want conversions done remotely

Usage:
    from mediashift.client import MediaShiftClient

    client = MediaShiftClient("http://localhost:8080")
    if await client.health_check():
        result = await client.convert(
            "compress-video",
            files=[("clip.mp4", data, "video/mp4")],
            options={"quality": "high", "resolution": "720p"},
        )
        Path(result.filename).write_bytes(result.data)
"""

import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Tuple

import httpx

logger = logging.getLogger(__name__)

# (filename, bytes, content type)
UploadTuple = Tuple[str, bytes, str]


class MediaShiftClientError(Exception):
    """A conversion the server refused or could not complete."""

    def __init__(self, status_code: int, kind: str, detail: str):
        super().__init__(f"{kind}: {detail}")
        self.status_code = status_code
        self.kind = kind
        self.detail = detail


@dataclass
class ConversionResult:
    """Converted bytes plus the metadata the server sends alongside them."""
    data: bytes
    filename: str
    mime_type: str
    original_size: int
    output_size: int
    job_id: Optional[str] = None

    @property
    def ratio(self) -> float:
        if not self.original_size:
            return 0.0
        return self.output_size / self.original_size


def _filename_from_disposition(header: str) -> str:
    marker = 'filename="'
    start = header.find(marker)
    if start < 0:
        return "output"
    start += len(marker)
    end = header.find('"', start)
    return header[start:end] if end > start else "output"


def _raise_for_error(response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    raise MediaShiftClientError(
        response.status_code,
        body.get("error", "http_error"),
        str(body.get("detail", response.text)),
    )


class MediaShiftClient:
    """
    Thin async client over the MediaShift HTTP API.

    `transport` lets callers route requests somewhere other than the network,
    e.g. `httpx.ASGITransport(app=...)` for in-process use.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        timeout: float = 660.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            transport=self.transport,
        )

    async def health_check(self) -> bool:
        """Check if the server is healthy."""
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get("/api/health")
                return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"Health check failed: {e}")
            return False

    async def get_capabilities(self) -> Dict[str, Any]:
        """Which backends the server can use."""
        async with self._client(timeout=10.0) as client:
            response = await client.get("/api/capabilities")
        _raise_for_error(response)
        return response.json()

    async def list_operations(self) -> List[Dict[str, Any]]:
        async with self._client(timeout=10.0) as client:
            response = await client.get("/api/operations")
        _raise_for_error(response)
        return response.json()["operations"]

    async def describe(self, operation: str) -> Dict[str, Any]:
        """Accepted formats, size ceiling and option domains of one operation."""
        async with self._client(timeout=10.0) as client:
            response = await client.get(f"/api/{operation}")
        _raise_for_error(response)
        return response.json()

    async def convert(
        self,
        operation: str,
        files: List[UploadTuple],
        options: Optional[Dict[str, str]] = None,
    ) -> ConversionResult:
        """
        Upload file(s) and wait for the converted result.

        Args:
            operation: Operation kind, e.g. "compress-video"
            files: One (filename, data, content_type) tuple, or several for
                image sequences
            options: String-valued operation options

        Raises:
            MediaShiftClientError: The server answered with an error body
        """
        if not files:
            raise ValueError("At least one file is required")

        field = "files" if len(files) > 1 else "file"
        multipart = [(field, upload) for upload in files]
        data = {k: str(v) for k, v in (options or {}).items()}

        async with self._client() as client:
            response = await client.post(f"/api/{operation}", files=multipart, data=data)
        _raise_for_error(response)

        headers = response.headers
        result = ConversionResult(
            data=response.content,
            filename=_filename_from_disposition(headers.get("content-disposition", "")),
            mime_type=headers.get("content-type", "application/octet-stream"),
            original_size=int(headers.get("x-original-size", 0)),
            output_size=int(headers.get("x-output-size", len(response.content))),
            job_id=headers.get("x-job-id"),
        )
        logger.info(
            f"Converted {files[0][0]} via {operation}: "
            f"{result.original_size} -> {result.output_size} bytes"
        )
        return result

    async def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Status of a recent job, or None if the server no longer knows it."""
        async with self._client(timeout=10.0) as client:
            response = await client.get(f"/api/jobs/{job_id}")
        if response.status_code == 404:
            return None
        _raise_for_error(response)
        return response.json()
