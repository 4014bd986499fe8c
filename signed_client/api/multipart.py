"""Multipart form bodies for file uploads.

Every file goes out under the ``files`` form field, followed by the plain
form fields. The body is rendered once up front so its length is known and
upload progress can be reported as the transport consumes it.
"""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any

import aiohttp

from ..constants import APPLICATION_OCTET_STREAM, UPLOAD_CHUNK_SIZE, UPLOAD_FIELD_NAME
from ..errors.internal import InternalError

ProgressCallback = Callable[[int], None]


@dataclass
class UploadFile:
    """One file to upload.

    Attributes:
        content: Raw bytes, a readable binary file object, or a filesystem path.
        content_type: MIME type sent with the part.
        filename: Name reported to the server; defaults to the path's name,
            or ``file-<index>`` when there is no path.
    """

    content: bytes | IO[bytes] | str | os.PathLike[str]
    content_type: str = APPLICATION_OCTET_STREAM
    filename: str | None = None

    def resolve_filename(self, index: int) -> str:
        if self.filename:
            return self.filename
        if isinstance(self.content, str | os.PathLike):
            return Path(self.content).name
        return f"file-{index}"

    def read(self) -> bytes:
        """Load the file content (blocking for paths and file objects)."""
        if isinstance(self.content, bytes | bytearray):
            return bytes(self.content)
        if isinstance(self.content, str | os.PathLike):
            try:
                return Path(self.content).read_bytes()
            except OSError as e:
                raise InternalError(
                    f"Cannot read upload file {self.content}", data={"path": str(self.content)}
                ) from e
        return self.content.read()


@dataclass
class MultipartBody:
    """A rendered ``multipart/form-data`` payload.

    ``iter_chunks`` feeds the transport and reports integer percentages to
    ``on_progress`` as each chunk is consumed, ending at 100.
    """

    content: bytes
    content_type: str
    on_progress: ProgressCallback | None = None
    chunk_size: int = UPLOAD_CHUNK_SIZE

    def __len__(self) -> int:
        return len(self.content)

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        total = len(self.content)
        sent = 0
        for start in range(0, total, self.chunk_size):
            chunk = self.content[start : start + self.chunk_size]
            yield chunk
            sent += len(chunk)
            if self.on_progress is not None:
                self.on_progress(round(sent * 100 / total))


class _BufferWriter:
    """Collects what MultipartWriter writes."""

    def __init__(self) -> None:
        self.buffer = bytearray()

    async def write(self, chunk: bytes) -> None:
        self.buffer.extend(chunk)


def _field_text(value: Any) -> str | bytes:
    if isinstance(value, str | bytes):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


async def build_multipart(
    files: Sequence[UploadFile],
    fields: Mapping[str, Any] | None = None,
    on_progress: ProgressCallback | None = None,
) -> MultipartBody:
    """Render files and form fields into a MultipartBody.

    Non-string field values are sent as compact JSON.

    Raises:
        InternalError: If a file path cannot be read.
    """
    loop = asyncio.get_running_loop()
    writer = aiohttp.MultipartWriter("form-data")
    for index, upload in enumerate(files):
        data = await loop.run_in_executor(None, upload.read)
        part = writer.append_payload(aiohttp.BytesPayload(data, content_type=upload.content_type))
        part.set_content_disposition(
            "form-data", name=UPLOAD_FIELD_NAME, filename=upload.resolve_filename(index)
        )
    for name, value in (fields or {}).items():
        if value is None:
            continue
        part = writer.append(_field_text(value))
        part.set_content_disposition("form-data", name=name)

    out = _BufferWriter()
    await writer.write(out)
    return MultipartBody(bytes(out.buffer), writer.content_type, on_progress)


__all__ = ["MultipartBody", "UploadFile", "build_multipart"]
