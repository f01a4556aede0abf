"""Multipart/related bodies for DICOM upload and download."""

import uuid
from dataclasses import dataclass, field

from .exceptions import DecodeError

DICOM_MEDIA_TYPE = "application/dicom"


@dataclass(slots=True)
class BodyPart:
    """One part of a multipart body."""

    content: bytes = field(repr=False)
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def content_type(self) -> str | None:
        return self.headers.get("content-type")


def build_multipart_related(
    parts: list[tuple[str, bytes]], media_type: str = DICOM_MEDIA_TYPE
) -> tuple[bytes, str]:
    """Build a multipart/related request body.

    Args:
        parts: (file name, payload) pairs, sent in order
        media_type: Content-Type of every part

    Returns:
        Tuple of (body bytes, Content-Type header value)
    """
    boundary = uuid.uuid4().hex
    content_type = f'multipart/related; type="{media_type}"; boundary={boundary}'

    chunks: list[bytes] = []
    for name, payload in parts:
        chunk = (
            (
                f"--{boundary}\r\n"
                f'Content-Disposition: form-data; name="{name}"; filename="{name}"\r\n'
                f"Content-Type: {media_type}\r\n"
                f"Content-Length: {len(payload)}\r\n"
                f"\r\n"
            ).encode()
            + payload
            + b"\r\n"
        )
        chunks.append(chunk)

    body = b"".join(chunks) + f"--{boundary}--\r\n".encode()
    return body, content_type


def get_boundary(content_type: str | None) -> str:
    """Extract the boundary parameter of a multipart Content-Type header.

    Raises:
        DecodeError: If the header is missing, not multipart, or has no boundary
    """
    if not content_type:
        raise DecodeError("No content type in Milvue response header.")

    media_type, *params = (item.strip() for item in content_type.split(";"))
    if not media_type.lower().startswith("multipart/"):
        raise DecodeError(f"Expected a multipart response, got {media_type!r}")

    for param in params:
        key, _, value = param.partition("=")
        if key.strip().lower() == "boundary" and value.strip():
            return value.strip().strip('"')

    raise DecodeError(f"No boundary in content type {content_type!r}")


def _parse_headers(raw: bytes) -> dict[str, str]:
    headers: dict[str, str] = {}
    for line in raw.decode("latin-1").split("\r\n"):
        if not line.strip():
            continue
        name, sep, value = line.partition(":")
        if not sep:
            raise DecodeError(f"Malformed part header: {line!r}")
        headers[name.strip().lower()] = value.strip()
    return headers


def parse_multipart_related(body: bytes, content_type: str | None) -> list[BodyPart]:
    """Split a multipart body into its parts, preserving their order.

    Args:
        body: Raw response body
        content_type: Content-Type header of the response

    Returns:
        Parts in the order the server sent them

    Raises:
        DecodeError: If the body is not a well-formed multipart payload
    """
    delimiter = b"--" + get_boundary(content_type).encode("latin-1")

    segments = body.split(delimiter)
    if len(segments) < 2:
        raise DecodeError("Multipart body contains no boundary delimiter.")

    parts: list[BodyPart] = []
    # segments[0] is the preamble
    for segment in segments[1:]:
        if segment.startswith(b"--"):
            return parts

        if segment.startswith(b"\r\n"):
            segment = segment[2:]
        if segment.startswith(b"\r\n"):
            # Part without headers
            head, content = b"", segment[2:]
        else:
            head, sep, content = segment.partition(b"\r\n\r\n")
            if not sep:
                raise DecodeError(f"Malformed multipart part #{len(parts)}")
        if content.endswith(b"\r\n"):
            content = content[:-2]

        parts.append(BodyPart(content=content, headers=_parse_headers(head)))

    raise DecodeError("Multipart body is truncated: no closing boundary.")
