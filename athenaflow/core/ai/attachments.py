"""
Attachment Normalizer

Validates user-supplied images, text files and binary blobs and turns
them into a provider-neutral form. Text is truncated rather than
rejected; an oversized image is rejected because a partial image is
useless.
"""

import base64
import logging
import mimetypes
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from athenaflow.core.errors import ValidationError

logger = logging.getLogger(__name__)

TEXT_FILE_EXTENSIONS = {
    ".txt", ".md", ".mdx", ".json", ".jsonc", ".yaml", ".yml", ".xml",
    ".csv", ".tsv", ".log", ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs",
    ".py", ".go", ".rs", ".java", ".kt", ".swift", ".rb", ".php", ".sh",
    ".env", ".toml", ".ini", ".sql", ".graphql", ".gql", ".css", ".scss",
    ".sass", ".less", ".html", ".htm", ".svg",
}

TEXT_MIME_TYPES = {
    "application/json",
    "application/xml",
    "application/javascript",
    "application/typescript",
    "application/x-typescript",
}

_DATA_URL_RE = re.compile(r"^data:([^;]+);base64,([a-z0-9+/=]+)$", re.IGNORECASE)


@dataclass(frozen=True)
class AttachmentLimits:
    max_attachments: int = 5
    max_total_bytes: int = 3 * 1024 * 1024
    max_image_bytes: int = 2 * 1024 * 1024
    max_text_file_bytes: int = 512 * 1024
    max_text_chars: int = 60000


@dataclass(frozen=True)
class RawAttachment:
    """An attachment as the user supplied it."""
    name: str
    mime_type: str
    data: bytes
    kind: Optional[str] = None  # "image" | "text" | "binary"; inferred when None

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "RawAttachment":
        path = Path(path)
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(name=path.name, mime_type=mime_type, data=path.read_bytes())

    @classmethod
    def from_data_url(cls, name: str, data_url: str) -> "RawAttachment":
        match = _DATA_URL_RE.match(data_url.strip())
        if not match:
            raise ValidationError(f"Attachment '{name}' is not a base64 data URL", cap="format", attachment_name=name)
        mime_type = match.group(1).strip()
        return cls(name=name, mime_type=mime_type, data=base64.b64decode(match.group(2)), kind="image")

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ImageAttachment:
    name: str
    mime_type: str
    base64: str
    kind: str = "image"

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"


@dataclass(frozen=True)
class TextAttachment:
    name: str
    mime_type: str
    content: str
    truncated: bool = False
    kind: str = "text"


@dataclass(frozen=True)
class BinaryAttachment:
    name: str
    mime_type: str
    size: int
    kind: str = "binary"


NormalizedAttachment = Union[ImageAttachment, TextAttachment, BinaryAttachment]


def format_bytes(size: int) -> str:
    if not size or size < 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    unit_index = 0
    while value >= 1024 and unit_index < len(units) - 1:
        value /= 1024
        unit_index += 1
    if unit_index == 0:
        return f"{int(value)} B"
    precision = 1 if value < 10 else 0
    return f"{value:.{precision}f} {units[unit_index]}"


def is_probably_text(name: str, mime_type: str) -> bool:
    if mime_type.startswith("text/") or mime_type in TEXT_MIME_TYPES:
        return True
    return Path(name).suffix.lower() in TEXT_FILE_EXTENSIONS


def _infer_kind(raw: RawAttachment) -> str:
    if raw.kind:
        return raw.kind
    if raw.mime_type.startswith("image/") and raw.mime_type != "image/svg+xml":
        return "image"
    if is_probably_text(raw.name, raw.mime_type):
        return "text"
    return "binary"


def _clean_name(name: str) -> str:
    name = (name or "").strip()[:200]
    return name or "attachment"


def normalize_attachment(raw: RawAttachment, limits: AttachmentLimits = AttachmentLimits()) -> NormalizedAttachment:
    """
    Normalize one attachment.

    Raises:
        ValidationError: for an image over the image byte cap.
    """
    name = _clean_name(raw.name)
    mime_type = (raw.mime_type or "").strip()[:200] or "application/octet-stream"
    kind = _infer_kind(raw)

    if kind == "image":
        if not mime_type.startswith("image/"):
            raise ValidationError(f"Attachment '{name}' is not an image ({mime_type})", cap="format", attachment_name=name)
        if raw.size > limits.max_image_bytes:
            raise ValidationError(
                f'Image "{name}" is too large ({format_bytes(raw.size)}). '
                f"Max is {format_bytes(limits.max_image_bytes)}.",
                cap="image_bytes",
                attachment_name=name,
            )
        return ImageAttachment(
            name=name,
            mime_type=mime_type,
            base64=base64.b64encode(raw.data).decode("ascii"),
        )

    if kind == "text":
        if raw.size > limits.max_text_file_bytes:
            return TextAttachment(
                name=name,
                mime_type=mime_type,
                content=(
                    f"File is {format_bytes(raw.size)}; omitted because it exceeds "
                    f"the {format_bytes(limits.max_text_file_bytes)} limit."
                ),
                truncated=True,
            )
        text = raw.data.decode("utf-8", errors="replace").replace("\r\n", "\n")
        truncated = len(text) > limits.max_text_chars
        if truncated:
            logger.info("Truncating text attachment %s to %d chars", name, limits.max_text_chars)
        return TextAttachment(
            name=name,
            mime_type=mime_type,
            content=text[: limits.max_text_chars] if truncated else text,
            truncated=truncated,
        )

    return BinaryAttachment(name=name, mime_type=mime_type, size=raw.size)


def normalize_attachments(
    raws: Sequence[RawAttachment],
    limits: AttachmentLimits = AttachmentLimits(),
) -> List[NormalizedAttachment]:
    """
    Normalize a whole turn's attachments.

    Raises ValidationError naming the exceeded cap ("count",
    "total_bytes" or "image_bytes"). The caller decides whether to block
    the turn or drop the offending attachment and retry.
    """
    if len(raws) > limits.max_attachments:
        raise ValidationError(
            f"Too many attachments ({len(raws)}). Max is {limits.max_attachments}.",
            cap="count",
        )

    total = 0
    normalized: List[NormalizedAttachment] = []
    for raw in raws:
        total += raw.size
        if total > limits.max_total_bytes:
            raise ValidationError(
                f"Attachments exceed {format_bytes(limits.max_total_bytes)} total. "
                "Remove a file or attach fewer.",
                cap="total_bytes",
                attachment_name=_clean_name(raw.name),
            )
        normalized.append(normalize_attachment(raw, limits))
    return normalized


def format_text_attachment(attachment: TextAttachment) -> str:
    marker = " [truncated]" if attachment.truncated else ""
    header = f"Attached file: {attachment.name} ({attachment.mime_type}){marker}"
    return f"{header}\n\n```\n{attachment.content}\n```"


def format_binary_attachment(attachment: BinaryAttachment) -> str:
    return (
        f"Attached file: {attachment.name} ({attachment.mime_type}, "
        f"{attachment.size} bytes). Binary content not included."
    )
