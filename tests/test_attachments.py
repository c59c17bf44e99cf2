"""
Tests for attachment validation and normalization.
"""

import base64

import pytest

from athenaflow.core.ai.attachments import (
    AttachmentLimits,
    BinaryAttachment,
    ImageAttachment,
    RawAttachment,
    TextAttachment,
    format_binary_attachment,
    format_text_attachment,
    normalize_attachment,
    normalize_attachments,
)
from athenaflow.core.errors import ValidationError

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def test_image_becomes_base64_with_data_url():
    attachment = normalize_attachment(RawAttachment("shot.png", "image/png", PNG_BYTES))

    assert isinstance(attachment, ImageAttachment)
    assert base64.b64decode(attachment.base64) == PNG_BYTES
    assert attachment.data_url.startswith("data:image/png;base64,")


def test_oversized_image_is_rejected_with_cap():
    limits = AttachmentLimits(max_image_bytes=10)

    with pytest.raises(ValidationError) as excinfo:
        normalize_attachment(RawAttachment("big.png", "image/png", PNG_BYTES), limits)

    assert excinfo.value.cap == "image_bytes"
    assert excinfo.value.attachment_name == "big.png"


def test_text_by_extension_normalizes_crlf():
    attachment = normalize_attachment(RawAttachment("main.py", "application/octet-stream", b"a = 1\r\nb = 2\r\n"))

    assert isinstance(attachment, TextAttachment)
    assert attachment.content == "a = 1\nb = 2\n"
    assert attachment.truncated is False


def test_long_text_is_truncated_and_flagged():
    limits = AttachmentLimits(max_text_chars=5)

    attachment = normalize_attachment(RawAttachment("notes.txt", "text/plain", b"abcdefghij"), limits)

    assert attachment.content == "abcde"
    assert attachment.truncated is True


def test_text_over_byte_cap_becomes_placeholder():
    limits = AttachmentLimits(max_text_file_bytes=4)

    attachment = normalize_attachment(RawAttachment("data.json", "application/json", b"{\"a\": 1}"), limits)

    assert isinstance(attachment, TextAttachment)
    assert attachment.truncated is True
    assert "omitted" in attachment.content


def test_unknown_blob_is_binary():
    attachment = normalize_attachment(RawAttachment("archive.zip", "application/zip", b"PK\x03\x04"))

    assert attachment == BinaryAttachment(name="archive.zip", mime_type="application/zip", size=4)
    assert format_binary_attachment(attachment) == (
        "Attached file: archive.zip (application/zip, 4 bytes). Binary content not included."
    )


def test_format_text_attachment_marks_truncation():
    text = TextAttachment(name="a.md", mime_type="text/markdown", content="# hi", truncated=True)

    assert format_text_attachment(text) == "Attached file: a.md (text/markdown) [truncated]\n\n```\n# hi\n```"


def test_count_cap():
    raws = [RawAttachment(f"f{i}.txt", "text/plain", b"x") for i in range(6)]

    with pytest.raises(ValidationError) as excinfo:
        normalize_attachments(raws)

    assert excinfo.value.cap == "count"


def test_total_bytes_cap_names_offending_attachment():
    limits = AttachmentLimits(max_total_bytes=10)
    raws = [
        RawAttachment("a.txt", "text/plain", b"12345"),
        RawAttachment("b.txt", "text/plain", b"1234567"),
    ]

    with pytest.raises(ValidationError) as excinfo:
        normalize_attachments(raws, limits)

    assert excinfo.value.cap == "total_bytes"
    assert excinfo.value.attachment_name == "b.txt"


def test_from_data_url():
    encoded = base64.b64encode(PNG_BYTES).decode("ascii")

    raw = RawAttachment.from_data_url("pic.png", f"data:image/png;base64,{encoded}")

    assert raw.mime_type == "image/png"
    assert raw.data == PNG_BYTES
    assert isinstance(normalize_attachment(raw), ImageAttachment)


def test_from_data_url_rejects_non_data_url():
    with pytest.raises(ValidationError) as excinfo:
        RawAttachment.from_data_url("pic.png", "https://example.com/pic.png")

    assert excinfo.value.cap == "format"


def test_data_url_with_non_image_mime_is_rejected():
    raw = RawAttachment.from_data_url("doc", "data:text/plain;base64,aGk=")

    with pytest.raises(ValidationError) as excinfo:
        normalize_attachment(raw)

    assert excinfo.value.cap == "format"


def test_from_path(tmp_path):
    path = tmp_path / "readme.md"
    path.write_text("hello", encoding="utf-8")

    attachment = normalize_attachment(RawAttachment.from_path(path))

    assert isinstance(attachment, TextAttachment)
    assert attachment.name == "readme.md"
    assert attachment.content == "hello"
