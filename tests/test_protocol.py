"""Tests for push-channel frame decoding."""

import json
import struct

import pytest

from comfylink.client.protocol import ProtocolDecodeError, decode_binary_frame, decode_text_frame


def test_text_frame_with_prompt_id():
    message = decode_text_frame(json.dumps({"type": "progress", "data": {"value": 3, "max": 20, "prompt_id": "p1", "node": "3"}}))

    assert message.kind == "progress"
    assert message.job_id == "p1"
    assert message.data["value"] == 3


def test_status_frame_has_no_job_id():
    message = decode_text_frame(json.dumps({"type": "status", "data": {"status": {"exec_info": {"queue_remaining": 1}}}}))

    assert message.job_id is None


@pytest.mark.parametrize("text", ["nope", "[]", json.dumps({"data": {}})])
def test_bad_text_frames(text):
    with pytest.raises(ProtocolDecodeError):
        decode_text_frame(text)


def test_preview_image_frame():
    frame = struct.pack(">II", 1, 2) + b"\x89PNG-bytes"

    message = decode_binary_frame(frame)

    assert message.kind == "preview"
    assert message.image == b"\x89PNG-bytes"
    assert message.image_format == "PNG"
    assert message.job_id is None


def test_progress_text_frame():
    node = b"12"
    frame = struct.pack(">II", 3, len(node)) + node + "step 2 of 5".encode()

    message = decode_binary_frame(frame)

    assert message.kind == "progress_text"
    assert message.data == {"node": "12", "text": "step 2 of 5"}


def test_preview_with_metadata_carries_prompt_id():
    metadata = json.dumps({"node_id": "8", "prompt_id": "p9", "image_type": "image/jpeg"}).encode()
    frame = struct.pack(">II", 4, len(metadata)) + metadata + b"jpeg"

    message = decode_binary_frame(frame)

    assert message.job_id == "p9"
    assert message.image == b"jpeg"
    assert message.image_format == "JPEG"


@pytest.mark.parametrize("frame", [b"", b"\x00\x00", struct.pack(">I", 99), struct.pack(">II", 3, 10) + b"ab"])
def test_bad_binary_frames(frame):
    with pytest.raises(ProtocolDecodeError):
        decode_binary_frame(frame)
