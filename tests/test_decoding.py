"""Tests for the success / rejection / malformed response discriminator."""

import json

import pytest

from comfylink.client.decoding import decode_either, decode_json, decode_submission
from comfylink.client.errors import JobRejectedError, MalformedResponseError
from comfylink.client.models import RejectionPayload, SubmitAccepted, SystemStats


def test_accepted_submission_decodes():
    body = json.dumps({"prompt_id": "0d9f6c1e", "number": 12, "node_errors": {}})

    accepted = decode_submission(body)

    assert accepted == SubmitAccepted(prompt_id="0d9f6c1e", number=12, node_errors={})


def test_rejection_raises_job_rejected_with_message():
    body = json.dumps({"error": {"type": "prompt_no_outputs", "message": "Prompt has no outputs"}})

    with pytest.raises(JobRejectedError) as excinfo:
        decode_submission(body)

    assert excinfo.value.message == "Prompt has no outputs"
    assert str(excinfo.value) == "Prompt has no outputs"
    assert excinfo.value.error_type == "prompt_no_outputs"


def test_rejection_keeps_node_errors():
    body = json.dumps(
        {
            "error": {
                "type": "prompt_outputs_failed_validation",
                "message": "Prompt outputs failed validation",
                "details": "",
                "extra_info": {},
            },
            "node_errors": {"9": {"errors": [{"type": "required_input_missing"}], "class_type": "SaveImage"}},
        }
    )

    with pytest.raises(JobRejectedError) as excinfo:
        decode_submission(body)

    assert excinfo.value.node_errors["9"]["class_type"] == "SaveImage"


@pytest.mark.parametrize("body", ["not json", '"not json"', "[]", '{"number": 3}', '{"error": "boom"}', ""])
def test_neither_schema_raises_malformed(body):
    with pytest.raises(MalformedResponseError) as excinfo:
        decode_submission(body)

    assert excinfo.value.raw_body == body
    assert excinfo.value.decode_error is not None


def test_empty_prompt_id_is_not_success():
    with pytest.raises(MalformedResponseError):
        decode_submission(json.dumps({"prompt_id": "", "number": 1}))


def test_decode_either_returns_failure_schema_instance():
    body = json.dumps({"error": {"message": "queue full"}})

    decoded = decode_either(body, SubmitAccepted.from_api, RejectionPayload.from_api, operation="submit")

    assert isinstance(decoded, RejectionPayload)
    assert decoded.message == "queue full"


def test_decode_json_wraps_schema_errors():
    with pytest.raises(MalformedResponseError) as excinfo:
        decode_json('{"devices": "gpu"}', SystemStats.from_api, operation="GET system_stats")

    assert excinfo.value.operation == "GET system_stats"
