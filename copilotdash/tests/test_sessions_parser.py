import json
import tempfile
import unittest
from pathlib import Path

from copilotdash.parsers.sessions import parse_session_file, parse_session_payload, validate_session_payload


def _payload(**overrides) -> dict:
    payload = {
        "version": 3,
        "sessionId": "abc",
        "creationDate": 1700000000000,
        "lastMessageDate": 1700000001000,
        "requesterUsername": "dev",
        "responderUsername": "GitHub Copilot",
        "initialLocation": "panel",
        "requests": [
            {
                "requestId": "r1",
                "responseId": "resp1",
                "timestamp": 1700000001000,
                "modelId": "gpt-4o",
                "isCanceled": False,
                "message": {"text": "fix the bug", "parts": []},
                "agent": {"id": "github.copilot.default", "name": "copilot"},
                "response": [{"value": "done"}],
                "result": {"timings": {"totalElapsed": 1200, "firstProgress": 300}},
                "someFutureField": {"kept": True},
            }
        ],
    }
    payload.update(overrides)
    return payload


class ValidateSessionPayloadTests(unittest.TestCase):
    def test_valid_payload_has_no_problems(self) -> None:
        self.assertEqual(validate_session_payload(_payload()), [])

    def test_missing_agent_and_model_are_allowed(self) -> None:
        payload = _payload()
        del payload["requests"][0]["agent"]
        del payload["requests"][0]["modelId"]
        self.assertEqual(validate_session_payload(payload), [])

    def test_empty_session_id_is_rejected(self) -> None:
        problems = validate_session_payload(_payload(sessionId=""))
        self.assertIn("sessionId must be a non-empty string", problems)

    def test_non_numeric_creation_date_and_version_are_rejected(self) -> None:
        problems = validate_session_payload(_payload(creationDate="yesterday", version=True))
        self.assertIn("creationDate must be numeric", problems)
        self.assertIn("version must be numeric", problems)

    def test_request_problems_are_reported_with_index(self) -> None:
        payload = _payload()
        payload["requests"].append({"requestId": 7, "timestamp": "x", "message": {}, "agent": {"id": 1}})
        problems = validate_session_payload(payload)
        self.assertIn("requests[1].requestId must be a string", problems)
        self.assertIn("requests[1].timestamp must be numeric", problems)
        self.assertIn("requests[1].message.text must be a string", problems)
        self.assertIn("requests[1].agent.id must be a string", problems)

    def test_out_of_range_timestamps_are_rejected(self) -> None:
        payload = _payload(creationDate=1e20)
        payload["requests"][0]["timestamp"] = float("inf")
        problems = validate_session_payload(payload)
        self.assertIn("creationDate is not a representable epoch-ms timestamp", problems)
        self.assertIn("requests[0].timestamp is not a representable epoch-ms timestamp", problems)
        self.assertIn(
            "creationDate is not a representable epoch-ms timestamp",
            validate_session_payload(_payload(creationDate=float("nan"))),
        )

    def test_non_object_root_is_rejected(self) -> None:
        self.assertEqual(validate_session_payload([1, 2]), ["transcript root is not an object"])


class ParseSessionTests(unittest.TestCase):
    def _write(self, content: str, name: str = "0a1b-2c3d.json") -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / name
        path.write_text(content, encoding="utf-8")
        return path

    def test_parse_valid_file(self) -> None:
        path = self._write(json.dumps(_payload()))
        result = parse_session_file(path)
        self.assertIsNotNone(result)
        assert result is not None
        self.assertEqual(result.session.sessionId, "abc")
        self.assertEqual(result.sessionFilePath, str(path))
        self.assertEqual(result.fileSize, path.stat().st_size)
        request = result.session.requests[0]
        self.assertEqual(request.agent.id, "github.copilot.default")
        self.assertEqual(request.result.timings.totalElapsed, 1200)
        self.assertEqual(request.response_text(), "done")

    def test_malformed_json_returns_none(self) -> None:
        self.assertIsNone(parse_session_file(self._write("{not json")))

    def test_invalid_structure_returns_none(self) -> None:
        self.assertIsNone(parse_session_file(self._write(json.dumps(_payload(requests="nope")))))

    def test_missing_file_returns_none(self) -> None:
        self.assertIsNone(parse_session_file(Path(tempfile.gettempdir()) / "does-not-exist-0000.json"))

    def test_payload_parse_keeps_unknown_fields(self) -> None:
        session = parse_session_payload(_payload())
        assert session is not None
        self.assertEqual(session.requests[0].model_extra["someFutureField"], {"kept": True})


    def test_null_reference_lists_become_empty(self) -> None:
        payload = _payload()
        payload["requests"][0].update({"contentReferences": None, "codeCitations": None, "followups": None})
        result = parse_session_file(self._write(json.dumps(payload)))
        assert result is not None
        request = result.session.requests[0]
        self.assertEqual(request.contentReferences, [])
        self.assertEqual(request.codeCitations, [])
        self.assertEqual(request.followups, [])

    def test_object_valued_agent_fields_are_tolerated(self) -> None:
        payload = _payload()
        extension_id = {"value": "GitHub.copilot-chat", "_lower": "github.copilot-chat"}
        payload["requests"][0]["agent"] = {"id": "github.copilot.default", "extensionId": extension_id}
        result = parse_session_file(self._write(json.dumps(payload)))
        assert result is not None
        agent = result.session.requests[0].agent
        self.assertEqual(agent.id, "github.copilot.default")
        self.assertEqual(agent.model_extra["extensionId"], extension_id)

    def test_unexpected_optional_shapes_are_normalized(self) -> None:
        payload = _payload()
        payload["requests"][0].update({"modelId": {"family": "gpt"}, "response": None, "result": "ok"})
        session = parse_session_payload(payload)
        assert session is not None
        request = session.requests[0]
        self.assertIsNone(request.modelId)
        self.assertEqual(request.response_text(), "")
        self.assertIsNone(request.result)

if __name__ == "__main__":
    unittest.main()
