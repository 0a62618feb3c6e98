from datetime import datetime, timezone
from unittest.mock import MagicMock

import requests

from tasksync.remote import BatchOperation, Delivered, RemoteAuthorityClient, TransportFailure


def make_client(session):
    return RemoteAuthorityClient(
        "http://remote.test/api/", request_timeout=12.0, connectivity_timeout=5.0, session=session
    )


def ok_response(body):
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.json.return_value = body
    return response


def operations():
    return [
        BatchOperation(
            record_id="A",
            action="create",
            payload={"id": "A", "updated_at": datetime(2030, 1, 1, tzinfo=timezone.utc)},
        )
    ]


class TestSendBatch:
    def test_posts_wire_request_and_parses_results(self):
        session = MagicMock(spec=requests.Session)
        session.post.return_value = ok_response(
            {
                "results": [
                    {"record_id": "A", "status": "success", "data": {"server_id": "srv-A"}},
                    {
                        "record_id": "B",
                        "status": "conflict",
                        "server_record": {"title": "Theirs", "updated_at": 200},
                    },
                ]
            }
        )

        outcome = make_client(session).send_batch(operations())

        assert isinstance(outcome, Delivered)
        assert [r.status for r in outcome.results] == ["success", "conflict"]
        assert outcome.results[0].data.server_id == "srv-A"
        assert outcome.results[1].server_record.updated_at == datetime.fromtimestamp(200, tz=timezone.utc)

        args, kwargs = session.post.call_args
        assert args[0] == "http://remote.test/api/tasks/batch"
        assert kwargs["timeout"] == 12.0
        assert kwargs["json"] == {
            "operations": [
                {
                    "record_id": "A",
                    "action": "create",
                    "payload": {"id": "A", "updated_at": "2030-01-01T00:00:00Z"},
                }
            ]
        }

    def test_timeout_is_transport_failure(self):
        session = MagicMock(spec=requests.Session)
        session.post.side_effect = requests.Timeout("read timed out")
        outcome = make_client(session).send_batch(operations())
        assert isinstance(outcome, TransportFailure)
        assert "Timed out" in outcome.reason

    def test_connection_error_is_transport_failure(self):
        session = MagicMock(spec=requests.Session)
        session.post.side_effect = requests.ConnectionError("refused")
        outcome = make_client(session).send_batch(operations())
        assert isinstance(outcome, TransportFailure)
        assert "Connection error" in outcome.reason

    def test_http_error_is_transport_failure(self):
        session = MagicMock(spec=requests.Session)
        failing = MagicMock()
        failing.status_code = 502
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("502 Bad Gateway", response=failing)
        session.post.return_value = response

        outcome = make_client(session).send_batch(operations())

        assert isinstance(outcome, TransportFailure)
        assert "502" in outcome.reason

    def test_malformed_body_is_transport_failure(self):
        session = MagicMock(spec=requests.Session)
        session.post.return_value = ok_response({"results": [{"status": "success"}]})
        outcome = make_client(session).send_batch(operations())
        assert isinstance(outcome, TransportFailure)
        assert outcome.reason.startswith("Malformed batch response")

    def test_non_json_body_is_transport_failure(self):
        session = MagicMock(spec=requests.Session)
        response = ok_response(None)
        response.json.side_effect = ValueError("Expecting value")
        session.post.return_value = response
        outcome = make_client(session).send_batch(operations())
        assert isinstance(outcome, TransportFailure)


class TestPing:
    def test_reachable(self):
        session = MagicMock(spec=requests.Session)
        session.get.return_value = ok_response({"status": "ok"})

        assert make_client(session).ping() is True
        args, kwargs = session.get.call_args
        assert args[0] == "http://remote.test/api/health"
        assert kwargs["timeout"] == 5.0

    def test_unreachable(self):
        session = MagicMock(spec=requests.Session)
        session.get.side_effect = requests.ConnectTimeout("timed out")
        assert make_client(session).ping() is False

    def test_error_status_is_unreachable(self):
        session = MagicMock(spec=requests.Session)
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("503")
        session.get.return_value = response
        assert make_client(session).ping() is False
