"""Tests for AgentConnection against a mocked HTTP transport."""

from datetime import datetime
from urllib.parse import parse_qsl

import httpx
import pytest
import yaml

from machinelink.connectors.agent_connection import AgentConnection
from machinelink.models.records import Access
from machinelink.utils.errors import (
    DoesNotExist,
    FailedTransmit,
    NameCannotContainSlash,
    NotAuthorized,
)


class RecordingAgent:
    """MockTransport handler that records requests and replies from a queue."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(200, content=b"")

    @property
    def last(self):
        request = self.requests[-1]
        return request, dict(parse_qsl(request.url.query.decode(), keep_blank_values=True))


def make_connection(agent, **kwargs):
    return AgentConnection("web1", transport=httpx.MockTransport(agent), **kwargs)


def yaml_response(value):
    return httpx.Response(200, content=yaml.safe_dump(value).encode())


class TestRequests:
    """Each capability becomes one POST with the right action and fields."""

    def test_write_posts_payload(self):
        agent = RecordingAgent()
        make_connection(agent).write("f", "contents")

        request, fields = agent.last
        assert request.method == "POST"
        assert request.url.host == "web1"
        assert request.url.port == 9000
        assert request.url.query == b"action=write_file&full_path=f"
        assert request.content == b"contents"

    def test_read_returns_raw_body(self):
        agent = RecordingAgent(httpx.Response(200, content=b"\x00binary"))
        assert make_connection(agent).read("/bin/x") == b"\x00binary"
        assert agent.last[1] == {"action": "file_contents", "full_path": "/bin/x"}

    def test_rename_fields(self):
        agent = RecordingAgent()
        make_connection(agent).rename("/srv/", "a", "b")
        assert agent.last[1] == {"action": "rename", "path": "/srv/", "name": "a", "new_name": "b"}

    def test_rename_validated_before_sending(self):
        agent = RecordingAgent()
        with pytest.raises(NameCannotContainSlash):
            make_connection(agent).rename("/srv/", "a", "b/c")
        assert agent.requests == []

    def test_copy_and_move(self):
        agent = RecordingAgent()
        connection = make_connection(agent)
        connection.copy("/a", "/b/")
        assert agent.last[1] == {"action": "copy", "src": "/a", "dst": "/b/"}
        connection.move("/a", "/b/")
        assert agent.last[1] == {"action": "move", "src": "/a", "dst": "/b/"}

    def test_create_dir_mode(self):
        agent = RecordingAgent()
        make_connection(agent).create_dir("/srv/new/", {"permissions": 0o750})
        assert agent.last[1] == {"action": "create_dir", "full_path": "/srv/new/", "mode": "0o750"}

    def test_listing(self):
        agent = RecordingAgent(yaml_response(["a/", "b"]), yaml_response(["logs/", "x.log"]))
        connection = make_connection(agent)

        assert connection.list_entries("/srv/", include_hidden=True) == ["a/", "b"]
        assert agent.last[1] == {"action": "entries", "full_path": "/srv/", "include_hidden": "true"}

        assert connection.glob("/var/", "*") == ["logs/", "x.log"]
        assert agent.last[1] == {"action": "index", "base_path": "/var/", "glob": "*"}

    def test_queries(self):
        agent = RecordingAgent(yaml_response(True), yaml_response(False), yaml_response(2048))
        connection = make_connection(agent)
        assert connection.is_directory("/srv") is True
        assert connection.exists("/nope") is False
        assert connection.size("/srv") == 2048

    def test_stat(self):
        agent = RecordingAgent(yaml_response({
            "size": 10, "mode": 0o100644,
            "atime": datetime(2024, 5, 1), "mtime": datetime(2024, 5, 2), "ctime": datetime(2024, 5, 3),
        }))
        record = make_connection(agent).stat("/f")
        assert record.size == 10
        assert record.mtime == datetime(2024, 5, 2)

    def test_set_access_fields(self):
        agent = RecordingAgent()
        make_connection(agent).set_access("/f", Access(user="www", user_read=True, other_execute=True))
        assert agent.last[1] == {
            "action": "set_access", "full_path": "/f", "user": "www",
            "user_read": "1", "other_execute": "1",
        }

    def test_archives(self):
        agent = RecordingAgent(httpx.Response(200, content=b"tar"))
        connection = make_connection(agent)
        assert connection.read_archive("/srv/app") == b"tar"
        connection.write_archive(b"tar", "/restore/")
        request, fields = agent.last
        assert fields == {"action": "write_archive", "dir": "/restore/"}
        assert request.content == b"tar"

    def test_processes(self):
        agent = RecordingAgent(yaml_response([{"pid": 1, "user": "root", "command": "init"}]))
        records = make_connection(agent).list_processes()
        assert records[0].pid == 1
        assert records[0].user == "root"

    def test_process_alive_and_kill(self):
        agent = RecordingAgent(yaml_response(True))
        connection = make_connection(agent)
        assert connection.is_process_alive(99) is True
        connection.kill_process(99)
        assert agent.last[1] == {"action": "kill_process", "pid": "99"}

    def test_bash(self):
        agent = RecordingAgent(httpx.Response(200, content=b"hello\n"))
        assert make_connection(agent).execute("echo hello", user="www") == "hello\n"
        request, fields = agent.last
        assert fields == {"action": "bash", "user": "www", "background": "false"}
        assert request.content == b"echo hello"

    def test_bash_background_returns_pid(self):
        agent = RecordingAgent(yaml_response(4321))
        assert make_connection(agent).execute("sleep 60", background=True) == 4321

    def test_bearer_secret(self):
        agent = RecordingAgent()
        make_connection(agent, secret="s3cret").touch("/f")
        assert agent.last[0].headers["authorization"] == "Bearer s3cret"


class TestFailures:
    def test_known_error_is_rebuilt(self):
        agent = RecordingAgent(httpx.Response(400, content=b"DoesNotExist\n/missing"))
        with pytest.raises(DoesNotExist) as exc_info:
            make_connection(agent).read("/missing")
        assert exc_info.value.path == "/missing"

    def test_unauthorized(self):
        agent = RecordingAgent(httpx.Response(401, content=b"missing bearer token"))
        with pytest.raises(NotAuthorized):
            make_connection(agent).read("/f")

    def test_server_error(self):
        agent = RecordingAgent(httpx.Response(500, content=b"boom"))
        with pytest.raises(FailedTransmit):
            make_connection(agent).read("/f")

    def test_unreachable_agent(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        connection = AgentConnection("web1", transport=httpx.MockTransport(refuse))
        with pytest.raises(FailedTransmit):
            connection.read("/f")
        assert connection.is_alive() is False

    def test_is_alive_lists_root(self):
        agent = RecordingAgent(yaml_response(["etc/", "srv/"]))
        connection = make_connection(agent)
        assert connection.is_alive() is True
        assert agent.last[1] == {"action": "index", "base_path": "/", "glob": "*"}

    def test_ensure_tunnel(self):
        agent = RecordingAgent(yaml_response(["etc/"]))
        connection = make_connection(agent)
        connection.ensure_tunnel({"timeout": 5})
        assert connection.client.timeout.connect == 5

    def test_ensure_tunnel_failure(self):
        agent = RecordingAgent(httpx.Response(500))
        with pytest.raises(FailedTransmit):
            make_connection(agent).ensure_tunnel()

    def test_close(self):
        agent = RecordingAgent()
        connection = make_connection(agent)
        connection.touch("/f")
        connection.close()
        assert connection.client is None
        assert connection.is_remote is True
