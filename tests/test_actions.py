"""Tests for action decoding and execution."""

import httpx
import pytest

from fakes import FakeClient
from wormhole.actions import (
    ACTION_KINDS,
    AptAction,
    FileAction,
    ServiceAction,
    ShellAction,
    ValidateAction,
    decode_action,
)
from wormhole.actions import validate as validate_module
from wormhole.context import RunContext
from wormhole.exceptions import ActionError, PlaybookError
from wormhole.ssh import Connection
from wormhole.types import RunConfig, Server


@pytest.fixture
def config(tmp_path):
    return RunConfig(playbook=tmp_path / "playbook.yaml")


def make_connection(host: str = "10.0.0.1", **client_kwargs) -> tuple[Connection, FakeClient]:
    client = FakeClient(**client_kwargs)
    return Connection(Server(host), client), client


def mock_http(monkeypatch, handler) -> None:
    """Route validate requests through an in-process transport."""

    def client(timeout):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=timeout)

    monkeypatch.setattr(validate_module, "_http_client", client)


class TestDecodeAction:
    """Tests for decode_action()."""

    def test_known_kinds(self):
        """Test the action set is closed."""
        assert set(ACTION_KINDS) == {"file", "apt", "service", "shell", "validate"}

    def test_unknown_kind(self):
        """Test unknown kinds are rejected."""
        with pytest.raises(PlaybookError, match="unrecognised action: foo"):
            decode_action("foo", {})

    def test_invalid_keys(self):
        """Test unknown fields are rejected."""
        with pytest.raises(PlaybookError, match="has invalid keys: foo"):
            decode_action("service", {"name": "nginx", "state": "restart", "foo": "bar"})

    def test_missing_required_field(self):
        """Test required fields must be present."""
        with pytest.raises(PlaybookError, match="missing required field 'dest'"):
            decode_action("file", {"src": "motd"})

    def test_empty_action(self):
        """Test an action without a body is rejected."""
        with pytest.raises(PlaybookError, match="empty action"):
            decode_action("apt", None)

    def test_wrong_field_type(self):
        """Test field values are type checked."""
        with pytest.raises(PlaybookError, match="invalid 'pkg'"):
            decode_action("apt", {"state": "install", "pkg": {"nginx": True}})

    def test_file(self):
        """Test decoding a file action."""
        action = decode_action("file", {"src": "motd", "dest": "/etc/motd", "mode": 644})
        assert action == FileAction(src="motd", dest="/etc/motd", mode="644")

    def test_apt_single_package(self):
        """Test a single package name is accepted."""
        action = decode_action("apt", {"state": "install", "pkg": "nginx"})
        assert action == AptAction(state="install", pkg=("nginx",))

    def test_apt_invalid_state(self):
        """Test only apt-get verbs are accepted as state."""
        with pytest.raises(PlaybookError, match="invalid 'state'"):
            decode_action("apt", {"state": "installed", "pkg": ["nginx"]})

    def test_service(self):
        """Test decoding a service action."""
        action = decode_action("service", {"name": "nginx", "state": "restart"})
        assert action == ServiceAction(name="nginx", state="restart")

    def test_shell_string(self):
        """Test shell actions are plain strings."""
        assert decode_action("shell", "uptime") == ShellAction(command="uptime")

    def test_shell_requires_string(self):
        """Test a shell mapping is rejected."""
        with pytest.raises(PlaybookError, match="needs to be a command string"):
            decode_action("shell", {"command": "uptime"})

    def test_validate_defaults(self):
        """Test validate fields default sensibly."""
        action = decode_action("validate", {})
        assert action.scheme == "http"
        assert action.url_path == "/"
        assert action.retries == 1
        assert action.timeout == 10.0
        assert action.status_code == 200
        assert action.body_content == ""

    def test_validate_durations(self):
        """Test validate timeouts accept duration strings."""
        action = decode_action("validate", {"timeout": "1m30s", "port": 8080, "retries": 3})
        assert action.timeout == 90.0
        assert action.port == 8080
        assert action.retries == 3

    @pytest.mark.parametrize("retries", [0, -2])
    def test_validate_retries_minimum(self, retries):
        """Test zero or negative retries still make one attempt."""
        action = decode_action("validate", {"retries": retries, "status_code": 200})
        assert action.retries == 1


class TestAptAction:
    """Tests for AptAction."""

    @pytest.mark.asyncio
    async def test_commands(self, config):
        """Test package lists are refreshed before each package is handled."""
        conn, client = make_connection()
        action = AptAction(state="install", pkg=("nginx", "curl"))

        await action.run(RunContext(), conn, config)

        assert client.commands == [
            "apt-get update",
            "apt-get install -y nginx",
            "apt-get install -y curl",
        ]
        assert all("term_type" in p.options for p in client.processes)

    @pytest.mark.asyncio
    async def test_update_failure_stops(self, config):
        """Test a failing update skips the packages."""
        conn, client = make_connection(statuses={"apt-get update": 100})
        action = AptAction(state="install", pkg=("nginx",))

        with pytest.raises(ActionError, match="failed to update package lists"):
            await action.run(RunContext(), conn, config)

        assert client.commands == ["apt-get update"]

    @pytest.mark.asyncio
    async def test_package_failure(self, config):
        """Test the failing package is named."""
        conn, client = make_connection(statuses={"apt-get remove -y vim": 100})
        action = AptAction(state="remove", pkg=("vim", "nano"))

        with pytest.raises(ActionError, match="failed to remove package 'vim'"):
            await action.run(RunContext(), conn, config)

        assert client.commands == ["apt-get update", "apt-get remove -y vim"]


class TestServiceAndShell:
    """Tests for ServiceAction and ShellAction."""

    @pytest.mark.asyncio
    async def test_service(self, config):
        """Test the service command line."""
        conn, client = make_connection()

        await ServiceAction(name="nginx", state="reload").run(RunContext(), conn, config)

        assert client.commands == ["service nginx reload"]

    @pytest.mark.asyncio
    async def test_service_failure(self, config):
        """Test a failing service command."""
        conn, client = make_connection(statuses={"service": 1})

        with pytest.raises(ActionError, match="failed to restart service 'nginx'"):
            await ServiceAction(name="nginx", state="restart").run(RunContext(), conn, config)

    @pytest.mark.asyncio
    async def test_shell(self, config):
        """Test the command line is run verbatim with a terminal."""
        conn, client = make_connection()

        await ShellAction(command="systemctl daemon-reload").run(RunContext(), conn, config)

        assert client.commands == ["systemctl daemon-reload"]
        assert client.processes[0].options["term_type"] == "xterm"


class TestFileAction:
    """Tests for FileAction."""

    @pytest.mark.asyncio
    async def test_copy_with_ownership(self, config, tmp_path):
        """Test the file is streamed then chowned."""
        (tmp_path / "files").mkdir()
        (tmp_path / "files" / "site.conf").write_bytes(b"server {}\n")
        conn, client = make_connection()
        action = FileAction(
            src="files/site.conf",
            dest="/etc/nginx/site.conf",
            owner="www-data",
            group="www-data",
            mode="640",
        )

        await action.run(RunContext(), conn, config)

        scp, chown = client.processes
        assert scp.command == "scp -qt /etc/nginx"
        assert "term_type" not in scp.options
        assert scp.stdin.data == b"C0640 10 site.conf\nserver {}\n\x00"
        assert scp.stdin.eof_count == 1
        assert chown.command == "chown www-data:www-data /etc/nginx/site.conf"
        assert "term_type" in chown.options

    @pytest.mark.asyncio
    async def test_copy_without_ownership(self, config, tmp_path):
        """Test no chown runs without owner or group."""
        (tmp_path / "motd").write_bytes(b"welcome")
        conn, client = make_connection()

        await FileAction(src="motd", dest="/etc/motd").run(RunContext(), conn, config)

        assert client.commands == ["scp -qt /etc"]
        assert client.processes[0].stdin.data.startswith(b"C0644 7 motd\n")

    @pytest.mark.asyncio
    async def test_owner_only(self, config, tmp_path):
        """Test the owner alone can be set."""
        (tmp_path / "motd").write_bytes(b"welcome")
        conn, client = make_connection()

        await FileAction(src="motd", dest="/etc/motd", owner="root").run(RunContext(), conn, config)

        assert client.commands[-1] == "chown root /etc/motd"

    @pytest.mark.asyncio
    async def test_missing_source(self, config):
        """Test a missing source fails before anything runs remotely."""
        conn, client = make_connection()

        with pytest.raises(ActionError, match="failed to open source file"):
            await FileAction(src="nope", dest="/etc/nope").run(RunContext(), conn, config)

        assert client.processes == []

    @pytest.mark.asyncio
    async def test_invalid_mode(self, config, tmp_path):
        """Test an invalid mode fails the action."""
        (tmp_path / "motd").write_bytes(b"welcome")
        conn, client = make_connection()

        with pytest.raises(ActionError, match="invalid file mode"):
            await FileAction(src="motd", dest="/etc/motd", mode="rw").run(RunContext(), conn, config)

    @pytest.mark.asyncio
    async def test_receiver_failure(self, config, tmp_path):
        """Test a failing receiver fails the action."""
        (tmp_path / "motd").write_bytes(b"welcome")
        conn, client = make_connection(statuses={"scp": 1})

        with pytest.raises(ActionError, match="failed to copy file 'motd'"):
            await FileAction(src="motd", dest="/etc/motd").run(RunContext(), conn, config)


class TestValidateAction:
    """Tests for ValidateAction."""

    def test_url(self):
        """Test the probed URL is built from the host."""
        action = ValidateAction(port=8080, url_path="health")
        assert action.url("10.0.0.1") == "http://10.0.0.1:8080/health"
        assert ValidateAction(scheme="https").url("example.com") == "https://example.com/"
        assert ValidateAction().url("::1") == "http://[::1]/"

    @pytest.mark.asyncio
    async def test_success(self, monkeypatch, config):
        """Test a matching response validates the host."""
        requests = []

        def handler(request):
            requests.append(str(request.url))
            return httpx.Response(200, text="status: ok")

        mock_http(monkeypatch, handler)
        conn, _ = make_connection()

        await ValidateAction(body_content="ok").run(RunContext(), conn, config)

        assert requests == ["http://10.0.0.1/"]

    @pytest.mark.asyncio
    async def test_wrong_status_uses_all_retries(self, monkeypatch, config):
        """Test every attempt is used before failing."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        mock_http(monkeypatch, handler)
        conn, _ = make_connection()

        with pytest.raises(ActionError) as exc_info:
            await ValidateAction(retries=3).run(RunContext(), conn, config)

        assert len(calls) == 3
        assert "after 3 attempt(s)" in str(exc_info.value)
        assert "expected status code 200 but got 503 instead" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_retry_then_success(self, monkeypatch, config):
        """Test a later attempt can succeed."""
        responses = iter([httpx.Response(502), httpx.Response(200)])
        mock_http(monkeypatch, lambda request: next(responses))
        conn, _ = make_connection()

        await ValidateAction(retries=2).run(RunContext(), conn, config)

    @pytest.mark.asyncio
    async def test_zero_retries_makes_one_attempt(self, monkeypatch, config):
        """Test an action built with zero retries still probes once."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        mock_http(monkeypatch, handler)
        conn, _ = make_connection()

        with pytest.raises(ActionError, match="after 1 attempt"):
            await ValidateAction(retries=0).run(RunContext(), conn, config)

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_missing_body_content(self, monkeypatch, config):
        """Test the body must contain the expected content."""
        mock_http(monkeypatch, lambda request: httpx.Response(200, text="maintenance"))
        conn, _ = make_connection()

        with pytest.raises(ActionError, match="does not contain 'welcome'"):
            await ValidateAction(body_content="welcome").run(RunContext(), conn, config)

    @pytest.mark.asyncio
    async def test_timeout(self, monkeypatch, config):
        """Test request timeouts are reported."""

        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        mock_http(monkeypatch, handler)
        conn, _ = make_connection()

        with pytest.raises(ActionError, match="request timed out"):
            await ValidateAction().run(RunContext(), conn, config)

    @pytest.mark.asyncio
    async def test_cancelled_context(self, monkeypatch, config):
        """Test no request is made once the context ended."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200)

        mock_http(monkeypatch, handler)
        conn, _ = make_connection()
        ctx = RunContext()
        ctx.cancel()

        with pytest.raises(ActionError, match="context canceled"):
            await ValidateAction(retries=5).run(ctx, conn, config)

        assert calls == []
