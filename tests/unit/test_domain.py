"""Unit tests for spinup domain layer."""

import pytest

from spinup.domain.entities.job import Job, JobError, JobStatus, JobType
from spinup.domain.entities.server import PortMapping, Server, ServerStatus
from spinup.domain.errors import (
    ContainerNotFound,
    InvalidTransition,
    JobConflict,
    NotAFile,
    NotFound,
    PreconditionFailed,
    ProtectedFile,
    SpinupError,
    UnknownError,
    UnknownGame,
    as_spinup_error,
)
from spinup.domain.services.provisioning import build_container_spec, merged_env
from spinup.domain.value_objects.games import Protocol, get_game, list_games
from spinup.domain.value_objects.identifiers import (
    container_name_for,
    hostname_for,
    new_job_id,
)


@pytest.mark.unit
class TestIdentifiers:
    """Test value object creation."""

    def test_container_name(self):
        """Test container names are prefixed with su_."""
        assert container_name_for("abc123") == "su_abc123"

    def test_hostname_is_dns_safe(self):
        """Test hostnames are lowercased slugs."""
        assert hostname_for("My Cool Server!") == "spinup-my-cool-server"

    def test_hostname_length_capped(self):
        assert len(hostname_for("x" * 200)) == 63

    def test_hostname_of_symbols_only(self):
        assert hostname_for("!!!") == "spinup-server"

    def test_job_ids_unique(self):
        assert new_job_id() != new_job_id()


@pytest.mark.unit
class TestGames:
    """Test the game catalog."""

    def test_get_known_game(self):
        game = get_game("minecraft-java")
        assert game.image.startswith("itzg/minecraft-server")
        assert game.ports[0].container_port == 25565
        assert game.env_defaults["EULA"] == "TRUE"

    def test_unknown_game(self):
        """Test unknown keys raise a not-found error."""
        with pytest.raises(UnknownGame) as exc_info:
            get_game("pong")
        assert exc_info.value.kind == "not_found"

    def test_catalog_keys_unique(self):
        keys = [g.key for g in list_games()]
        assert len(keys) == len(set(keys))


@pytest.mark.unit
class TestErrors:
    """Test the error taxonomy."""

    def test_kinds(self):
        assert InvalidTransition().kind == "invalid_transition"
        assert PreconditionFailed().kind == "precondition_failed"
        assert JobConflict().kind == "job_in_progress"
        assert ProtectedFile().kind == "protected_file"
        assert ContainerNotFound().kind == "not_found"
        assert NotAFile().kind == "not_a_file"

    def test_subclass_relationships(self):
        assert isinstance(PreconditionFailed(), InvalidTransition)
        assert isinstance(ContainerNotFound(), NotFound)

    def test_to_dict_includes_context(self):
        err = ProtectedFile("Cannot modify critical file: server.jar", path="/data/server.jar")
        assert err.to_dict() == {
            "kind": "protected_file",
            "message": "Cannot modify critical file: server.jar",
            "context": {"path": "/data/server.jar"},
        }

    def test_wrap_unknown(self):
        """Test untyped exceptions are wrapped with context."""
        cause = KeyError("missing")
        err = as_spinup_error(cause, "loading thing")
        assert isinstance(err, UnknownError)
        assert err.message.startswith("loading thing")
        assert err.__cause__ is cause

    def test_typed_errors_pass_through(self):
        err = JobConflict("busy")
        assert as_spinup_error(err, "ignored") is err
        assert isinstance(err, SpinupError)


@pytest.mark.unit
class TestJob:
    """Test job entity."""

    def make_job(self) -> Job:
        return Job(job_id="job-1", server_id="srv-1", type=JobType.START)

    def test_job_lifecycle(self):
        """Test pending -> running -> success."""
        job = self.make_job()
        assert job.status == JobStatus.PENDING
        assert job.is_active()

        job.start()
        assert job.status == JobStatus.RUNNING

        job.succeed({"container_ref": "abc"})
        assert job.status == JobStatus.SUCCESS
        assert job.progress == 100
        assert job.result["container_ref"] == "abc"
        assert job.is_terminal()

    def test_progress_only_increases(self):
        """Test that stale progress values are ignored."""
        job = self.make_job()
        job.start()
        assert job.advance(30) is True
        assert job.advance(20) is False
        assert job.advance(30) is False
        assert job.progress == 30

    def test_progress_capped(self):
        job = self.make_job()
        job.start()
        job.advance(250)
        assert job.progress == 100

    def test_cannot_succeed_pending_job(self):
        with pytest.raises(InvalidTransition):
            self.make_job().succeed()

    def test_fail_records_error(self):
        job = self.make_job()
        job.start()
        job.advance(40)
        job.fail(JobError(kind="not_found", message="gone", progress=job.progress))
        assert job.status == JobStatus.FAILED
        assert job.error.progress == 40
        assert job.to_dict()["error"]["kind"] == "not_found"

    def test_terminal_job_rejects_progress(self):
        job = self.make_job()
        job.start()
        job.succeed()
        with pytest.raises(InvalidTransition):
            job.advance(50)


@pytest.mark.unit
class TestServer:
    """Test server entity."""

    def test_memory_limit_bytes(self):
        server = Server(server_id="s", name="S", game_key="minecraft-java", memory_cap_mb=2048)
        assert server.memory_limit_bytes == 2147483648

    def test_deleted_server_is_final(self):
        server = Server(server_id="s", name="S", game_key="minecraft-java", status=ServerStatus.DELETED)
        with pytest.raises(ValueError):
            server.transition(ServerStatus.RUNNING)

    def test_port_mapping_key(self):
        assert PortMapping(19132, 30000, Protocol.UDP).key == "19132/udp"


@pytest.mark.unit
class TestProvisioning:
    """Test container spec construction."""

    def make_server(self) -> Server:
        return Server(
            server_id="abc",
            name="Friends SMP",
            game_key="minecraft-java",
            ports=[PortMapping(25565, 30000), PortMapping(25575, 30001)],
            memory_cap_mb=2048,
            cpu_shares=2048,
            env={"VERSION": "1.20.4", "MOTD": "hello"},
        )

    def test_env_overrides_game_defaults(self):
        env = merged_env(get_game("minecraft-java"), self.make_server())
        assert env["EULA"] == "TRUE"
        assert env["VERSION"] == "1.20.4"
        assert env["MOTD"] == "hello"

    def test_engine_request_body(self):
        """Test the rendered engine body uses engine field names and units."""
        spec = build_container_spec(self.make_server(), get_game("minecraft-java"), "/srv/abc/data")
        body = spec.to_api()

        assert spec.name == "su_abc"
        assert body["Image"] == "itzg/minecraft-server:latest"
        assert body["Hostname"] == "spinup-friends-smp"
        assert "EULA=TRUE" in body["Env"]
        assert body["ExposedPorts"] == {"25565/tcp": {}, "25575/tcp": {}}
        assert body["Labels"]["spinup.server_id"] == "abc"

        host = body["HostConfig"]
        assert host["Memory"] == 2147483648
        assert host["CpuShares"] == 2048
        assert host["Binds"] == ["/srv/abc/data:/data"]
        assert host["PortBindings"]["25565/tcp"] == [{"HostPort": "30000"}]
        assert host["PortBindings"]["25575/tcp"] == [{"HostPort": "30001"}]
        assert host["RestartPolicy"] == {"Name": "unless-stopped"}
