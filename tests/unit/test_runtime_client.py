import asyncio
import socket

import pytest
import requests
from docker.errors import ImageNotFound, NotFound

from fake_engine import api_error
from magic_server.app.errors import (
    AlreadyInState,
    EngineError,
    EngineUnavailable,
    InvalidSpec,
    OperationTimeout,
    WorkspaceConflict,
    WorkspaceNotFound,
)
from magic_server.app.workspaces.core import LABEL_MANAGED, ownership_selector
from magic_server.app.workspaces.runtime import (
    RESTART_POLICY,
    ContainerSpec,
    RuntimeDescriptor,
    build_port_maps,
    translate_engine_error,
)


def _spec(**overrides) -> ContainerSpec:
    fields = {
        "name": "magic-w1",
        "image": "alpine:3.20",
        "env": ("A=1",),
        "ports": {"8080/tcp": "8443"},
        "labels": {LABEL_MANAGED: "true"},
        "command": ("sleep", "infinity"),
    }
    fields.update(overrides)
    return ContainerSpec(**fields)


# ---- pure helpers ----

def test_build_port_maps_defaults_protocol_and_allows_dynamic_host():
    exposed, bindings = build_port_maps({"8080": "8443", "53/udp": ""})
    assert exposed == {"8080/tcp": {}, "53/udp": {}}
    assert bindings == {"8080/tcp": [{"HostPort": "8443"}], "53/udp": [{"HostPort": ""}]}


@pytest.mark.parametrize("ports", [{"http/tcp": "80"}, {"8080/tcp": "99999"}, {"8080/icmp": "1"}])
def test_build_port_maps_rejects_malformed_ports(ports):
    with pytest.raises(InvalidSpec):
        build_port_maps(ports)


def test_engine_config_carries_labels_ports_and_restart_policy():
    config = _spec().to_engine_config()
    assert config["Image"] == "alpine:3.20"
    assert config["Env"] == ["A=1"]
    assert config["Labels"] == {LABEL_MANAGED: "true"}
    assert config["ExposedPorts"] == {"8080/tcp": {}}
    assert config["HostConfig"]["PortBindings"] == {"8080/tcp": [{"HostPort": "8443"}]}
    assert config["HostConfig"]["RestartPolicy"] == RESTART_POLICY
    assert config["Cmd"] == ["sleep", "infinity"]
    assert "Cmd" not in _spec(command=None).to_engine_config()


@pytest.mark.parametrize(
    "overrides",
    [{"image": ""}, {"image": "   "}, {"image": "alpine 3"}, {"name": ""}, {"env": ("NOVALUE",)}],
)
def test_container_spec_validation(overrides):
    with pytest.raises(InvalidSpec):
        _spec(**overrides).validate()


def test_descriptor_from_summary():
    desc = RuntimeDescriptor.from_summary(
        {
            "Id": "0123456789abcdef0123",
            "Names": ["/magic-w1"],
            "Image": "alpine:3.20",
            "State": "running",
            "Created": 1700000000,
            "Labels": {"magic.computer": "true"},
            "Ports": [
                {"PrivatePort": 8080, "Type": "tcp", "IP": "0.0.0.0", "PublicPort": 8443},
                {"PrivatePort": 8080, "Type": "tcp", "IP": "::", "PublicPort": 8443},
                {"PrivatePort": 9000, "Type": "tcp"},
            ],
        }
    )
    assert desc.id == "0123456789ab"
    assert desc.name == "magic-w1"
    assert desc.is_running
    assert desc.ports == {"8080/tcp": "0.0.0.0:8443", "9000/tcp": "not exposed"}


@pytest.mark.parametrize(
    "exc, expected",
    [
        (api_error(404, "No such container", NotFound), WorkspaceNotFound),
        (api_error(404, "No such image", ImageNotFound), InvalidSpec),
        (api_error(304, "not modified"), AlreadyInState),
        (api_error(409, "name in use"), WorkspaceConflict),
        (api_error(503, "daemon busy"), EngineUnavailable),
        (api_error(500, "boom"), EngineError),
        (requests.exceptions.ReadTimeout("slow"), OperationTimeout),
        (socket.timeout("slow"), OperationTimeout),
        (requests.exceptions.ConnectionError("refused"), EngineUnavailable),
        (FileNotFoundError("/var/run/docker.sock"), EngineUnavailable),
        (RuntimeError("unexpected"), EngineError),
    ],
)
def test_translate_engine_error(exc, expected):
    err = translate_engine_error(exc, "start", "abc")
    assert isinstance(err, expected)


# ---- client against the simulated engine ----

def test_list_by_label_hides_unlabeled_containers(runtime, engine):
    engine.api.add_container("postgres", labels={})
    engine.api.add_container("other", labels={LABEL_MANAGED: "false"})
    ours = engine.api.add_container("magic-mine", labels={LABEL_MANAGED: "true"})

    found = asyncio.run(runtime.list_by_label(ownership_selector()))
    assert [d.name for d in found] == ["magic-mine"]
    assert found[0].id == ours.id[:12]


def test_list_by_label_filters_even_when_engine_ignores_filters(runtime, engine):
    engine.api.ignore_label_filters = True
    engine.api.add_container("postgres", labels={"app": "db"})
    engine.api.add_container("magic-mine", labels={LABEL_MANAGED: "true"})

    found = asyncio.run(runtime.list_by_label(ownership_selector()))
    assert [d.name for d in found] == ["magic-mine"]


def test_create_returns_short_id_and_does_not_start(runtime, engine):
    cid = asyncio.run(runtime.create(_spec()))
    assert len(cid) == 12
    record = engine.api.find(cid)
    assert record.state == "created"
    assert record.name == "magic-w1"


def test_create_with_empty_image_issues_no_engine_call(runtime, engine):
    with pytest.raises(InvalidSpec):
        asyncio.run(runtime.create(_spec(image="")))
    assert engine.api.calls == []


def test_create_pulls_missing_image_once(runtime, engine):
    engine.api.pullable.add("ghcr.io/acme/tool:1")
    cid = asyncio.run(runtime.create(_spec(image="ghcr.io/acme/tool:1")))
    assert engine.api.op_count("pull") == 1
    assert engine.api.op_count("create") == 2
    assert engine.api.find(cid).image == "ghcr.io/acme/tool:1"


def test_create_with_unpullable_image_is_invalid(runtime, engine):
    with pytest.raises(InvalidSpec):
        asyncio.run(runtime.create(_spec(image="nope/missing:1")))


def test_duplicate_name_is_a_conflict(runtime):
    asyncio.run(runtime.create(_spec()))
    with pytest.raises(WorkspaceConflict):
        asyncio.run(runtime.create(_spec()))


def test_start_and_stop_report_already_in_state(runtime):
    cid = asyncio.run(runtime.create(_spec()))
    asyncio.run(runtime.start(cid))
    with pytest.raises(AlreadyInState):
        asyncio.run(runtime.start(cid))
    asyncio.run(runtime.stop(cid))
    with pytest.raises(AlreadyInState):
        asyncio.run(runtime.stop(cid))


def test_unreachable_engine_is_engine_unavailable(runtime, engine):
    engine.api.reachable = False
    with pytest.raises(EngineUnavailable):
        asyncio.run(runtime.ping())
    with pytest.raises(EngineUnavailable):
        asyncio.run(runtime.list_by_label(ownership_selector()))


def test_logs_are_decoded_and_tailed(runtime, engine):
    c = engine.api.add_container("magic-logs", labels={LABEL_MANAGED: "true"})
    c.log_lines.extend(["one", "two", "three"])
    text = asyncio.run(runtime.logs(c.id[:12], 2))
    assert text == "two\nthree\n"


def test_missing_container_is_not_found(runtime):
    with pytest.raises(WorkspaceNotFound):
        asyncio.run(runtime.start("ffffffffffff"))


def test_close_releases_client(runtime, engine):
    runtime.close()
    assert engine.closed
