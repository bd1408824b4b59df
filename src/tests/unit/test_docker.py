"""Unit tests for the Docker API client against an in-memory transport."""

import asyncio
import json
from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from spindb.errors import (
    ContainerCreateError,
    ContainerNotFoundError,
    ContainerOperationError,
    ImagePullError,
    InfrastructureUnavailableError,
)
from spindb.infra.docker import (
    ContainerAPI,
    ContainerConfig,
    DockerClient,
    HostConfig,
    ImageAPI,
    _demux_logs,
    split_image_ref,
)

Handler = Callable[[httpx.Request], httpx.Response]

CONTAINERS = [
    {"Id": "aaaa1111bbbb2222", "Names": ["/spindb-postgres-orders"], "State": "running"},
    {"Id": "cccc3333dddd4444", "Names": ["/spindb-mysql-users"], "State": "exited"},
]


def make_client(handler: Handler) -> DockerClient:
    return DockerClient(transport=httpx.MockTransport(handler), timeout=5.0)


def list_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/containers/json":
        return httpx.Response(200, json=CONTAINERS)
    return httpx.Response(404, json={"message": "no such route"})


class TestModels:
    """Tests for HostConfig and ContainerConfig."""

    def test_private_binds_loopback(self) -> None:
        host = HostConfig(port_bindings={5432: 5433})

        api = host.to_api()

        assert api["PortBindings"] == {"5432/tcp": [{"HostIp": "127.0.0.1", "HostPort": "5433"}]}

    def test_public_binds_all_interfaces(self) -> None:
        host = HostConfig(port_bindings={3306: 3306}, public=True)

        assert host.to_api()["PortBindings"]["3306/tcp"][0]["HostIp"] == "0.0.0.0"

    def test_container_config_to_api(self) -> None:
        config = ContainerConfig(
            image="postgres:15",
            name="spindb-postgres-orders",
            env=["POSTGRES_DB=orders"],
            labels={"spindb": "true"},
            host_config=HostConfig(
                port_bindings={5432: 5432},
                binds=["/data/orders:/var/lib/postgresql/data"],
                restart_policy="unless-stopped",
            ),
        )

        api = config.to_api()

        assert api["Image"] == "postgres:15"
        assert api["ExposedPorts"] == {"5432/tcp": {}}
        assert api["Env"] == ["POSTGRES_DB=orders"]
        assert api["Labels"] == {"spindb": "true"}
        assert api["HostConfig"]["Binds"] == ["/data/orders:/var/lib/postgresql/data"]
        assert api["HostConfig"]["RestartPolicy"] == {"Name": "unless-stopped"}


class TestDockerClient:
    """Tests for DockerClient.ping."""

    async def test_ping_ok(self) -> None:
        client = make_client(lambda request: httpx.Response(200, text="OK"))

        await client.ping()

    async def test_ping_unhealthy(self) -> None:
        client = make_client(lambda request: httpx.Response(500))

        with pytest.raises(InfrastructureUnavailableError):
            await client.ping()

    async def test_ping_unreachable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(InfrastructureUnavailableError):
            await make_client(handler).ping()


class TestContainerAPI:
    """Tests for ContainerAPI."""

    async def test_list_by_label_sends_filter(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[])

        await ContainerAPI(make_client(handler)).list_by_label("spindb=true")

        params = seen[0].url.params
        assert params["all"] == "true"
        assert json.loads(params["filters"]) == {"label": ["spindb=true"]}

    @pytest.mark.parametrize(
        "handle",
        ["aaaa1111bbbb2222", "aaaa1111", "spindb-postgres-orders"],
    )
    async def test_find_by_id_prefix_or_name(self, handle: str) -> None:
        api = ContainerAPI(make_client(list_handler))

        container = await api.find(handle)

        assert container["Id"] == "aaaa1111bbbb2222"

    async def test_find_prefers_name_over_id_prefix(self) -> None:
        containers = [
            {"Id": "orders99aaaa", "Names": ["/other"], "State": "exited"},
            {"Id": "eeee5555", "Names": ["/orders"], "State": "running"},
        ]
        api = ContainerAPI(make_client(lambda request: httpx.Response(200, json=containers)))

        container = await api.find("orders")

        assert container["Id"] == "eeee5555"

    async def test_find_prefers_exact_id_over_name(self) -> None:
        containers = [
            {"Id": "ffff", "Names": ["/abcd"], "State": "exited"},
            {"Id": "abcd", "Names": ["/other"], "State": "running"},
        ]
        api = ContainerAPI(make_client(lambda request: httpx.Response(200, json=containers)))

        container = await api.find("abcd")

        assert container["State"] == "running"

    async def test_is_running(self) -> None:
        api = ContainerAPI(make_client(list_handler))

        assert await api.is_running("spindb-postgres-orders") is True
        assert await api.is_running("cccc3333") is False

    async def test_is_running_not_found(self) -> None:
        api = ContainerAPI(make_client(list_handler))

        with pytest.raises(ContainerNotFoundError):
            await api.is_running("spindb-sqlite-nope")

    async def test_inspect_missing_returns_none(self) -> None:
        api = ContainerAPI(make_client(list_handler))

        assert await api.inspect("nope") is None

    async def test_create_returns_id(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"Id": "ffff0000", "Warnings": []})

        config = ContainerConfig(image="mysql:8.0", name="spindb-mysql-users")
        container_id = await ContainerAPI(make_client(handler)).create(config)

        assert container_id == "ffff0000"
        assert seen[0].url.params["name"] == "spindb-mysql-users"
        assert json.loads(seen[0].content)["Image"] == "mysql:8.0"

    async def test_create_name_collision(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(409, json={"message": "Conflict. The container name is already in use"})

        config = ContainerConfig(image="mysql:8.0", name="spindb-mysql-users")
        with pytest.raises(ContainerCreateError, match="already in use"):
            await ContainerAPI(make_client(handler)).create(config)

    async def test_start_already_running_is_ok(self) -> None:
        api = ContainerAPI(make_client(lambda request: httpx.Response(304)))

        await api.start("aaaa1111")

    async def test_stop_passes_grace_period(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        await ContainerAPI(make_client(handler)).stop("aaaa1111", grace_period=10)

        assert seen[0].url.path == "/containers/aaaa1111/stop"
        assert seen[0].url.params["t"] == "10"

    async def test_stop_missing_container(self) -> None:
        api = ContainerAPI(make_client(lambda request: httpx.Response(404, json={"message": "gone"})))

        with pytest.raises(ContainerNotFoundError):
            await api.stop("aaaa1111")

    async def test_server_error_wrapped_with_context(self) -> None:
        api = ContainerAPI(
            make_client(lambda request: httpx.Response(500, json={"message": "driver failed"}))
        )

        with pytest.raises(ContainerOperationError, match="remove aaaa1111: driver failed"):
            await api.remove("aaaa1111", force=True)

    async def test_unreachable_daemon(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("no such file", request=request)

        with pytest.raises(InfrastructureUnavailableError):
            await ContainerAPI(make_client(handler)).start("aaaa1111")

    async def test_logs_demuxed(self) -> None:
        frame = b"\x01\x00\x00\x00\x00\x00\x00\x06ready\n" + b"\x02\x00\x00\x00\x00\x00\x00\x04err\n"
        api = ContainerAPI(make_client(lambda request: httpx.Response(200, content=frame)))

        assert await api.logs("aaaa1111", tail=10) == "ready\nerr\n"


class TestImageAPI:
    """Tests for ImageAPI."""

    async def test_pull_sends_image_and_tag(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text='{"status":"Pulling"}\n{"status":"Done"}\n')

        await ImageAPI(make_client(handler)).pull("postgres:15")

        assert seen[0].url.params["fromImage"] == "postgres"
        assert seen[0].url.params["tag"] == "15"

    async def test_pull_error_in_stream(self) -> None:
        body = '{"status":"Pulling"}\n{"error":"manifest for postgres:99 not found"}\n'
        api = ImageAPI(make_client(lambda request: httpx.Response(200, text=body)))

        with pytest.raises(ImagePullError, match="manifest"):
            await api.pull("postgres:99")

    async def test_pull_http_error(self) -> None:
        api = ImageAPI(make_client(lambda request: httpx.Response(404, json={"message": "not found"})))

        with pytest.raises(ImagePullError, match="not found"):
            await api.pull("nope:1")

    async def test_pull_bounded_while_progress_keeps_streaming(self) -> None:
        async def progress() -> AsyncIterator[bytes]:
            for _ in range(20):
                await asyncio.sleep(0.1)
                yield b'{"status":"Downloading"}\n'

        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=progress())

        api = ImageAPI(make_client(handler))
        loop = asyncio.get_running_loop()
        started = loop.time()

        with pytest.raises(ImagePullError, match="timed out"):
            await api.pull("postgres:15", timeout=0.3)

        assert loop.time() - started < 1.5


class TestHelpers:
    """Tests for module helpers."""

    @pytest.mark.parametrize(
        "ref,expected",
        [
            ("postgres:15", ("postgres", "15")),
            ("mysql", ("mysql", "latest")),
            ("localhost:5000/pg", ("localhost:5000/pg", "latest")),
            ("localhost:5000/pg:16", ("localhost:5000/pg", "16")),
        ],
    )
    def test_split_image_ref(self, ref: str, expected: tuple[str, str]) -> None:
        assert split_image_ref(ref) == expected

    def test_demux_plain_text_passthrough(self) -> None:
        assert _demux_logs(b"plain output\n") == "plain output\n"
