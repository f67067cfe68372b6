"""Tests for BridgeClient: unit conversion, batch planning and a live round trip."""

import math

import pytest

from cadbridge.channel import CommandChannel
from cadbridge.client import BridgeClient, grid_labels
from cadbridge.config import BridgeConfig
from cadbridge.host.batch import OperationSpec
from cadbridge.host.server import HostServer
from cadbridge.outcome import Failure, Success

from conftest import TransportFactory


def _batch_reply(message):
    items = message["params"].get("items", [])
    return {
        "id": message["id"],
        "result": {
            "success": True,
            "committed": True,
            "results": [{"index": i, "success": True} for i in range(len(items))],
        },
    }


@pytest.fixture
def factory() -> TransportFactory:
    return TransportFactory(_batch_reply)


@pytest.fixture
def client(factory: TransportFactory) -> BridgeClient:
    return BridgeClient(CommandChannel(BridgeConfig(), transport_factory=factory))


def _sent(factory: TransportFactory):
    return factory.current.sent[-1]


def test_grid_labels() -> None:
    assert grid_labels(3) == ["A", "B", "C"]
    assert grid_labels(3, "Y") == ["Y", "Z", "AA"]
    assert grid_labels(2, "AZ") == ["AZ", "BA"]
    assert grid_labels(3, "7", "numeric") == ["7", "8", "9"]
    with pytest.raises(ValueError):
        grid_labels(2, "A1")
    with pytest.raises(ValueError):
        grid_labels(2, "A", "roman")


@pytest.mark.asyncio
async def test_operate_element_converts_units(client: BridgeClient, factory: TransportFactory) -> None:
    await client.operate_element("Move", [10, 11], move_vector={"x": 304.8, "y": 0, "z": -609.6})
    request = _sent(factory)
    assert request["method"] == "operate_element"
    items = request["params"]["items"]
    assert [i["elementId"] for i in items] == [10, 11]
    assert items[0]["moveVector"] == {"x": pytest.approx(1.0), "y": 0.0, "z": pytest.approx(-2.0)}

    await client.operate_element("Rotate", [10], rotation_center={"x": 0, "y": 0, "z": 0}, rotation_angle=90)
    item = _sent(factory)["params"]["items"][0]
    assert item["rotationAngle"] == pytest.approx(math.pi / 2)
    await client.close()


@pytest.mark.asyncio
async def test_rename_suffixes_multiple_elements(client: BridgeClient, factory: TransportFactory) -> None:
    await client.operate_element("Rename", [1, 2, 3], new_name="Door")
    assert [i["newName"] for i in _sent(factory)["params"]["items"]] == ["Door_1", "Door_2", "Door_3"]

    await client.operate_element("Rename", [4], new_name="Door")
    assert _sent(factory)["params"]["items"][0]["newName"] == "Door"
    await client.close()


@pytest.mark.asyncio
async def test_operate_element_validation(client: BridgeClient, factory: TransportFactory) -> None:
    with pytest.raises(ValueError, match="Unknown action"):
        await client.operate_element("Explode", [1])
    with pytest.raises(ValueError):
        await client.operate_element("Hide", [])
    assert factory.transports == []


@pytest.mark.asyncio
async def test_create_dimensions_converts_points(client: BridgeClient, factory: TransportFactory) -> None:
    await client.create_dimensions(
        [
            {"startPoint": {"x": 0, "y": 0, "z": 0}, "endPoint": {"x": 3048, "y": 0, "z": 0}},
            {"chainPoints": [{"x": 0}, {"x": 304.8}, {"x": 914.4}], "textOverride": "EQ"},
        ]
    )
    first, second = _sent(factory)["params"]["items"]
    assert first["endPoint"]["x"] == pytest.approx(10.0)
    assert [p["x"] for p in second["chainPoints"]] == pytest.approx([0.0, 1.0, 3.0])
    assert second["textOverride"] == "EQ"
    await client.close()


@pytest.mark.asyncio
async def test_create_grid_expands_items(client: BridgeClient, factory: TransportFactory) -> None:
    await client.create_grid(3, 3048, 2, 6096, y_extent_max=30480, elevation=304.8)
    items = _sent(factory)["params"]["items"]
    assert [i["name"] for i in items] == ["A", "B", "C", "1", "2"]
    assert items[1]["start"]["x"] == pytest.approx(10.0)
    assert items[1]["end"]["y"] == pytest.approx(100.0)
    assert items[4]["start"]["y"] == pytest.approx(20.0)
    assert all(i["start"]["z"] == pytest.approx(1.0) for i in items)
    await client.close()


@pytest.mark.asyncio
async def test_set_parameter_requires_a_value(client: BridgeClient, factory: TransportFactory) -> None:
    with pytest.raises(ValueError):
        await client.set_parameter_value_for_elements("Mark", [1, 2])
    await client.set_parameter_value_for_elements("Mark", [1, 2], values=["a", "b"])
    assert _sent(factory)["params"] == {"parameterName": "Mark", "elementIds": [1, 2], "values": ["a", "b"]}
    await client.close()


@pytest.mark.asyncio
async def test_create_element_type_converts_layer_widths(client: BridgeClient, factory: TransportFactory) -> None:
    await client.create_element_type(
        "wall", "Brick", layers=[{"function": "Structure", "materialName": "Brick", "widthMm": 152.4}]
    )
    params = _sent(factory)["params"]
    assert params["category"] == "wall"
    assert "baseTypeName" not in params
    assert params["layers"][0]["width"] == pytest.approx(0.5)
    assert "widthMm" not in params["layers"][0]

    with pytest.raises(ValueError, match="widthMm"):
        await client.create_element_type("wall", "Bad", layers=[{"function": "Structure", "materialName": "Brick"}])
    assert _sent(factory)["params"]["name"] == "Brick"
    await client.close()


@pytest.mark.asyncio
async def test_execute_batch_returns_batch_result(client: BridgeClient, factory: TransportFactory) -> None:
    result = await client.execute_batch(
        [OperationSpec("hide", {"elementId": 1}), {"kind": "unhide", "params": {"elementId": 2}}]
    )
    assert result.committed is True
    assert result.total == 2
    assert _sent(factory)["params"]["items"][1] == {"kind": "unhide", "params": {"elementId": 2}}
    await client.close()


@pytest.mark.asyncio
async def test_round_trip_against_host(host_server: HostServer) -> None:
    config = BridgeConfig(endpoint=host_server.address, timeout=5.0)
    async with BridgeClient.from_config(config) as client:
        moved = await client.operate_element("Move", [10, 999], move_vector={"x": 304.8, "y": 0, "z": 0})
        grid = await client.create_grid(2, 6096, 1, 3048)
        batch = await client.execute_batch([OperationSpec("select", {"elementId": 11})])

    assert [r["success"] for r in moved["results"]] == [True, False]
    assert host_server.document.require_element(10).curve[0] == pytest.approx((1.0, 0.0, 0.0))
    assert grid["succeeded"] == 3
    assert sorted(g.name for g in host_server.document.elements_of("Grids")) == ["1", "A", "B"]
    assert isinstance(batch.outcomes[0], Success)
    assert host_server.document.selection == [11]


@pytest.mark.asyncio
async def test_round_trip_failure_outcomes(host_server: HostServer) -> None:
    config = BridgeConfig(endpoint=host_server.address, timeout=5.0)
    async with BridgeClient.from_config(config) as client:
        batch = await client.execute_batch([OperationSpec("delete", {"elementId": 20})])
    outcome = batch.outcomes[0]
    assert isinstance(outcome, Failure)
    assert outcome.error == "Element is pinned and cannot be modified"
    assert outcome.context == {"elementId": 20}
