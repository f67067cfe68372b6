"""Pytest fixtures: fake transport, sample document and a live host server."""

import asyncio
import math
from typing import Any, Callable, Dict, List, Optional

import pytest

from cadbridge.host.document import Document
from cadbridge.host.server import HostServer
from cadbridge.transport import Transport, TransportClosed


class FakeTransport(Transport):
    """In-memory transport. Tests push replies; optional responder answers automatically."""

    def __init__(self, responder: Optional[Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]] = None):
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self.responder = responder
        self._incoming: "asyncio.Queue[Any]" = asyncio.Queue()

    async def send(self, message: Dict[str, Any]) -> None:
        if self.closed:
            raise TransportClosed("fake transport is closed")
        self.sent.append(message)
        if self.responder is not None:
            reply = self.responder(message)
            if reply is not None:
                self._incoming.put_nowait(reply)

    async def receive(self) -> Dict[str, Any]:
        item = await self._incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True

    def reply(self, request_id: Any, result: Any = None, error: Optional[str] = None) -> None:
        if error is not None:
            self._incoming.put_nowait({"id": request_id, "error": {"message": error}})
        else:
            self._incoming.put_nowait({"id": request_id, "result": result})

    def push(self, item: Any) -> None:
        self._incoming.put_nowait(item)

    def drop(self, reason: str = "connection reset by peer") -> None:
        self._incoming.put_nowait(TransportClosed(reason))

    async def wait_sent(self, count: int, attempts: int = 200) -> None:
        for _ in range(attempts):
            if len(self.sent) >= count:
                return
            await asyncio.sleep(0)
        raise AssertionError(f"expected {count} sent message(s), got {len(self.sent)}")


class TransportFactory:
    """Hands out a fresh FakeTransport per connect and remembers them."""

    def __init__(self, responder=None):
        self.responder = responder
        self.transports: List[FakeTransport] = []

    async def __call__(self) -> FakeTransport:
        transport = FakeTransport(self.responder)
        self.transports.append(transport)
        return transport

    @property
    def current(self) -> FakeTransport:
        return self.transports[-1]


def echo_responder(message: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": message["id"], "result": {"method": message["method"], "params": message["params"]}}


@pytest.fixture
def transport_factory() -> TransportFactory:
    return TransportFactory()


def _wall_parameters(mark: str) -> Dict[str, Any]:
    return {
        "Comments": {"storage": "String", "value": ""},
        "Mark": {"storage": "String", "value": mark},
        "Unconnected Height": {"storage": "Double", "value": 10.0, "spec": "length"},
        "Area": {"storage": "Double", "value": 100.0, "readOnly": True, "spec": "area"},
        "Structural": {"storage": "Integer", "value": 0},
        "Base Offset": {"storage": "Double", "value": 0.0, "spec": "length"},
        "Rotation Limit": {"storage": "Double", "value": 0.0, "spec": "angle"},
        "Fire Rating": {"storage": "Double", "value": 0.0},
        "Base Constraint": {"storage": "ElementId", "value": 3},
    }


SAMPLE_MODEL: Dict[str, Any] = {
    "name": "Sample Project",
    "activeViewId": 1,
    "fillPatterns": ["<Solid fill>", "Diagonal Crosshatch", "Diagonal Up", "Sand"],
    "elements": [
        {"id": 1, "category": "Views", "name": "Level 1", "data": {"viewType": "FloorPlan"}},
        {"id": 2, "category": "Views", "name": "South", "data": {"viewType": "Elevation"}},
        {"id": 3, "category": "Levels", "name": "Level 1", "location": [0, 0, 0]},
        {"id": 4, "category": "Levels", "name": "Level 2", "location": [0, 0, 10]},
        {
            "id": 5,
            "category": "Element Types",
            "name": "Generic - 200mm",
            "data": {"category": "Walls", "familyName": "Basic Wall"},
        },
        {"id": 6, "category": "Tag Types", "name": "Wall Tag : Standard"},
        {
            "id": 7,
            "category": "Element Types",
            "name": "300 x 300mm",
            "data": {"category": "Structural Columns", "familyName": "Concrete-Rectangular-Column"},
            "parameters": {
                "b": {"storage": "Double", "value": 0.984252, "spec": "length"},
                "h": {"storage": "Double", "value": 0.984252, "spec": "length"},
                "Type Mark": {"storage": "String", "value": ""},
                "Family Name": {"storage": "String", "value": "Concrete-Rectangular-Column", "readOnly": True},
            },
        },
        {
            "id": 10,
            "category": "Walls",
            "name": "Wall A",
            "typeId": 5,
            "curve": [[0, 0, 0], [10, 0, 0]],
            "data": {"levelId": 3},
            "parameters": _wall_parameters("W1"),
        },
        {
            "id": 11,
            "category": "Walls",
            "name": "Wall B",
            "typeId": 5,
            "curve": [[10, 0, 0], [10, 10, 0]],
            "data": {"levelId": 3},
            "parameters": _wall_parameters("W2"),
        },
        {
            "id": 12,
            "category": "Walls",
            "name": "Wall C",
            "typeId": 5,
            "curve": [[0, 10, 0], [10, 10, 0]],
            "data": {"levelId": 4},
            "parameters": _wall_parameters("W3"),
        },
        {"id": 20, "category": "Doors", "name": "Door 1", "location": [5, 0, 0], "pinned": True},
        {
            "id": 30,
            "category": "Generic Models",
            "name": "Arc 1",
            "location": [20, 20, 0],
            "radius": 2.0,
            "arcAngle": math.pi / 2,
        },
        {"id": 31, "category": "Generic Models", "name": "Circle 1", "location": [30, 30, 0], "radius": 1.5},
        {"id": 40, "category": "Rooms", "name": "Room 1", "location": [5, 5, 0], "nameSettable": False},
    ],
    "warnings": [
        {"severity": "Warning", "description": "Walls overlap", "failingElements": [10, 11]},
        {"severity": "Warning", "description": "Walls overlap", "failingElements": [11, 12]},
        {"severity": "Error", "description": "Room is not enclosed", "failingElements": [40]},
    ],
}


@pytest.fixture
def document() -> Document:
    return Document.from_dict(SAMPLE_MODEL)


@pytest.fixture
def host_server(document: Document):
    """Real host server on an ephemeral port."""
    server = HostServer(document, host="127.0.0.1", port=0)
    server.start()
    yield server
    server.stop()
