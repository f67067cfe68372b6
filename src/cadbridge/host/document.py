"""
In-memory host document.

A small stand-in for a BIM host's model: elements with integer ids,
categories, named parameters, views and levels. All lengths are stored
in feet and all angles in radians, like the real host.

Mutations that add or remove elements must happen inside a transaction.
Sub-transactions give per-item rollback inside an open transaction.
"""

import copy
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import yaml

from ..units import Quantity

logger = logging.getLogger(__name__)

XYZ = Tuple[float, float, float]

# Element id -1 means "none" / "use the default"
INVALID_ELEMENT_ID = -1


class TransactionError(Exception):
    """Raised when a transaction cannot be opened, committed or is missing."""

    pass


class ItemFault(Exception):
    """A failure confined to one sub-operation.

    Attributes:
        context: Extra fields reported alongside the error (e.g. elementId)
    """

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class ElementNotFound(ItemFault):
    def __init__(self, element_id: Any, message: str = "Element not found"):
        super().__init__(message, elementId=element_id)


class ParameterNotFound(ItemFault):
    def __init__(self, name: str):
        super().__init__(f"Parameter '{name}' not found")


class ReadOnlyParameter(ItemFault):
    def __init__(self, name: str):
        super().__init__(f"Parameter '{name}' is read-only")


class StorageType(str, Enum):
    """How a parameter value is stored by the host."""

    STRING = "String"
    INTEGER = "Integer"
    DOUBLE = "Double"
    ELEMENT_ID = "ElementId"


@dataclass
class Parameter:
    """A named element parameter."""

    name: str
    storage_type: StorageType = StorageType.STRING
    value: Any = None
    read_only: bool = False
    spec: Optional[Quantity] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "storageType": self.storage_type.value,
            "value": self.value,
            "readOnly": self.read_only,
            "spec": self.spec.value if self.spec else None,
        }


@dataclass
class Element:
    """A host element. Geometry fields are optional and in feet/radians."""

    id: int
    category: str
    name: str = ""
    location: XYZ = (0.0, 0.0, 0.0)
    curve: Optional[Tuple[XYZ, XYZ]] = None
    radius: Optional[float] = None
    arc_angle: Optional[float] = None
    rotation: float = 0.0
    parameters: Dict[str, Parameter] = field(default_factory=dict)
    pinned: bool = False
    name_settable: bool = True
    hidden: bool = False
    temporarily_hidden: bool = False
    isolated: bool = False
    type_id: int = INVALID_ELEMENT_ID
    view_id: int = INVALID_ELEMENT_ID
    overrides: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)

    def lookup_parameter(self, name: str) -> Optional[Parameter]:
        return self.parameters.get(name)

    def midpoint(self) -> XYZ:
        """Curve midpoint for line-based elements, otherwise the location point."""
        if self.curve:
            (x1, y1, z1), (x2, y2, z2) = self.curve
            return ((x1 + x2) / 2, (y1 + y2) / 2, (z1 + z2) / 2)
        return self.location

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "name": self.name,
            "location": list(self.location),
        }


def _xyz(value: Any) -> XYZ:
    if isinstance(value, dict):
        return (float(value.get("x", 0)), float(value.get("y", 0)), float(value.get("z", 0)))
    x, y, z = (list(value) + [0, 0, 0])[:3]
    return (float(x), float(y), float(z))


class Document:
    """In-memory document with transaction semantics."""

    def __init__(self, name: str = "Untitled"):
        self.name = name
        self.elements: Dict[int, Element] = {}
        self.active_view_id = INVALID_ELEMENT_ID
        self.selection: List[int] = []
        self.fill_patterns: List[str] = ["<Solid fill>", "Diagonal Crosshatch", "Horizontal", "Vertical", "Sand"]
        self.warnings: List[Dict[str, Any]] = []
        self.history: List[str] = []
        self._next_id = 1
        self._transaction: Optional[str] = None
        self._snapshot: Optional[Dict[str, Any]] = None

    # ==================== Transactions ====================

    @property
    def has_open_transaction(self) -> bool:
        return self._transaction is not None

    def _take_snapshot(self) -> Dict[str, Any]:
        return {
            "elements": copy.deepcopy(self.elements),
            "active_view_id": self.active_view_id,
            "selection": list(self.selection),
            "next_id": self._next_id,
        }

    def _restore_snapshot(self, snapshot: Dict[str, Any]) -> None:
        self.elements = snapshot["elements"]
        self.active_view_id = snapshot["active_view_id"]
        self.selection = snapshot["selection"]
        self._next_id = snapshot["next_id"]

    def open_transaction(self, name: str) -> None:
        if self._transaction is not None:
            raise TransactionError(f"Cannot open '{name}': transaction '{self._transaction}' is already open")
        self._snapshot = self._take_snapshot()
        self._transaction = name

    def commit_transaction(self) -> None:
        if self._transaction is None:
            raise TransactionError("No open transaction to commit")
        self.history.append(self._transaction)
        self._transaction = None
        self._snapshot = None

    def abort_transaction(self) -> None:
        if self._transaction is None:
            return
        if self._snapshot is not None:
            self._restore_snapshot(self._snapshot)
        logger.debug(f"Transaction '{self._transaction}' rolled back")
        self._transaction = None
        self._snapshot = None

    @contextmanager
    def transaction(self, name: str) -> Iterator["Document"]:
        """Open, then commit on success or abort on any exception."""
        self.open_transaction(name)
        try:
            yield self
        except BaseException:
            self.abort_transaction()
            raise
        self.commit_transaction()

    @contextmanager
    def sub_transaction(self) -> Iterator["Document"]:
        """Roll back only the changes made inside the block if it raises."""
        self._require_transaction()
        snapshot = self._take_snapshot()
        try:
            yield self
        except BaseException:
            self._restore_snapshot(snapshot)
            raise

    def _require_transaction(self) -> None:
        if self._transaction is None:
            raise TransactionError("Modification of the document is forbidden outside of a transaction")

    # ==================== Elements ====================

    def add_element(self, category: str, name: str = "", **attrs: Any) -> Element:
        self._require_transaction()
        element = Element(id=self._next_id, category=category, name=name, **attrs)
        self.elements[element.id] = element
        self._next_id += 1
        return element

    def remove_element(self, element_id: int) -> None:
        self._require_transaction()
        if element_id not in self.elements:
            raise ElementNotFound(element_id)
        del self.elements[element_id]
        if element_id in self.selection:
            self.selection.remove(element_id)

    def get_element(self, element_id: Any) -> Optional[Element]:
        try:
            return self.elements.get(int(element_id))
        except (TypeError, ValueError):
            return None

    def require_element(self, element_id: Any) -> Element:
        element = self.get_element(element_id)
        if element is None:
            raise ElementNotFound(element_id)
        return element

    def elements_of(self, category: str) -> List[Element]:
        return [e for e in self.elements.values() if e.category == category]

    def find_by_name(self, category: str, name: str) -> Optional[Element]:
        for element in self.elements.values():
            if element.category == category and element.name == name:
                return element
        return None

    def resolve_view(self, view_id: Any) -> Element:
        """Return the view for an id, with -1/None meaning the active view."""
        if view_id is None or int(view_id) == INVALID_ELEMENT_ID:
            view_id = self.active_view_id
        view = self.get_element(view_id)
        if view is None or view.category != "Views":
            raise ItemFault("Invalid view", viewId=view_id)
        return view

    # ==================== Loading ====================

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Document":
        """Build a document from a plain mapping (see load_document)."""
        doc = cls(name=data.get("name", "Untitled"))
        doc.fill_patterns = list(data.get("fillPatterns", doc.fill_patterns))
        doc.warnings = list(data.get("warnings", []))

        with doc.transaction("Load"):
            for raw in data.get("elements", []):
                params = {}
                for pname, pdata in (raw.get("parameters") or {}).items():
                    spec = pdata.get("spec")
                    params[pname] = Parameter(
                        name=pname,
                        storage_type=StorageType(pdata.get("storage", "String")),
                        value=pdata.get("value"),
                        read_only=bool(pdata.get("readOnly", False)),
                        spec=Quantity(spec) if spec else None,
                    )
                curve = raw.get("curve")
                element = doc.add_element(
                    raw["category"],
                    raw.get("name", ""),
                    location=_xyz(raw.get("location", (0, 0, 0))),
                    curve=(_xyz(curve[0]), _xyz(curve[1])) if curve else None,
                    radius=raw.get("radius"),
                    arc_angle=raw.get("arcAngle"),
                    parameters=params,
                    pinned=bool(raw.get("pinned", False)),
                    name_settable=bool(raw.get("nameSettable", True)),
                    type_id=int(raw.get("typeId", INVALID_ELEMENT_ID)),
                    view_id=int(raw.get("viewId", INVALID_ELEMENT_ID)),
                    data=dict(raw.get("data") or {}),
                )
                # Keep explicit ids so seed files can reference each other
                if "id" in raw:
                    del doc.elements[element.id]
                    element.id = int(raw["id"])
                    doc.elements[element.id] = element
                    doc._next_id = max(doc._next_id, element.id + 1)

        views = doc.elements_of("Views")
        active = data.get("activeViewId")
        if active is not None:
            doc.active_view_id = int(active)
        elif views:
            doc.active_view_id = views[0].id
        doc.history.clear()
        return doc


def load_document(path: str) -> Document:
    """Load a seed document from a YAML file.

    Example:
        name: Sample
        elements:
          - {id: 1, category: Views, name: Level 1, data: {viewType: FloorPlan}}
          - id: 10
            category: Walls
            name: Basic Wall
            curve: [[0, 0, 0], [10, 0, 0]]
            parameters:
              Comments: {storage: String, value: ""}
    """
    with open(Path(path), encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return Document.from_dict(data)
