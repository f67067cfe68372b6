"""
Bridge client - high-level operations over a CommandChannel.

Callers work in millimetres and degrees. Every method converts its
geometric arguments to host units (feet, radians) before sending, plans
one batch item per target where the operation is a batch, and returns the
host's reply document.

Usage:
    async with BridgeClient.from_config(BridgeConfig()) as client:
        reply = await client.operate_element("Move", [101, 102], move_vector={"x": 1000, "y": 0, "z": 0})
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from .channel import CommandChannel
from .config import BridgeConfig
from .host.batch import OperationSpec
from .host.handlers import ACTION_KINDS
from .outcome import BatchResult
from .units import normalize_direction, to_host_angle, to_host_length, to_host_point

logger = logging.getLogger(__name__)

_POINT_KEYS = ("startPoint", "endPoint", "linePoint")


def _index_to_alpha(n: int) -> str:
    label = ""
    while n > 0:
        n, remainder = divmod(n - 1, 26)
        label = chr(ord("A") + remainder) + label
    return label


def _alpha_to_index(label: str) -> int:
    n = 0
    for ch in label.upper():
        if not "A" <= ch <= "Z":
            raise ValueError(f"Invalid alphabetic grid label: {label!r}")
        n = n * 26 + (ord(ch) - ord("A") + 1)
    return n


def grid_labels(count: int, start: str = "A", style: str = "alphabetic") -> List[str]:
    """Labels for count grid lines.

    Alphabetic runs A..Z, AA, AB, ...; numeric runs 1, 2, 3, ...
    Both continue from start.

    Example:
        >>> grid_labels(3, "Y")
        ['Y', 'Z', 'AA']
    """
    if style == "alphabetic":
        first = _alpha_to_index(start or "A")
        return [_index_to_alpha(first + i) for i in range(count)]
    if style == "numeric":
        try:
            first = int(start or "1")
        except ValueError:
            raise ValueError(f"Invalid numeric grid label: {start!r}") from None
        return [str(first + i) for i in range(count)]
    raise ValueError(f"Unknown naming style: {style!r} (expected 'alphabetic' or 'numeric')")


def _convert_dimension(dimension: Dict[str, Any]) -> Dict[str, Any]:
    item = dict(dimension)
    for key in _POINT_KEYS:
        if item.get(key) is not None:
            item[key] = to_host_point(item[key])
    if item.get("chainPoints"):
        item["chainPoints"] = [to_host_point(p) for p in item["chainPoints"]]
    return item


class BridgeClient:
    """Typed operations on top of one CommandChannel."""

    def __init__(self, channel: Optional[CommandChannel] = None):
        self.channel = channel or CommandChannel()

    @classmethod
    def from_config(cls, config: BridgeConfig) -> "BridgeClient":
        return cls(CommandChannel(config))

    async def __aenter__(self) -> "BridgeClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.channel.close()

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> Any:
        """Send a raw request. Params must already be in host units."""
        return await self.channel.send(method, params, timeout=timeout)

    # ==================== Batches ====================

    async def execute_batch(
        self,
        operations: Sequence[Union[OperationSpec, Dict[str, Any]]],
        transaction_name: str = "Batch",
        timeout: Optional[float] = None,
    ) -> BatchResult:
        """Run mixed operations in one host transaction.

        Args:
            operations: OperationSpec or {"kind", "params"} in host units
            transaction_name: Suffix for the host undo entry

        Returns:
            BatchResult with one outcome per operation, in order
        """
        items = []
        for op in operations:
            if isinstance(op, OperationSpec):
                items.append({"kind": op.kind, "params": op.params})
            else:
                items.append({"kind": op["kind"], "params": op.get("params") or {}})
        reply = await self.call("execute_batch", {"items": items, "transactionName": transaction_name}, timeout)
        return BatchResult.from_dict(reply)

    async def create_dimensions(self, dimensions: List[Dict[str, Any]], timeout: Optional[float] = None) -> Dict[str, Any]:
        """Create dimensions in one transaction.

        Each dimension takes dimensionType (Linear, Angular, Radial, Diameter,
        ArcLength), elementIds, startPoint/endPoint/linePoint or chainPoints
        in mm, and optional viewId, dimensionStyleId and textOverride.
        """
        items = [_convert_dimension(d) for d in dimensions]
        return await self.call("create_dimensions", {"items": items}, timeout)

    async def operate_element(
        self,
        action: str,
        element_ids: Sequence[int],
        *,
        move_vector: Optional[Dict[str, float]] = None,
        rotation_center: Optional[Dict[str, float]] = None,
        rotation_angle: Optional[float] = None,
        copy_count: Optional[int] = None,
        mirror_plane_origin: Optional[Dict[str, float]] = None,
        mirror_plane_normal: Optional[Dict[str, float]] = None,
        color_value: Optional[Sequence[int]] = None,
        transparency_value: Optional[int] = None,
        parameter_name: Optional[str] = None,
        parameter_value: Any = None,
        new_name: Optional[str] = None,
        view_id: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Apply one action to each element; one batch item per element.

        Vectors and points are in mm, rotation_angle in degrees. When renaming
        several elements, each gets new_name with a _1, _2, ... suffix.

        Raises:
            ValueError: If the action is unknown or no elements are given
        """
        if action not in ACTION_KINDS:
            raise ValueError(f"Unknown action: {action!r}. Expected one of: {', '.join(ACTION_KINDS)}")
        if not element_ids:
            raise ValueError("element_ids must not be empty")

        shared: Dict[str, Any] = {"action": action}
        if move_vector is not None:
            shared["moveVector"] = to_host_point(move_vector)
        if rotation_center is not None:
            shared["rotationCenter"] = to_host_point(rotation_center)
        if rotation_angle is not None:
            shared["rotationAngle"] = to_host_angle(rotation_angle)
        if copy_count is not None:
            shared["copyCount"] = copy_count
        if mirror_plane_origin is not None:
            shared["mirrorPlaneOrigin"] = to_host_point(mirror_plane_origin)
        if mirror_plane_normal is not None:
            shared["mirrorPlaneNormal"] = normalize_direction(mirror_plane_normal)
        if color_value is not None:
            shared["colorValue"] = list(color_value)
        if transparency_value is not None:
            shared["transparencyValue"] = transparency_value
        if parameter_name is not None:
            shared["parameterName"] = parameter_name
        if parameter_value is not None:
            shared["parameterValue"] = parameter_value
        if view_id is not None:
            shared["viewId"] = view_id

        items = []
        for n, element_id in enumerate(element_ids, start=1):
            item = {**shared, "elementId": element_id}
            if new_name is not None:
                item["newName"] = f"{new_name}_{n}" if len(element_ids) > 1 else new_name
            items.append(item)
        return await self.call("operate_element", {"items": items}, timeout)

    async def set_parameter_value_for_elements(
        self,
        parameter_name: str,
        element_ids: Sequence[int],
        value: Any = None,
        values: Optional[Sequence[Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Set one parameter on many elements.

        Give either one shared value or values (one per element). Double
        values for length/angle/area/volume parameters are in mm/degrees and
        converted by the host from the parameter's own spec.
        """
        if value is None and values is None:
            raise ValueError("Either value or values must be provided")
        params: Dict[str, Any] = {"parameterName": parameter_name, "elementIds": list(element_ids)}
        if values is not None:
            params["values"] = list(values)
        else:
            params["value"] = value
        return await self.call("set_parameter_value_for_elements", params, timeout)

    async def create_tag(self, tags: List[Dict[str, Any]], timeout: Optional[float] = None) -> Dict[str, Any]:
        """Tag elements. Each tag: elementId, optional location (mm), tagCategory,
        orientation (0 horizontal, 1 vertical), hasLeader, tagTypeId, viewId."""
        items = []
        for tag in tags:
            item = dict(tag)
            if item.get("location") is not None:
                item["location"] = to_host_point(item["location"])
            items.append(item)
        return await self.call("create_tag", {"items": items}, timeout)

    async def tag_all_walls(
        self, use_leader: bool = False, tag_type_id: Optional[str] = None, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"useLeader": use_leader}
        if tag_type_id:
            params["tagTypeId"] = tag_type_id
        return await self.call("tag_all_walls", params, timeout)

    async def create_grid(
        self,
        x_count: int,
        x_spacing: float,
        y_count: int,
        y_spacing: float,
        *,
        x_start_label: str = "A",
        x_naming_style: str = "alphabetic",
        y_start_label: str = "1",
        y_naming_style: str = "numeric",
        x_extent_min: float = 0.0,
        x_extent_max: float = 50000.0,
        y_extent_min: float = 0.0,
        y_extent_max: float = 50000.0,
        x_start_position: float = 0.0,
        y_start_position: float = 0.0,
        elevation: float = 0.0,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Create a rectangular grid system; all distances in mm.

        X-axis grids are vertical lines spaced along X and spanning the Y
        extent; Y-axis grids are horizontal lines spaced along Y and spanning
        the X extent.
        """
        if x_count < 0 or y_count < 0:
            raise ValueError("Grid counts must not be negative")
        if x_spacing <= 0 or y_spacing <= 0:
            raise ValueError("Grid spacing must be positive")

        z = to_host_length(elevation)
        items = []
        for i, label in enumerate(grid_labels(x_count, x_start_label, x_naming_style)):
            x = to_host_length(x_start_position + i * x_spacing)
            items.append(
                {
                    "name": label,
                    "start": {"x": x, "y": to_host_length(y_extent_min), "z": z},
                    "end": {"x": x, "y": to_host_length(y_extent_max), "z": z},
                }
            )
        for i, label in enumerate(grid_labels(y_count, y_start_label, y_naming_style)):
            y = to_host_length(y_start_position + i * y_spacing)
            items.append(
                {
                    "name": label,
                    "start": {"x": to_host_length(x_extent_min), "y": y, "z": z},
                    "end": {"x": to_host_length(x_extent_max), "y": y, "z": z},
                }
            )
        return await self.call("create_grid", {"items": items}, timeout)

    async def set_graphic_overrides_for_elements_in_view(
        self,
        element_ids: Sequence[int],
        overrides: Optional[Dict[str, Any]] = None,
        view_id: int = -1,
        reset_overrides: bool = False,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Override graphics per element in one view (view_id -1 = active view).

        overrides keys: projectionLineColor, cutLineColor, surfaceForegroundColor,
        surfaceBackgroundColor ({r, g, b}), projectionLineWeight, cutLineWeight
        (1-16), transparency (0-100), halftone.
        """
        params: Dict[str, Any] = dict(overrides or {})
        params.update({"elementIds": list(element_ids), "viewId": view_id, "resetOverrides": reset_overrides})
        return await self.call("set_graphic_overrides_for_elements_in_view", params, timeout)

    # ==================== Single Operations ====================

    async def create_material(self, name: str, timeout: Optional[float] = None, **properties: Any) -> Dict[str, Any]:
        """Create or update a material. properties: color, transparency,
        surfacePatternName, surfacePatternColor, cutPatternName, cutPatternColor."""
        return await self.call("create_material", {"name": name, **properties}, timeout)

    async def create_view(
        self,
        view_type: str,
        name: Optional[str] = None,
        level_elevation: Optional[float] = None,
        scale: Optional[int] = None,
        detail_level: Optional[str] = None,
        template_id: Optional[int] = None,
        direction: Optional[Dict[str, float]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Create a view. level_elevation is in mm."""
        params: Dict[str, Any] = {"viewType": view_type}
        if name:
            params["name"] = name
        if level_elevation is not None:
            params["levelElevation"] = to_host_length(level_elevation)
        if scale is not None:
            params["scale"] = scale
        if detail_level:
            params["detailLevel"] = detail_level
        if template_id is not None:
            params["templateId"] = template_id
        if direction is not None:
            params["direction"] = normalize_direction(direction)
        return await self.call("create_view", params, timeout)

    async def create_element_type(
        self,
        category: str,
        name: str,
        base_type_name: Optional[str] = None,
        layers: Optional[List[Dict[str, Any]]] = None,
        parameters: Optional[List[Dict[str, Any]]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Duplicate an existing type and customize it.

        Args:
            category: wall, floor, roof, ceiling (layered) or column, beam (family)
            name: Name of the new type
            base_type_name: Type to duplicate ('Type' or 'Family: Type');
                defaults to the first type of the category
            layers: {function, materialName, widthMm} per layer, exterior first
            parameters: {name, value} per family parameter; lengths in mm

        Raises:
            ValueError: If a layer width is missing or not positive
        """
        params: Dict[str, Any] = {"category": category, "name": name}
        if base_type_name:
            params["baseTypeName"] = base_type_name
        if layers is not None:
            converted = []
            for layer in layers:
                width = layer.get("widthMm")
                if isinstance(width, bool) or not isinstance(width, (int, float)) or width <= 0:
                    raise ValueError(f"Layer widthMm must be a positive number, got {width!r}")
                item = {k: v for k, v in layer.items() if k != "widthMm"}
                item["width"] = to_host_length(width)
                converted.append(item)
            params["layers"] = converted
        if parameters is not None:
            params["parameters"] = list(parameters)
        return await self.call("create_element_type", params, timeout)

    # ==================== Queries ====================

    async def get_graphic_overrides_for_element_ids_in_view(
        self, element_ids: Sequence[int], view_id: int = -1, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        return await self.call(
            "get_graphic_overrides_for_element_ids_in_view",
            {"elementIds": list(element_ids), "viewId": view_id},
            timeout,
        )

    async def analyze_model_statistics(
        self, include_detailed_types: bool = True, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        return await self.call("analyze_model_statistics", {"includeDetailedTypes": include_detailed_types}, timeout)

    async def get_all_warnings_in_the_model(
        self, severity_filter: str = "All", include_element_ids: bool = True, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        return await self.call(
            "get_all_warnings_in_the_model",
            {"severityFilter": severity_filter, "includeElementIds": include_element_ids},
            timeout,
        )

    async def health_check(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self.call("health_check", {}, timeout)
