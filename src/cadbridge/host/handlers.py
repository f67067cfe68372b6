"""
Operation handlers.

Each handler has the contract handler(document, params) -> value and raises
on failure. Batch handlers are registered by kind in a HandlerRegistry and
always run inside the batch executor's transaction. Coordinates arriving
here are already in host units (feet, radians).

Supported kinds:
- Annotation: create_dimension (+ text override post-step), create_tag
- Datum: create_grid_line
- Transforms: move, rotate, copy, mirror, delete
- Visibility: hide, temp_hide, unhide, isolate, reset_isolate, select,
  highlight, set_color, set_transparency, set_graphic_overrides
- Data: set_parameter, rename

Single-transaction operations (create_material, create_view,
create_element_type) and queries (get_graphic_overrides,
analyze_model_statistics, get_all_warnings) live here too and are called
by the host server directly.
"""

import copy
import math
from collections import Counter
from typing import Any, Dict, List, Optional

from ..units import from_host_length, normalize_direction, to_host_scalar
from .batch import HandlerRegistry
from .document import (
    INVALID_ELEMENT_ID,
    XYZ,
    Document,
    Element,
    ItemFault,
    Parameter,
    ParameterNotFound,
    ReadOnlyParameter,
    StorageType,
    _xyz,
)

# operate_element action name -> handler kind
ACTION_KINDS = {
    "Move": "move",
    "Rotate": "rotate",
    "Copy": "copy",
    "Mirror": "mirror",
    "Delete": "delete",
    "Hide": "hide",
    "TempHide": "temp_hide",
    "Unhide": "unhide",
    "Isolate": "isolate",
    "ResetIsolate": "reset_isolate",
    "Select": "select",
    "Highlight": "highlight",
    "SetColor": "set_color",
    "SetTransparency": "set_transparency",
    "SetParameter": "set_parameter",
    "Rename": "rename",
}

DIMENSION_TYPES = ("Linear", "Angular", "Radial", "Diameter", "ArcLength")

# Element category -> tag category
TAG_CATEGORIES = {
    "Walls": "Wall",
    "Doors": "Door",
    "Windows": "Window",
    "Rooms": "Room",
    "Floors": "Floor",
    "Ceilings": "Ceiling",
    "Columns": "Column",
    "Structural Columns": "Column",
    "Structural Framing": "Beam",
    "Furniture": "Furniture",
    "Mechanical Equipment": "Equipment",
    "Pipes": "Pipe",
    "Ducts": "Duct",
    "Generic Models": "Generic",
    "Parking": "Parking",
    "Areas": "Area",
    "Spaces": "Space",
}

VIEW_TYPES = ("FloorPlan", "CeilingPlan", "Elevation", "Section", "3D")
DETAIL_LEVELS = ("Coarse", "Medium", "Fine")

# create_element_type category -> element category of its types
TYPE_CATEGORIES = {
    "wall": "Walls",
    "floor": "Floors",
    "roof": "Roofs",
    "ceiling": "Ceilings",
    "column": "Structural Columns",
    "beam": "Structural Framing",
}
COMPOUND_TYPE_KINDS = ("wall", "floor", "roof", "ceiling")
LAYER_FUNCTIONS = ("Structure", "Substrate", "Insulation", "Finish1", "Finish2", "Membrane", "StructuralDeck")

# Categories that are not model elements for statistics purposes
_NON_MODEL_CATEGORIES = {"Views", "Sheets", "Levels", "Element Types", "Tag Types", "Materials"}

RED = {"r": 255, "g": 0, "b": 0}


# ==================== Parameter Helpers ====================


def _require(params: Dict[str, Any], *keys: str) -> None:
    missing = [k for k in keys if params.get(k) is None]
    if missing:
        raise ValueError(f"Missing required parameter(s): {', '.join(missing)}")


def _point(params: Dict[str, Any], key: str, message: Optional[str] = None) -> XYZ:
    value = params.get(key)
    if value is None:
        raise ValueError(message or f"Missing required parameter: '{key}'")
    return _xyz(value)


def _optional_point(params: Dict[str, Any], key: str) -> Optional[XYZ]:
    value = params.get(key)
    return None if value is None else _xyz(value)


def _rgb(value: Any, name: str) -> Dict[str, int]:
    if isinstance(value, dict):
        channels = [value.get("r"), value.get("g"), value.get("b")]
    else:
        channels = list(value or [])
    if len(channels) != 3 or any(not isinstance(c, int) or isinstance(c, bool) or not 0 <= c <= 255 for c in channels):
        raise ValueError(f"{name} must be three integers between 0 and 255")
    return {"r": channels[0], "g": channels[1], "b": channels[2]}


def _int_in_range(value: Any, name: str, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise ValueError(f"{name} must be an integer")
    if not low <= value <= high:
        raise ValueError(f"{name} must be between {low} and {high}")
    return int(value)


def _distance(a: XYZ, b: XYZ) -> float:
    return math.sqrt(sum((q - p) ** 2 for p, q in zip(a, b)))


def _add(a: XYZ, b: XYZ, scale: float = 1.0) -> XYZ:
    return (a[0] + b[0] * scale, a[1] + b[1] * scale, a[2] + b[2] * scale)


def _rotate_z(point: XYZ, center: XYZ, angle: float) -> XYZ:
    dx, dy = point[0] - center[0], point[1] - center[1]
    cos_a, sin_a = math.cos(angle), math.sin(angle)
    return (center[0] + dx * cos_a - dy * sin_a, center[1] + dx * sin_a + dy * cos_a, point[2])


def _reflect(point: XYZ, origin: XYZ, normal: XYZ) -> XYZ:
    d = sum((p - o) * n for p, o, n in zip(point, origin, normal))
    return (point[0] - 2 * d * normal[0], point[1] - 2 * d * normal[1], point[2] - 2 * d * normal[2])


def _target(doc: Document, params: Dict[str, Any]) -> Element:
    if params.get("elementId") is None:
        raise ValueError("Missing required parameter: 'elementId'")
    return doc.require_element(params["elementId"])


def _check_unpinned(element: Element) -> None:
    if element.pinned:
        raise ItemFault("Element is pinned and cannot be modified", elementId=element.id)


def _clone(doc: Document, element: Element) -> Element:
    return doc.add_element(
        element.category,
        element.name,
        location=element.location,
        curve=element.curve,
        radius=element.radius,
        arc_angle=element.arc_angle,
        rotation=element.rotation,
        parameters=copy.deepcopy(element.parameters),
        type_id=element.type_id,
        view_id=element.view_id,
        data=copy.deepcopy(element.data),
    )


def _map_geometry(element: Element, fn) -> None:
    element.location = fn(element.location)
    if element.curve:
        element.curve = (fn(element.curve[0]), fn(element.curve[1]))


# ==================== Dimensions ====================


def _direction(element: Element) -> XYZ:
    if not element.curve:
        raise ItemFault(f"Element {element.id} is not line-based", elementId=element.id)
    (x1, y1, z1), (x2, y2, z2) = element.curve
    length = _distance(element.curve[0], element.curve[1])
    if length == 0:
        raise ItemFault(f"Element {element.id} has a zero-length curve", elementId=element.id)
    return ((x2 - x1) / length, (y2 - y1) / length, (z2 - z1) / length)


def create_dimension(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    """Create one dimension annotation.

    Linear dimensions measure between 2 elements, between startPoint and
    endPoint, or along 3+ chainPoints (one segment per consecutive pair).
    Angular measures between 2 line-based elements. Radial, Diameter and
    ArcLength measure 1 arc or circle element.
    """
    dim_type = params.get("dimensionType") or "Linear"
    if dim_type not in DIMENSION_TYPES:
        raise ItemFault(f"Unsupported dimension type: {dim_type}")

    view = doc.resolve_view(params.get("viewId", INVALID_ELEMENT_ID))
    element_ids = list(params.get("elementIds") or [])
    references: List[int] = []
    segments: List[float] = []
    anchor: XYZ

    if dim_type == "Linear":
        chain = params.get("chainPoints") or []
        if len(chain) >= 3:
            points = [_xyz(p) for p in chain]
            segments = [_distance(a, b) for a, b in zip(points, points[1:])]
            value = sum(segments)
            anchor = points[0]
        elif len(element_ids) >= 2:
            first, second = (doc.require_element(i) for i in element_ids[:2])
            references = [first.id, second.id]
            anchor = first.midpoint()
            value = _distance(anchor, second.midpoint())
        else:
            message = "Linear dimension requires startPoint and endPoint, or 2 elementIds"
            start = _point(params, "startPoint", message)
            end = _point(params, "endPoint", message)
            anchor = start
            value = _distance(start, end)
        if value == 0:
            raise ItemFault("Dimension length must be greater than zero")

    elif dim_type == "Angular":
        if len(element_ids) < 2:
            raise ValueError("Angular dimension requires 2 elementIds of line-based elements")
        first, second = (doc.require_element(i) for i in element_ids[:2])
        d1, d2 = _direction(first), _direction(second)
        cos_angle = max(-1.0, min(1.0, sum(a * b for a, b in zip(d1, d2))))
        value = math.acos(cos_angle)
        if value == 0 or value == math.pi:
            raise ItemFault("Cannot dimension the angle between parallel lines")
        references = [first.id, second.id]
        anchor = first.midpoint()

    else:
        if not element_ids:
            raise ValueError(f"{dim_type} dimension requires 1 elementId of an arc or circle element")
        arc = doc.require_element(element_ids[0])
        if arc.radius is None:
            raise ItemFault(f"Element {arc.id} is not an arc or circle", elementId=arc.id)
        if dim_type == "Radial":
            value = arc.radius
        elif dim_type == "Diameter":
            value = arc.radius * 2
        else:
            if arc.arc_angle is None:
                raise ItemFault(f"Element {arc.id} is not an arc", elementId=arc.id)
            value = arc.radius * arc.arc_angle
        references = [arc.id]
        anchor = arc.location

    line_point = _optional_point(params, "linePoint")
    dimension = doc.add_element(
        "Dimensions",
        dim_type,
        location=line_point or anchor,
        view_id=view.id,
        type_id=int(params.get("dimensionStyleId") or INVALID_ELEMENT_ID),
        data={
            "dimensionType": dim_type,
            "value": value,
            "references": references,
            "segments": [{"value": s, "valueOverride": None} for s in segments],
            "valueOverride": None,
        },
    )
    return {
        "dimensionId": dimension.id,
        "dimensionType": dim_type,
        "value": value,
        "segmentCount": len(segments),
    }


def apply_text_override(doc: Document, params: Dict[str, Any], value: Dict[str, Any]) -> Dict[str, Any]:
    """Post-step: override the displayed text of the dimension, or of every chain segment."""
    text = params.get("textOverride")
    if text is None or text == "":
        return value
    if not isinstance(text, str):
        raise ValueError("textOverride must be a string")

    dimension = doc.require_element(value["dimensionId"])
    segments = dimension.data.get("segments") or []
    if segments:
        for segment in segments:
            segment["valueOverride"] = text
    else:
        dimension.data["valueOverride"] = text
    return {**value, "textOverride": text}


# ==================== Transforms ====================


def move_element(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    element = _target(doc, params)
    _check_unpinned(element)
    vector = _point(params, "moveVector", "Move action requires 'moveVector' parameter")
    _map_geometry(element, lambda p: _add(p, vector))
    return {"elementId": element.id, "location": list(element.location)}


def rotate_element(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    """Rotate about a vertical axis through rotationCenter. rotationAngle is in radians."""
    element = _target(doc, params)
    _check_unpinned(element)
    center = _point(params, "rotationCenter", "Rotate action requires 'rotationCenter' parameter")
    if params.get("rotationAngle") is None:
        raise ValueError("Rotate action requires 'rotationAngle' parameter")
    angle = float(params["rotationAngle"])
    _map_geometry(element, lambda p: _rotate_z(p, center, angle))
    element.rotation = (element.rotation + angle) % (2 * math.pi)
    return {"elementId": element.id, "location": list(element.location), "rotation": element.rotation}


def copy_element(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    """Copy an element copyCount times, each copy offset by moveVector * n."""
    element = _target(doc, params)
    vector = _point(params, "moveVector", "Copy action requires 'moveVector' parameter")
    count = params.get("copyCount", 1)
    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        raise ValueError("copyCount must be an integer of at least 1")

    new_ids = []
    for n in range(1, count + 1):
        clone = _clone(doc, element)
        _map_geometry(clone, lambda p, n=n: _add(p, vector, n))
        new_ids.append(clone.id)
    return {"elementId": element.id, "newElementIds": new_ids}


def mirror_element(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    """Create a mirrored copy of the element across the given plane."""
    element = _target(doc, params)
    if params.get("mirrorPlaneOrigin") is None or params.get("mirrorPlaneNormal") is None:
        raise ValueError("Mirror action requires 'mirrorPlaneOrigin' and 'mirrorPlaneNormal' parameters")
    origin = _xyz(params["mirrorPlaneOrigin"])
    normal = _xyz(normalize_direction(params["mirrorPlaneNormal"]))

    clone = _clone(doc, element)
    _map_geometry(clone, lambda p: _reflect(p, origin, normal))
    clone.data["mirrored"] = not clone.data.get("mirrored", False)
    return {"elementId": element.id, "newElementId": clone.id}


def delete_element(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    element = _target(doc, params)
    _check_unpinned(element)
    doc.remove_element(element.id)
    return {"elementId": element.id, "deleted": True}


# ==================== Visibility ====================


def hide_element(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    element = _target(doc, params)
    element.hidden = True
    return {"elementId": element.id, "hidden": True}


def temp_hide_element(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    element = _target(doc, params)
    element.temporarily_hidden = True
    return {"elementId": element.id, "temporarilyHidden": True}


def unhide_element(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    element = _target(doc, params)
    element.hidden = False
    element.temporarily_hidden = False
    return {"elementId": element.id, "hidden": False}


def isolate_element(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    element = _target(doc, params)
    element.isolated = True
    return {"elementId": element.id, "isolated": True}


def reset_isolate_element(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    element = _target(doc, params)
    element.isolated = False
    element.temporarily_hidden = False
    return {"elementId": element.id, "isolated": False}


def select_element(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    element = _target(doc, params)
    if element.id not in doc.selection:
        doc.selection.append(element.id)
    return {"elementId": element.id, "selected": True}


def _override(doc: Document, element: Element, view_id: Any, settings: Dict[str, Any]) -> int:
    view = doc.resolve_view(view_id)
    element.overrides.setdefault(view.id, {}).update(settings)
    return view.id


def set_color(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    element = _target(doc, params)
    color = _rgb(params.get("colorValue", [255, 0, 0]), "colorValue")
    view_id = _override(
        doc,
        element,
        params.get("viewId"),
        {"projectionLineColor": color, "surfaceForegroundColor": color},
    )
    return {"elementId": element.id, "viewId": view_id, "color": color}


def highlight_element(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    return set_color(doc, {**params, "colorValue": RED})


def set_transparency(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    element = _target(doc, params)
    transparency = _int_in_range(params.get("transparencyValue", 50), "transparencyValue", 0, 100)
    view_id = _override(doc, element, params.get("viewId"), {"transparency": transparency})
    return {"elementId": element.id, "viewId": view_id, "transparency": transparency}


_COLOR_OVERRIDES = ("projectionLineColor", "cutLineColor", "surfaceForegroundColor", "surfaceBackgroundColor")
_WEIGHT_OVERRIDES = ("projectionLineWeight", "cutLineWeight")


def set_graphic_overrides(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    element = _target(doc, params)
    view = doc.resolve_view(params.get("viewId"))

    if params.get("resetOverrides"):
        element.overrides.pop(view.id, None)
        return {"elementId": element.id, "viewId": view.id, "reset": True}

    settings: Dict[str, Any] = {}
    for key in _COLOR_OVERRIDES:
        if params.get(key) is not None:
            settings[key] = _rgb(params[key], key)
    for key in _WEIGHT_OVERRIDES:
        if params.get(key) is not None:
            settings[key] = _int_in_range(params[key], key, 1, 16)
    if params.get("transparency") is not None:
        settings["transparency"] = _int_in_range(params["transparency"], "transparency", 0, 100)
    if params.get("halftone") is not None:
        settings["halftone"] = bool(params["halftone"])

    element.overrides.setdefault(view.id, {}).update(settings)
    return {"elementId": element.id, "viewId": view.id, "applied": sorted(settings)}


# ==================== Data ====================


def coerce_parameter_value(parameter: Parameter, value: Any) -> Any:
    """Convert a caller value to the parameter's storage type and host units.

    Double parameters with a length, angle, area or volume spec are
    converted from mm / degrees; other doubles are stored as given.
    """
    name = parameter.name
    try:
        if parameter.storage_type is StorageType.STRING:
            return str(value)
        if parameter.storage_type is StorageType.INTEGER:
            if isinstance(value, bool):
                return 1 if value else 0
            number = float(value)
            if not number.is_integer():
                raise ValueError
            return int(number)
        if parameter.storage_type is StorageType.DOUBLE:
            if isinstance(value, bool):
                raise ValueError
            return to_host_scalar(float(value), parameter.spec)
        if isinstance(value, bool):
            raise ValueError
        return int(value)
    except (TypeError, ValueError):
        raise ItemFault(
            f"Cannot convert {value!r} to {parameter.storage_type.value} for parameter '{name}'"
        ) from None


def set_parameter(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    element = _target(doc, params)
    name = params.get("parameterName")
    if not name:
        raise ValueError("SetParameter requires 'parameterName' parameter")
    value = params["value"] if "value" in params else params.get("parameterValue")
    if value is None:
        raise ValueError(f"No value provided for element {element.id}")

    parameter = element.lookup_parameter(name)
    if parameter is None:
        raise ParameterNotFound(name)
    if parameter.read_only:
        raise ReadOnlyParameter(name)

    parameter.value = coerce_parameter_value(parameter, value)
    return {"elementId": element.id, "parameterName": name, "newValue": parameter.value}


def rename_element(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    element = _target(doc, params)
    new_name = params.get("newName")
    if not new_name:
        raise ValueError("Rename action requires 'newName' parameter")
    old_name = element.name
    if not element.name_settable:
        raise ItemFault("Cannot rename: element name is not editable", elementId=element.id, oldName=old_name)
    existing = doc.find_by_name(element.category, new_name)
    if existing is not None and existing.id != element.id:
        raise ItemFault(
            f"Cannot rename: name '{new_name}' is already in use", elementId=element.id, oldName=old_name
        )
    element.name = new_name
    return {"elementId": element.id, "oldName": old_name, "newName": new_name}


# ==================== Tags & Grids ====================


def create_tag(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    """Tag an element, auto-detecting the tag category from the element's category."""
    element = _target(doc, params)
    view = doc.resolve_view(params.get("viewId"))

    category = params.get("tagCategory") or TAG_CATEGORIES.get(element.category)
    if not category:
        raise ItemFault(f"Elements of category '{element.category}' cannot be tagged", elementId=element.id)
    if category not in TAG_CATEGORIES.values():
        raise ItemFault(f"Unknown tag category: {category}", elementId=element.id)

    tag_type_id = params.get("tagTypeId")
    if tag_type_id is not None:
        tag_type = doc.get_element(tag_type_id)
        if tag_type is None or tag_type.category != "Tag Types":
            raise ItemFault(f"Tag type {tag_type_id} not found", elementId=element.id)
        tag_type_id = tag_type.id

    orientation = _int_in_range(params.get("orientation", 0), "orientation", 0, 1)
    location = _optional_point(params, "location") or element.midpoint()

    tag = doc.add_element(
        "Tags",
        f"{category} Tag",
        location=location,
        view_id=view.id,
        type_id=INVALID_ELEMENT_ID if tag_type_id is None else tag_type_id,
        data={
            "taggedElementId": element.id,
            "tagCategory": category,
            "orientation": "Vertical" if orientation else "Horizontal",
            "hasLeader": bool(params.get("hasLeader", False)),
        },
    )
    return {
        "id": tag.id,
        "elementId": element.id,
        "elementCategory": element.category,
        "elementName": element.name,
        "tagCategory": category,
    }


def create_grid_line(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    _require(params, "name", "start", "end")
    name = str(params["name"])
    start, end = _xyz(params["start"]), _xyz(params["end"])
    if _distance(start, end) == 0:
        raise ValueError("Grid line start and end must differ")
    if doc.find_by_name("Grids", name) is not None:
        raise ItemFault(f"Grid name '{name}' is already in use")
    grid = doc.add_element("Grids", name, location=start, curve=(start, end))
    return {"gridId": grid.id, "name": name}


def default_registry() -> HandlerRegistry:
    """Registry with every built-in batch handler."""
    registry = HandlerRegistry()
    registry.register("create_dimension", create_dimension, apply_text_override)
    registry.register("create_tag", create_tag)
    registry.register("create_grid_line", create_grid_line)
    registry.register("set_graphic_overrides", set_graphic_overrides)
    registry.register("move", move_element)
    registry.register("rotate", rotate_element)
    registry.register("copy", copy_element)
    registry.register("mirror", mirror_element)
    registry.register("delete", delete_element)
    registry.register("hide", hide_element)
    registry.register("temp_hide", temp_hide_element)
    registry.register("unhide", unhide_element)
    registry.register("isolate", isolate_element)
    registry.register("reset_isolate", reset_isolate_element)
    registry.register("select", select_element)
    registry.register("highlight", highlight_element)
    registry.register("set_color", set_color)
    registry.register("set_transparency", set_transparency)
    registry.register("set_parameter", set_parameter)
    registry.register("rename", rename_element)
    return registry


# ==================== Single Operations ====================


def _match_pattern(doc: Document, name: str) -> Optional[str]:
    lowered = name.lower()
    for pattern in doc.fill_patterns:
        if pattern.lower() == lowered:
            return pattern
    for pattern in doc.fill_patterns:
        if lowered in pattern.lower():
            return pattern
    return None


def create_material(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    """Create a material, or update it if one with the same name exists."""
    name = params.get("name")
    if not name:
        raise ValueError("Missing required parameter: 'name'")

    updates: Dict[str, Any] = {}
    warnings: List[str] = []
    if params.get("color") is not None:
        updates["color"] = _rgb(params["color"], "color")
    if params.get("transparency") is not None:
        updates["transparency"] = _int_in_range(params["transparency"], "transparency", 0, 100)
    for prefix in ("surface", "cut"):
        pattern_name = params.get(f"{prefix}PatternName")
        if pattern_name:
            pattern = _match_pattern(doc, pattern_name)
            if pattern is None:
                warnings.append(f"Fill pattern '{pattern_name}' not found")
            else:
                updates[f"{prefix}Pattern"] = pattern
        if params.get(f"{prefix}PatternColor") is not None:
            updates[f"{prefix}PatternColor"] = _rgb(params[f"{prefix}PatternColor"], f"{prefix}PatternColor")

    material = doc.find_by_name("Materials", name)
    created = material is None
    if material is None:
        material = doc.add_element("Materials", name)
    material.data.update(updates)

    return {
        "success": True,
        "materialId": material.id,
        "name": name,
        "created": created,
        "properties": dict(material.data),
        "warnings": warnings,
        "availablePatterns": list(doc.fill_patterns),
    }


def create_view(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    """Create a view. levelElevation is in feet; the closest level is used for plans."""
    view_type = params.get("viewType")
    if view_type not in VIEW_TYPES:
        raise ValueError(f"viewType must be one of: {', '.join(VIEW_TYPES)}")

    data: Dict[str, Any] = {"viewType": view_type}
    if view_type in ("FloorPlan", "CeilingPlan"):
        levels = doc.elements_of("Levels")
        if not levels:
            raise ValueError("No levels in the model to associate the plan with")
        elevation = float(params.get("levelElevation") or 0.0)
        level = min(levels, key=lambda lvl: abs(lvl.location[2] - elevation))
        data["levelId"] = level.id
    if view_type in ("Elevation", "Section") and params.get("direction"):
        data["direction"] = normalize_direction(params["direction"])
    if params.get("scale"):
        data["scale"] = _int_in_range(params["scale"], "scale", 1, 24000)
    if params.get("detailLevel"):
        if params["detailLevel"] not in DETAIL_LEVELS:
            raise ValueError(f"detailLevel must be one of: {', '.join(DETAIL_LEVELS)}")
        data["detailLevel"] = params["detailLevel"]
    if params.get("templateId"):
        template = doc.get_element(params["templateId"])
        if template is None or template.category != "Views":
            raise ValueError(f"View template {params['templateId']} not found")
        data["templateId"] = template.id

    name = params.get("name") or ""
    if name and doc.find_by_name("Views", name) is not None:
        raise ValueError(f"View name '{name}' is already in use")
    if not name:
        name = f"{view_type} {len(doc.elements_of('Views')) + 1}"

    view = doc.add_element("Views", name, data=data)
    return {"success": True, "viewId": view.id, "name": name, "viewType": view_type, **data}


def _base_type(doc: Document, category: str, base_name: Optional[str]) -> Element:
    """Pick the type to duplicate: by name ('Type' or 'Family: Type'), else the first of its category."""
    candidates = [t for t in doc.elements_of("Element Types") if t.data.get("category") == category]
    if not candidates:
        raise ValueError(f"No existing {category} type to duplicate")
    if not base_name:
        return candidates[0]
    for candidate in candidates:
        qualified = f"{candidate.data.get('familyName', '')}: {candidate.name}"
        if base_name in (candidate.name, qualified):
            return candidate
    available = ", ".join(t.name for t in candidates)
    raise ValueError(f"Base type '{base_name}' not found for {category}. Available: {available}")


def _compound_layers(doc: Document, layers: Any) -> List[Dict[str, Any]]:
    if not isinstance(layers, list) or not layers:
        raise ValueError("'layers' must be a non-empty list")
    built = []
    for i, layer in enumerate(layers):
        if not isinstance(layer, dict):
            raise ValueError(f"Layer {i} must be an object")
        function = layer.get("function")
        if function not in LAYER_FUNCTIONS:
            raise ValueError(f"Layer {i}: function must be one of: {', '.join(LAYER_FUNCTIONS)}")
        material_name = layer.get("materialName")
        if not material_name:
            raise ValueError(f"Layer {i}: missing 'materialName'")
        width = layer.get("width")
        if isinstance(width, bool) or not isinstance(width, (int, float)) or width <= 0:
            raise ValueError(f"Layer {i}: width must be a positive number")

        material = doc.find_by_name("Materials", material_name)
        if material is None:
            material = doc.add_element("Materials", material_name)
        built.append(
            {"function": function, "materialId": material.id, "material": material_name, "width": float(width)}
        )
    return built


def _apply_type_parameters(new_type: Element, parameters: Any) -> List[Dict[str, Any]]:
    """Set each named parameter on the new type and report what happened to it."""
    if not isinstance(parameters, list):
        raise ValueError("'parameters' must be a list")
    results = []
    for entry in parameters:
        name = entry.get("name") if isinstance(entry, dict) else None
        if not name or not isinstance(name, str):
            results.append({"name": name, "status": "invalid", "error": "Missing parameter name"})
            continue
        parameter = new_type.lookup_parameter(name)
        if parameter is None:
            results.append({"name": name, "status": "not found"})
            continue
        if parameter.read_only:
            results.append({"name": name, "status": "read-only"})
            continue
        if entry.get("value") is None:
            results.append({"name": name, "status": "invalid", "error": "Missing value"})
            continue
        try:
            parameter.value = coerce_parameter_value(parameter, entry.get("value"))
        except ItemFault as e:
            results.append({"name": name, "status": "invalid", "error": str(e)})
            continue
        results.append({"name": name, "status": "set", "value": parameter.value})
    return results


def create_element_type(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    """Duplicate an existing type under a new name and customize it.

    Compound categories (wall, floor, roof, ceiling) take 'layers', each
    {function, materialName, width} with width in feet; materials missing
    from the model are created. Family categories (column, beam) take
    'parameters', each {name, value}, converted by the parameter's spec.
    """
    kind = params.get("category")
    if kind not in TYPE_CATEGORIES:
        raise ValueError(f"category must be one of: {', '.join(TYPE_CATEGORIES)}")
    name = params.get("name")
    if not name:
        raise ValueError("Missing required parameter: 'name'")
    category = TYPE_CATEGORIES[kind]
    compound = kind in COMPOUND_TYPE_KINDS
    if compound and params.get("parameters"):
        raise ValueError(f"{kind} types take 'layers', not 'parameters'")
    if not compound and params.get("layers"):
        raise ValueError(f"{kind} types take 'parameters', not 'layers'")

    existing = doc.find_by_name("Element Types", name)
    if existing is not None:
        raise ValueError(f"Type '{name}' already exists (id {existing.id})")

    base = _base_type(doc, category, params.get("baseTypeName"))
    new_type = doc.add_element(
        "Element Types",
        name,
        parameters=copy.deepcopy(base.parameters),
        data={**copy.deepcopy(base.data), "baseTypeId": base.id},
    )
    result: Dict[str, Any] = {
        "success": True,
        "typeId": new_type.id,
        "typeName": name,
        "category": kind,
        "familyName": new_type.data.get("familyName", ""),
        "baseTypeId": base.id,
        "baseTypeName": base.name,
    }

    if compound and params.get("layers") is not None:
        layers = _compound_layers(doc, params["layers"])
        new_type.data["layers"] = layers
        result["layers"] = [
            {"function": layer["function"], "material": layer["material"], "widthMm": from_host_length(layer["width"])}
            for layer in layers
        ]
        result["layerCount"] = len(layers)
        result["totalThicknessMm"] = from_host_length(sum(layer["width"] for layer in layers))

    if not compound and params.get("parameters") is not None:
        results = _apply_type_parameters(new_type, params["parameters"])
        result["parameterResults"] = results
        result["hasParameterWarning"] = any(r["status"] != "set" for r in results)
        if result["hasParameterWarning"]:
            result["availableParameters"] = [
                {"name": p.name, "storageType": p.storage_type.value}
                for p in new_type.parameters.values()
                if not p.read_only
            ]

    result["message"] = f"Created {kind} type '{name}' from '{base.name}'"
    return result


# ==================== Queries ====================


def walls_in_view(doc: Document, view_id: int) -> List[Element]:
    """Visible walls owned by, or not restricted to, the given view."""
    return [
        wall
        for wall in doc.elements_of("Walls")
        if not (wall.hidden or wall.temporarily_hidden) and wall.view_id in (INVALID_ELEMENT_ID, view_id)
    ]


def get_graphic_overrides(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    """Read the per-view override settings of each requested element."""
    view = doc.resolve_view(params.get("viewId"))
    elements = []
    for element_id in params.get("elementIds") or []:
        element = doc.get_element(element_id)
        if element is None:
            elements.append({"elementId": element_id, "found": False, "error": "Element not found"})
            continue
        settings = element.overrides.get(view.id, {})
        elements.append(
            {
                "elementId": element.id,
                "elementName": element.name,
                "found": True,
                "hasOverrides": bool(settings),
                "overrides": copy.deepcopy(settings),
            }
        )
    return {"success": True, "viewId": view.id, "viewName": view.name, "elements": elements}


def analyze_model_statistics(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    include_types = params.get("includeDetailedTypes", True)
    model = [e for e in doc.elements.values() if e.category not in _NON_MODEL_CATEGORIES]
    type_elements = {e.id: e for e in doc.elements_of("Element Types")}

    categories = []
    for category in sorted({e.category for e in model}):
        members = [e for e in model if e.category == category]
        type_counts = Counter(e.type_id for e in members if e.type_id != INVALID_ELEMENT_ID)
        families = {type_elements[t].data.get("familyName", "") for t in type_counts if t in type_elements}
        entry: Dict[str, Any] = {
            "categoryName": category,
            "elementCount": len(members),
            "typeCount": len(type_counts),
            "familyCount": len(families),
        }
        if include_types:
            entry["types"] = [
                {
                    "typeId": type_id,
                    "typeName": type_elements[type_id].name if type_id in type_elements else "",
                    "familyName": type_elements[type_id].data.get("familyName", "") if type_id in type_elements else "",
                    "instanceCount": count,
                }
                for type_id, count in sorted(type_counts.items())
            ]
        categories.append(entry)

    levels = [
        {
            "levelId": level.id,
            "levelName": level.name,
            "elevation": from_host_length(level.location[2]),
            "elementCount": sum(1 for e in model if e.data.get("levelId") == level.id),
        }
        for level in sorted(doc.elements_of("Levels"), key=lambda lvl: lvl.location[2])
    ]

    return {
        "success": True,
        "projectName": doc.name,
        "totalElements": len(model),
        "totalTypes": len(type_elements),
        "totalFamilies": len({t.data.get("familyName", "") for t in type_elements.values()}),
        "totalViews": len(doc.elements_of("Views")),
        "totalSheets": len(doc.elements_of("Sheets")),
        "categories": categories,
        "levels": levels,
    }


def get_all_warnings(doc: Document, params: Dict[str, Any]) -> Dict[str, Any]:
    severity = params.get("severityFilter") or "All"
    if severity not in ("All", "Warning", "Error"):
        raise ValueError("severityFilter must be one of: All, Warning, Error")
    include_ids = params.get("includeElementIds", True)

    warnings = []
    for warning in doc.warnings:
        if severity != "All" and warning.get("severity", "Warning") != severity:
            continue
        entry = {
            "severity": warning.get("severity", "Warning"),
            "description": warning.get("description", ""),
        }
        if include_ids:
            entry["failingElements"] = list(warning.get("failingElements", []))
            entry["additionalElements"] = list(warning.get("additionalElements", []))
        warnings.append(entry)

    counts = Counter(w["description"] for w in warnings)
    return {
        "success": True,
        "totalWarnings": len(warnings),
        "byCategory": [{"description": d, "count": c} for d, c in counts.most_common()],
        "warnings": warnings,
    }
