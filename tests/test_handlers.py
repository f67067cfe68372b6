"""Tests for the operation handlers against the sample document."""

import math

import pytest

from cadbridge.host import handlers
from cadbridge.host.batch import BatchExecutor, OperationSpec
from cadbridge.host.document import Document
from cadbridge.outcome import Outcome


def run(document: Document, kind: str, **params) -> Outcome:
    result = BatchExecutor(document, handlers.default_registry()).execute([OperationSpec(kind, params)])
    return result.outcomes[0]


# ==================== Dimensions ====================


def test_linear_dimension_between_points(document: Document) -> None:
    outcome = run(
        document,
        "create_dimension",
        startPoint={"x": 0, "y": 0, "z": 0},
        endPoint={"x": 3, "y": 4, "z": 0},
    )
    assert outcome.success
    assert outcome.value["value"] == pytest.approx(5.0)
    dimension = document.require_element(outcome.value["dimensionId"])
    assert dimension.category == "Dimensions"
    assert dimension.view_id == document.active_view_id


def test_linear_dimension_between_elements(document: Document) -> None:
    outcome = run(document, "create_dimension", dimensionType="Linear", elementIds=[10, 12])
    assert outcome.value["value"] == pytest.approx(10.0)
    assert document.require_element(outcome.value["dimensionId"]).data["references"] == [10, 12]


def test_chain_dimension_text_override_applies_to_every_segment(document: Document) -> None:
    outcome = run(
        document,
        "create_dimension",
        chainPoints=[{"x": 0}, {"x": 2}, {"x": 5}],
        textOverride="EQ",
    )
    assert outcome.value["segmentCount"] == 2
    assert outcome.value["value"] == pytest.approx(5.0)
    segments = document.require_element(outcome.value["dimensionId"]).data["segments"]
    assert [s["valueOverride"] for s in segments] == ["EQ", "EQ"]


def test_bad_text_override_rolls_back_the_dimension(document: Document) -> None:
    before = len(document.elements_of("Dimensions"))
    outcome = run(
        document,
        "create_dimension",
        startPoint={"x": 0},
        endPoint={"x": 1},
        textOverride=12,
    )
    assert outcome.error == "textOverride must be a string"
    assert len(document.elements_of("Dimensions")) == before


def test_angular_dimension(document: Document) -> None:
    outcome = run(document, "create_dimension", dimensionType="Angular", elementIds=[10, 11])
    assert outcome.value["value"] == pytest.approx(math.pi / 2)

    parallel = run(document, "create_dimension", dimensionType="Angular", elementIds=[10, 12])
    assert not parallel.success


@pytest.mark.parametrize(
    "dim_type,expected",
    [("Radial", 2.0), ("Diameter", 4.0), ("ArcLength", math.pi)],
)
def test_arc_dimensions(document: Document, dim_type: str, expected: float) -> None:
    outcome = run(document, "create_dimension", dimensionType=dim_type, elementIds=[30])
    assert outcome.value["value"] == pytest.approx(expected)


def test_arc_length_needs_an_arc(document: Document) -> None:
    outcome = run(document, "create_dimension", dimensionType="ArcLength", elementIds=[31])
    assert outcome.error == "Element 31 is not an arc"
    assert outcome.context["elementId"] == 31


def test_dimension_errors(document: Document) -> None:
    assert run(document, "create_dimension", dimensionType="Radial", elementIds=[10]).error == (
        "Element 10 is not an arc or circle"
    )
    assert run(document, "create_dimension", dimensionType="Spiral").error == "Unsupported dimension type: Spiral"
    assert "startPoint and endPoint" in run(document, "create_dimension").error
    assert run(document, "create_dimension", startPoint={"x": 1}, endPoint={"x": 1}).error == (
        "Dimension length must be greater than zero"
    )
    assert run(document, "create_dimension", startPoint={}, endPoint={"x": 1}, viewId=99).error == "Invalid view"


# ==================== Transforms ====================


def test_move_translates_curve(document: Document) -> None:
    outcome = run(document, "move", elementId=10, moveVector={"x": 1, "y": 2, "z": 0})
    assert outcome.success
    assert document.require_element(10).curve == ((1.0, 2.0, 0.0), (11.0, 2.0, 0.0))


def test_move_pinned_element_fails(document: Document) -> None:
    outcome = run(document, "move", elementId=20, moveVector={"x": 1})
    assert outcome.error == "Element is pinned and cannot be modified"
    assert document.require_element(20).location == (5.0, 0.0, 0.0)


def test_move_requires_vector(document: Document) -> None:
    assert run(document, "move", elementId=10).error == "Move action requires 'moveVector' parameter"


def test_rotate_about_center(document: Document) -> None:
    run(document, "rotate", elementId=10, rotationCenter={"x": 0, "y": 0, "z": 0}, rotationAngle=math.pi / 2)
    start, end = document.require_element(10).curve
    assert end[0] == pytest.approx(0.0, abs=1e-9)
    assert end[1] == pytest.approx(10.0)
    assert document.require_element(10).rotation == pytest.approx(math.pi / 2)


def test_copy_fans_out_in_one_outcome(document: Document) -> None:
    outcome = run(document, "copy", elementId=10, moveVector={"x": 0, "y": 5, "z": 0}, copyCount=3)
    new_ids = outcome.value["newElementIds"]
    assert len(new_ids) == 3
    assert [document.require_element(i).curve[0][1] for i in new_ids] == [5.0, 10.0, 15.0]
    assert document.require_element(new_ids[0]).lookup_parameter("Mark").value == "W1"


def test_copy_count_must_be_positive(document: Document) -> None:
    outcome = run(document, "copy", elementId=10, moveVector={"x": 1}, copyCount=0)
    assert "copyCount" in outcome.error


def test_mirror_creates_reflected_copy(document: Document) -> None:
    outcome = run(
        document,
        "mirror",
        elementId=20,
        mirrorPlaneOrigin={"x": 10, "y": 0, "z": 0},
        mirrorPlaneNormal={"x": 1, "y": 0, "z": 0},
    )
    mirrored = document.require_element(outcome.value["newElementId"])
    assert mirrored.location == pytest.approx((15.0, 0.0, 0.0))
    assert mirrored.data["mirrored"] is True
    assert document.require_element(20).location == (5.0, 0.0, 0.0)


def test_delete(document: Document) -> None:
    assert run(document, "delete", elementId=11).success
    assert document.get_element(11) is None
    assert run(document, "delete", elementId=20).error == "Element is pinned and cannot be modified"


# ==================== Visibility ====================


def test_visibility_actions(document: Document) -> None:
    run(document, "hide", elementId=10)
    assert document.require_element(10).hidden
    run(document, "unhide", elementId=10)
    assert not document.require_element(10).hidden
    run(document, "temp_hide", elementId=11)
    assert document.require_element(11).temporarily_hidden
    run(document, "isolate", elementId=12)
    assert document.require_element(12).isolated
    run(document, "reset_isolate", elementId=12)
    assert not document.require_element(12).isolated
    run(document, "select", elementId=12)
    run(document, "select", elementId=12)
    assert document.selection == [12]


def test_color_and_transparency_overrides(document: Document) -> None:
    run(document, "set_color", elementId=10, colorValue=[0, 128, 255])
    run(document, "set_transparency", elementId=10, transparencyValue=40)
    overrides = document.require_element(10).overrides[1]
    assert overrides["projectionLineColor"] == {"r": 0, "g": 128, "b": 255}
    assert overrides["transparency"] == 40

    run(document, "highlight", elementId=11)
    assert document.require_element(11).overrides[1]["surfaceForegroundColor"] == {"r": 255, "g": 0, "b": 0}

    assert not run(document, "set_color", elementId=10, colorValue=[300, 0, 0]).success
    assert not run(document, "set_transparency", elementId=10, transparencyValue=150).success


def test_graphic_overrides_and_reset(document: Document) -> None:
    outcome = run(
        document,
        "set_graphic_overrides",
        elementId=10,
        viewId=2,
        cutLineColor={"r": 1, "g": 2, "b": 3},
        projectionLineWeight=5,
        halftone=True,
    )
    assert outcome.value["applied"] == ["cutLineColor", "halftone", "projectionLineWeight"]
    assert document.require_element(10).overrides[2]["projectionLineWeight"] == 5

    assert not run(document, "set_graphic_overrides", elementId=10, cutLineWeight=17).success

    run(document, "set_graphic_overrides", elementId=10, viewId=2, resetOverrides=True)
    assert 2 not in document.require_element(10).overrides


# ==================== Data ====================


def test_set_parameter_coerces_by_storage_type(document: Document) -> None:
    assert run(document, "set_parameter", elementId=10, parameterName="Comments", value=42).success
    assert run(document, "set_parameter", elementId=10, parameterName="Structural", value=True).success
    assert run(document, "set_parameter", elementId=10, parameterName="Unconnected Height", value=3048).success
    assert run(document, "set_parameter", elementId=10, parameterName="Rotation Limit", value=180).success
    assert run(document, "set_parameter", elementId=10, parameterName="Fire Rating", value="2").success
    assert run(document, "set_parameter", elementId=10, parameterName="Base Constraint", value=4).success

    wall = document.require_element(10)
    assert wall.lookup_parameter("Comments").value == "42"
    assert wall.lookup_parameter("Structural").value == 1
    assert wall.lookup_parameter("Unconnected Height").value == pytest.approx(10.0)
    assert wall.lookup_parameter("Rotation Limit").value == pytest.approx(math.pi)
    assert wall.lookup_parameter("Fire Rating").value == 2.0
    assert wall.lookup_parameter("Base Constraint").value == 4


def test_set_parameter_failures(document: Document) -> None:
    assert run(document, "set_parameter", elementId=10, parameterName="Nope", value=1).error == (
        "Parameter 'Nope' not found"
    )
    assert run(document, "set_parameter", elementId=10, parameterName="Area", value=1).error == (
        "Parameter 'Area' is read-only"
    )
    assert run(document, "set_parameter", elementId=10, parameterName="Structural", value="abc").error == (
        "Cannot convert 'abc' to Integer for parameter 'Structural'"
    )
    assert run(document, "set_parameter", elementId=10, parameterName="Comments").error == (
        "No value provided for element 10"
    )
    assert run(document, "set_parameter", elementId=999, parameterName="Comments", value="x").error == (
        "Element not found"
    )


def test_set_parameter_accepts_parameter_value_key(document: Document) -> None:
    run(document, "set_parameter", action="SetParameter", elementId=11, parameterName="Mark", parameterValue="B-2")
    assert document.require_element(11).lookup_parameter("Mark").value == "B-2"


def test_rename(document: Document) -> None:
    outcome = run(document, "rename", elementId=10, newName="North Wall")
    assert outcome.value == {"elementId": 10, "oldName": "Wall A", "newName": "North Wall"}
    assert run(document, "rename", elementId=11, newName="North Wall").error == (
        "Cannot rename: name 'North Wall' is already in use"
    )
    assert run(document, "rename", elementId=40, newName="Lobby").error == (
        "Cannot rename: element name is not editable"
    )


# ==================== Tags & Grids ====================


def test_tag_defaults_to_element_midpoint(document: Document) -> None:
    outcome = run(document, "create_tag", elementId=11, hasLeader=True)
    assert outcome.value["tagCategory"] == "Wall"
    tag = document.require_element(outcome.value["id"])
    assert tag.location == (10.0, 5.0, 0.0)
    assert tag.data["taggedElementId"] == 11
    assert tag.data["hasLeader"] is True


def test_tag_validation(document: Document) -> None:
    assert run(document, "create_tag", elementId=10, tagTypeId=5).error == "Tag type 5 not found"
    assert run(document, "create_tag", elementId=10, tagTypeId=6).success
    assert "cannot be tagged" in run(document, "create_tag", elementId=3).error
    assert not run(document, "create_tag", elementId=10, orientation=2).success


def test_grid_line_names_are_unique(document: Document) -> None:
    assert run(document, "create_grid_line", name="A", start={"x": 0}, end={"y": 10}).success
    assert run(document, "create_grid_line", name="A", start={"x": 5}, end={"x": 5, "y": 10}).error == (
        "Grid name 'A' is already in use"
    )


# ==================== Single Operations & Queries ====================


def test_create_material_with_partial_pattern_match(document: Document) -> None:
    with document.transaction("Material"):
        result = handlers.create_material(
            document, {"name": "Brick", "color": [180, 80, 40], "surfacePatternName": "crosshatch"}
        )
    assert result["created"] is True
    assert result["properties"]["surfacePattern"] == "Diagonal Crosshatch"

    with document.transaction("Material"):
        again = handlers.create_material(document, {"name": "Brick", "cutPatternName": "Herringbone"})
    assert again["created"] is False
    assert again["materialId"] == result["materialId"]
    assert again["warnings"] == ["Fill pattern 'Herringbone' not found"]


def test_create_view_picks_closest_level(document: Document) -> None:
    with document.transaction("View"):
        result = handlers.create_view(document, {"viewType": "FloorPlan", "levelElevation": 8.0, "scale": 50})
    assert result["levelId"] == 4
    assert result["name"] == "FloorPlan 3"

    with pytest.raises(ValueError, match="viewType"):
        handlers.create_view(document, {"viewType": "Perspective"})


def test_create_compound_type_with_layers(document: Document) -> None:
    layers = [
        {"function": "Finish1", "materialName": "Plaster", "width": 15 / 304.8},
        {"function": "Structure", "materialName": "Brick", "width": 120 / 304.8},
        {"function": "Finish2", "materialName": "Plaster", "width": 15 / 304.8},
    ]
    with document.transaction("Type"):
        result = handlers.create_element_type(document, {"category": "wall", "name": "Brick 150", "layers": layers})

    assert result["baseTypeId"] == 5
    assert result["familyName"] == "Basic Wall"
    assert result["layerCount"] == 3
    assert result["totalThicknessMm"] == pytest.approx(150.0)
    assert [layer["widthMm"] for layer in result["layers"]] == pytest.approx([15.0, 120.0, 15.0])

    new_type = document.require_element(result["typeId"])
    assert new_type.data["category"] == "Walls"
    plaster = document.find_by_name("Materials", "Plaster")
    brick = document.find_by_name("Materials", "Brick")
    assert [layer["materialId"] for layer in new_type.data["layers"]] == [plaster.id, brick.id, plaster.id]
    assert "layers" not in document.require_element(5).data


def test_create_family_type_reports_each_parameter(document: Document) -> None:
    params = {
        "category": "column",
        "name": "K 40x60",
        "baseTypeName": "Concrete-Rectangular-Column: 300 x 300mm",
        "parameters": [
            {"name": "b", "value": 400},
            {"name": "h", "value": 600},
            {"name": "d", "value": 10},
            {"name": "Family Name", "value": "Other"},
        ],
    }
    with document.transaction("Type"):
        result = handlers.create_element_type(document, params)

    statuses = {r["name"]: r["status"] for r in result["parameterResults"]}
    assert statuses == {"b": "set", "h": "set", "d": "not found", "Family Name": "read-only"}
    assert result["hasParameterWarning"] is True
    assert [p["name"] for p in result["availableParameters"]] == ["b", "h", "Type Mark"]

    new_type = document.require_element(result["typeId"])
    assert new_type.lookup_parameter("b").value == pytest.approx(400 / 304.8)
    assert new_type.lookup_parameter("h").value == pytest.approx(600 / 304.8)
    assert document.require_element(7).lookup_parameter("b").value == pytest.approx(0.984252)

    with document.transaction("Type"):
        loose = handlers.create_element_type(
            document, {"category": "column", "name": "C2", "parameters": [{"name": ["b"], "value": 1}, {"name": "b"}]}
        )
    assert [r["status"] for r in loose["parameterResults"]] == ["invalid", "invalid"]
    assert loose["parameterResults"][1]["error"] == "Missing value"


def test_create_element_type_errors(document: Document) -> None:
    with pytest.raises(ValueError, match="already exists"):
        handlers.create_element_type(document, {"category": "wall", "name": "Generic - 200mm"})
    with pytest.raises(ValueError, match="category must be one of"):
        handlers.create_element_type(document, {"category": "door", "name": "D1"})
    with pytest.raises(ValueError, match="No existing Floors type"):
        handlers.create_element_type(document, {"category": "floor", "name": "Slab"})
    with pytest.raises(ValueError, match="Base type 'Nope' not found"):
        handlers.create_element_type(document, {"category": "column", "name": "C1", "baseTypeName": "Nope"})
    with pytest.raises(ValueError, match="take 'layers'"):
        handlers.create_element_type(
            document, {"category": "wall", "name": "W1", "parameters": [{"name": "b", "value": 1}]}
        )

    layers = [
        {"function": "Insulation", "materialName": "Foam", "width": 0.1},
        {"function": "Core", "materialName": "Foam", "width": 0.1},
    ]
    with pytest.raises(ValueError, match="Layer 1: function"):
        with document.transaction("Type"):
            handlers.create_element_type(document, {"category": "wall", "name": "Thin", "layers": layers})
    assert document.find_by_name("Element Types", "Thin") is None
    assert document.find_by_name("Materials", "Foam") is None


def test_get_graphic_overrides(document: Document) -> None:
    run(document, "set_graphic_overrides", elementId=10, viewId=2, halftone=True, transparency=30)

    result = handlers.get_graphic_overrides(document, {"elementIds": [10, 11, 999], "viewId": 2})
    assert result["viewName"] == "South"
    first, second, missing = result["elements"]
    assert first["hasOverrides"] is True
    assert first["overrides"] == {"halftone": True, "transparency": 30}
    assert second == {"elementId": 11, "elementName": "Wall B", "found": True, "hasOverrides": False, "overrides": {}}
    assert missing == {"elementId": 999, "found": False, "error": "Element not found"}

    active = handlers.get_graphic_overrides(document, {"elementIds": [10], "viewId": -1})
    assert active["viewId"] == 1
    assert active["elements"][0]["hasOverrides"] is False


def test_model_statistics(document: Document) -> None:
    stats = handlers.analyze_model_statistics(document, {})
    walls = next(c for c in stats["categories"] if c["categoryName"] == "Walls")
    assert walls["elementCount"] == 3
    assert walls["typeCount"] == 1
    assert walls["types"][0]["familyName"] == "Basic Wall"
    assert [lvl["elementCount"] for lvl in stats["levels"]] == [2, 1]
    assert stats["levels"][1]["elevation"] == pytest.approx(3048.0)
    assert stats["totalViews"] == 2


def test_warnings_filter_and_grouping(document: Document) -> None:
    result = handlers.get_all_warnings(document, {})
    assert result["totalWarnings"] == 3
    assert result["byCategory"][0] == {"description": "Walls overlap", "count": 2}

    errors = handlers.get_all_warnings(document, {"severityFilter": "Error", "includeElementIds": False})
    assert errors["totalWarnings"] == 1
    assert "failingElements" not in errors["warnings"][0]


def test_walls_in_view_skips_hidden(document: Document) -> None:
    document.require_element(12).hidden = True
    assert [w.id for w in handlers.walls_in_view(document, 1)] == [10, 11]
