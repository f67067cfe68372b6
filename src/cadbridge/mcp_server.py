"""
MCP tool server.

Exposes the bridge operations as MCP tools over stdio. The BridgeClient
(and its single host connection) is owned by the server lifespan and
shared by every tool call.

All tool inputs are in millimetres and degrees; replies are the host's
JSON documents as text.
"""

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from mcp.server.fastmcp import Context, FastMCP

from .channel import ChannelError
from .client import BridgeClient
from .config import load_config
from .logger import configure_logging
from .outcome import BatchResult

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    client: BridgeClient


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    settings = load_config()
    client = BridgeClient.from_config(settings.client)
    logger.info(f"MCP server using host at {settings.client.endpoint}")
    try:
        yield AppContext(client=client)
    finally:
        await client.close()


mcp = FastMCP("cadbridge", lifespan=lifespan)


async def _invoke(ctx: Context, label: str, call: Callable[[BridgeClient], Awaitable[Any]]) -> str:
    """Run one client call and render the reply (or the failure) as text."""
    client = ctx.request_context.lifespan_context.client
    try:
        result = await call(client)
    except (ChannelError, ValueError) as e:
        logger.warning(f"{label} failed: {e}")
        return f"{label} failed: {e}"
    if isinstance(result, BatchResult):
        result = result.to_dict()
    return json.dumps(result, indent=2)


# ======= Tools Mapping =======


@mcp.tool()
async def create_dimensions(ctx: Context, dimensions: List[Dict[str, Any]]) -> str:
    """Create dimension annotations in one transaction. All units are millimetres.

    Each dimension:
        dimensionType: Linear (default), Angular, Radial, Diameter or ArcLength
        elementIds: 2 elements (Linear/Angular) or 1 arc (Radial/Diameter/ArcLength)
        startPoint, endPoint: {x, y, z} for a point-to-point Linear dimension
        chainPoints: 3+ points for a chained Linear dimension
        linePoint: where the dimension line is placed
        viewId: target view (-1 = active view)
        dimensionStyleId: dimension type to use
        textOverride: replacement text (applied to every chain segment)
    """
    return await _invoke(ctx, "Dimension creation", lambda c: c.create_dimensions(dimensions))


@mcp.tool()
async def operate_element(
    ctx: Context,
    action: str,
    element_ids: List[int],
    move_vector: Optional[Dict[str, float]] = None,
    rotation_center: Optional[Dict[str, float]] = None,
    rotation_angle: Optional[float] = None,
    copy_count: Optional[int] = None,
    mirror_plane_origin: Optional[Dict[str, float]] = None,
    mirror_plane_normal: Optional[Dict[str, float]] = None,
    color_value: Optional[List[int]] = None,
    transparency_value: Optional[int] = None,
    parameter_name: Optional[str] = None,
    parameter_value: Any = None,
    new_name: Optional[str] = None,
) -> str:
    """Operate on elements: Move, Rotate, Copy, Mirror, Delete, Hide, TempHide,
    Unhide, Isolate, ResetIsolate, Select, Highlight, SetColor, SetTransparency,
    SetParameter or Rename.

    Vectors and points are {x, y, z} in millimetres; rotation_angle is in
    degrees about a vertical axis through rotation_center. Rename with several
    elements appends _1, _2, ... to new_name.
    """
    return await _invoke(
        ctx,
        f"{action} operation",
        lambda c: c.operate_element(
            action,
            element_ids,
            move_vector=move_vector,
            rotation_center=rotation_center,
            rotation_angle=rotation_angle,
            copy_count=copy_count,
            mirror_plane_origin=mirror_plane_origin,
            mirror_plane_normal=mirror_plane_normal,
            color_value=color_value,
            transparency_value=transparency_value,
            parameter_name=parameter_name,
            parameter_value=parameter_value,
            new_name=new_name,
        ),
    )


@mcp.tool()
async def set_parameter_value_for_elements(
    ctx: Context,
    parameter_name: str,
    element_ids: List[int],
    value: Any = None,
    values: Optional[List[Any]] = None,
) -> str:
    """Set a parameter on multiple elements, with one shared value or one value per element.

    Length, angle, area and volume values are given in mm, degrees, mm2 and mm3.
    """
    return await _invoke(
        ctx,
        "Parameter update",
        lambda c: c.set_parameter_value_for_elements(parameter_name, element_ids, value=value, values=values),
    )


@mcp.tool()
async def create_tag(ctx: Context, tags: List[Dict[str, Any]]) -> str:
    """Tag elements. Each tag: elementId, optional location {x, y, z} in mm
    (defaults to the element midpoint), tagCategory, orientation (0 horizontal,
    1 vertical), hasLeader, tagTypeId, viewId."""
    return await _invoke(ctx, "Tag creation", lambda c: c.create_tag(tags))


@mcp.tool()
async def tag_all_walls(ctx: Context, use_leader: bool = False, tag_type_id: Optional[str] = None) -> str:
    """Tag every visible wall in the active view."""
    return await _invoke(ctx, "Wall tagging", lambda c: c.tag_all_walls(use_leader, tag_type_id))


@mcp.tool()
async def create_grid(
    ctx: Context,
    x_count: int,
    x_spacing: float,
    y_count: int,
    y_spacing: float,
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
) -> str:
    """Create a grid system with X-axis and Y-axis grid lines. All units are millimetres.
    Naming styles: 'alphabetic' (A, B, ... Z, AA) or 'numeric' (1, 2, 3)."""
    return await _invoke(
        ctx,
        "Grid creation",
        lambda c: c.create_grid(
            x_count,
            x_spacing,
            y_count,
            y_spacing,
            x_start_label=x_start_label,
            x_naming_style=x_naming_style,
            y_start_label=y_start_label,
            y_naming_style=y_naming_style,
            x_extent_min=x_extent_min,
            x_extent_max=x_extent_max,
            y_extent_min=y_extent_min,
            y_extent_max=y_extent_max,
            x_start_position=x_start_position,
            y_start_position=y_start_position,
            elevation=elevation,
        ),
    )


@mcp.tool()
async def set_graphic_overrides_for_elements_in_view(
    ctx: Context,
    element_ids: List[int],
    view_id: int = -1,
    projection_line_color: Optional[Dict[str, int]] = None,
    cut_line_color: Optional[Dict[str, int]] = None,
    projection_line_weight: Optional[int] = None,
    cut_line_weight: Optional[int] = None,
    surface_foreground_color: Optional[Dict[str, int]] = None,
    surface_background_color: Optional[Dict[str, int]] = None,
    transparency: Optional[int] = None,
    halftone: Optional[bool] = None,
    reset_overrides: bool = False,
) -> str:
    """Set per-view graphic overrides. Colors are {r, g, b}; line weights 1-16;
    transparency 0-100. view_id -1 means the active view."""
    overrides = {
        "projectionLineColor": projection_line_color,
        "cutLineColor": cut_line_color,
        "projectionLineWeight": projection_line_weight,
        "cutLineWeight": cut_line_weight,
        "surfaceForegroundColor": surface_foreground_color,
        "surfaceBackgroundColor": surface_background_color,
        "transparency": transparency,
        "halftone": halftone,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    return await _invoke(
        ctx,
        "Graphic override",
        lambda c: c.set_graphic_overrides_for_elements_in_view(element_ids, overrides, view_id, reset_overrides),
    )


@mcp.tool()
async def create_material(
    ctx: Context,
    name: str,
    color: Optional[List[int]] = None,
    transparency: Optional[int] = None,
    surface_pattern_name: Optional[str] = None,
    surface_pattern_color: Optional[List[int]] = None,
    cut_pattern_name: Optional[str] = None,
    cut_pattern_color: Optional[List[int]] = None,
) -> str:
    """Create a material, or update the existing one with the same name.
    Pattern names match partially (e.g. 'Diagonal' finds 'Diagonal Crosshatch')."""
    properties = {
        "color": color,
        "transparency": transparency,
        "surfacePatternName": surface_pattern_name,
        "surfacePatternColor": surface_pattern_color,
        "cutPatternName": cut_pattern_name,
        "cutPatternColor": cut_pattern_color,
    }
    properties = {k: v for k, v in properties.items() if v is not None}
    return await _invoke(ctx, "Material creation", lambda c: c.create_material(name, **properties))


@mcp.tool()
async def create_view(
    ctx: Context,
    view_type: str,
    name: Optional[str] = None,
    level_elevation: Optional[float] = None,
    scale: Optional[int] = None,
    detail_level: Optional[str] = None,
    template_id: Optional[int] = None,
    direction: Optional[Dict[str, float]] = None,
) -> str:
    """Create a FloorPlan, CeilingPlan, Elevation, Section or 3D view.
    level_elevation is in mm; plans use the closest level."""
    return await _invoke(
        ctx,
        "View creation",
        lambda c: c.create_view(view_type, name, level_elevation, scale, detail_level, template_id, direction),
    )


@mcp.tool()
async def create_element_type(
    ctx: Context,
    category: str,
    name: str,
    base_type_name: Optional[str] = None,
    layers: Optional[List[Dict[str, Any]]] = None,
    parameters: Optional[List[Dict[str, Any]]] = None,
) -> str:
    """Create a type by duplicating an existing one and customizing it.

    category: wall, floor, roof, ceiling (compound layers) or column, beam
    (family parameters). base_type_name may be 'Type' or 'Family: Type';
    the first type of the category is used when omitted.

    layers: [{function, materialName, widthMm}], exterior to interior for walls,
    top to bottom for floors and roofs. function is Structure, Substrate,
    Insulation, Finish1, Finish2, Membrane or StructuralDeck. Missing
    materials are created with default properties.

    parameters: [{name, value}], e.g. [{"name": "b", "value": 400}]. Length
    values are in millimetres.
    """
    return await _invoke(
        ctx,
        "Type creation",
        lambda c: c.create_element_type(category, name, base_type_name, layers, parameters),
    )


@mcp.tool()
async def get_graphic_overrides_for_element_ids_in_view(ctx: Context, element_ids: List[int], view_id: int = -1) -> str:
    """Read the graphic overrides applied to elements in a view (view_id -1 = active view):
    line colors and weights, surface colors, transparency and halftone."""
    return await _invoke(
        ctx,
        "Graphic override query",
        lambda c: c.get_graphic_overrides_for_element_ids_in_view(element_ids, view_id),
    )


@mcp.tool()
async def analyze_model_statistics(ctx: Context, include_detailed_types: bool = True) -> str:
    """Element counts per category, type breakdown and per-level counts."""
    return await _invoke(ctx, "Model analysis", lambda c: c.analyze_model_statistics(include_detailed_types))


@mcp.tool()
async def get_all_warnings_in_the_model(
    ctx: Context, severity_filter: str = "All", include_element_ids: bool = True
) -> str:
    """List model warnings, filtered by severity (All, Warning, Error)."""
    return await _invoke(
        ctx,
        "Warning query",
        lambda c: c.get_all_warnings_in_the_model(severity_filter, include_element_ids),
    )


@mcp.tool()
async def execute_batch(ctx: Context, operations: List[Dict[str, Any]], transaction_name: str = "Batch") -> str:
    """Run mixed operations in one transaction. Each operation is
    {"kind": ..., "params": {...}} with coordinates already in feet and radians."""
    return await _invoke(ctx, "Batch", lambda c: c.execute_batch(operations, transaction_name))


@mcp.tool()
async def health_check(ctx: Context) -> str:
    """Check that the CAD host is reachable."""
    return await _invoke(ctx, "Health check", lambda c: c.health_check())


def main():
    """Run the MCP server over stdio."""
    settings = load_config()
    configure_logging(settings.log_level, settings.log_file)
    mcp.run()


if __name__ == "__main__":
    main()
