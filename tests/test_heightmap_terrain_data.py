from __future__ import annotations

import asyncio

import numpy as np
import pytest

from heightmap.structure import HeightmapStructure
from heightmap.terrain_data import HeightmapTerrainData
from heightmap.tessellator import HeightmapTessellator
from heightmap.tiling import QuadTreeTilingScheme


def _ramp(width: int, height: int, dtype: type = np.float64) -> np.ndarray:
    rows = np.arange(height, dtype=np.float64)[:, None] * 10.0
    cols = np.arange(width, dtype=np.float64)[None, :] * 3.0
    return (rows + cols + (rows * cols) % 7).astype(dtype).reshape(-1)


def test_constructor_validates_dimensions_and_buffer_size() -> None:
    with pytest.raises(ValueError, match="at least 2x2"):
        HeightmapTerrainData(np.zeros(1), 1, 1)
    with pytest.raises(ValueError, match="Expected a buffer of 8 elements"):
        HeightmapTerrainData(np.zeros(4), 2, 2, structure=HeightmapStructure(stride=2))
    with pytest.raises(ValueError, match="child_tile_mask"):
        HeightmapTerrainData(np.zeros(4), 2, 2, child_tile_mask=16)


def test_defaults() -> None:
    data = HeightmapTerrainData(np.zeros(4, dtype=np.uint16), 2, 2)
    assert data.child_tile_mask == 15
    assert data.water_mask is None
    assert data.was_created_by_upsampling() is False
    assert data.has_mesh is False


def test_interpolate_height_applies_scale_and_offset() -> None:
    scheme = QuadTreeTilingScheme()
    rect = scheme.tile_xy_to_rectangle(0, 0, 1)
    structure = HeightmapStructure(height_scale=0.5, height_offset=-10.0)
    data = HeightmapTerrainData(
        np.array([10, 20, 30, 40], dtype=np.uint16), 2, 2, structure=structure
    )
    west_south = data.interpolate_height(rect, rect.west, rect.south)
    assert west_south == 30 * 0.5 - 10.0


def test_is_child_available_maps_children_to_bits() -> None:
    # Bits 0 (southwest) and 2 (northwest) set.
    data = HeightmapTerrainData(np.zeros(4), 2, 2, child_tile_mask=0b0101)
    assert data.is_child_available(1, 1, 2, 2) is True  # northwest
    assert data.is_child_available(1, 1, 3, 2) is False  # northeast
    assert data.is_child_available(1, 1, 2, 3) is True  # southwest
    assert data.is_child_available(1, 1, 3, 3) is False  # southeast

    for bit in range(4):
        single = HeightmapTerrainData(np.zeros(4), 2, 2, child_tile_mask=1 << bit)
        children = {(2, 3): 0, (3, 3): 1, (2, 2): 2, (3, 2): 3}
        for (child_x, child_y), child_bit in children.items():
            assert single.is_child_available(1, 1, child_x, child_y) is (
                child_bit == bit
            )


def test_create_mesh_sync_replaces_raw_buffer() -> None:
    scheme = QuadTreeTilingScheme()
    data = HeightmapTerrainData(_ramp(5, 5), 5, 5)
    rect = scheme.tile_xy_to_rectangle(1, 0, 1)
    before = data.interpolate_height(rect, rect.west + 0.3, rect.south + 0.7)

    mesh = data.create_mesh_sync(scheme, 1, 0, 1, exaggeration=2.0)

    assert data.has_mesh is True
    assert data.buffer is None
    assert data.mesh is mesh
    assert data.skirt_height == 1000.0
    assert mesh.grid_width == 7
    assert mesh.grid_height == 7
    assert mesh.indices.size == 6 * 6 * 6
    assert mesh.minimum_height == pytest.approx(0.0)
    assert mesh.maximum_height == pytest.approx(float(_ramp(5, 5).max()) * 2.0)
    assert data.interpolate_height(rect, rect.west + 0.3, rect.south + 0.7) == (
        pytest.approx(before)
    )
    with pytest.raises(ValueError, match="already been created"):
        data.create_mesh_sync(scheme, 1, 0, 1)


def test_upsample_requires_mesh_and_direct_child() -> None:
    scheme = QuadTreeTilingScheme()
    data = HeightmapTerrainData(_ramp(4, 4), 4, 4)
    assert data.upsample(scheme, 0, 0, 1, 0, 0, 2) is None

    data.create_mesh_sync(scheme, 0, 0, 1)
    with pytest.raises(ValueError, match="direct child"):
        data.upsample(scheme, 0, 0, 1, 0, 0, 3)


@pytest.mark.parametrize(("child_x", "child_y"), [(0, 0), (1, 0), (0, 1), (1, 1)])
def test_upsampled_child_matches_parent_surface(child_x: int, child_y: int) -> None:
    scheme = QuadTreeTilingScheme()
    structure = HeightmapStructure(height_scale=2.0, height_offset=-50.0)
    parent = HeightmapTerrainData(_ramp(6, 6), 6, 6, structure=structure)
    parent.create_mesh_sync(scheme, 0, 0, 1, exaggeration=1.5)
    parent_rect = scheme.tile_xy_to_rectangle(0, 0, 1)

    child = parent.upsample(scheme, 0, 0, 1, child_x, child_y, 2)
    assert child is not None
    assert child.was_created_by_upsampling() is True
    assert child.child_tile_mask == 0
    assert child.width == 6
    assert child.height == 6
    assert child.structure == structure

    child_rect = scheme.tile_xy_to_rectangle(child_x, child_y, 2)
    points = [
        (child_rect.west, child_rect.south),
        (child_rect.east, child_rect.south),
        (child_rect.west, child_rect.north),
        (child_rect.east, child_rect.north),
        child_rect.center(),
    ]
    for lon, lat in points:
        assert child.interpolate_height(child_rect, lon, lat) == pytest.approx(
            parent.interpolate_height(parent_rect, lon, lat), abs=1e-6
        )


def test_upsample_clamps_to_encoded_range_and_keeps_dtype() -> None:
    scheme = QuadTreeTilingScheme()
    structure = HeightmapStructure(lowest_encoded_height=5.0, highest_encoded_height=40.0)
    heights = np.array([0, 10, 20, 90] * 4, dtype=np.uint16)
    parent = HeightmapTerrainData(heights, 4, 4, structure=structure)
    parent.create_mesh_sync(scheme, 1, 1, 1)

    child = parent.upsample(scheme, 1, 1, 1, 2, 2, 2)
    assert child is not None
    assert child.buffer is not None
    assert child.buffer.dtype == np.uint16
    assert int(child.buffer.min()) >= 5
    assert int(child.buffer.max()) <= 40


def test_upsample_encodes_multi_element_heights() -> None:
    scheme = QuadTreeTilingScheme()
    structure = HeightmapStructure(elements_per_height=2, stride=2)
    heights = np.zeros(3 * 3 * 2, dtype=np.uint8)
    # Every sample is 0x0102 = 258.
    heights[0::2] = 2
    heights[1::2] = 1
    parent = HeightmapTerrainData(heights, 3, 3, structure=structure)
    parent.create_mesh_sync(scheme, 0, 0, 0)

    child = parent.upsample(scheme, 0, 0, 0, 1, 1, 1)
    assert child is not None
    assert child.buffer is not None
    assert child.buffer.tolist() == [2, 1] * 9


def test_create_mesh_is_postponed_when_tessellator_is_busy() -> None:
    scheme = QuadTreeTilingScheme()

    async def scenario() -> tuple[bool, bool, int]:
        tessellator = HeightmapTessellator(max_active_tasks=1)
        first = HeightmapTerrainData(_ramp(4, 4), 4, 4)
        second = HeightmapTerrainData(_ramp(4, 4), 4, 4)

        pending = first.create_mesh(scheme, 0, 0, 1, tessellator=tessellator)
        assert pending is not None
        postponed = second.create_mesh(scheme, 0, 0, 1, tessellator=tessellator)

        mesh = await pending
        return postponed is None, first.mesh is mesh, second.has_mesh

    postponed, adopted, second_has_mesh = asyncio.run(scenario())
    assert postponed is True
    assert adopted is True
    assert second_has_mesh is False
