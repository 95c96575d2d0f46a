from __future__ import annotations

from typing import Final, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class HeightmapStructure(BaseModel):
    """Layout of height samples inside a raw heightmap buffer."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    height_scale: float = 1.0
    height_offset: float = 0.0
    elements_per_height: int = Field(default=1, ge=1)
    stride: int = Field(default=1, ge=1)
    element_multiplier: float = Field(default=256.0, gt=0)
    is_big_endian: bool = False

    # Upsampled heights are clamped to this range before encoding.
    lowest_encoded_height: Optional[float] = None
    highest_encoded_height: Optional[float] = None

    @model_validator(mode="after")
    def _validate_layout(self) -> "HeightmapStructure":
        if self.stride < self.elements_per_height:
            raise ValueError(
                f"stride ({self.stride}) must be >= elements_per_height "
                f"({self.elements_per_height})"
            )
        if (
            self.lowest_encoded_height is not None
            and self.highest_encoded_height is not None
            and self.lowest_encoded_height > self.highest_encoded_height
        ):
            raise ValueError(
                "Expected lowest_encoded_height <= highest_encoded_height, got "
                f"{self.lowest_encoded_height} > {self.highest_encoded_height}"
            )
        return self

    def clamp_encoded(self, value: float) -> float:
        # A bound left unset does not clamp that side.
        if self.lowest_encoded_height is not None and value < self.lowest_encoded_height:
            value = self.lowest_encoded_height
        if (
            self.highest_encoded_height is not None
            and value > self.highest_encoded_height
        ):
            value = self.highest_encoded_height
        return value


DEFAULT_STRUCTURE: Final[HeightmapStructure] = HeightmapStructure()
