"""Tool interface over the Read API.

One entry point, npm_stats(), takes a validated NpmStatsInput and
dispatches on which field is set, in this order:

    list_presets → preset → packages → library → org summary (default)
"""

import logging
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from ossstats.api.reader import MAX_COMPARE_PACKAGES, StatsReader, StatsUnavailable
from ossstats.catalog import get_preset

logger = logging.getLogger(__name__)


class NpmStatsInput(BaseModel):
    """Arguments of the npm_stats tool."""

    list_presets: bool = Field(default=False, description="List comparison presets")
    preset: str | None = Field(default=None, description="Preset id to compare")
    packages: list[str] | None = Field(
        default=None,
        min_length=1,
        max_length=MAX_COMPARE_PACKAGES,
        description="Packages to compare",
    )
    library: str | None = Field(default=None, description="Library id")
    range: Literal["30d", "90d", "180d", "1y", "2y", "all"] = "1y"
    bin: Literal["daily", "weekly", "monthly"] = "weekly"

    @field_validator("packages")
    @classmethod
    def strip_packages(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return None
        cleaned = [p.strip() for p in v if p and p.strip()]
        if not cleaned:
            raise ValueError("packages must contain at least one non-empty name")
        return cleaned


async def npm_stats(reader: StatsReader, params: NpmStatsInput) -> dict[str, Any]:
    """Answer an npm statistics question from the cache.

    Args:
        reader: Read API instance
        params: Validated tool input

    Returns:
        JSON-serializable result; its ``kind`` says which branch answered

    Raises:
        ValueError: On an unknown preset
        KeyError: On an unknown library
        StatsUnavailable: If the requested data was never cached
    """
    if params.list_presets:
        return {"kind": "presets", "presets": reader.list_presets()}

    if params.preset:
        preset = get_preset(params.preset)
        if preset is None:
            known = ", ".join(p["id"] for p in reader.list_presets())
            raise ValueError(f"Unknown preset {params.preset!r}. Available: {known}")
        rows = await reader.compare_packages(list(preset.packages), params.range, params.bin)
        return {
            "kind": "comparison",
            "title": preset.title,
            "range": params.range,
            "bin": params.bin,
            "packages": rows,
        }

    if params.packages:
        rows = await reader.compare_packages(params.packages, params.range, params.bin)
        return {"kind": "comparison", "range": params.range, "bin": params.bin, "packages": rows}

    if params.library:
        stats = await reader.get_library_stats(params.library)
        return {"kind": "library", "library": stats.to_dict()}

    org = await reader.get_org_stats()
    try:
        github = (await reader.get_github_org_stats()).to_dict()
    except StatsUnavailable:
        logger.info("No GitHub org stats cached yet")
        github = None

    return {
        "kind": "org",
        "org": org.to_dict(),
        "github": github,
        "libraries": await reader.list_libraries(),
    }
