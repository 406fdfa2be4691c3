"""Library catalog and curated comparison presets.

The catalog is the static list of libraries the organisation ships: their
GitHub repository and any legacy (unscoped) npm packages published before the
move to the ``@tanstack`` scope. Scoped packages are discovered from npm at
refresh time and assigned to a library by resolve_library_id().
"""

import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Library:
    """One library of the organisation."""

    id: str
    name: str
    repo: str | None
    legacy_packages: tuple[str, ...] = ()
    core_package: str | None = None

    def main_package(self, org: str = "tanstack") -> str:
        """npm package shown as the library's primary package."""
        return f"@{org}/{self.core_package or self.id}"


# Order matters: resolve_library_id() returns the first match, so libraries
# whose ids appear inside other package names (devtools, config) come last.
LIBRARIES: tuple[Library, ...] = (
    Library("query", "TanStack Query", "TanStack/query", ("react-query",), "query-core"),
    Library("router", "TanStack Router", "TanStack/router", ("react-location",)),
    Library("start", "TanStack Start", "TanStack/router", (), "start-client-core"),
    Library("table", "TanStack Table", "TanStack/table", ("react-table",), "table-core"),
    Library("form", "TanStack Form", "TanStack/form", (), "form-core"),
    Library("virtual", "TanStack Virtual", "TanStack/virtual", ("react-virtual",), "virtual-core"),
    Library("ranger", "TanStack Ranger", "TanStack/ranger", ("react-ranger",)),
    Library("store", "TanStack Store", "TanStack/store"),
    Library("pacer", "TanStack Pacer", "TanStack/pacer"),
    Library("db", "TanStack DB", "TanStack/db"),
    Library("react-charts", "React Charts", "TanStack/react-charts", ("react-charts",)),
    Library("create-tsrouter-app", "Create TS Router App", "TanStack/create-tsrouter-app"),
    Library("devtools", "TanStack Devtools", "TanStack/devtools"),
    Library("config", "TanStack Config", "TanStack/config", (), "vite-config"),
)


@dataclass(frozen=True)
class ComparisonPreset:
    """A curated set of packages to compare side by side."""

    title: str
    packages: tuple[str, ...] = field(default_factory=tuple)

    @property
    def id(self) -> str:
        return preset_id(self.title)


PRESETS: tuple[ComparisonPreset, ...] = (
    ComparisonPreset("Data Fetching", ("@tanstack/react-query", "swr", "@apollo/client", "@trpc/client")),
    ComparisonPreset("State Management", ("redux", "mobx", "zustand", "jotai", "valtio")),
    ComparisonPreset("Routing (React)", ("react-router", "@tanstack/react-router", "next", "wouter")),
    ComparisonPreset("Data Grids", (
        "ag-grid-community", "@tanstack/react-table", "handsontable", "@mui/x-data-grid", "react-data-grid",
    )),
    ComparisonPreset("Virtualization", (
        "react-virtualized", "react-window", "@tanstack/react-virtual", "virtua", "react-virtuoso",
    )),
    ComparisonPreset("Forms", ("react-hook-form", "@tanstack/form-core", "@conform-to/dom")),
)


# Scaffolder packages whose names would otherwise match "router" or "start"
_SCAFFOLDER_PACKAGES = frozenset({"create-router", "create-start", "create-tsrouter-app"})


def preset_id(title: str) -> str:
    """Slug used to select a preset, e.g. "Routing (React)" -> "routing-react"."""
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")


def get_library(library_id: str) -> Library | None:
    for library in LIBRARIES:
        if library.id == library_id:
            return library
    return None


def get_preset(preset: str) -> ComparisonPreset | None:
    for candidate in PRESETS:
        if candidate.id == preset:
            return candidate
    return None


def legacy_packages(libraries: tuple[Library, ...] = LIBRARIES) -> list[str]:
    """Every legacy package declared by the catalog."""
    return [pkg for library in libraries for pkg in library.legacy_packages]


def preset_packages(presets: tuple[ComparisonPreset, ...] = PRESETS) -> list[str]:
    """Unique packages across all presets, in first-seen order."""
    return list(dict.fromkeys(pkg for preset in presets for pkg in preset.packages))


def resolve_library_id(
    package: str,
    org: str = "tanstack",
    libraries: tuple[Library, ...] = LIBRARIES,
) -> tuple[str | None, bool]:
    """Work out which library owns an npm package.

    Legacy packages match exactly. Scoped packages match ``@org/{id}``,
    ``@org/{id}-...``, ``@org/...-{id}`` or ``@org/...-{id}-...``.

    Args:
        package: npm package name
        org: npm scope without '@'
        libraries: Catalog to match against

    Returns:
        Tuple of (library id or None, is_legacy)
    """
    for library in libraries:
        if package in library.legacy_packages:
            return library.id, True

    scope = f"@{org}/"
    if not package.startswith(scope):
        return None, False
    name = package[len(scope):]

    known = {library.id for library in libraries}
    if name in _SCAFFOLDER_PACKAGES and "create-tsrouter-app" in known:
        return "create-tsrouter-app", False

    for library in libraries:
        lib_id = library.id
        if (
            name == lib_id
            or name.startswith(f"{lib_id}-")
            or name.endswith(f"-{lib_id}")
            or f"-{lib_id}-" in name
        ):
            return lib_id, False

    return None, False
