"""Tests for the library catalog and comparison presets."""

import pytest

from ossstats.catalog import (
    LIBRARIES,
    PRESETS,
    Library,
    get_library,
    get_preset,
    legacy_packages,
    preset_id,
    preset_packages,
    resolve_library_id,
)


class TestResolveLibraryId:

    @pytest.mark.parametrize("package,expected", [
        ("@tanstack/query-core", "query"),
        ("@tanstack/react-query", "query"),
        ("@tanstack/react-query-devtools", "query"),
        ("@tanstack/eslint-plugin-query", "query"),
        ("@tanstack/react-router", "router"),
        ("@tanstack/react-router-devtools", "router"),
        ("@tanstack/start-client-core", "start"),
        ("@tanstack/react-table", "table"),
        ("@tanstack/vite-config", "config"),
        ("@tanstack/create-start", "create-tsrouter-app"),
        ("@tanstack/create-router", "create-tsrouter-app"),
    ])
    def test_scoped_packages(self, package, expected):
        assert resolve_library_id(package) == (expected, False)

    @pytest.mark.parametrize("package,expected", [
        ("react-query", "query"),
        ("react-table", "table"),
        ("react-location", "router"),
        ("react-charts", "react-charts"),
    ])
    def test_legacy_packages(self, package, expected):
        assert resolve_library_id(package) == (expected, True)

    def test_unrelated_packages(self):
        assert resolve_library_id("swr") == (None, False)
        assert resolve_library_id("@apollo/client") == (None, False)
        assert resolve_library_id("@tanstack/something-else") == (None, False)

    def test_other_scope(self):
        libraries = (Library("query", "Query", "acme/query"),)
        assert resolve_library_id("@acme/react-query", org="acme", libraries=libraries) == (
            "query", False,
        )
        assert resolve_library_id("@tanstack/react-query", org="acme", libraries=libraries) == (
            None, False,
        )


class TestCatalog:

    def test_library_ids_unique(self):
        ids = [lib.id for lib in LIBRARIES]
        assert len(ids) == len(set(ids))

    def test_get_library(self):
        assert get_library("query").repo == "TanStack/query"
        assert get_library("nope") is None

    def test_main_package(self):
        assert get_library("query").main_package() == "@tanstack/query-core"
        assert get_library("store").main_package() == "@tanstack/store"

    def test_legacy_packages(self):
        legacy = legacy_packages()
        assert "react-query" in legacy
        assert all(not pkg.startswith("@") for pkg in legacy)


class TestPresets:

    @pytest.mark.parametrize("title,expected", [
        ("Data Fetching", "data-fetching"),
        ("Routing (React)", "routing-react"),
        ("Forms", "forms"),
    ])
    def test_preset_id(self, title, expected):
        assert preset_id(title) == expected

    def test_get_preset(self):
        preset = get_preset("data-fetching")
        assert preset.title == "Data Fetching"
        assert "@tanstack/react-query" in preset.packages
        assert get_preset("nope") is None

    def test_presets_fit_comparison_limit(self):
        assert all(1 <= len(p.packages) <= 10 for p in PRESETS)

    def test_preset_packages_unique(self):
        packages = preset_packages()
        assert len(packages) == len(set(packages))
        assert "swr" in packages
