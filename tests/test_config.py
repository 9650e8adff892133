"""Tests for settings resolution and matrix loading."""

from __future__ import annotations

import typing as typ

import pytest

from chart_matrix.config import (
    MatrixEntry,
    OrchestratorSettings,
    check_unique_names,
    derive_namespace,
    derive_release_name,
    load_matrix,
    parse_matrix,
    resolve_settings,
    select_entries,
)
from chart_matrix.errors import MatrixConfigError
from chart_matrix.models import Scenario

if typ.TYPE_CHECKING:
    from pathlib import Path


class TestMatrixEntry:
    def test_upgrade_requires_source(self) -> None:
        """Should reject an upgrade entry without upgrade_from."""
        with pytest.raises(ValueError, match="upgrade_from"):
            MatrixEntry(cluster_version="v1.28", scenario="upgrade")

    def test_install_forbids_source(self) -> None:
        """Should reject an install entry that names an upgrade source."""
        with pytest.raises(ValueError, match="must not set upgrade_from"):
            MatrixEntry(cluster_version="v1.28", scenario="install", upgrade_from="stable")

    def test_unknown_channel_rejected(self) -> None:
        """Should only accept the stable and dev channels."""
        with pytest.raises(ValueError):
            MatrixEntry(cluster_version="v1.28", scenario="upgrade", upgrade_from="beta")

    def test_derives_id(self) -> None:
        """Should derive a DNS-safe id from scenario, version, and source."""
        entry = MatrixEntry(cluster_version="v1.19", scenario="upgrade", upgrade_from="stable")
        assert entry.id == "upgrade-v1-19-from-stable"
        assert entry.is_upgrade

    def test_is_immutable(self) -> None:
        """Should refuse mutation after construction."""
        entry = MatrixEntry(cluster_version="v1.28")
        with pytest.raises(ValueError):
            entry.cluster_version = "v1.29"

    def test_rejects_unknown_fields(self) -> None:
        """Should reject misspelt fields instead of ignoring them."""
        with pytest.raises(ValueError):
            MatrixEntry(cluster_version="v1.28", create_test_resource=True)


class TestParseMatrix:
    def test_parses_entries_and_settings(self) -> None:
        """Should return settings overrides and validated entries."""
        settings, entries = parse_matrix({
            "settings": {"concurrency_limit": 4},
            "entries": [
                {"cluster_version": "v1.28", "create_test_resources": True},
                {
                    "cluster_version": "v1.28",
                    "scenario": "upgrade",
                    "upgrade_from": "dev",
                    "upgrade_from_values": {"hub.db.type": "sqlite-pvc"},
                },
            ],
        })
        assert settings == {"concurrency_limit": 4}
        assert [e.scenario for e in entries] == [Scenario.INSTALL, Scenario.UPGRADE]
        assert entries[1].upgrade_from_values == {"hub.db.type": "sqlite-pvc"}

    def test_suffixes_duplicate_derived_ids(self) -> None:
        """Should keep derived ids unique by suffixing repeats."""
        _, entries = parse_matrix({"entries": [{"cluster_version": "v1.28"}] * 3})
        assert [e.id for e in entries] == ["install-v1-28", "install-v1-28-2", "install-v1-28-3"]

    def test_rejects_duplicate_explicit_ids(self) -> None:
        """Should refuse two entries with the same explicit id."""
        with pytest.raises(MatrixConfigError, match="Duplicate entry ids: a"):
            parse_matrix({"entries": [{"id": "a", "cluster_version": "v1"}, {"id": "a", "cluster_version": "v2"}]})

    @pytest.mark.parametrize("data", [None, [], {"entries": []}, {"entries": "x"}, {"entries": [{}], "settings": 3}])
    def test_rejects_malformed_documents(self, data) -> None:
        """Should raise MatrixConfigError for malformed documents."""
        with pytest.raises(MatrixConfigError):
            parse_matrix(data)

    def test_reports_invalid_entry_position(self) -> None:
        """Should name the offending entry."""
        with pytest.raises(MatrixConfigError, match="#2"):
            parse_matrix({"entries": [{"cluster_version": "v1"}, {"cluster_version": "v1", "scenario": "upgrade"}]})


class TestLoadMatrix:
    def test_loads_yaml(self, tmp_path: Path) -> None:
        """Should load a YAML matrix file."""
        path = tmp_path / "matrix.yaml"
        path.write_text("entries:\n  - cluster_version: v1.28\n    debuggable: true\n")
        _, entries = load_matrix(path)
        assert entries[0].debuggable

    def test_missing_file(self, tmp_path: Path) -> None:
        """Should wrap a missing file in MatrixConfigError."""
        with pytest.raises(MatrixConfigError, match="Cannot read"):
            load_matrix(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Should wrap a YAML syntax error in MatrixConfigError."""
        path = tmp_path / "matrix.yaml"
        path.write_text("entries: [\n")
        with pytest.raises(MatrixConfigError, match="Cannot parse"):
            load_matrix(path)


class TestSettings:
    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should read CHART_MATRIX_* environment variables."""
        monkeypatch.setenv("CHART_MATRIX_MAX_RESTARTS", "3")
        assert OrchestratorSettings().max_restarts == 3

    def test_priority_cli_over_file_over_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should prefer CLI values, then the matrix file, then the environment."""
        monkeypatch.setenv("CHART_MATRIX_CONCURRENCY_LIMIT", "3")
        monkeypatch.setenv("CHART_MATRIX_POLL_INTERVAL", "9")
        monkeypatch.setenv("CHART_MATRIX_MAX_RESTARTS", "4")
        settings = resolve_settings(
            {"concurrency_limit": 5, "poll_interval": 2},
            concurrency_limit=6,
            max_restarts=None,
        )
        assert settings.concurrency_limit == 6
        assert settings.poll_interval == 2
        assert settings.max_restarts == 4

    def test_invalid_settings(self) -> None:
        """Should raise MatrixConfigError for out-of-range values."""
        with pytest.raises(MatrixConfigError):
            resolve_settings({"concurrency_limit": 0})


class TestNamespaces:
    def test_prefix_and_id(self) -> None:
        """Should join prefix and entry id."""
        assert derive_namespace("ct", "upgrade-v1-19-from-stable") == "ct-upgrade-v1-19-from-stable"

    def test_truncates_to_dns_label(self) -> None:
        """Should stay within 63 characters and never end with a dash."""
        name = derive_namespace("ct", "x" * 60 + "-" + "y" * 10)
        assert len(name) <= 63
        assert not name.endswith("-")

    def test_slugged_ids_do_not_collide(self) -> None:
        """Should keep ids that slug to the same text in distinct namespaces."""
        dotted = derive_namespace("ct", "install-v1.19")
        dashed = derive_namespace("ct", "install-v1-19")
        assert dashed == "ct-install-v1-19"
        assert dotted != dashed
        assert dotted.startswith("ct-install-v1-19-")

    def test_long_ids_differing_late_do_not_collide(self) -> None:
        """Should keep long ids distinct when they only differ past the length limit."""
        first = derive_namespace("ct", "x" * 60 + "-a")
        second = derive_namespace("ct", "x" * 60 + "-b")
        assert first != second
        assert len(first) <= 63 and len(second) <= 63

    def test_release_name_per_entry(self) -> None:
        """Should give each entry its own release name within helm's 53 characters."""
        assert derive_release_name("jupyterhub", "install-v1-26") == "jupyterhub-install-v1-26"
        assert derive_release_name("jupyterhub", "install-v1-26") != derive_release_name("jupyterhub", "install-v1-27")
        assert len(derive_release_name("jupyterhub", "upgrade-" + "z" * 60)) <= 53

    def test_check_unique_names_accepts_distinct_entries(self) -> None:
        """Should accept entries whose namespaces and releases all differ."""
        _, entries = parse_matrix({"entries": [
            {"id": "install-v1.19", "cluster_version": "v1.19"},
            {"id": "install-v1-19", "cluster_version": "v1.19"},
        ]})
        check_unique_names(entries, OrchestratorSettings())

    def test_check_unique_names_rejects_shared_namespace(self) -> None:
        """Should reject entries that would deploy into the same namespace."""
        entries = [MatrixEntry(id="a", cluster_version="v1.28"), MatrixEntry(id="a", cluster_version="v1.27")]
        with pytest.raises(MatrixConfigError, match="Entries share a namespace: ct-a \(a, a\)"):
            check_unique_names(entries, OrchestratorSettings(namespace_prefix="ct"))

    def test_select_entries(self) -> None:
        """Should keep file order and reject unknown ids."""
        _, entries = parse_matrix({"entries": [{"id": "a", "cluster_version": "v1"}, {"id": "b", "cluster_version": "v1"}]})
        assert [e.id for e in select_entries(entries, ["b", "a"])] == ["a", "b"]
        assert select_entries(entries, None) == entries
        with pytest.raises(MatrixConfigError, match="Unknown entry ids: c"):
            select_entries(entries, ["c"])
