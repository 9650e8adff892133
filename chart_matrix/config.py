# /*
# Copyright 2026 The Chart Matrix Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Settings, matrix entries, and matrix file loading."""

from __future__ import annotations

import hashlib
import re
from collections import Counter
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.panel import Panel
from rich.table import Table

from chart_matrix import console
from chart_matrix.constants import (
    DEFAULT_CERT_DEADLINE,
    DEFAULT_CERT_SECRET,
    DEFAULT_CHART_NAME,
    DEFAULT_CHART_PATH,
    DEFAULT_CHART_REPO,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_CONCURRENCY_LIMIT,
    DEFAULT_DIAGNOSTICS_DIR,
    DEFAULT_DIAGNOSTICS_GRACE,
    DEFAULT_FIXTURE_MANIFESTS,
    DEFAULT_IMPORTANT_WORKLOADS,
    DEFAULT_LINT_VALUES_FILE,
    DEFAULT_LOCAL_VALUES_FILES,
    DEFAULT_MAX_RESTARTS,
    DEFAULT_NAMESPACE_PREFIX,
    DEFAULT_OVERALL_DEADLINE,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_POST_RENDERER,
    DEFAULT_READINESS_DEADLINE,
    DEFAULT_RELEASE_INFO_URL,
    DEFAULT_RELEASE_NAME,
    DEFAULT_STABLE_WINDOW,
    DEFAULT_TEST_SUITE_PATH,
    DEFAULT_TEST_SUITE_TIMEOUT,
    DEFAULT_VALUES_FILES,
    ENV_PREFIX,
    MAX_DNS_LABEL_LENGTH,
    MAX_RELEASE_NAME_LENGTH,
    NAME_HASH_LENGTH,
)
from chart_matrix.errors import MatrixConfigError
from chart_matrix.models import Scenario


# ============================================================================
# Global settings
# ============================================================================

class OrchestratorSettings(BaseSettings):
    """Global orchestration settings, auto-loaded from CHART_MATRIX_* env vars.

    Attributes:
        concurrency_limit: Maximum pipelines running at once.
        overall_deadline: Seconds before the whole matrix run is cancelled.
        poll_interval: Seconds between readiness polls.
        readiness_deadline: Seconds a readiness gate may wait.
        cert_deadline: Seconds a certificate-acquisition gate may wait.
        max_restarts: Restarts tolerated per workload while awaiting readiness.
        stable_window: Seconds readiness must hold before a gate passes.
        diagnostics_grace: Budget for diagnostics after cancellation.
        command_timeout: Default timeout for a single external command.
        test_suite_timeout: Timeout for the test-suite stage.
        chart_name: Chart name in the remote chart repository.
        chart_path: Path to the local chart directory.
        chart_repo: Remote chart repository URL used for prior releases.
        release_info_url: URL of the repository's release metadata document.
        release_name: Base of the per-entry helm release names.
        namespace_prefix: Prefix for per-entry namespaces.
        values_files: Values files for the prior release.
        local_values_files: Values files for the local chart.
        lint_values_file: Values file used for linting and API validation.
        fixture_manifests: Manifests applied when an entry requests test fixtures.
        post_renderer: Helm post-renderer for the diff stage, or None to disable.
        test_suite_path: Path handed to the test-suite runner.
        important_workloads: Workloads reported in detail by diagnostics.
        cert_secret: Secret that holds the acquired TLS certificate.
        diagnostics_dir: Directory receiving per-entry diagnostics.
    """

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    concurrency_limit: int = Field(default=DEFAULT_CONCURRENCY_LIMIT, ge=1, le=64)
    overall_deadline: float = Field(default=DEFAULT_OVERALL_DEADLINE, gt=0)
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)
    readiness_deadline: float = Field(default=DEFAULT_READINESS_DEADLINE, gt=0)
    cert_deadline: float = Field(default=DEFAULT_CERT_DEADLINE, gt=0)
    max_restarts: int = Field(default=DEFAULT_MAX_RESTARTS, ge=0)
    stable_window: float = Field(default=DEFAULT_STABLE_WINDOW, ge=0)
    diagnostics_grace: float = Field(default=DEFAULT_DIAGNOSTICS_GRACE, gt=0)
    command_timeout: float = Field(default=DEFAULT_COMMAND_TIMEOUT, gt=0)
    test_suite_timeout: float = Field(default=DEFAULT_TEST_SUITE_TIMEOUT, gt=0)

    chart_name: str = DEFAULT_CHART_NAME
    chart_path: str = DEFAULT_CHART_PATH
    chart_repo: str = DEFAULT_CHART_REPO
    release_info_url: str = DEFAULT_RELEASE_INFO_URL
    release_name: str = Field(default=DEFAULT_RELEASE_NAME, pattern=r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
    namespace_prefix: str = Field(default=DEFAULT_NAMESPACE_PREFIX, pattern=r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")

    values_files: list[str] = Field(default_factory=lambda: list(DEFAULT_VALUES_FILES))
    local_values_files: list[str] = Field(default_factory=lambda: list(DEFAULT_LOCAL_VALUES_FILES))
    lint_values_file: str = DEFAULT_LINT_VALUES_FILE
    fixture_manifests: list[str] = Field(default_factory=lambda: list(DEFAULT_FIXTURE_MANIFESTS))
    post_renderer: str | None = DEFAULT_POST_RENDERER
    test_suite_path: str = DEFAULT_TEST_SUITE_PATH
    important_workloads: list[str] = Field(default_factory=lambda: list(DEFAULT_IMPORTANT_WORKLOADS))
    cert_secret: str = DEFAULT_CERT_SECRET
    diagnostics_dir: Path = Path(DEFAULT_DIAGNOSTICS_DIR)


# ============================================================================
# Matrix entries
# ============================================================================

class MatrixEntry(BaseModel):
    """One test configuration in the matrix. Immutable once built.

    Attributes:
        id: Unique identifier; derived from the other fields when omitted.
        cluster_version: Kubernetes version label (e.g. ``v1.22``).
        scenario: ``install`` or ``upgrade``.
        upgrade_from: Release channel installed first; required for upgrades only.
        upgrade_from_values: ``--set`` overrides for the prior release.
        local_chart_values: ``--set`` overrides for the local chart.
        validate_values: ``--set`` overrides used only for API validation.
        create_test_resources: Apply the test fixture manifests before installing.
        debuggable: Leave a debug-session marker when the run fails.
        accept_failure: Tolerate a failing test suite.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = ""
    cluster_version: str = Field(min_length=1)
    scenario: Scenario = Scenario.INSTALL
    upgrade_from: Literal["stable", "dev"] | None = None
    upgrade_from_values: dict[str, str] = Field(default_factory=dict)
    local_chart_values: dict[str, str] = Field(default_factory=dict)
    validate_values: dict[str, str] = Field(default_factory=dict)
    create_test_resources: bool = False
    debuggable: bool = False
    accept_failure: bool = False

    @model_validator(mode="after")
    def _check_upgrade_source(self) -> MatrixEntry:
        if self.scenario is Scenario.UPGRADE and not self.upgrade_from:
            raise ValueError("upgrade entries require upgrade_from (stable or dev)")
        if self.scenario is Scenario.INSTALL and self.upgrade_from:
            raise ValueError("install entries must not set upgrade_from")
        if self.upgrade_from_values and self.scenario is not Scenario.UPGRADE:
            raise ValueError("upgrade_from_values only applies to upgrade entries")
        if not self.id:
            object.__setattr__(self, "id", default_entry_id(self))
        return self

    @property
    def is_upgrade(self) -> bool:
        return self.scenario is Scenario.UPGRADE


def _slug(value: str) -> str:
    """Lowercase DNS-1123 label fragment."""
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def default_entry_id(entry: MatrixEntry) -> str:
    """Build an id such as ``upgrade-v1-19-from-stable``.

    Args:
        entry: Entry lacking an explicit id.

    Returns:
        Slugged identifier derived from scenario, version, and upgrade source.
    """
    parts = [entry.scenario.value, entry.cluster_version]
    if entry.upgrade_from:
        parts += ["from", entry.upgrade_from]
    return _slug("-".join(parts))


def _dns_name(raw: str, limit: int) -> str:
    """Slug ``raw`` into a DNS-1123 label of at most ``limit`` characters.

    When slugging changes ``raw`` or truncation is needed, a short hash of
    ``raw`` is appended so distinct inputs keep distinct names.
    """
    name = _slug(raw)
    if name == raw and len(name) <= limit:
        return name
    digest = hashlib.sha256(raw.encode()).hexdigest()[:NAME_HASH_LENGTH]
    head = name[:limit - NAME_HASH_LENGTH - 1].rstrip("-")
    return f"{head}-{digest}" if head else digest


def derive_namespace(prefix: str, entry_id: str) -> str:
    """Derive a per-entry namespace that fits a DNS-1123 label.

    Args:
        prefix: Namespace prefix from settings.
        entry_id: Unique entry identifier.

    Returns:
        ``<prefix>-<entry id>``; ids that are not already valid labels, or
        would exceed 63 characters, get a hash suffix.
    """
    return _dns_name(f"{prefix}-{entry_id}", MAX_DNS_LABEL_LENGTH)


def derive_release_name(base: str, entry_id: str) -> str:
    """Derive a per-entry helm release name, at most 53 characters.

    Charts name cluster-scoped objects after the release, so concurrent
    entries on one cluster need distinct releases as well as namespaces.
    """
    return _dns_name(f"{base}-{entry_id}", MAX_RELEASE_NAME_LENGTH)


def check_unique_names(entries: list[MatrixEntry], settings: OrchestratorSettings) -> None:
    """Ensure no two entries share a namespace or release name.

    Raises:
        MatrixConfigError: If derived names collide.
    """
    for label, derive, base in (
        ("namespace", derive_namespace, settings.namespace_prefix),
        ("release name", derive_release_name, settings.release_name),
    ):
        owners: dict[str, list[str]] = {}
        for entry in entries:
            owners.setdefault(derive(base, entry.id), []).append(entry.id)
        clashes = [f"{name} ({', '.join(ids)})" for name, ids in owners.items() if len(ids) > 1]
        if clashes:
            raise MatrixConfigError(f"Entries share a {label}: {'; '.join(clashes)}")


def _dedupe_ids(entries: list[MatrixEntry]) -> list[MatrixEntry]:
    """Suffix duplicate ids with ``-2``, ``-3`` ... in file order."""
    totals = Counter(e.id for e in entries)
    seen: Counter[str] = Counter()
    unique: list[MatrixEntry] = []
    for entry in entries:
        if totals[entry.id] == 1:
            unique.append(entry)
            continue
        seen[entry.id] += 1
        suffix = "" if seen[entry.id] == 1 else f"-{seen[entry.id]}"
        unique.append(entry.model_copy(update={"id": f"{entry.id}{suffix}"}))
    return unique


# ============================================================================
# Matrix file loading
# ============================================================================

def parse_matrix(data: Any) -> tuple[dict[str, Any], list[MatrixEntry]]:
    """Validate a parsed matrix document.

    The document is a mapping with an ``entries`` list and an optional
    ``settings`` mapping of OrchestratorSettings fields.

    Args:
        data: Parsed YAML content.

    Returns:
        Tuple of (settings overrides, entries with unique ids).

    Raises:
        MatrixConfigError: If the document or any entry is invalid.
    """
    if not isinstance(data, dict):
        raise MatrixConfigError("Matrix file must be a mapping with an 'entries' list")
    raw_entries = data.get("entries")
    if not isinstance(raw_entries, list) or not raw_entries:
        raise MatrixConfigError("Matrix file must define a non-empty 'entries' list")
    settings = data.get("settings") or {}
    if not isinstance(settings, dict):
        raise MatrixConfigError("'settings' must be a mapping")

    entries: list[MatrixEntry] = []
    for index, raw in enumerate(raw_entries):
        try:
            entries.append(MatrixEntry.model_validate(raw))
        except ValidationError as err:
            raise MatrixConfigError(f"Invalid matrix entry #{index + 1}: {err}") from err

    explicit = Counter(raw["id"] for raw in raw_entries if raw.get("id"))
    clashes = [entry_id for entry_id, count in explicit.items() if count > 1]
    if clashes:
        raise MatrixConfigError(f"Duplicate entry ids: {', '.join(sorted(clashes))}")
    return settings, _dedupe_ids(entries)


def load_matrix(path: Path) -> tuple[dict[str, Any], list[MatrixEntry]]:
    """Load and validate a YAML matrix file.

    Args:
        path: Path to the matrix file.

    Returns:
        Tuple of (settings overrides, entries).

    Raises:
        MatrixConfigError: If the file is missing, unparsable, or invalid.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as err:
        raise MatrixConfigError(f"Cannot read matrix file {path}: {err}") from err
    except yaml.YAMLError as err:
        raise MatrixConfigError(f"Cannot parse matrix file {path}: {err}") from err
    return parse_matrix(data)


def resolve_settings(file_settings: dict[str, Any], **cli_overrides: Any) -> OrchestratorSettings:
    """Merge CLI overrides, matrix file settings, env vars, and defaults.

    Resolution priority: CLI arguments > matrix file > CHART_MATRIX_* env vars > defaults.

    Args:
        file_settings: ``settings`` mapping from the matrix file.
        **cli_overrides: CLI values; ``None`` means not given.

    Returns:
        Validated settings.

    Raises:
        MatrixConfigError: If the merged settings are invalid.
    """
    overrides = {**file_settings, **{k: v for k, v in cli_overrides.items() if v is not None}}
    try:
        return OrchestratorSettings(**overrides)
    except ValidationError as err:
        raise MatrixConfigError(f"Invalid settings: {err}") from err


def select_entries(entries: list[MatrixEntry], only: list[str] | None) -> list[MatrixEntry]:
    """Restrict entries to the given ids, preserving file order.

    Raises:
        MatrixConfigError: If an id is not in the matrix.
    """
    if not only:
        return entries
    known = {e.id for e in entries}
    unknown = sorted(set(only) - known)
    if unknown:
        raise MatrixConfigError(f"Unknown entry ids: {', '.join(unknown)}")
    wanted = set(only)
    return [e for e in entries if e.id in wanted]


# ============================================================================
# Display
# ============================================================================

def display_config(settings: OrchestratorSettings, entries: list[MatrixEntry]) -> None:
    """Print the resolved settings and the expanded matrix.

    Args:
        settings: Resolved global settings.
        entries: Matrix entries about to run.
    """
    console.print(Panel.fit("Configuration", style="bold blue"))
    console.print(f"  concurrency_limit : {settings.concurrency_limit}")
    console.print(f"  overall_deadline  : {settings.overall_deadline:g}s")
    console.print(f"  readiness_deadline: {settings.readiness_deadline:g}s")
    console.print(f"  poll_interval     : {settings.poll_interval:g}s")
    console.print(f"  max_restarts      : {settings.max_restarts}")
    console.print(f"  chart_path        : {settings.chart_path}")
    console.print(f"  diagnostics_dir   : {settings.diagnostics_dir}")

    table = Table(title=f"Matrix ({len(entries)} entries)")
    table.add_column("id", style="cyan")
    table.add_column("k8s")
    table.add_column("scenario")
    table.add_column("from")
    table.add_column("fixtures")
    table.add_column("debuggable")
    for entry in entries:
        table.add_row(
            entry.id,
            entry.cluster_version,
            entry.scenario.value,
            entry.upgrade_from or "-",
            "yes" if entry.create_test_resources else "-",
            "yes" if entry.debuggable else "-",
        )
    console.print(table)
