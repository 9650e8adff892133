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

"""Utility functions for helm arguments, chart metadata, and command checks."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path

import sh
import yaml


def helm_set_args(values: Mapping[str, str]) -> list[str]:
    """Build ``--set`` arguments from key/value overrides.

    Args:
        values: Mapping of dotted helm value keys to values.

    Returns:
        Flat list such as ``["--set", "hub.db.type=sqlite-pvc"]``.
    """
    return [item for key, value in values.items() for item in ("--set", f"{key}={value}")]


def helm_values_args(files: Iterable[str], base: Path | None = None) -> list[str]:
    """Build ``--values`` arguments, resolving relative files against ``base``.

    Args:
        files: Values file paths.
        base: Directory relative paths are resolved against, or None to keep them as given.

    Returns:
        Flat list such as ``["--values", "/repo/dev-config.yaml"]``.
    """
    args: list[str] = []
    for name in files:
        path = Path(name)
        if base is not None and not path.is_absolute():
            path = (base / path).resolve()
        args += ["--values", str(path)]
    return args


def read_chart_version(chart_path: str) -> str | None:
    """Read the ``version`` declared in a chart's Chart.yaml.

    Args:
        chart_path: Path to the chart directory.

    Returns:
        The chart version, or None if Chart.yaml is missing or has no version.
    """
    chart_file = Path(chart_path) / "Chart.yaml"
    if not chart_file.exists():
        return None
    with open(chart_file) as f:
        data = yaml.safe_load(f) or {}
    version = data.get("version")
    return str(version) if version is not None else None


def require_command(cmd: str) -> None:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name of the CLI command to check.

    Raises:
        RuntimeError: If the command is not found.
    """
    try:
        sh.which(cmd)
    except sh.ErrorReturnCode as err:
        raise RuntimeError(f"Required command '{cmd}' not found. Please install it first.") from err
