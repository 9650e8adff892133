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

"""External collaborators: helm, kubectl, test runner, release metadata, k3d."""

from __future__ import annotations

import json
import re
import shlex
import tempfile
import threading
import uuid
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

import requests
import sh
from rich.panel import Panel
from tenacity import retry, stop_after_attempt, wait_fixed

from chart_matrix import console, logger
from chart_matrix.config import OrchestratorSettings
from chart_matrix.constants import (
    DEFAULT_K3D_CLUSTER_PREFIX,
    ENV_STRING_REPLACER_A,
    ENV_STRING_REPLACER_B,
    K3S_IMAGE_REPO,
    RELEASE_INFO_TIMEOUT,
    UPGRADE_CHANNELS,
    WORKLOAD_KINDS,
)
from chart_matrix.errors import ExecutionError, ReleaseMetadataError
from chart_matrix.models import Action, ClusterHandle, PipelineContext, WorkloadStatus
from chart_matrix.runner import CommandRunner
from chart_matrix.utils import helm_set_args, helm_values_args

_KIND_SHORT_NAMES = {
    "Deployment": "deploy",
    "StatefulSet": "sts",
    "DaemonSet": "ds",
}


# ============================================================================
# Chart engine
# ============================================================================

class HelmChart:
    """Builds helm actions for rendering, installing, upgrading, and diffing.

    Values files are resolved against the working directory at construction
    so actions that run elsewhere still find them.
    """

    def __init__(self, settings: OrchestratorSettings, base_dir: Path | None = None) -> None:
        self._settings = settings
        self._base = (base_dir or Path.cwd()).resolve()

    @property
    def chart_dir(self) -> str:
        path = Path(self._settings.chart_path)
        return str(path if path.is_absolute() else self._base / path)

    def _action(self, name: str, argv: list[str], ctx: PipelineContext, **kwargs: Any) -> Action:
        env = {**ctx.env, **kwargs.pop("env", {})}
        kwargs.setdefault("timeout", self._settings.command_timeout)
        return Action(name=name, argv=tuple(argv), env=env, **kwargs)

    def render_action(self, ctx: PipelineContext) -> Action:
        """``helm template`` the local chart with the values it will be installed with."""
        s = self._settings
        argv = [
            "helm", "template", ctx.release_name, self.chart_dir,
            "--namespace", ctx.namespace,
            *helm_values_args(s.local_values_files, self._base),
            *helm_set_args(ctx.entry.local_chart_values),
        ]
        return self._action("helm-template", argv, ctx)

    def install_action(self, ctx: PipelineContext) -> Action:
        """Install the already released chart at ``ctx.prior_version``.

        Runs from a scratch directory so the remote chart name is never
        mistaken for a local folder of the same name.
        """
        s = self._settings
        if not ctx.prior_version:
            raise ReleaseMetadataError("No prior version resolved for the upgrade scenario")
        argv = [
            "helm", "install", ctx.release_name, s.chart_name,
            "--repo", s.chart_repo,
            "--namespace", ctx.namespace, "--create-namespace",
            f"--version={ctx.prior_version}",
            *helm_values_args(s.values_files, self._base),
            *helm_set_args(ctx.entry.upgrade_from_values),
        ]
        return self._action("helm-install-prior", argv, ctx, cwd=tempfile.gettempdir())

    def upgrade_action(self, ctx: PipelineContext) -> Action:
        """``helm upgrade --install`` the local chart over whatever is installed."""
        s = self._settings
        argv = [
            "helm", "upgrade", "--install", ctx.release_name, self.chart_dir,
            "--namespace", ctx.namespace, "--create-namespace",
            *helm_values_args(s.local_values_files, self._base),
            *helm_set_args(ctx.entry.local_chart_values),
        ]
        return self._action("helm-upgrade-local", argv, ctx)

    def diff_action(self, ctx: PipelineContext) -> Action:
        """``helm diff upgrade`` the installed prior release against the local chart.

        With a post-renderer configured, the local chart version is replaced
        by the prior version in the rendered output to reduce diff clutter.
        """
        s = self._settings
        argv = [
            "helm", "diff", "upgrade", "--install", ctx.release_name, self.chart_dir,
            "--namespace", ctx.namespace,
            *helm_values_args(s.local_values_files, self._base),
            *helm_set_args(ctx.entry.local_chart_values),
            "--show-secrets",
            "--context=3",
        ]
        env: dict[str, str] = {}
        if s.post_renderer and ctx.local_chart_version and ctx.prior_version:
            renderer = Path(s.post_renderer)
            argv.append(f"--post-renderer={renderer if renderer.is_absolute() else self._base / renderer}")
            env = {
                ENV_STRING_REPLACER_A: ctx.local_chart_version,
                ENV_STRING_REPLACER_B: ctx.prior_version,
            }
        return self._action("helm-diff", argv, ctx, env=env)

    def lint_action(self, values_file: str | None, *, strict: bool) -> Action:
        """``helm lint`` the local chart, optionally with a values file and ``--strict``."""
        argv = ["helm", "lint", self.chart_dir]
        if values_file:
            argv += helm_values_args([values_file], self._base)
        if strict:
            argv.append("--strict")
        name = "helm-lint-strict" if strict else "helm-lint"
        return Action(name=name, argv=tuple(argv), timeout=self._settings.command_timeout)


class ApiValidator:
    """Validates rendered manifests against the cluster's API server."""

    def __init__(self, settings: OrchestratorSettings, base_dir: Path | None = None) -> None:
        self._settings = settings
        self._chart = HelmChart(settings, base_dir)
        self._base = (base_dir or Path.cwd()).resolve()

    def validate_action(self, ctx: PipelineContext) -> Action:
        """``helm template --validate`` with the lint-and-validate values."""
        s = self._settings
        argv = [
            "helm", "template", "--validate", ctx.release_name, self._chart.chart_dir,
            "--namespace", ctx.namespace,
            *helm_values_args([s.lint_values_file], self._base),
            *helm_set_args(ctx.entry.validate_values),
        ]
        return Action(name="helm-validate", argv=tuple(argv), env=dict(ctx.env), timeout=s.command_timeout)


def fixture_action(settings: OrchestratorSettings, ctx: PipelineContext) -> Action:
    """``kubectl apply`` the test fixture manifests into the entry's namespace.

    The namespace is created first since fixtures are applied before the
    local chart's ``helm upgrade --install --create-namespace`` runs.
    """
    ns = shlex.quote(ctx.namespace)
    files = " ".join(f"-f {shlex.quote(m)}" for m in settings.fixture_manifests)
    script = (
        f"kubectl create namespace {ns} --dry-run=client -o yaml | kubectl apply -f - "
        f"&& kubectl apply --namespace {ns} {files}"
    )
    return Action(name="kubectl-apply-fixtures", argv=("sh", "-c", script), env=dict(ctx.env),
                  timeout=settings.command_timeout)


def require_helm_plugin(runner: CommandRunner, plugin: str) -> None:
    """Check that a helm plugin is installed.

    Raises:
        RuntimeError: If ``helm plugin list`` does not show the plugin.
    """
    output = runner.run(Action(name="helm-plugin-list", argv=("helm", "plugin", "list"), timeout=30))
    installed = {line.split()[0] for line in output.stdout.splitlines()[1:] if line.strip()}
    if plugin not in installed:
        raise RuntimeError(
            f"Required helm plugin '{plugin}' not found. Install it with 'helm plugin install "
            f"https://github.com/databus23/helm-{plugin}'."
        )


class TestSuiteRunner:
    """Runs the chart's black-box test suite; only pass or fail is recorded."""

    __test__ = False

    def __init__(self, settings: OrchestratorSettings) -> None:
        self._settings = settings

    def run_action(self, ctx: PipelineContext) -> Action:
        s = self._settings
        env = {
            **ctx.env,
            "CHART_MATRIX_NAMESPACE": ctx.namespace,
            "CHART_MATRIX_RELEASE": ctx.release_name,
        }
        argv = ["pytest", "--verbose", "--maxfail=2", "--color=yes", s.test_suite_path]
        return Action(name="pytest", argv=tuple(argv), env=env, timeout=s.test_suite_timeout)


# ============================================================================
# Release metadata
# ============================================================================

class ReleaseSource(Protocol):
    """Resolves a release channel to a published chart version."""

    def resolve_version(self, channel: str) -> str: ...


class ReleaseMetadataSource:
    """Resolves release channels to versions from the chart repository's info.json.

    The document is fetched once and shared by all pipelines.
    """

    def __init__(
        self,
        info_url: str,
        chart_name: str,
        session: requests.Session | None = None,
        timeout: float = RELEASE_INFO_TIMEOUT,
    ) -> None:
        self._url = info_url
        self._chart_name = chart_name
        self._session = session or requests.Session()
        self._timeout = timeout
        self._lock = threading.Lock()
        self._info: dict[str, Any] | None = None

    def _fetch(self) -> dict[str, Any]:
        with self._lock:
            if self._info is None:
                try:
                    response = self._session.get(self._url, timeout=self._timeout)
                    response.raise_for_status()
                    info = response.json()
                except (requests.RequestException, ValueError) as err:
                    raise ReleaseMetadataError(f"Failed to read {self._url}: {err}") from err
                if not isinstance(info, dict):
                    raise ReleaseMetadataError(f"Unexpected release metadata from {self._url}")
                self._info = info
            return self._info

    def resolve_version(self, channel: str) -> str:
        """Return the version currently published on ``channel``.

        Args:
            channel: ``stable`` or ``dev``.

        Returns:
            Version identifier such as ``1.2.0`` or ``1.2.0-n012.h1234abc``.

        Raises:
            ReleaseMetadataError: If the channel is unknown or unpublished.
        """
        if channel not in UPGRADE_CHANNELS:
            raise ReleaseMetadataError(f"Unknown release channel '{channel}'")
        chart_info = self._fetch().get(self._chart_name) or {}
        version = chart_info.get(channel)
        if not version:
            raise ReleaseMetadataError(f"No {channel} version of {self._chart_name} published at {self._url}")
        logger.info("Resolved %s %s version: %s", self._chart_name, channel, version)
        return str(version)


class PinnedReleaseSource:
    """Release source with fixed versions per channel; used for dry runs."""

    def __init__(self, versions: Mapping[str, str]) -> None:
        self._versions = dict(versions)

    def resolve_version(self, channel: str) -> str:
        try:
            return self._versions[channel]
        except KeyError as err:
            raise ReleaseMetadataError(f"No pinned version for channel '{channel}'") from err


# ============================================================================
# Readiness oracles
# ============================================================================

def _workload_ready(kind: str, obj: Mapping[str, Any]) -> bool:
    """Whether a Deployment, StatefulSet, or DaemonSet has fully rolled out."""
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    generation = (obj.get("metadata") or {}).get("generation", 0)
    if status.get("observedGeneration", 0) < generation:
        return False
    if kind == "ds":
        desired = status.get("desiredNumberScheduled", 0)
        return status.get("numberReady", 0) == desired and status.get("updatedNumberScheduled", 0) == desired
    replicas = spec.get("replicas", 1)
    if kind == "deploy":
        return (
            status.get("updatedReplicas", 0) >= replicas
            and status.get("readyReplicas", 0) >= replicas
            and status.get("availableReplicas", 0) >= replicas
            and status.get("replicas", 0) == replicas
        )
    return status.get("readyReplicas", 0) >= replicas and status.get("updatedReplicas", 0) >= replicas


class KubectlReadinessOracle:
    """Readiness oracle backed by ``kubectl get -o json``.

    Workloads are ``deploy/``, ``sts/`` or ``ds/`` references; an empty set
    means every such workload in the namespace, and a namespace without any
    is not ready. ``secret/<name>`` entries are ready once the secret holds
    data, which is how certificate acquisition is observed. Restart counts are summed per pod across containers.
    """

    def __init__(self, runner: CommandRunner, env: Mapping[str, str] | None = None, timeout: float = 30) -> None:
        self._runner = runner
        self._env = dict(env or {})
        self._timeout = timeout

    def _get_json(self, namespace: str, *resource: str) -> dict[str, Any] | None:
        action = Action(
            name="kubectl-get",
            argv=("kubectl", "get", *resource, "--namespace", namespace, "-o", "json"),
            env=self._env,
            timeout=self._timeout,
        )
        try:
            output = self._runner.run(action)
        except ExecutionError as err:
            if "NotFound" in err.stderr:
                return None
            raise
        try:
            return json.loads(output.stdout or "{}")
        except ValueError as err:
            raise ExecutionError(action.name, output.exit_code, output.stdout,
                                 f"invalid JSON from kubectl: {err}") from err

    def _list_workloads(self, namespace: str) -> tuple[str, ...]:
        listing = self._get_json(namespace, ",".join(WORKLOAD_KINDS)) or {}
        refs = []
        for item in listing.get("items", []):
            short = _KIND_SHORT_NAMES.get(item.get("kind", ""))
            name = (item.get("metadata") or {}).get("name")
            if short and name:
                refs.append(f"{short}/{name}")
        return tuple(refs)

    def _restart_counts(self, namespace: str) -> dict[str, int]:
        pods = self._get_json(namespace, "pods") or {}
        counts: dict[str, int] = {}
        for pod in pods.get("items", []):
            statuses = (pod.get("status") or {}).get("containerStatuses") or []
            name = (pod.get("metadata") or {}).get("name", "?")
            counts[f"pod/{name}"] = sum(s.get("restartCount", 0) for s in statuses)
        return counts

    def status(self, namespace: str, workloads: tuple[str, ...]) -> WorkloadStatus:
        refs = workloads or self._list_workloads(namespace)
        if not refs:
            return WorkloadStatus(ready=False, detail="no workloads found")
        pending: list[str] = []
        for ref in refs:
            kind, _, _name = ref.partition("/")
            obj = self._get_json(namespace, ref)
            if obj is None:
                pending.append(f"{ref} (missing)")
            elif kind == "secret":
                if not obj.get("data"):
                    pending.append(f"{ref} (empty)")
            elif not _workload_ready(kind, obj):
                pending.append(ref)
        restarts = self._restart_counts(namespace) if any(not r.startswith("secret/") for r in refs) else {}
        detail = f"waiting for {', '.join(pending)}" if pending else "all ready"
        return WorkloadStatus(ready=not pending, restart_counts=restarts, detail=detail)


class StaticReadinessOracle:
    """Oracle that always reports ready; used for dry runs."""

    def status(self, namespace: str, workloads: tuple[str, ...]) -> WorkloadStatus:
        return WorkloadStatus(ready=True, detail="dry-run")


# ============================================================================
# Cluster provisioning
# ============================================================================

class ClusterProvisioner(Protocol):
    """Creates and destroys disposable clusters."""

    def provision(self, version: str) -> ClusterHandle: ...

    def teardown(self, handle: ClusterHandle) -> None: ...


_K3S_CHANNEL = re.compile(r"^v?\d+\.\d+$")
_K3S_CHANNEL_URL = "https://update.k3s.io/v1-release/channels/{channel}"


def resolve_k3s_image(version: str, session: requests.Session | None = None) -> str:
    """Map a cluster version label to a k3s image.

    Channel labels such as ``v1.22`` are resolved to the latest release on
    that channel through the k3s update server; full tags are used as given.

    Args:
        version: Channel label (``v1.22``) or image tag (``v1.22.17-k3s1``).
        session: HTTP session for channel resolution.

    Returns:
        Image reference such as ``rancher/k3s:v1.22.17-k3s1``.
    """
    if not _K3S_CHANNEL.match(version):
        return f"{K3S_IMAGE_REPO}:{version.replace('+', '-')}"
    channel = version if version.startswith("v") else f"v{version}"
    session = session or requests.Session()
    response = session.get(_K3S_CHANNEL_URL.format(channel=channel), allow_redirects=False, timeout=RELEASE_INFO_TIMEOUT)
    location = response.headers.get("Location", "")
    tag = location.rstrip("/").rsplit("/", 1)[-1]
    if not tag:
        raise RuntimeError(f"Could not resolve k3s channel {channel}")
    return f"{K3S_IMAGE_REPO}:{tag.replace('+', '-')}"


class K3dProvisioner:
    """Provisions one k3d cluster per matrix entry.

    Traefik and metrics-server are disabled so the chart under test owns
    ingress and the cluster stays small.
    """

    def __init__(self, prefix: str = DEFAULT_K3D_CLUSTER_PREFIX, max_retries: int = 3) -> None:
        self._prefix = prefix
        self._max_retries = max_retries

    def provision(self, version: str) -> ClusterHandle:
        """Create a cluster running ``version`` and return a handle to it.

        Raises:
            sh.ErrorReturnCode: If the cluster cannot be created after all retries.
        """
        name = f"{self._prefix}-{uuid.uuid4().hex[:8]}"
        image = resolve_k3s_image(version)
        console.print(Panel.fit(f"Creating k3d cluster {name} ({image})", style="bold blue"))

        @retry(stop=stop_after_attempt(self._max_retries), wait=wait_fixed(10), reraise=True)
        def _attempt() -> None:
            try:
                sh.k3d("cluster", "delete", name)
            except sh.ErrorReturnCode_1:
                pass
            sh.k3d(
                "cluster", "create", name,
                "--image", image,
                "--k3s-arg", "--disable=traefik@server:*",
                "--k3s-arg", "--disable=metrics-server@server:*",
                "--timeout", "120s",
                "--wait",
            )

        _attempt()
        kubeconfig = str(sh.k3d("kubeconfig", "write", name)).strip()
        console.print(f"[green]\u2705 Cluster {name} created[/green]")
        return ClusterHandle(name=name, version=version, env={"KUBECONFIG": kubeconfig})

    def teardown(self, handle: ClusterHandle) -> None:
        console.print(f"[yellow]\u2139\ufe0f  Deleting k3d cluster '{handle.name}'...[/yellow]")
        try:
            sh.k3d("cluster", "delete", handle.name)
            console.print(f"[green]\u2705 Cluster '{handle.name}' deleted[/green]")
        except sh.ErrorReturnCode_1:
            console.print(f"[yellow]\u26a0\ufe0f  Cluster '{handle.name}' not found or already deleted[/yellow]")
