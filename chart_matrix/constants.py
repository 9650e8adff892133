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

"""Stage names, default settings, and chart repository constants."""

from __future__ import annotations

# -- Stage names, in canonical pipeline order --
STAGE_RENDER = "render"
STAGE_VALIDATE = "validate-against-api"
STAGE_INSTALL_PRIOR = "install-prior-release"
STAGE_DIFF = "diff-against-local"
STAGE_AWAIT_PRIOR_READY = "await-prior-release-ready"
STAGE_AWAIT_PRIOR_CERT = "await-prior-cert-acquired"
STAGE_APPLY_FIXTURES = "apply-test-fixtures"
STAGE_INSTALL_LOCAL = "install-local-chart"
STAGE_AWAIT_LOCAL_READY = "await-local-ready"
STAGE_AWAIT_LOCAL_CERT = "await-local-cert-acquired"
STAGE_RUN_TESTS = "run-test-suite"
STAGE_COLLECT_DIAGNOSTICS = "collect-diagnostics"

UPGRADE_STAGES = (
    STAGE_INSTALL_PRIOR,
    STAGE_DIFF,
    STAGE_AWAIT_PRIOR_READY,
    STAGE_AWAIT_PRIOR_CERT,
)

CANONICAL_STAGE_ORDER = (
    STAGE_RENDER,
    STAGE_VALIDATE,
    *UPGRADE_STAGES,
    STAGE_APPLY_FIXTURES,
    STAGE_INSTALL_LOCAL,
    STAGE_AWAIT_LOCAL_READY,
    STAGE_AWAIT_LOCAL_CERT,
    STAGE_RUN_TESTS,
    STAGE_COLLECT_DIAGNOSTICS,
)

# -- Upgrade channels published in the chart repository's info.json --
UPGRADE_CHANNELS = ("stable", "dev")

# -- Chart repository defaults --
DEFAULT_CHART_NAME = "jupyterhub"
DEFAULT_CHART_PATH = "./jupyterhub"
DEFAULT_CHART_REPO = "https://jupyterhub.github.io/helm-chart/"
DEFAULT_RELEASE_INFO_URL = "https://jupyterhub.github.io/helm-chart/info.json"
DEFAULT_RELEASE_NAME = "jupyterhub"

# -- Values files --
DEFAULT_VALUES_FILES = ("dev-config.yaml",)
DEFAULT_LOCAL_VALUES_FILES = ("dev-config.yaml", "dev-config-local-chart-extra-config.yaml")
DEFAULT_LINT_VALUES_FILE = "tools/templates/lint-and-validate-values.yaml"
DEFAULT_FIXTURE_MANIFESTS = ("ci/test-hub-existing-secret.yaml",)
DEFAULT_POST_RENDERER = "ci/string-replacer.sh"
DEFAULT_TEST_SUITE_PATH = "./tests"

# -- Workloads --
DEFAULT_IMPORTANT_WORKLOADS = ("deploy/hub", "deploy/proxy")
DEFAULT_CERT_SECRET = "proxy-public-tls-acme"
WORKLOAD_KINDS = ("deploy", "sts", "ds")

# -- Timing defaults (seconds) --
DEFAULT_CONCURRENCY_LIMIT = 2
DEFAULT_OVERALL_DEADLINE = 3600
DEFAULT_POLL_INTERVAL = 5
DEFAULT_READINESS_DEADLINE = 150
DEFAULT_CERT_DEADLINE = 120
DEFAULT_MAX_RESTARTS = 1
DEFAULT_STABLE_WINDOW = 10
DEFAULT_DIAGNOSTICS_GRACE = 30
DEFAULT_COMMAND_TIMEOUT = 600
DEFAULT_TEST_SUITE_TIMEOUT = 1200
RELEASE_INFO_TIMEOUT = 30

# -- Naming --
DEFAULT_NAMESPACE_PREFIX = "ct"
DEFAULT_DIAGNOSTICS_DIR = ".chart-matrix/diagnostics"
DEFAULT_K3D_CLUSTER_PREFIX = "chart-matrix"
K3S_IMAGE_REPO = "rancher/k3s"
MAX_DNS_LABEL_LENGTH = 63
MAX_RELEASE_NAME_LENGTH = 53
NAME_HASH_LENGTH = 6
DEBUG_MARKER_NAME = "DEBUG_SESSION"

# -- Exit codes --
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 2
EXIT_TIMEOUT = 124
EXIT_NOT_FOUND = 127

# -- Environment --
ENV_PREFIX = "CHART_MATRIX_"
ENV_STRING_REPLACER_A = "STRING_REPLACER_A"
ENV_STRING_REPLACER_B = "STRING_REPLACER_B"
