# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License
import os
import time
from collections.abc import Generator

import pytest
from pytest_kind.cluster import KindCluster


def pytest_addoption(parser):
    parser.addoption(
        "--kind",
        action="store_true",
        default=False,
        help="Run integration tests against a kind cluster",
    )


@pytest.fixture(scope="session")
def k8s_cluster(request) -> Generator[KindCluster, None, None]:
    if not request.config.getoption("kind"):
        pytest.skip("integration tests need --kind")
    image = None
    if version := os.environ.get("KUBERNETES_VERSION"):
        image = f"kindest/node:v{version}"

    kind_cluster = KindCluster(
        name="pytest-podforward",
        image=image,
    )
    kind_cluster.create()
    os.environ["KUBECONFIG"] = str(kind_cluster.kubeconfig_path)
    # CI fix, wait for default service account to be created before continuing
    while True:
        try:
            kind_cluster.kubectl("get", "serviceaccount", "default")
            break
        except Exception:
            time.sleep(1)
    yield kind_cluster
    del os.environ["KUBECONFIG"]
    if not request.config.getoption("keep_cluster"):  # pragma: no cover
        kind_cluster.delete()
