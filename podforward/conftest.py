# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License
import socket
import uuid
from contextlib import closing

import pytest
from kr8s._api import Api

from podforward._testutils import (
    FakeClusterClient,
    RecordingRunnerFactory,
    new_endpoints,
    new_pod,
)


def check_socket(host, port):
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as sock:
        return sock.connect_ex((host, port)) == 0


@pytest.fixture
def flux_client():
    return FakeClusterClient(
        pods=[
            new_pod("mypod1", {"name": "other"}),
            new_pod("mypod2", {"name": "flux"}),
            new_pod("mypod3", {}),
        ]
    )


@pytest.fixture
def service_client():
    return FakeClusterClient(
        endpoints=[
            new_endpoints("web", None, "web-7f9d-abcde", labels={"app": "web"}),
            new_endpoints("db", "db-0", labels={"app": "db"}),
        ]
    )


@pytest.fixture
def runner_factory():
    return RecordingRunnerFactory()


@pytest.fixture
def ns(k8s_cluster):
    name = f"podforward-pytest-{uuid.uuid4().hex[:8]}"
    k8s_cluster.kubectl("create", "namespace", name)
    yield name
    k8s_cluster.kubectl("delete", "namespace", name, "--wait=false")


@pytest.fixture(autouse=True)
def ensure_new_api_between_tests():
    yield
    Api._instances.clear()
