# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License
import os

from podforward import LabelSelector
from podforward._testutils import FakeClusterClient, new_endpoints, new_pod, set_env


def test_set_env():
    os.environ.pop("PODFORWARD_TEST", None)
    with set_env(PODFORWARD_TEST="1"):
        assert os.environ["PODFORWARD_TEST"] == "1"
    assert "PODFORWARD_TEST" not in os.environ


def test_new_endpoints():
    endpoints = new_endpoints("web", None, "web-0", labels={"app": "web"})
    [subset] = endpoints.subsets
    assert [a.target_ref for a in subset.addresses] == [None, "web-0"]
    assert endpoints.labels == {"app": "web"}


async def test_fake_cluster_client_filters():
    client = FakeClusterClient(
        pods=[
            new_pod("a", {"app": "web"}),
            new_pod("b", {"app": "web"}, phase="Pending"),
            new_pod("c", {"app": "db"}),
        ]
    )
    selector = LabelSelector({"app": "web"})
    assert [p.name for p in await client.list_pods("default", selector)] == ["a", "b"]
    running = await client.list_pods(
        "default", selector, field_selector={"status.phase": "Running"}
    )
    assert [p.name for p in running] == ["a"]
    assert len(client.calls) == 2


def test_cluster_options_registered(request):
    # --keep-cluster comes from pytest-kind, --kind from our conftest
    assert isinstance(request.config.getoption("keep_cluster"), bool)
    assert isinstance(request.config.getoption("kind"), bool)
