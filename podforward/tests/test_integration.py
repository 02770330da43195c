# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License
import anyio
import httpx
import pytest

import podforward
from podforward import NotFoundError, ResourceType
from podforward.asyncio import load_api, new_port_forwarder


@pytest.fixture
def nginx(k8s_cluster, ns):
    k8s_cluster.kubectl(
        "run", "nginx", "--image=nginx:alpine", "--labels=app=nginx", "-n", ns
    )
    k8s_cluster.kubectl(
        "wait", "--for=condition=Ready", "pod/nginx", "-n", ns, "--timeout=120s"
    )
    yield "nginx"


@pytest.fixture
def nginx_service(k8s_cluster, ns, nginx):
    k8s_cluster.kubectl("expose", "pod", nginx, "--port=80", "-n", ns)
    yield nginx


async def test_forward_to_pod_by_labels(ns, nginx):
    pf = await new_port_forwarder(
        ns, {"app": "nginx"}, 80, resource_type=ResourceType.POD
    )
    async with pf as port:
        assert pf.pod_name == nginx
        async with httpx.AsyncClient() as client:
            resp = await client.get(f"http://127.0.0.1:{port}/")
            assert resp.status_code == 200
            assert "nginx" in resp.text


async def test_forward_to_service(ns, nginx_service):
    pf = await new_port_forwarder(ns, {"app": "nginx"}, 80)
    # The endpoints controller needs a moment to fill in the Endpoints object
    with anyio.fail_after(30):
        while True:
            try:
                await pf.async_get_resource_name()
                break
            except podforward.ResolutionError:
                await anyio.sleep(0.5)
    async with pf as port:
        async with httpx.AsyncClient() as client:
            resp = await client.get(f"http://127.0.0.1:{port}/")
            assert resp.status_code == 200


async def test_missing_pod(ns, nginx):
    pf = await new_port_forwarder(
        ns, {"app": "missing"}, 80, resource_type=ResourceType.POD
    )
    with pytest.raises(NotFoundError, match='labels "app=missing"'):
        await pf.start()


def test_sync_forward_to_pod(ns, nginx):
    pf = podforward.new_port_forwarder(
        ns, {"app": "nginx"}, 80, resource_type=ResourceType.POD
    )
    with pf as port:
        resp = httpx.get(f"http://127.0.0.1:{port}/")
        assert resp.status_code == 200


async def test_load_api_from_cluster(k8s_cluster, ns):
    api = await load_api(kubeconfig=str(k8s_cluster.kubeconfig_path), namespace=ns)
    assert api.namespace == ns
