# ============================================================================
# KUBERNETES CLIENT TESTS
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Tests - Resource helpers and httpx client
# PURPOSE: Verify paths, document splitting, apply/delete requests and
#          dry-run responses
# ============================================================================
"""
Kubernetes Client Tests

Uses httpx.MockTransport, no real HTTP traffic.

Run with:
    pytest tests/test_kube_client.py -v
"""

import asyncio
import json

import httpx
import pytest

from core.errors import DeploymentError
from infrastructure.kube_client import (
    HttpKubeClient,
    KubeApiError,
    KubeResponse,
    dry_run_response,
    load_documents,
    plural,
    resource_path,
)


DEPLOYMENT = """apiVersion: apps/v1
kind: Deployment
metadata:
  name: app
  namespace: team
spec:
  replicas: 1
"""

TWO_DOCUMENTS = """apiVersion: v1
kind: ConfigMap
metadata:
  name: one
---
apiVersion: v1
kind: ConfigMap
metadata:
  name: two
"""


# ============================================================================
# FIXTURES
# ============================================================================

class Recorder:
    """httpx handler recording requests and answering from a routing table."""

    def __init__(self, responses=None):
        self.requests = []
        self.responses = responses or {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses.get((request.method, request.url.path), (200, {"kind": "Status"}))
        return httpx.Response(status, json=body)


def make_client(recorder, **kwargs):
    http = httpx.AsyncClient(base_url="http://kube.local", transport=httpx.MockTransport(recorder))
    return HttpKubeClient(api_server="http://kube.local", namespace="default", client=http, **kwargs)


# ============================================================================
# RESOURCE HELPERS
# ============================================================================

class TestResourceHelpers:
    """Tests for plural, resource_path and load_documents."""

    @pytest.mark.parametrize("kind,expected", [
        ("Deployment", "deployments"),
        ("ConfigMap", "configmaps"),
        ("Ingress", "ingresses"),
        ("NetworkPolicy", "networkpolicies"),
        ("Gateway", "gateways"),
        ("Endpoints", "endpoints"),
    ])
    def test_plural(self, kind, expected):
        assert plural(kind) == expected

    def test_core_resource_default_namespace(self):
        document = {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "cm"}}
        assert resource_path(document, "default") == ("/api/v1/namespaces/default/configmaps", "cm")

    def test_group_resource_own_namespace(self):
        document = {"apiVersion": "apps/v1", "kind": "Deployment", "metadata": {"name": "app", "namespace": "team"}}
        assert resource_path(document, "default") == ("/apis/apps/v1/namespaces/team/deployments", "app")

    def test_cluster_scoped(self):
        document = {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": "team"}}
        assert resource_path(document, "default") == ("/api/v1/namespaces", "team")

    def test_missing_name(self):
        with pytest.raises(DeploymentError, match="metadata.name"):
            resource_path({"apiVersion": "v1", "kind": "ConfigMap"}, "default")

    def test_multi_document_yaml(self):
        names = [d["metadata"]["name"] for d in load_documents(TWO_DOCUMENTS, "yaml")]
        assert names == ["one", "two"]

    def test_json_array(self):
        content = json.dumps([{"kind": "A"}, {"kind": "B"}])
        assert [d["kind"] for d in load_documents(content, "json")] == ["A", "B"]

    def test_list_kind(self):
        content = json.dumps({"kind": "List", "items": [{"kind": "A"}, {"kind": "B"}]})
        assert [d["kind"] for d in load_documents(content, "json")] == ["A", "B"]

    def test_dry_run_marker(self):
        assert dry_run_response().is_dry_run
        assert KubeResponse(status_code=200, headers={"X-Dry-Run": "TRUE"}).is_dry_run
        assert not KubeResponse(status_code=200).is_dry_run


# ============================================================================
# HTTP CLIENT
# ============================================================================

class TestHttpKubeClient:
    """Tests for HttpKubeClient requests."""

    def test_get_resources(self):
        recorder = Recorder({
            ("GET", "/apis/apps/v1/namespaces/team/deployments/app"): (200, {"status": {"readyReplicas": 1}}),
        })

        async def run_test():
            async with make_client(recorder) as kube:
                return await kube.get_resources(DEPLOYMENT, "yaml")

        responses = asyncio.run(run_test())

        assert len(responses) == 1
        assert responses[0].status_code == 200
        assert responses[0].body["status"]["readyReplicas"] == 1

    def test_missing_resource_is_not_an_error(self):
        recorder = Recorder({("GET", "/api/v1/namespaces/default/configmaps/one"): (404, {"reason": "NotFound"})})

        async def run_test():
            async with make_client(recorder) as kube:
                return await kube.get_resources(TWO_DOCUMENTS, "yaml"), await kube.exists(TWO_DOCUMENTS, "yaml")

        responses, exists = asyncio.run(run_test())

        assert [r.status_code for r in responses] == [404, 200]
        assert exists is False

    def test_apply_uses_server_side_apply(self):
        recorder = Recorder()

        async def run_test():
            async with make_client(recorder) as kube:
                await kube.apply(DEPLOYMENT, "yaml", {"kubehive.timestamp": "1"})

        asyncio.run(run_test())

        request = recorder.requests[0]
        assert request.method == "PATCH"
        assert request.url.path == "/apis/apps/v1/namespaces/team/deployments/app"
        assert request.url.params["fieldManager"] == "kubehive"
        assert request.url.params["force"] == "true"
        assert request.headers["content-type"] == "application/apply-patch+yaml"
        body = json.loads(request.content)
        assert body["metadata"]["labels"] == {"kubehive.timestamp": "1"}
        assert body["spec"]["replicas"] == 1

    def test_apply_error(self):
        recorder = Recorder({
            ("PATCH", "/apis/apps/v1/namespaces/team/deployments/app"): (422, {"message": "invalid"}),
        })

        async def run_test():
            async with make_client(recorder) as kube:
                await kube.apply(DEPLOYMENT, "yaml")

        with pytest.raises(KubeApiError) as exc_info:
            asyncio.run(run_test())

        assert exc_info.value.status_code == 422
        assert exc_info.value.body == {"message": "invalid"}

    def test_delete(self):
        recorder = Recorder({("DELETE", "/api/v1/namespaces/default/configmaps/two"): (404, {})})

        async def run_test():
            async with make_client(recorder) as kube:
                return await kube.delete(TWO_DOCUMENTS, "yaml", grace_period=0)

        responses = asyncio.run(run_test())

        assert [r.status_code for r in responses] == [200, 404]
        options = json.loads(recorder.requests[0].content)
        assert options["gracePeriodSeconds"] == 0
        assert options["propagationPolicy"] == "Foreground"

    def test_delete_without_grace_period(self):
        recorder = Recorder()

        async def run_test():
            async with make_client(recorder) as kube:
                await kube.delete(DEPLOYMENT, "yaml", grace_period=-1)

        asyncio.run(run_test())

        assert "gracePeriodSeconds" not in json.loads(recorder.requests[0].content)

    def test_dry_run_sends_nothing(self):
        recorder = Recorder()

        async def run_test():
            async with make_client(recorder, dry_run=True) as kube:
                applied = await kube.apply(DEPLOYMENT, "yaml", {"a": "b"})
                fetched = await kube.get_resources(DEPLOYMENT, "yaml")
                deleted = await kube.delete(DEPLOYMENT, "yaml")
                return applied + fetched + deleted

        responses = asyncio.run(run_test())

        assert recorder.requests == []
        assert all(r.is_dry_run for r in responses)
        assert responses[0].body["metadata"]["labels"] == {"a": "b"}
