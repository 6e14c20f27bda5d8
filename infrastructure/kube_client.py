# ============================================================================
# KUBERNETES CLIENT
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Infrastructure - Async Kubernetes REST client
# PURPOSE: Fetch, apply and delete the resources of a descriptor
# ============================================================================
"""
Kubernetes Client

The engine only needs a narrow interface (KubeClient):
- get_resources(content, extension): one response per resource of the descriptor
- exists(content, extension): all resources are present
- apply(content, extension, labels): create or update every resource
- delete(content, extension, grace_period): delete every resource

HttpKubeClient implements it with httpx.AsyncClient against an API server
URL and a bearer token (`kubectl proxy` works out of the box). Apply uses
server-side apply, a single PATCH creating or updating the resource.

In dry-run mode nothing is sent: every call answers 200 with the
`x-dry-run: true` header, which the awaiter treats as satisfied.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx
import yaml

from core.config import get_defaults
from core.errors import DeploymentError

logger = logging.getLogger(__name__)

DRY_RUN_HEADER = "x-dry-run"
FIELD_MANAGER = "kubehive"

# Kinds without namespace
CLUSTER_SCOPED_KINDS = frozenset({
    "APIService",
    "ClusterRole",
    "ClusterRoleBinding",
    "CustomResourceDefinition",
    "MutatingWebhookConfiguration",
    "Namespace",
    "Node",
    "PersistentVolume",
    "PriorityClass",
    "StorageClass",
    "ValidatingWebhookConfiguration",
})

_IRREGULAR_PLURALS = {
    "Endpoints": "endpoints",
}


class KubeApiError(DeploymentError):
    """Raised when the API server rejects a request."""

    def __init__(self, status_code: int, url: str, body: Any = None):
        self.status_code = status_code
        self.url = url
        self.body = body
        super().__init__(f"Kubernetes API error {status_code} on {url}: {body}")


@dataclass(frozen=True)
class KubeResponse:
    """Status, headers and JSON body of a Kubernetes API call."""
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[Dict[str, Any]] = None

    @property
    def is_dry_run(self) -> bool:
        return any(
            k.lower() == DRY_RUN_HEADER and str(v).lower() == "true"
            for k, v in self.headers.items()
        )


def dry_run_response(body: Optional[Dict[str, Any]] = None) -> KubeResponse:
    return KubeResponse(status_code=200, headers={DRY_RUN_HEADER: "true"}, body=body)


# ============================================================================
# RESOURCE HELPERS
# ============================================================================

def load_documents(content: str, extension: str) -> List[Dict[str, Any]]:
    """
    Split descriptor content into resource documents.

    JSON may hold one object, an array, or a `List` kind; YAML may hold
    several documents.
    """
    if extension == "json":
        data = json.loads(content)
        documents = data if isinstance(data, list) else [data]
    else:
        documents = [doc for doc in yaml.safe_load_all(content) if doc is not None]

    result = []
    for doc in documents:
        if isinstance(doc, dict) and doc.get("kind", "").endswith("List") and isinstance(doc.get("items"), list):
            result.extend(doc["items"])
        else:
            result.append(doc)
    return result


def plural(kind: str) -> str:
    """REST resource name of a kind (Deployment -> deployments)."""
    if kind in _IRREGULAR_PLURALS:
        return _IRREGULAR_PLURALS[kind]
    lowered = kind.lower()
    if lowered.endswith("s"):
        return lowered + "es"
    if lowered.endswith("y") and not lowered.endswith(("ay", "ey", "oy", "uy")):
        return lowered[:-1] + "ies"
    return lowered + "s"


def resource_path(document: Dict[str, Any], default_namespace: str) -> Tuple[str, str]:
    """
    Collection path and name of a resource.

    Raises:
        DeploymentError: If apiVersion, kind or metadata.name is missing
    """
    api_version = document.get("apiVersion")
    kind = document.get("kind")
    name = (document.get("metadata") or {}).get("name")
    if not api_version or not kind or not name:
        raise DeploymentError(f"Resource needs apiVersion, kind and metadata.name: {document}")

    base = f"/api/{api_version}" if "/" not in api_version else f"/apis/{api_version}"
    if kind in CLUSTER_SCOPED_KINDS:
        return f"{base}/{plural(kind)}", name

    namespace = (document.get("metadata") or {}).get("namespace") or default_namespace
    return f"{base}/namespaces/{namespace}/{plural(kind)}", name


# ============================================================================
# CLIENT INTERFACE
# ============================================================================

class KubeClient(ABC):
    """Operations the engine needs from a Kubernetes cluster."""

    @abstractmethod
    async def get_resources(self, content: str, extension: str) -> List[KubeResponse]:
        """Fetch every resource of a descriptor."""
        pass

    async def exists(self, content: str, extension: str) -> bool:
        """True when every resource of the descriptor is present."""
        responses = await self.get_resources(content, extension)
        return all(r.is_dry_run or r.status_code == 200 for r in responses)

    @abstractmethod
    async def apply(
        self,
        content: str,
        extension: str,
        labels: Optional[Mapping[str, str]] = None,
    ) -> List[KubeResponse]:
        """Create or update every resource of a descriptor."""
        pass

    @abstractmethod
    async def delete(
        self,
        content: str,
        extension: str,
        grace_period: Optional[int] = None,
    ) -> List[KubeResponse]:
        """Delete every resource of a descriptor (missing ones are ignored)."""
        pass


# ============================================================================
# HTTPX IMPLEMENTATION
# ============================================================================

class HttpKubeClient(KubeClient):
    """
    httpx based client.

    Usage:
        async with HttpKubeClient(api_server="http://localhost:8001") as kube:
            await kube.apply(content, "yaml")
    """

    def __init__(
        self,
        api_server: Optional[str] = None,
        token: Optional[str] = None,
        namespace: Optional[str] = None,
        verify_ssl: Optional[bool] = None,
        dry_run: Optional[bool] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        defaults = get_defaults().kube
        self.api_server = (api_server or defaults.api_server).rstrip("/")
        self.namespace = namespace or defaults.namespace
        self.dry_run = defaults.dry_run if dry_run is None else dry_run

        headers = {"Accept": "application/json"}
        bearer = token or defaults.token
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"

        self._client = client or httpx.AsyncClient(
            base_url=self.api_server,
            headers=headers,
            verify=defaults.verify_ssl if verify_ssl is None else verify_ssl,
            timeout=timeout or defaults.timeout_seconds,
        )

    async def __aenter__(self) -> "HttpKubeClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def get_resources(self, content: str, extension: str) -> List[KubeResponse]:
        responses = []
        for document in load_documents(content, extension):
            if self.dry_run:
                responses.append(dry_run_response(document))
                continue
            collection, name = resource_path(document, self.namespace)
            responses.append(await self._send("GET", f"{collection}/{name}", allowed=(404,)))
        return responses

    async def apply(
        self,
        content: str,
        extension: str,
        labels: Optional[Mapping[str, str]] = None,
    ) -> List[KubeResponse]:
        responses = []
        for document in load_documents(content, extension):
            if labels:
                metadata = document.setdefault("metadata", {})
                metadata["labels"] = {**(metadata.get("labels") or {}), **labels}

            collection, name = resource_path(document, self.namespace)
            if self.dry_run:
                logger.info(f"(dry-run) Applying {collection}/{name}")
                responses.append(dry_run_response(document))
                continue

            logger.info(f"Applying {collection}/{name}")
            responses.append(await self._send(
                "PATCH",
                f"{collection}/{name}",
                params={"fieldManager": FIELD_MANAGER, "force": "true"},
                content=json.dumps(document),
                headers={"Content-Type": "application/apply-patch+yaml"},
            ))
        return responses

    async def delete(
        self,
        content: str,
        extension: str,
        grace_period: Optional[int] = None,
    ) -> List[KubeResponse]:
        if grace_period is None:
            grace_period = get_defaults().kube.delete_grace_period_seconds

        options: Dict[str, Any] = {
            "kind": "DeleteOptions",
            "apiVersion": "v1",
            "propagationPolicy": "Foreground",
        }
        if grace_period >= 0:
            options["gracePeriodSeconds"] = grace_period

        responses = []
        for document in load_documents(content, extension):
            collection, name = resource_path(document, self.namespace)
            if self.dry_run:
                logger.info(f"(dry-run) Deleting {collection}/{name}")
                responses.append(dry_run_response(document))
                continue

            logger.info(f"Deleting {collection}/{name}")
            responses.append(await self._send(
                "DELETE",
                f"{collection}/{name}",
                content=json.dumps(options),
                headers={"Content-Type": "application/json"},
                allowed=(404,),
            ))
        return responses

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        content: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        allowed: Tuple[int, ...] = (),
    ) -> KubeResponse:
        resp = await self._client.request(method, path, params=params, content=content, headers=headers)

        try:
            body = resp.json() if resp.content else None
        except ValueError:
            body = {"message": resp.text}

        if resp.status_code >= 400 and resp.status_code not in allowed:
            raise KubeApiError(resp.status_code, f"{method} {path}", body)

        logger.debug(f"{method} {path} -> {resp.status_code}")
        return KubeResponse(status_code=resp.status_code, headers=dict(resp.headers), body=body)


__all__ = [
    "DRY_RUN_HEADER",
    "HttpKubeClient",
    "KubeApiError",
    "KubeClient",
    "KubeResponse",
    "dry_run_response",
    "load_documents",
    "plural",
    "resource_path",
]
