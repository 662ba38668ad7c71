"""Kubernetes access for the cluster-scoped fallback token.

Reads the ConfigMap (``vault-token`` in ``default`` unless configured
otherwise) that an operator may populate with a shared Vault token. The
kubernetes client is synchronous, so calls run in a worker thread.
"""

import asyncio
from typing import Any

from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException

from ..core.exceptions import PlatformUnavailableError
from ..core.logging import get_logger

logger = get_logger(__name__)


class ConfigMapTokenSource:
    """Lists ConfigMaps by name and returns their ``data`` blocks."""

    def __init__(self, name: str = "vault-token", namespace: str = "default") -> None:
        self.name = name
        self.namespace = namespace
        self._api: client.CoreV1Api | None = None

    def _core_api(self) -> client.CoreV1Api:
        if self._api is None:
            try:
                config.load_incluster_config()
            except ConfigException as e:
                raise PlatformUnavailableError(
                    "Could not create in-cluster config; not running inside Kubernetes",
                    cause=e,
                ) from e
            self._api = client.CoreV1Api()
        return self._api

    def _list_records(self) -> list[dict[str, Any]]:
        api = self._core_api()
        config_maps = api.list_namespaced_config_map(
            self.namespace,
            field_selector=f"metadata.name={self.name}",
        )
        return [dict(item.data or {}) for item in config_maps.items]

    async def list_records(self) -> list[dict[str, Any]]:
        """Return one dict per matching ConfigMap.

        Raises:
            PlatformUnavailableError: Outside a cluster
            kubernetes.client.ApiException: If the API call fails
        """
        records = await asyncio.to_thread(self._list_records)
        logger.debug(
            "Listed token ConfigMaps",
            name=self.name,
            namespace=self.namespace,
            count=len(records),
        )
        return records
