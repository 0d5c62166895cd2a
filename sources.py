import logging

from kubernetes import config, client
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import DynamicApiError
from typing_extensions import Protocol

from exc import LabelSourceError

LOG = logging.getLogger(__name__)

DEFAULT_LABELS = {"team": "microservices"}


class LabelSource(Protocol):
    def fetch_labels(self) -> dict[str, str]: ...


class StaticLabelSource(LabelSource):
    """Always returns the same labels, taken from STATIC_LABELS."""

    def __init__(self, app_config=None):
        labels = (app_config or {}).get("STATIC_LABELS", DEFAULT_LABELS)
        if not isinstance(labels, dict):
            raise LabelSourceError("STATIC_LABELS must be a mapping")

        self._labels = dict(labels)

    def fetch_labels(self):
        return dict(self._labels)


class ConfigMapLabelSource(LabelSource):
    def __init__(self, app_config):
        """Allocate a Kubernetes dynamic client and ConfigMap API client"""

        super().__init__()

        self._name = app_config.get("LABELS_CONFIGMAP")
        self._namespace = app_config.get("LABELS_NAMESPACE")
        if not (self._name and self._namespace):
            raise LabelSourceError(
                "LABELS_CONFIGMAP and LABELS_NAMESPACE are required for the configmap label source"
            )

        try:
            config.load_config()
        except config.ConfigException as err:
            LOG.warning("unable to configure Kubernetes client: %s", err)
            raise LabelSourceError("unable to configure Kubernetes client")

        k8s_client = client.ApiClient()
        dyn_client = DynamicClient(k8s_client)

        self._client = dyn_client
        self._configmap_resource = dyn_client.resources.get(
            api_version="v1", kind="ConfigMap"
        )

    def fetch_labels(self):
        try:
            cm = self._configmap_resource.get(
                name=self._name, namespace=self._namespace
            )
        except DynamicApiError as err:
            raise LabelSourceError(
                f"unable to read configmap {self._namespace}/{self._name}: {err.reason}"
            )

        data = cm.to_dict().get("data") or {}
        LOG.debug("read %d labels from configmap %s", len(data), self._name)
        return data


LABEL_SOURCES = {
    "static": StaticLabelSource,
    "configmap": ConfigMapLabelSource,
}


def label_source_from_config(app_config) -> LabelSource:
    """Build the label source named (or given as a class) by LABEL_SOURCE."""

    source = app_config.get("LABEL_SOURCE", "static")
    if isinstance(source, str):
        try:
            source = LABEL_SOURCES[source]
        except KeyError:
            raise LabelSourceError(f"unknown label source: {source}")

    return source(app_config)
