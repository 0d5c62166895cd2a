import pytest

from kubernetes.client.rest import ApiException
from openshift.dynamic.exceptions import NotFoundError

import sources
from exc import LabelSourceError


CONFIGMAP_CONFIG = {
    "LABEL_SOURCE": "configmap",
    "LABELS_CONFIGMAP": "pod-labels",
    "LABELS_NAMESPACE": "rollouts",
}


class FakeConfigMap:
    def __init__(self, data):
        self.data = data

    def to_dict(self):
        return {"metadata": {"name": "pod-labels"}, "data": self.data}


class FakeConfigMapResource:
    def __init__(self, configmaps):
        self.configmaps = configmaps

    def get(self, name, namespace):
        try:
            return FakeConfigMap(self.configmaps[namespace, name])
        except KeyError:
            raise NotFoundError(ApiException(status=404, reason="Not Found"))


@pytest.fixture()
def configmaps(monkeypatch):
    configmaps = {}

    class FakeResources:
        def get(self, api_version, kind):
            assert (api_version, kind) == ("v1", "ConfigMap")
            return FakeConfigMapResource(configmaps)

    class FakeDynamicClient:
        def __init__(self, k8s_client):
            self.resources = FakeResources()

    monkeypatch.setattr(sources.config, "load_config", lambda: None)
    monkeypatch.setattr(sources.client, "ApiClient", lambda: None)
    monkeypatch.setattr(sources, "DynamicClient", FakeDynamicClient)

    return configmaps


def test_static_default_labels():
    source = sources.label_source_from_config({})
    assert isinstance(source, sources.StaticLabelSource)
    assert source.fetch_labels() == {"team": "microservices"}


def test_static_configured_labels():
    source = sources.StaticLabelSource({"STATIC_LABELS": {"team": "payments"}})
    assert source.fetch_labels() == {"team": "payments"}


def test_static_empty_labels():
    source = sources.StaticLabelSource({"STATIC_LABELS": {}})
    assert source.fetch_labels() == {}


def test_static_labels_not_mapping():
    with pytest.raises(LabelSourceError):
        sources.StaticLabelSource({"STATIC_LABELS": "team=payments"})


def test_static_labels_are_copied():
    source = sources.StaticLabelSource()
    source.fetch_labels()["team"] = "changed"
    assert source.fetch_labels() == {"team": "microservices"}


def test_unknown_label_source():
    with pytest.raises(LabelSourceError, match="unknown label source"):
        sources.label_source_from_config({"LABEL_SOURCE": "ldap"})


def test_label_source_class():
    class MySource:
        def __init__(self, app_config):
            self.app_config = app_config

    source = sources.label_source_from_config({"LABEL_SOURCE": MySource})
    assert isinstance(source, MySource)


def test_configmap_labels(configmaps):
    configmaps["rollouts", "pod-labels"] = {"team": "microservices", "tier": "web"}
    source = sources.label_source_from_config(CONFIGMAP_CONFIG)
    assert isinstance(source, sources.ConfigMapLabelSource)
    assert source.fetch_labels() == {"team": "microservices", "tier": "web"}


def test_configmap_without_data(configmaps):
    configmaps["rollouts", "pod-labels"] = None
    source = sources.label_source_from_config(CONFIGMAP_CONFIG)
    assert source.fetch_labels() == {}


def test_configmap_missing(configmaps):
    source = sources.label_source_from_config(CONFIGMAP_CONFIG)
    with pytest.raises(LabelSourceError, match="rollouts/pod-labels"):
        source.fetch_labels()


def test_configmap_requires_name(configmaps):
    with pytest.raises(LabelSourceError):
        sources.label_source_from_config({"LABEL_SOURCE": "configmap"})


def test_configmap_no_kubernetes_config(monkeypatch):
    def fail():
        raise sources.config.ConfigException("no config")

    monkeypatch.setattr(sources.config, "load_config", fail)
    with pytest.raises(LabelSourceError, match="unable to configure"):
        sources.label_source_from_config(CONFIGMAP_CONFIG)
