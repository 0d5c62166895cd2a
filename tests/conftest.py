import pytest

import mutate


LABELS = {
    "team": "microservices",
    "example.com/owner": "platform",
}


class FakeLabelSource:
    def __init__(self, app_config=None):
        pass

    def fetch_labels(self):
        return dict(LABELS)


@pytest.fixture()
def app():
    app = mutate.create_app(
        LABEL_SOURCE=FakeLabelSource,
        TESTING=True,
    )
    yield app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def labels():
    return dict(LABELS)
