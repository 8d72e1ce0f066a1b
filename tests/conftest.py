import pytest

import mutate
import osiris
from models import PatchAction


class FakePlanner:
    """Labels every eligible service with its own name."""

    def plan(self, service):
        if not osiris.service_is_eligible(service.metadata.annotations):
            return []
        return [
            PatchAction(
                op="add",
                path="/metadata/labels/planned-for",
                value=service.metadata.name,
            )
        ]


@pytest.fixture()
def fake_planner():
    return FakePlanner()


@pytest.fixture()
def app():
    app = mutate.create_app(
        PLANNER=FakePlanner,
        TESTING=True,
    )
    yield app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def make_review():
    """Build an AdmissionReview request for a service."""

    def _make_review(annotations=None, name="web", namespace="demo", uid="1234"):
        return {
            "apiVersion": "admission.k8s.io/v1",
            "kind": "AdmissionReview",
            "request": {
                "uid": uid,
                "kind": {"group": "", "version": "v1", "kind": "Service"},
                "resource": {"group": "", "version": "v1", "resource": "services"},
                "namespace": namespace,
                "name": name,
                "operation": "CREATE",
                "userInfo": {
                    "username": "system:admin",
                    "groups": ["system:masters"],
                },
                "object": {
                    "apiVersion": "v1",
                    "kind": "Service",
                    "metadata": {
                        "name": name,
                        "namespace": namespace,
                        "annotations": annotations,
                    },
                    "spec": {"selector": {"app": name}},
                },
            },
        }

    return _make_review
