import pytest

import mutate
import osiris
from exc import MissingOwnerAnnotation
from models import Metadata, Service


def make_service(annotations, name="web", namespace="demo"):
    return Service(
        metadata=Metadata(name=name, namespace=namespace, annotations=annotations)
    )


@pytest.mark.parametrize("value", ["y", "yes", "true", "on", "1", "TRUE", "Yes"])
def test_truthy_values(value):
    assert osiris.is_truthy(value)


@pytest.mark.parametrize("value", ["", "n", "no", "false", "off", "0", "enabled"])
def test_falsy_values(value):
    assert not osiris.is_truthy(value)


def test_eligible():
    assert osiris.service_is_eligible({osiris.MANAGE_ENDPOINTS_ANNOTATION: "on"})
    assert not osiris.service_is_eligible({osiris.MANAGE_ENDPOINTS_ANNOTATION: "off"})
    assert not osiris.service_is_eligible({})
    assert not osiris.service_is_eligible(None)


def test_missing_owner_annotation():
    service = make_service(
        {osiris.MANAGE_ENDPOINTS_ANNOTATION: "true"}, name="frontend", namespace="shop"
    )
    with pytest.raises(MissingOwnerAnnotation) as exc_info:
        mutate.validate_service(service)

    message = str(exc_info.value)
    assert "service frontend in namespace shop" in message
    assert osiris.DEPLOYMENT_ANNOTATION in message
    assert osiris.STATEFULSET_ANNOTATION in message


@pytest.mark.parametrize(
    "owner", [osiris.DEPLOYMENT_ANNOTATION, osiris.STATEFULSET_ANNOTATION]
)
def test_one_owner_annotation_is_enough(owner):
    service = make_service({osiris.MANAGE_ENDPOINTS_ANNOTATION: "true", owner: "foo"})
    assert mutate.validate_service(service) is None


def test_owner_annotation_may_be_empty():
    """Only the presence of the owner annotation is checked."""
    service = make_service(
        {osiris.MANAGE_ENDPOINTS_ANNOTATION: "true", osiris.DEPLOYMENT_ANNOTATION: ""}
    )
    mutate.validate_service(service)


@pytest.mark.parametrize(
    "annotations",
    [
        {},
        {osiris.MANAGE_ENDPOINTS_ANNOTATION: "false"},
        {osiris.DEPLOYMENT_ANNOTATION: "foo"},
        {"example.com/unrelated": "true"},
    ],
)
def test_not_eligible_always_passes(annotations):
    mutate.validate_service(make_service(annotations))
