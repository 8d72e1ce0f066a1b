import pytest

import osiris
from exc import PlanningError
from models import Metadata, PatchAction, Service, ServiceSpec
from planners import SelectorPlanner

ELIGIBLE = {
    osiris.MANAGE_ENDPOINTS_ANNOTATION: "true",
    osiris.DEPLOYMENT_ANNOTATION: "web",
}


def make_service(annotations, selector=None):
    return Service(
        metadata=Metadata(name="web", namespace="demo", annotations=annotations),
        spec=ServiceSpec(selector=selector),
    )


@pytest.fixture()
def planner():
    return SelectorPlanner()


def test_selector_moved_to_annotation(planner):
    service = make_service(ELIGIBLE, selector={"tier": "front", "app": "web"})
    assert planner.plan(service) == [
        PatchAction(
            op="add",
            path="/metadata/annotations/osiris.dm.gg~1selector",
            value='{"app":"web","tier":"front"}',
        ),
        PatchAction(op="remove", path="/spec/selector"),
    ]


def test_eligible_without_selector(planner):
    assert planner.plan(make_service(ELIGIBLE)) == []
    assert planner.plan(make_service(ELIGIBLE, selector={})) == []


def test_selector_restored(planner):
    service = make_service({osiris.SELECTOR_ANNOTATION: '{"app":"web"}'})
    assert planner.plan(service) == [
        PatchAction(op="add", path="/spec/selector", value={"app": "web"}),
        PatchAction(op="remove", path="/metadata/annotations/osiris.dm.gg~1selector"),
    ]


def test_existing_selector_not_overwritten(planner):
    service = make_service(
        {osiris.SELECTOR_ANNOTATION: '{"app":"old"}'}, selector={"app": "new"}
    )
    assert planner.plan(service) == [
        PatchAction(op="remove", path="/metadata/annotations/osiris.dm.gg~1selector"),
    ]


def test_not_eligible_without_stash(planner):
    assert planner.plan(make_service({}, selector={"app": "web"})) == []


@pytest.mark.parametrize("stashed", ["not json", '["app"]'])
def test_invalid_stash(planner, stashed):
    service = make_service({osiris.SELECTOR_ANNOTATION: stashed})
    with pytest.raises(PlanningError) as exc_info:
        planner.plan(service)
    assert "service web in namespace demo" in str(exc_info.value)


def test_plan_is_deterministic(planner):
    service = make_service(ELIGIBLE, selector={"b": "2", "a": "1", "c": "3"})
    assert planner.plan(service) == planner.plan(service.model_copy(deep=True))
