import json
import logging

from typing_extensions import Protocol, override

import osiris
from exc import PlanningError
from models import PatchAction, PatchOp, Service

LOG = logging.getLogger(__name__)


class Planner(Protocol):
    def plan(self, service: Service) -> list[PatchAction]:
        """Return the JSON Patch actions that make `service` compatible with
        the endpoints controller, or an empty list if it needs no change.

        Implementations must be deterministic and free of side effects.
        """
        ...


class SelectorPlanner(Planner):
    """Hand eligible services over to the endpoints controller.

    Kubernetes only maintains Endpoints for services that have a selector, so
    the selector of an eligible service is moved into an annotation. A service
    that is no longer eligible gets its selector back.
    """

    @override
    def plan(self, service):
        annotations = service.metadata.annotations
        selector = service.spec.selector

        if osiris.service_is_eligible(annotations):
            if not selector:
                return []
            return [
                PatchAction(
                    op=PatchOp.ADD,
                    path=self._annotation_path(osiris.SELECTOR_ANNOTATION),
                    value=json.dumps(selector, sort_keys=True, separators=(",", ":")),
                ),
                PatchAction(op=PatchOp.REMOVE, path="/spec/selector"),
            ]

        stashed = annotations.get(osiris.SELECTOR_ANNOTATION)
        if stashed is None:
            return []

        remove_stash = PatchAction(
            op=PatchOp.REMOVE,
            path=self._annotation_path(osiris.SELECTOR_ANNOTATION),
        )

        # A selector set since the stash was taken wins over the stash.
        if service.spec.selector:
            return [remove_stash]

        try:
            selector = json.loads(stashed)
            if not isinstance(selector, dict):
                raise ValueError("expected a JSON object")
        except ValueError as err:
            LOG.error(
                "cannot decode %s on service %s/%s: %s",
                osiris.SELECTOR_ANNOTATION,
                service.metadata.namespace,
                service.metadata.name,
                err,
            )
            raise PlanningError(
                f"annotation {osiris.SELECTOR_ANNOTATION} on service "
                f"{service.metadata.name} in namespace "
                f"{service.metadata.namespace} is not a valid selector"
            ) from err

        # Restore the selector before dropping the annotation that holds it.
        return [
            PatchAction(op=PatchOp.ADD, path="/spec/selector", value=selector),
            remove_stash,
        ]

    @staticmethod
    def _annotation_path(name):
        return f"/metadata/annotations/{osiris.json_patch_escape(name)}"
