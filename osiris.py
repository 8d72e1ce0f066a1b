from typing import Mapping

MANAGE_ENDPOINTS_ANNOTATION = "osiris.dm.gg/manageEndpoints"
DEPLOYMENT_ANNOTATION = "osiris.dm.gg/deployment"
STATEFULSET_ANNOTATION = "osiris.dm.gg/statefulset"
SELECTOR_ANNOTATION = "osiris.dm.gg/selector"

OWNER_ANNOTATIONS = (DEPLOYMENT_ANNOTATION, STATEFULSET_ANNOTATION)

TRUTHY_VALUES = frozenset({"y", "yes", "true", "on", "1"})


def is_truthy(value: str | None) -> bool:
    return value is not None and value.lower() in TRUTHY_VALUES


def service_is_eligible(annotations: Mapping[str, str] | None) -> bool:
    """Report whether a service has asked for its endpoints to be managed
    by the endpoints controller instead of by Kubernetes."""
    if not annotations:
        return False
    return is_truthy(annotations.get(MANAGE_ENDPOINTS_ANNOTATION))


def json_patch_escape(val):
    return val.replace("~", "~0").replace("/", "~1")
