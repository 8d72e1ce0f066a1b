import base64
import functools
import logging

import pydantic
from flask import Flask, request, jsonify, current_app
from pydantic_core import PydanticSerializationError
from werkzeug.utils import import_string

import osiris
from models import (
    BaseModel,
    AdmissionRequest,
    AdmissionReview,
    AdmissionResponse,
    AdmissionReviewStatus,
    Allowed,
    Denied,
    Outcome,
    Patch,
    PatchAction,
    PatchType,
    Service,
)
from planners import Planner, SelectorPlanner
from exc import (
    ApplicationError,
    EmptyBody,
    EncodeError,
    MalformedEnvelope,
    MalformedObject,
    MissingOwnerAnnotation,
    PlanningError,
    TransportError,
    UnsupportedMediaType,
)

LOG = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

JSON_CONTENT_TYPE = "application/json"


class DEFAULTS:
    SECURE_PORT = 5000
    TLS_CERT_FILE = "/osiris/cert/tls.crt"
    TLS_KEY_FILE = "/osiris/cert/tls.key"
    SHUTDOWN_GRACE_PERIOD = 5
    PLANNER = SelectorPlanner
    LOG_LEVEL = "INFO"


def jsonresponse():
    """Transforms the response from a view function into a JSON object."""

    def _outer(func):
        @functools.wraps(func)
        def _inner(*args, **kwargs):
            res = func(*args, **kwargs)
            if isinstance(res, BaseModel):
                try:
                    res = res.model_dump(mode="json", exclude_none=True)
                except PydanticSerializationError as err:
                    raise EncodeError(f"could not encode response: {err}") from err
            return jsonify(res)

        return _inner

    return _outer


def decode_envelope(body: bytes, content_type: str | None) -> AdmissionRequest:
    """Decode the AdmissionReview sent by the API server.

    Raises a TransportError if the request cannot carry an AdmissionReview at
    all, and MalformedEnvelope if it does not contain a valid one.
    """
    if not body:
        raise EmptyBody()

    if content_type != JSON_CONTENT_TYPE:
        raise UnsupportedMediaType(content_type)

    try:
        review = AdmissionReview.model_validate_json(body)
    except pydantic.ValidationError as err:
        raise MalformedEnvelope(f"cannot decode AdmissionReview: {err}") from err

    if review.request is None:
        raise MalformedEnvelope("AdmissionReview does not contain a request")

    return review.request


def decode_service(admission_request: AdmissionRequest) -> Service:
    if admission_request.object is None:
        raise MalformedObject(
            f"AdmissionReview {admission_request.uid} does not contain an object"
        )

    try:
        service = Service.model_validate(admission_request.object)
    except pydantic.ValidationError as err:
        raise MalformedObject(f"cannot decode service: {err}") from err

    # Objects being created do not always carry their name and namespace yet.
    if not service.metadata.name and admission_request.name:
        service.metadata.name = admission_request.name
    if not service.metadata.namespace and admission_request.namespace:
        service.metadata.namespace = admission_request.namespace

    return service


def validate_service(service: Service) -> None:
    annotations = service.metadata.annotations
    if not osiris.service_is_eligible(annotations):
        return

    if not any(key in annotations for key in osiris.OWNER_ANNOTATIONS):
        raise MissingOwnerAnnotation(
            f"Osiris-enabled service {service.metadata.name} in namespace "
            f"{service.metadata.namespace} is lacking the required "
            f'"{osiris.DEPLOYMENT_ANNOTATION}" or '
            f'"{osiris.STATEFULSET_ANNOTATION}" annotation'
        )


def plan_service(planner: Planner, service: Service) -> list[PatchAction]:
    try:
        actions = list(planner.plan(service))
    except PlanningError:
        raise
    except Exception as err:
        LOG.error("failed to plan patch: %s", err)
        raise PlanningError(
            f"failed to compute patch for service {service.metadata.name} "
            f"in namespace {service.metadata.namespace}: {err}"
        ) from err

    try:
        return Patch.model_validate(actions).root
    except pydantic.ValidationError as err:
        LOG.error("planner returned an invalid patch: %s", err)
        raise PlanningError(
            f"invalid patch computed for service {service.metadata.name} "
            f"in namespace {service.metadata.namespace}: {err}"
        ) from err


def admit(planner: Planner, admission_request: AdmissionRequest) -> Outcome:
    """Run a decoded admission request through validation and planning.

    Errors are returned as a Denied outcome so that the caller can always
    answer with a valid AdmissionReview.
    """
    try:
        service = decode_service(admission_request)

        LOG.info(
            "AdmissionReview for Kind=%s Namespace=%s Name=%s (%s) UID=%s "
            "Operation=%s UserInfo=%s",
            admission_request.kind.kind if admission_request.kind else None,
            admission_request.namespace,
            admission_request.name,
            service.metadata.name,
            admission_request.uid,
            admission_request.operation,
            admission_request.userInfo.username if admission_request.userInfo else None,
        )

        validate_service(service)
        patch = plan_service(planner, service)
    except ApplicationError as err:
        LOG.error("denying %s: %s", admission_request.uid, err)
        return Denied(message=str(err))

    return Allowed(patch=patch)


def encode_patch(actions: list[PatchAction]) -> str:
    try:
        data = Patch(actions).model_dump_json(exclude_unset=True)
    except PydanticSerializationError as err:
        raise EncodeError(f"could not encode patch: {err}") from err

    LOG.info("AdmissionResponse: patch=%s", data)
    return base64.b64encode(data.encode()).decode()


def assemble_review(uid: str, outcome: Outcome) -> AdmissionReview:
    if isinstance(outcome, Allowed) and outcome.patch:
        try:
            patch = encode_patch(outcome.patch)
        except EncodeError as err:
            # Refuse the object rather than admit it without its patch.
            LOG.error("denying %s: %s", uid, err)
            outcome = Denied(message=str(err))
        else:
            return AdmissionReview(
                response=AdmissionResponse(
                    uid=uid,
                    allowed=True,
                    patchType=PatchType.JSONPatch,
                    patch=patch,
                )
            )

    if isinstance(outcome, Denied):
        return AdmissionReview(
            response=AdmissionResponse(
                uid=uid,
                allowed=False,
                status=AdmissionReviewStatus(message=outcome.message),
            )
        )

    return AdmissionReview(response=AdmissionResponse(uid=uid, allowed=True))


@jsonresponse()
def mutate_service():
    try:
        admission_request = decode_envelope(
            request.get_data(), request.headers.get("Content-Type")
        )
    except MalformedEnvelope as err:
        LOG.error("Can't decode body: %s", err)
        return assemble_review("", Denied(message=str(err)))

    outcome = admit(current_app.planner, admission_request)
    return assemble_review(admission_request.uid, outcome)


def handle_transporterror(err):
    LOG.error("rejecting request: %s", err)
    return str(err), err.status_code, {"content-type": "text/plain"}


def handle_encodeerror(err):
    LOG.error("could not encode response: %s", err)
    return str(err), 500, {"content-type": "text/plain"}


def health():
    return "OK", 200, {"content-type": "text/plain"}


def create_app(**config) -> Flask:
    """Use an application factory [1] to create the Flask app.

    Configuration is read from DEFAULTS, then from HIJACKER_* environment
    variables, then from the keyword arguments.

    [1]: https://flask.palletsprojects.com/en/3.0.x/patterns/appfactories/
    """

    app = Flask(__name__)
    app.config.from_object(DEFAULTS)
    app.config.from_prefixed_env("HIJACKER")
    if config:
        app.config.update(config)

    planner = app.config["PLANNER"]
    if isinstance(planner, str):
        planner = import_string(planner)
    app.planner = planner()

    app.errorhandler(TransportError)(handle_transporterror)
    app.errorhandler(EncodeError)(handle_encodeerror)
    # A response that fails its own validation cannot be sent either.
    app.errorhandler(pydantic.ValidationError)(handle_encodeerror)
    app.add_url_rule("/healthz", view_func=health)
    app.add_url_rule("/mutate", view_func=mutate_service, methods=["POST"])

    return app
