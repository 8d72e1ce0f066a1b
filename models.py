import base64
from typing import Any, Literal
from pydantic import (
    BaseModel,
    Field,
    RootModel,
    model_validator,
    field_validator,
)
from enum import StrEnum


class Operation(StrEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"


class PatchType(StrEnum):
    JSONPatch = "JSONPatch"


class PatchOp(StrEnum):
    REPLACE = "replace"
    ADD = "add"
    REMOVE = "remove"
    MOVE = "move"
    COPY = "copy"
    TEST = "test"


class PatchAction(BaseModel):
    op: PatchOp
    path: str
    value: Any = None


# https://jsonpatch.com/
Patch = RootModel[list[PatchAction]]


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.30/#status-v1-meta
class AdmissionReviewStatus(BaseModel):
    message: str


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionResponse
class AdmissionResponse(BaseModel):
    allowed: bool
    status: AdmissionReviewStatus | None = None
    uid: str
    patchType: PatchType | None = None
    patch: str | None = None

    @field_validator("patch", mode="before")
    @classmethod
    def validate_patch(cls, val):
        if isinstance(val, (str, bytes)):
            # Make sure the base64 string contains valid data.
            Patch.model_validate_json(base64.b64decode(val, validate=True))
        if isinstance(val, bytes):
            val = val.decode()
        return val

    @model_validator(mode="after")
    def validate_model(self):
        if self.patch and not self.patchType:
            raise ValueError("missing patchType field")
        if self.patchType and not self.patch:
            raise ValueError(f"patchType is {self.patchType} but there is no patch")
        if self.patch and not self.allowed:
            raise ValueError("a denied response cannot carry a patch")

        return self


class GroupVersionKind(BaseModel):
    group: str = ""
    version: str
    kind: str


class GroupVersionResource(BaseModel):
    group: str = ""
    version: str
    resource: str


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.30/#userinfo-v1-authentication-k8s-io
class UserInfo(BaseModel):
    username: str | None = None
    uid: str | None = None
    groups: list[str] = []
    extra: dict[str, list[str]] = {}


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionRequest
class AdmissionRequest(BaseModel):
    uid: str = Field(min_length=1)
    kind: GroupVersionKind | None = None
    resource: GroupVersionResource | None = None
    namespace: str | None = None
    name: str | None = None
    operation: Operation = Operation.CREATE
    userInfo: UserInfo | None = None
    dryRun: bool | None = None
    object: dict[str, Any] | None = None


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionReview
class AdmissionReview(BaseModel):
    apiVersion: Literal["admission.k8s.io/v1"] = "admission.k8s.io/v1"
    kind: Literal["AdmissionReview"] = "AdmissionReview"
    request: AdmissionRequest | None = None
    response: AdmissionResponse | None = None

    @model_validator(mode="after")
    def validate_model(self):
        if not (self.request or self.response):
            raise ValueError("must contain a request or a response")

        return self


class Metadata(BaseModel):
    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = {}
    annotations: dict[str, str] = {}

    @field_validator("labels", "annotations", mode="before")
    @classmethod
    def validate_null_map(cls, val):
        # Kubernetes serializes an empty map as null.
        return {} if val is None else val


class ServiceSpec(BaseModel):
    selector: dict[str, str] | None = None


class Service(BaseModel):
    apiVersion: str | None = None
    kind: str | None = None
    metadata: Metadata = Metadata()
    spec: ServiceSpec = ServiceSpec()


class Allowed(BaseModel):
    """Admit the object, applying `patch` if it is not empty."""

    patch: list[PatchAction] = []


class Denied(BaseModel):
    message: str


Outcome = Allowed | Denied
