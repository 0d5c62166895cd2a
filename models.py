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


class ApiVersion(StrEnum):
    V1 = "admission.k8s.io/v1"


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


class PatchAction(BaseModel):
    op: PatchOp
    path: str
    value: Any = None


# https://jsonpatch.com/
Patch = RootModel[list[PatchAction]]


class LabelSet(RootModel[dict[str, str]]):
    """Labels returned by a label source."""

    @field_validator("root")
    @classmethod
    def validate_keys(cls, val):
        if any(not key for key in val):
            raise ValueError("label keys must not be empty")
        return val


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.30/#status-v1-meta
class AdmissionReviewStatus(BaseModel):
    message: str


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionResponse
class AdmissionResponse(BaseModel):
    allowed: bool
    status: AdmissionReviewStatus | None = None
    uid: str = ""
    patchType: PatchType | None = None
    patch: str | None = None

    @field_validator("patch", mode="before")
    @classmethod
    def validate_patch(cls, val):
        if isinstance(val, Patch):
            val = base64.b64encode(val.model_dump_json().encode()).decode()
        elif isinstance(val, (str, bytes)):
            # Make sure the base64 string contains valid data.
            Patch.model_validate_json(base64.b64decode(val))
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
            raise ValueError("a denied request cannot carry a patch")

        return self


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.30/#groupversionkind-v1-meta
class GroupVersionKind(BaseModel):
    group: str = ""
    version: str = ""
    kind: str = ""


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionRequest
class AdmissionRequest(BaseModel):
    uid: str
    kind: GroupVersionKind = Field(default_factory=GroupVersionKind)
    namespace: str | None = None
    name: str | None = None
    operation: Operation = Operation.CREATE
    # Validated as a Pod once we know the request is for one.
    object: Any = None


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionReview
class AdmissionReview(BaseModel):
    apiVersion: Literal[ApiVersion.V1] = ApiVersion.V1
    kind: Literal["AdmissionReview"] = "AdmissionReview"
    request: AdmissionRequest | None = None
    response: AdmissionResponse | None = None

    @model_validator(mode="after")
    def validate_model(self):
        if not (self.request or self.response):
            raise ValueError("must contain a request or a response")

        return self


class Metadata(BaseModel):
    # None means the pod has no labels mapping at all, which is not the same
    # thing as an empty one when building a patch.
    labels: dict[str, str] | None = None


class Pod(BaseModel):
    metadata: Metadata | None = None
