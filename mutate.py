import base64
import logging
import pydantic
import pydantic_core

from flask import Flask, request, jsonify, current_app

from models import (
    BaseModel,
    AdmissionReview,
    AdmissionRequest,
    AdmissionResponse,
    AdmissionReviewStatus,
    LabelSet,
    PatchType,
    Pod,
)

from patch import build_patch
from sources import label_source_from_config

LOG = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

MARKER_PREFIX = "rollouts-pod-template-hash"


class DEFAULTS:
    MARKER_PREFIX = MARKER_PREFIX
    LABEL_SOURCE = "static"
    PORT = 8443
    TLS_CERT = "/tls/tls.crt"
    TLS_KEY = "/tls/tls.key"


def jsonresponse():
    """Transforms the response from a view function into a JSON object."""

    def _outer(func):
        def _inner(*args, **kwargs):
            res = func(*args, **kwargs)
            status = 200
            if isinstance(res, tuple):
                res, status = res
            if isinstance(res, BaseModel):
                return jsonify(res.model_dump(exclude_none=True)), status
            else:
                return jsonify(res), status

        return _inner

    return _outer


def should_mutate(labels, prefix=MARKER_PREFIX):
    """Return True if any label key starts with prefix.

    A missing labels mapping never matches.
    """
    return any(key.startswith(prefix) for key in labels or {})


def deny(uid, message):
    return AdmissionResponse(
        uid=uid,
        allowed=False,
        status=AdmissionReviewStatus(message=message),
    )


def review_pod(req: AdmissionRequest, label_source, prefix=MARKER_PREFIX):
    """Decide whether to admit a pod and which labels to patch onto it.

    Every failure past this point is reported as a denial in the returned
    response; nothing is raised back to the caller.
    """

    if req.kind.kind != "Pod":
        LOG.info(
            "request %s: allowing %s without changes",
            req.uid,
            req.kind.kind or "unknown kind",
        )
        return AdmissionResponse(uid=req.uid, allowed=True)

    try:
        pod = Pod.model_validate(req.object)
    except pydantic.ValidationError as err:
        LOG.warning("request %s: invalid pod object: %s", req.uid, err)
        return deny(req.uid, f"Could not unmarshal Pod: {err}")

    labels = pod.metadata.labels if pod.metadata else None
    if not should_mutate(labels, prefix):
        LOG.info(
            "request %s: pod %s/%s has no %s label",
            req.uid,
            req.namespace,
            req.name,
            prefix,
        )
        return AdmissionResponse(uid=req.uid, allowed=True)

    try:
        desired = LabelSet.model_validate(label_source.fetch_labels()).root
    except Exception as err:
        LOG.error("request %s: failed to fetch labels: %s", req.uid, err)
        return deny(req.uid, f"Error retrieving labels from API: {err}")

    patch = build_patch(labels, desired)
    if not patch.root:
        LOG.info("request %s: no labels to apply", req.uid)
        return AdmissionResponse(
            uid=req.uid,
            allowed=True,
            status=AdmissionReviewStatus(message="No labels to apply"),
        )

    try:
        encoded = base64.b64encode(patch.model_dump_json().encode())
    except pydantic_core.PydanticSerializationError as err:
        LOG.error("request %s: failed to serialize patch: %s", req.uid, err)
        return deny(req.uid, f"Could not marshal JSON patch: {err}")

    LOG.info(
        "request %s: patching labels %s onto pod %s/%s",
        req.uid,
        ", ".join(sorted(desired)),
        req.namespace,
        req.name,
    )
    return AdmissionResponse(
        uid=req.uid,
        allowed=True,
        patchType=PatchType.JSONPatch,
        patch=encoded,
    )


def recover_uid(data):
    """Best effort attempt to find request.uid in an invalid review."""
    try:
        uid = pydantic_core.from_json(data)["request"]["uid"]
    except (ValueError, TypeError, KeyError, RecursionError):
        return ""

    return uid if isinstance(uid, str) else ""


@jsonresponse()
def mutate_pod():
    data = request.get_data()
    if not data:
        LOG.warning("rejecting request with empty body")
        return AdmissionReview(response=deny("", "Empty request body")), 400

    try:
        body = AdmissionReview.model_validate_json(data)
        if body.request is None:
            raise ValueError("missing request")
    except ValueError as err:
        # pydantic.ValidationError is a ValueError
        LOG.warning("rejecting invalid AdmissionReview: %s", err)
        return (
            AdmissionReview(
                response=deny(
                    recover_uid(data), "Could not unmarshal AdmissionReview"
                )
            ),
            400,
        )

    return AdmissionReview(
        response=review_pod(
            body.request,
            current_app.label_source,
            current_app.config["MARKER_PREFIX"],
        )
    )


def health():
    return "OK", 200, {"content-type": "text/plain"}


def create_app(**config) -> Flask:
    """Use an application factory [1] to create the Flask app.

    The label source is built here, once, and shared by every request.

    [1]: https://flask.palletsprojects.com/en/3.0.x/patterns/appfactories/
    """

    app = Flask(__name__)
    app.config.from_object(DEFAULTS)
    app.config.from_prefixed_env("ROLLOUTS_LABELER")
    if config:
        app.config.update(config)

    app.label_source = label_source_from_config(app.config)

    app.add_url_rule("/healthz", view_func=health)
    app.add_url_rule("/mutate", view_func=mutate_pod, methods=["POST"])

    return app


def main():
    app = create_app()
    LOG.info("starting webhook server on port %s", app.config["PORT"])
    app.run(
        host="0.0.0.0",
        port=int(app.config["PORT"]),
        ssl_context=(app.config["TLS_CERT"], app.config["TLS_KEY"]),
    )


if __name__ == "__main__":
    main()
