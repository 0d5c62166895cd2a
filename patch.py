from models import Patch, PatchAction, PatchOp


LABELS_PATH = "/metadata/labels"


def json_patch_escape(val):
    return val.replace("~", "~0").replace("/", "~1")


def build_patch(existing: dict[str, str] | None, desired: dict[str, str]) -> Patch:
    """Build a JSON patch that merges desired into the existing pod labels.

    Labels already present on the pod are replaced, new ones are added. When
    the pod has no labels mapping at all we have to create it first, because
    an "add" on a child path fails if the parent does not exist.

    Operations are emitted in key order so the same input always produces the
    same patch.
    """

    actions = []

    if existing is None:
        actions.append(PatchAction(op=PatchOp.ADD, path=LABELS_PATH, value={}))
        existing = {}

    for key in sorted(desired):
        actions.append(
            PatchAction(
                op=PatchOp.REPLACE if key in existing else PatchOp.ADD,
                path=f"{LABELS_PATH}/{json_patch_escape(key)}",
                value=desired[key],
            )
        )

    return Patch(actions)
