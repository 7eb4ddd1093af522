from __future__ import annotations

"""
Core helpers for workspace utilities: labels, ids, names and time.

This module is free of engine calls. The label scheme defined here is the only
binding between a workspace and its container: the service keeps no index, so
every field of the workspace view that is not live engine state must be
recoverable from these labels.
"""

import json
import re
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

# --------------------------
# Labels (public constants)
# --------------------------

LABEL_MANAGED = "magic.computer"
LABEL_TYPE = "magic.type"
LABEL_NAME = "magic.name"
LABEL_WORKSPACE_ID = "magic.id"
LABEL_CREATED_AT = "magic.created_at"
LABEL_IMAGE = "magic.image"
LABEL_FEATURES = "magic.features"

MANAGED_VALUE = "true"
CUSTOM_TYPE = "custom"

_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]{0,62}$")


def ownership_selector() -> Dict[str, str]:
    """
    Label selector matching every container this service manages.
    """
    return {LABEL_MANAGED: MANAGED_VALUE}


def workspace_selector(workspace_id: str) -> Dict[str, str]:
    """
    Label selector matching the container of a single workspace.
    """
    return {LABEL_MANAGED: MANAGED_VALUE, LABEL_WORKSPACE_ID: workspace_id}


def build_workspace_labels(
    workspace_id: str,
    name: str,
    template_id: str,
    image: str,
    features: Sequence[str],
    created_at: Optional[str] = None,
) -> Dict[str, str]:
    """
    Labels attached at creation time (ownership, type and name included).
    """
    return {
        LABEL_MANAGED: MANAGED_VALUE,
        LABEL_TYPE: template_id,
        LABEL_NAME: name,
        LABEL_WORKSPACE_ID: workspace_id,
        LABEL_CREATED_AT: created_at or now_utc_iso(),
        LABEL_IMAGE: image,
        LABEL_FEATURES: encode_features(features),
    }


def encode_features(features: Sequence[str]) -> str:
    return json.dumps(list(features))


def decode_features(raw: Optional[str]) -> List[str]:
    """
    Decode the features label; unreadable values decode to an empty list.
    """
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except ValueError:
        return []
    if not isinstance(value, list):
        return []
    return [str(v) for v in value]


# --------------------------
# Names and ids
# --------------------------

def gen_workspace_id() -> str:
    """
    Generate a short, URL-safe workspace id.
    """
    return uuid.uuid4().hex[:12]


def is_valid_workspace_name(name: Optional[str]) -> bool:
    """
    Workspace names become part of the container name, so they follow the
    engine's container naming rules.
    """
    return bool(name) and bool(_NAME_RE.match(name))


# --------------------------
# Time helpers
# --------------------------

def now_utc_iso() -> str:
    """
    Current UTC time in ISO-8601 format with timezone info.
    """
    return datetime.now(timezone.utc).isoformat()


def parse_created_at(raw: Optional[str], fallback_epoch: Optional[float] = None) -> datetime:
    """
    Parse the created-at label, falling back to the engine's creation epoch.
    """
    if raw:
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            pass
    if fallback_epoch:
        return datetime.fromtimestamp(fallback_epoch, tz=timezone.utc)
    return datetime.now(timezone.utc)


__all__ = [
    "LABEL_MANAGED",
    "LABEL_TYPE",
    "LABEL_NAME",
    "LABEL_WORKSPACE_ID",
    "LABEL_CREATED_AT",
    "LABEL_IMAGE",
    "LABEL_FEATURES",
    "MANAGED_VALUE",
    "CUSTOM_TYPE",
    "ownership_selector",
    "workspace_selector",
    "build_workspace_labels",
    "encode_features",
    "decode_features",
    "gen_workspace_id",
    "is_valid_workspace_name",
    "now_utc_iso",
    "parse_created_at",
]
