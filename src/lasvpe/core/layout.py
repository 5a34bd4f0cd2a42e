# src/lasvpe/core/layout.py
"""Where analysis results live in the bulk store.

Savers write here and the planner reads from here when a command starts
from stored results instead of a video.
"""

from lasvpe.contracts.payloads import TrackletIdentifier

TRACKLET_DIR = "tracklets"
ATTRIBUTES_DIR = "attributes"
FEATURE_DIR = "features"
IDRANK_DIR = "idranks"


def tracklet_path(tracklet_id: TrackletIdentifier) -> str:
    return f"{TRACKLET_DIR}/{tracklet_id}"


def attributes_path(tracklet_id: TrackletIdentifier) -> str:
    return f"{ATTRIBUTES_DIR}/{tracklet_id}"


def feature_path(tracklet_id: TrackletIdentifier) -> str:
    return f"{FEATURE_DIR}/{tracklet_id}"


def idrank_path(tracklet_id: TrackletIdentifier) -> str:
    return f"{IDRANK_DIR}/{tracklet_id}"
