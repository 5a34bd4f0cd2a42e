# src/lasvpe/contracts/enums.py
"""Data kinds and the bus channels they map to.

Every DataKind is exactly one bus channel. The mapping is a bijection:
``DataKind.from_channel(kind.channel) is kind`` for every member.
"""

from enum import StrEnum

CHANNEL_PREFIX = "lasvpe."


class DataKind(StrEnum):
    """Category of data a stage produces or accepts.

    Values:
        ATTRIBUTES: Pedestrian attribute vector
        COMMAND: User command with parameters (planner input)
        IDRANK: Ranked list of candidate identities
        TRACKLET: Pedestrian tracklet (bounding boxes + samples)
        TRACKLET_ID: Identifier of a stored tracklet
        TRACKLET_ATTR: Tracklet paired with its attributes
        URL: Textual reference to a video or stored object
        FRAME_ARRAY: Raw decoded frames
        REID_FEATURE: Re-identification feature vector
        WEBCAM_LOGIN_PARAM: Login parameters for a web camera
        TERM_SIG: Termination signal for a task
        NONE: Terminal kind, produced by nodes that emit nothing
    """

    ATTRIBUTES = "attributes"
    COMMAND = "command"
    IDRANK = "idrank"
    TRACKLET = "tracklet"
    TRACKLET_ID = "tracklet_id"
    TRACKLET_ATTR = "tracklet_attr"
    URL = "url"
    FRAME_ARRAY = "frame_array"
    REID_FEATURE = "reid_feature"
    WEBCAM_LOGIN_PARAM = "webcam_login_param"
    TERM_SIG = "term_sig"
    NONE = "none"

    @property
    def channel(self) -> str:
        """Bus channel carrying envelopes destined to ports of this kind."""
        return f"{CHANNEL_PREFIX}{self.value}"

    @property
    def is_terminal(self) -> bool:
        """Whether a node producing this kind ends its branch of the plan."""
        return self is DataKind.NONE

    @classmethod
    def from_channel(cls, channel: str) -> "DataKind":
        """Inverse of ``channel``.

        Raises:
            ValueError: If the channel does not belong to any kind
        """
        if not channel.startswith(CHANNEL_PREFIX):
            raise ValueError(f"Not a lasvpe channel: {channel!r}")
        return cls(channel[len(CHANNEL_PREFIX) :])


class CommandType(StrEnum):
    """Commands accepted by the planner.

    Each command selects one stage topology. The real-time variants are
    recognised but not plannable yet.
    """

    TRACK_ONLY = "track"
    TRACK_ATTRRECOG = "track-attrrecog"
    TRACK_REID = "track-reid"
    ATTRRECOG_ONLY = "attrrecog"
    REID_ONLY = "reid"
    ATTRRECOG_REID = "attrrecog-reid"
    TRACK_ATTRRECOG_REID = "track-attrrecog-reid"
    TRACK_ATTRRECOG_REIDFEATURE = "track-attrrecog-reidfeature"
    RT_TRACK_ONLY = "rttrack"
    RT_TRACK_ATTRRECOG_REID = "rt-track-attrrecog-reid"

    @property
    def is_realtime(self) -> bool:
        return self in (CommandType.RT_TRACK_ONLY, CommandType.RT_TRACK_ATTRRECOG_REID)
