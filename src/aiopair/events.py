from dataclasses import dataclass, field

from .mediastreams import MediaStream, MediaStreamTrack


@dataclass
class RTCTrackEvent:
    """
    This event is fired by a :class:`TransportEngine` when a new
    :class:`MediaStreamTrack` is announced by the remote party.
    """

    track: MediaStreamTrack
    "The :class:`MediaStreamTrack` associated with the event."
    streams: list[MediaStream] = field(default_factory=list)
    "The :class:`MediaStream` objects the track belongs to."
