# ruff: noqa: F401
import logging

from .candidatebuffer import CandidateBuffer
from .coordinator import NegotiationCoordinator
from .endpoint import ConnectionEndpoint, IceConnectionState, Role, SignalingState
from .engine import IceEngine, TransportEngine
from .events import RTCTrackEvent
from .exceptions import (
    CandidateApplyError,
    DescriptionApplyError,
    InvalidStateError,
    UnknownEndpointError,
)
from .mediastreams import (
    AudioStreamTrack,
    MediaStream,
    MediaStreamTrack,
    RemoteStreamTrack,
    VideoStreamTrack,
)
from .rtccertificate import RTCCertificate, RTCDtlsFingerprint
from .rtcconfiguration import RTCConfiguration, RTCIceServer, RTCOfferOptions
from .rtcicetransport import RTCIceCandidate, RTCIceParameters, RTCIceTransport
from .rtcrtpparameters import RTCRtpCodecParameters
from .rtcsessiondescription import RTCSessionDescription
from .session import CallSession, CallState

__version__ = "0.1.0"

# Set default logging handler to avoid "No handler found" warnings.
logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "AudioStreamTrack",
    "CallSession",
    "CallState",
    "CandidateApplyError",
    "CandidateBuffer",
    "ConnectionEndpoint",
    "DescriptionApplyError",
    "IceConnectionState",
    "IceEngine",
    "InvalidStateError",
    "MediaStream",
    "MediaStreamTrack",
    "NegotiationCoordinator",
    "RTCCertificate",
    "RTCConfiguration",
    "RTCDtlsFingerprint",
    "RTCIceCandidate",
    "RTCIceParameters",
    "RTCIceServer",
    "RTCIceTransport",
    "RTCOfferOptions",
    "RTCRtpCodecParameters",
    "RTCSessionDescription",
    "RTCTrackEvent",
    "RemoteStreamTrack",
    "Role",
    "SignalingState",
    "TransportEngine",
    "UnknownEndpointError",
    "VideoStreamTrack",
]
