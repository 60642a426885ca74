import asyncio
import enum
import logging
from typing import Optional

from pyee.asyncio import AsyncIOEventEmitter

from .candidatebuffer import CandidateBuffer
from .engine import TransportEngine
from .events import RTCTrackEvent
from .exceptions import CandidateApplyError, DescriptionApplyError, InvalidStateError
from .mediastreams import MediaStream
from .rtcconfiguration import RTCOfferOptions
from .rtcicetransport import RTCIceCandidate
from .rtcsessiondescription import RTCSessionDescription
from .sdp import candidate_to_sdp

logger = logging.getLogger(__name__)


class Role(enum.Enum):
    """
    The side of the offer/answer exchange an endpoint plays.
    """

    OFFERER = "offerer"
    ANSWERER = "answerer"


class SignalingState(enum.Enum):
    NEW = "new"
    HAVE_LOCAL_OFFER = "have-local-offer"
    # provisional answers are never exchanged, these are not entered
    HAVE_LOCAL_ANSWER = "have-local-answer"
    HAVE_REMOTE_OFFER = "have-remote-offer"
    HAVE_REMOTE_ANSWER = "have-remote-answer"
    STABLE = "stable"
    CLOSED = "closed"


class IceConnectionState(enum.Enum):
    NEW = "new"
    CHECKING = "checking"
    CONNECTED = "connected"
    COMPLETED = "completed"
    FAILED = "failed"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


# (description type, current state) -> next state
LOCAL_TRANSITIONS = {
    ("offer", SignalingState.NEW): SignalingState.HAVE_LOCAL_OFFER,
    ("answer", SignalingState.HAVE_REMOTE_OFFER): SignalingState.STABLE,
}
REMOTE_TRANSITIONS = {
    ("offer", SignalingState.NEW): SignalingState.HAVE_REMOTE_OFFER,
    ("answer", SignalingState.HAVE_LOCAL_OFFER): SignalingState.STABLE,
}

# description types each role may apply, as (local, remote)
ROLE_DESCRIPTIONS = {
    Role.OFFERER: ("offer", "answer"),
    Role.ANSWERER: ("answer", "offer"),
}


class ConnectionEndpoint(AsyncIOEventEmitter):
    """
    The :class:`ConnectionEndpoint` drives one side of a negotiation.

    It wraps a :class:`TransportEngine`, enforces the offer/answer state
    machine for its :class:`Role` and holds back remote candidates until
    the remote description is applied.

    It emits the following events:

    - `"icecandidate"` with each local :class:`RTCIceCandidate`.
    - `"iceconnectionstatechange"` with the new :class:`IceConnectionState`.
    - `"signalingstatechange"` with the new :class:`SignalingState`.
    - `"stream"` with each remote :class:`MediaStream`.
    - `"candidateerror"` with a :class:`CandidateApplyError` for buffered
      candidates which the engine rejected.

    :param role: The :class:`Role` of the endpoint.
    :param engine: The :class:`TransportEngine` to drive.
    """

    def __init__(self, role: Role, engine: TransportEngine) -> None:
        super().__init__()
        self.__candidateLock = asyncio.Lock()
        self.__engine = engine
        self.__engine.on("icecandidate", self.__onEngineCandidate)
        self.__engine.on("iceconnectionstatechange", self.__onEngineIceState)
        self.__engine.on("track", self.__onEngineTrack)
        self.__pendingCandidates = CandidateBuffer()
        self.__remoteStreams: dict[str, MediaStream] = {}
        self.__role = role
        self.__stream: Optional[MediaStream] = None

        self.__iceConnectionState = IceConnectionState.NEW
        self.__isClosed = False
        self.__signalingState = SignalingState.NEW

        self.__localDescription: Optional[RTCSessionDescription] = None
        self.__remoteDescription: Optional[RTCSessionDescription] = None

    @property
    def engine(self) -> TransportEngine:
        return self.__engine

    @property
    def iceConnectionState(self) -> IceConnectionState:
        """
        The ICE connection state reported by the engine.
        """
        return self.__iceConnectionState

    @property
    def localDescription(self) -> Optional[RTCSessionDescription]:
        return self.__localDescription

    @property
    def localStream(self) -> Optional[MediaStream]:
        return self.__stream

    @property
    def pendingCandidates(self) -> CandidateBuffer:
        """
        Remote candidates waiting for the remote description.
        """
        return self.__pendingCandidates

    @property
    def remoteDescription(self) -> Optional[RTCSessionDescription]:
        return self.__remoteDescription

    @property
    def role(self) -> Role:
        return self.__role

    @property
    def signalingState(self) -> SignalingState:
        return self.__signalingState

    def addStream(self, stream: MediaStream) -> None:
        """
        Announce the tracks of a local :class:`MediaStream` to the peer.

        This must be done before the offer or answer is created.
        """
        self.__assertNotClosed()
        for track in stream.getTracks():
            self.__engine.addTrack(track, stream)
        self.__stream = stream
        self.__log_debug("added local stream %s", stream.id)

    async def addRemoteCandidate(self, candidate: RTCIceCandidate) -> None:
        """
        Add a candidate produced by the peer.

        Until the remote description is applied the candidate is buffered, it
        is applied once the description is in place.
        """
        self.__assertNotClosed()
        async with self.__candidateLock:
            # the endpoint may have been closed while waiting for the lock
            self.__assertNotClosed()
            if self.__remoteDescription is None:
                self.__pendingCandidates.push(candidate)
                self.__log_debug(
                    "buffered remote candidate (%d pending)",
                    len(self.__pendingCandidates),
                )
                return
            await self.__applyCandidate(candidate)

    async def close(self) -> None:
        """
        Close the endpoint and release its engine.

        No further events are emitted once this returns.
        """
        if self.__isClosed:
            return
        self.__isClosed = True
        self.__pendingCandidates.clear()
        self.__engine.remove_all_listeners()
        self.__setSignalingState(SignalingState.CLOSED)
        self.__setIceConnectionState(IceConnectionState.CLOSED)

        # no more events will be emitted, so remove all event listeners
        # to facilitate garbage collection.
        self.remove_all_listeners()

        await self.__engine.close()

    async def createAnswer(self) -> RTCSessionDescription:
        """
        Create an answer to the offer applied by :meth:`setRemoteDescription`.
        """
        self.__assertNotClosed()
        if self.__signalingState != SignalingState.HAVE_REMOTE_OFFER:
            raise InvalidStateError(
                f'Cannot create answer in signaling state "{self.__signalingState.value}"'
            )

        try:
            answer = await self.__engine.createAnswer()
        except ValueError as exc:
            raise DescriptionApplyError(f"Failed to create answer: {exc}") from exc
        self.__assertNotClosed()
        self.__log_debug("createAnswer()\n%s", answer.sdp)
        return answer

    async def createOffer(
        self, options: Optional[RTCOfferOptions] = None
    ) -> RTCSessionDescription:
        """
        Create an offer describing the local stream.
        """
        self.__assertNotClosed()
        if self.__role != Role.OFFERER:
            raise InvalidStateError(f"Cannot create offer as {self.__role.value}")
        if self.__signalingState != SignalingState.NEW:
            raise InvalidStateError(
                f'Cannot create offer in signaling state "{self.__signalingState.value}"'
            )

        try:
            offer = await self.__engine.createOffer(options)
        except ValueError as exc:
            raise DescriptionApplyError(f"Failed to create offer: {exc}") from exc
        self.__assertNotClosed()
        self.__log_debug("createOffer()\n%s", offer.sdp)
        return offer

    async def setLocalDescription(self, description: RTCSessionDescription) -> None:
        """
        Apply a description created by this endpoint.
        """
        state = self.__nextState(description, is_local=True)

        try:
            await self.__engine.setLocalDescription(description)
        except ValueError as exc:
            raise DescriptionApplyError(
                f"Failed to set local {description.type}: {exc}"
            ) from exc
        self.__assertNotClosed()

        self.__localDescription = description
        self.__setSignalingState(state)
        self.__log_debug("setLocalDescription(%s) complete", description.type)

    async def setRemoteDescription(self, description: RTCSessionDescription) -> None:
        """
        Apply a description received from the peer, then apply any
        candidates which arrived ahead of it.
        """
        state = self.__nextState(description, is_local=False)

        try:
            await self.__engine.setRemoteDescription(description)
        except ValueError as exc:
            raise DescriptionApplyError(
                f"Failed to set remote {description.type}: {exc}"
            ) from exc
        self.__assertNotClosed()

        async with self.__candidateLock:
            self.__remoteDescription = description
            self.__setSignalingState(state)
            self.__log_debug("setRemoteDescription(%s) complete", description.type)

            for candidate in self.__pendingCandidates.drain():
                if self.__isClosed:
                    break
                try:
                    await self.__applyCandidate(candidate)
                except CandidateApplyError as exc:
                    self.emit("candidateerror", exc)

    async def __applyCandidate(self, candidate: RTCIceCandidate) -> None:
        try:
            await self.__engine.addIceCandidate(candidate)
        except ValueError as exc:
            logger.warning(
                "ConnectionEndpoint(%s) failed to add ICE candidate: %s",
                self.__role.value,
                exc,
            )
            raise CandidateApplyError(
                f"Failed to add candidate {candidate_to_sdp(candidate)!r}: {exc}"
            ) from exc
        self.__log_debug("addIceCandidate success")

    def __assertNotClosed(self) -> None:
        if self.__isClosed:
            raise InvalidStateError("ConnectionEndpoint is closed")

    def __log_debug(self, msg: str, *args: object) -> None:
        logger.debug(f"ConnectionEndpoint(%s) {msg}", self.__role.value, *args)

    def __nextState(
        self, description: RTCSessionDescription, is_local: bool
    ) -> SignalingState:
        self.__assertNotClosed()

        side = "local" if is_local else "remote"
        allowed = ROLE_DESCRIPTIONS[self.__role][0 if is_local else 1]
        if description.type != allowed:
            raise InvalidStateError(
                f"Cannot set {side} {description.type} as {self.__role.value}"
            )

        transitions = LOCAL_TRANSITIONS if is_local else REMOTE_TRANSITIONS
        state = transitions.get((description.type, self.__signalingState))
        if state is None:
            raise InvalidStateError(
                f"Cannot handle {side} {description.type} in signaling state "
                f'"{self.__signalingState.value}"'
            )
        return state

    def __onEngineCandidate(self, candidate: RTCIceCandidate) -> None:
        if not self.__isClosed:
            self.emit("icecandidate", candidate)

    def __onEngineIceState(self, state: str) -> None:
        if not self.__isClosed:
            self.__setIceConnectionState(IceConnectionState(state))

    def __onEngineTrack(self, event: RTCTrackEvent) -> None:
        if self.__isClosed:
            return
        for stream in event.streams:
            if stream.id not in self.__remoteStreams:
                self.__remoteStreams[stream.id] = stream
                self.__log_debug("received remote stream %s", stream.id)
                self.emit("stream", stream)

    def __setIceConnectionState(self, state: IceConnectionState) -> None:
        if state != self.__iceConnectionState:
            self.__log_debug(
                "iceConnectionState %s -> %s",
                self.__iceConnectionState.value,
                state.value,
            )
            self.__iceConnectionState = state
            self.emit("iceconnectionstatechange", state)

    def __setSignalingState(self, state: SignalingState) -> None:
        self.__log_debug(
            "signalingState %s -> %s", self.__signalingState.value, state.value
        )
        self.__signalingState = state
        self.emit("signalingstatechange", state)
