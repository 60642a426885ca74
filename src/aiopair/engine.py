import asyncio
import ipaddress
import logging
import time
import uuid
from abc import ABCMeta, abstractmethod
from typing import Optional

from pyee.asyncio import AsyncIOEventEmitter

from . import sdp
from .codecs import find_common_codecs, get_codecs
from .events import RTCTrackEvent
from .mediastreams import MEDIA_KINDS, MediaStream, MediaStreamTrack, RemoteStreamTrack
from .rtccertificate import RTCCertificate
from .rtcconfiguration import RTCConfiguration, RTCOfferOptions
from .rtcicetransport import RTCIceCandidate, RTCIceTransport
from .rtcsessiondescription import RTCSessionDescription

DISCARD_HOST = "0.0.0.0"
DISCARD_PORT = 9
ICE_PROTOCOLS = ["udp", "tcp"]
MEDIA_PROFILE = "UDP/TLS/RTP/SAVPF"

logger = logging.getLogger(__name__)


def and_direction(a: str, b: str) -> str:
    return sdp.DIRECTIONS[sdp.DIRECTIONS.index(a) & sdp.DIRECTIONS.index(b)]


def reverse_direction(direction: str) -> str:
    if direction == "sendonly":
        return "recvonly"
    elif direction == "recvonly":
        return "sendonly"
    return direction


def wrap_session_description(
    session_description: Optional[sdp.SessionDescription],
) -> Optional[RTCSessionDescription]:
    if session_description is not None:
        return RTCSessionDescription(
            sdp=str(session_description), type=session_description.type
        )
    return None


class TransportEngine(AsyncIOEventEmitter, metaclass=ABCMeta):
    """
    The :class:`TransportEngine` is the network stack driven by a
    :class:`ConnectionEndpoint`.

    An engine signals that it cannot use a description or a candidate by
    raising :class:`ValueError`.

    It emits the following events:

    - `"icecandidate"` with an :class:`RTCIceCandidate` for each local
      candidate, in discovery order.
    - `"iceconnectionstatechange"` with the new ICE connection state.
    - `"track"` with an :class:`RTCTrackEvent` for each remote track.
    """

    @abstractmethod
    def addTrack(
        self, track: MediaStreamTrack, stream: Optional[MediaStream] = None
    ) -> None:
        """
        Add a local track which will be announced in descriptions.
        """

    @abstractmethod
    async def addIceCandidate(self, candidate: RTCIceCandidate) -> None:
        """
        Add a candidate received from the remote party.
        """

    @abstractmethod
    async def close(self) -> None:
        """
        Release all network resources.
        """

    @abstractmethod
    async def createAnswer(self) -> RTCSessionDescription:
        """
        Create an answer to the remote offer.
        """

    @abstractmethod
    async def createOffer(
        self, options: Optional[RTCOfferOptions] = None
    ) -> RTCSessionDescription:
        """
        Create an offer describing the local tracks.
        """

    @abstractmethod
    async def setLocalDescription(self, description: RTCSessionDescription) -> None:
        """
        Apply a description created by this engine.
        """

    @abstractmethod
    async def setRemoteDescription(self, description: RTCSessionDescription) -> None:
        """
        Apply a description received from the remote party.
        """


class IceEngine(TransportEngine):
    """
    A :class:`TransportEngine` which establishes connectivity using ICE.

    All media sections are bundled on a single ICE component. Local
    candidates are gathered once the local description is applied and
    trickled out through the `"icecandidate"` event.

    :param configuration: An optional :class:`RTCConfiguration`.
    """

    def __init__(self, configuration: Optional[RTCConfiguration] = None) -> None:
        super().__init__()
        self.__certificate = RTCCertificate.generateCertificate()
        self.__configuration = configuration or RTCConfiguration()
        self.__iceTransport = RTCIceTransport(self.__configuration.iceServers)
        self.__iceTransport.on("icecandidate", self.__onLocalCandidate)
        self.__iceTransport.on("gatheringstatechange", self.__maybeConnect)
        self.__iceTransport.on("statechange", self.__onIceStateChange)
        self.__remoteStreams: dict[str, MediaStream] = {}
        self.__streamId = str(uuid.uuid4())
        self.__tracks: list[tuple[MediaStreamTrack, Optional[MediaStream]]] = []

        self.__closed = False
        self.__connectTask: Optional[asyncio.Future[None]] = None
        self.__gatherTask: Optional[asyncio.Future[None]] = None
        self.__iceConnectionState = "new"

        self.__localDescription: Optional[sdp.SessionDescription] = None
        self.__remoteDescription: Optional[sdp.SessionDescription] = None

    @property
    def iceConnectionState(self) -> str:
        return self.__iceConnectionState

    @property
    def iceTransport(self) -> RTCIceTransport:
        return self.__iceTransport

    @property
    def localDescription(self) -> Optional[RTCSessionDescription]:
        return wrap_session_description(self.__localDescription)

    @property
    def remoteDescription(self) -> Optional[RTCSessionDescription]:
        return wrap_session_description(self.__remoteDescription)

    def addTrack(
        self, track: MediaStreamTrack, stream: Optional[MediaStream] = None
    ) -> None:
        if track.kind not in MEDIA_KINDS:
            raise ValueError(f'Invalid track kind "{track.kind}"')
        if track not in [t for t, _ in self.__tracks]:
            self.__tracks.append((track, stream))

    async def addIceCandidate(self, candidate: RTCIceCandidate) -> None:
        if self.__remoteDescription is None:
            raise ValueError("Cannot add a candidate without a remote description")
        if candidate.sdpMid is None and candidate.sdpMLineIndex is None:
            raise ValueError("Candidate must have either sdpMid or sdpMLineIndex")

        media = self.__remoteDescription.media
        if not any(
            candidate.sdpMid == m.mid or candidate.sdpMLineIndex == i
            for i, m in enumerate(media)
        ):
            raise ValueError("Candidate does not match any media section")

        if candidate.protocol.lower() not in ICE_PROTOCOLS:
            raise ValueError(f'Unsupported candidate protocol "{candidate.protocol}"')

        # mDNS candidates are resolved by the ICE agent
        if not candidate.ip.endswith(".local"):
            try:
                address = ipaddress.ip_address(candidate.ip)
            except ValueError:
                raise ValueError(
                    f'Malformed candidate address "{candidate.ip}"'
                ) from None

            families = set(
                ipaddress.ip_address(c.ip).version
                for c in self.__iceTransport.getLocalCandidates()
            )
            if families and address.version not in families:
                raise ValueError(f'Candidate address "{candidate.ip}" is unreachable')

        self.__log_debug("addIceCandidate(%s)", sdp.candidate_to_sdp(candidate))
        await self.__iceTransport.addRemoteCandidate(candidate)
        self.__maybeConnect()

    async def close(self) -> None:
        if self.__closed:
            return
        self.__closed = True

        for task in [self.__gatherTask, self.__connectTask]:
            if task is not None and not task.done():
                task.cancel()
        await self.__iceTransport.stop()

        # no more events will be emitted, so remove all event listeners
        # to facilitate garbage collection.
        self.remove_all_listeners()

    async def createAnswer(self) -> RTCSessionDescription:
        if self.__remoteDescription is None:
            raise ValueError("Cannot create an answer without a remote offer")

        description = self.__createDescription("answer")
        unused = list(self.__tracks)
        for remote_m in self.__remoteDescription.media:
            if remote_m.kind not in MEDIA_KINDS:
                raise ValueError(f'Unsupported media kind "{remote_m.kind}"')

            common = find_common_codecs(get_codecs(remote_m.kind), remote_m.codecs)
            if not common:
                raise ValueError(
                    f'No common codecs for {remote_m.kind} media "{remote_m.mid}"'
                )

            # pair the m-line with the first unused local track of that kind
            local = next((x for x in unused if x[0].kind == remote_m.kind), None)
            if local is not None:
                unused.remove(local)
                direction = "sendrecv"
            else:
                direction = "recvonly"

            media = self.__createMedia(
                kind=remote_m.kind,
                codecs=common,
                direction=and_direction(
                    direction, reverse_direction(remote_m.direction or "sendrecv")
                ),
                mid=remote_m.mid,
                local=local,
            )
            media.setup = "client"
            description.media.append(media)

        self.__addBundle(description)
        return wrap_session_description(description)

    async def createOffer(
        self, options: Optional[RTCOfferOptions] = None
    ) -> RTCSessionDescription:
        options = options or RTCOfferOptions()

        description = self.__createDescription("offer")
        for local in self.__tracks:
            description.media.append(
                self.__createMedia(
                    kind=local[0].kind,
                    codecs=get_codecs(local[0].kind),
                    direction="sendrecv",
                    mid=str(len(description.media)),
                    local=local,
                )
            )

        kinds = [track.kind for track, _ in self.__tracks]
        for kind, wanted in [
            ("audio", options.offerToReceiveAudio),
            ("video", options.offerToReceiveVideo),
        ]:
            if wanted and kind not in kinds:
                description.media.append(
                    self.__createMedia(
                        kind=kind,
                        codecs=get_codecs(kind),
                        direction="recvonly",
                        mid=str(len(description.media)),
                    )
                )

        if not description.media:
            raise ValueError("Cannot create an offer without any media")

        for media in description.media:
            media.setup = "auto"
        self.__addBundle(description)
        return wrap_session_description(description)

    async def setLocalDescription(self, description: RTCSessionDescription) -> None:
        self.__log_debug("setLocalDescription(%s)\n%s", description.type, description.sdp)

        parsed = self.__parse(description)
        self.__validate(parsed, is_local=True)

        # the offerer controls ICE nomination
        if parsed.type == "offer":
            self.__iceTransport.role = "controlling"

        self.__localDescription = parsed
        if self.__gatherTask is None:
            self.__gatherTask = asyncio.ensure_future(self.__gather())
        self.__maybeConnect()

    async def setRemoteDescription(self, description: RTCSessionDescription) -> None:
        self.__log_debug(
            "setRemoteDescription(%s)\n%s", description.type, description.sdp
        )

        parsed = self.__parse(description)
        self.__validate(parsed, is_local=False)

        self.__iceTransport.setRemoteParameters(parsed.media[0].ice)
        self.__remoteDescription = parsed

        # candidates may also be carried in the description itself
        for media in parsed.media:
            for candidate in media.ice_candidates:
                await self.__iceTransport.addRemoteCandidate(candidate)
            if media.ice_candidates_complete:
                await self.__iceTransport.addRemoteCandidate(None)

        for media in parsed.media:
            if media.msid and media.direction in ["sendrecv", "sendonly"]:
                bits = media.msid.split()
                stream_id = bits[0]
                track_id = bits[1] if len(bits) > 1 else None
                stream = self.__remoteStreams.get(stream_id)
                if stream is None:
                    stream = MediaStream(id=stream_id)
                    self.__remoteStreams[stream_id] = stream
                track = RemoteStreamTrack(kind=media.kind, id=track_id)
                stream.addTrack(track)
                self.emit("track", RTCTrackEvent(track=track, streams=[stream]))

        self.__maybeConnect()

    def __addBundle(self, description: sdp.SessionDescription) -> None:
        description.group.append(
            sdp.GroupDescription(
                semantic="BUNDLE", items=[media.mid for media in description.media]
            )
        )

    def __createDescription(self, type: str) -> sdp.SessionDescription:
        session_id = int(time.time())
        description = sdp.SessionDescription()
        description.origin = f"- {session_id} {session_id} IN IP4 0.0.0.0"
        description.msid_semantic.append(
            sdp.GroupDescription(semantic="WMS", items=["*"])
        )
        description.type = type
        return description

    def __createMedia(
        self,
        kind: str,
        codecs: list,
        direction: str,
        mid: Optional[str],
        local: Optional[tuple[MediaStreamTrack, Optional[MediaStream]]] = None,
    ) -> sdp.MediaDescription:
        media = sdp.MediaDescription(
            kind=kind,
            port=DISCARD_PORT,
            profile=MEDIA_PROFILE,
            fmt=[c.payloadType for c in codecs],
        )
        media.host = DISCARD_HOST
        media.direction = direction
        media.mid = mid
        media.rtcp_mux = True
        media.codecs = codecs
        if local is not None and direction in ["sendrecv", "sendonly"]:
            track, stream = local
            stream_id = stream.id if stream is not None else self.__streamId
            media.msid = f"{stream_id} {track.id}"

        media.ice = self.__iceTransport.getLocalParameters()
        media.ice_options = "trickle"
        media.fingerprints = self.__certificate.getFingerprints()
        return media

    async def __gather(self) -> None:
        try:
            await self.__iceTransport.gather()
        except OSError as exc:
            logger.warning("IceEngine() candidate gathering failed: %s", exc)
            self.__setIceConnectionState("failed")

    def __log_debug(self, msg: str, *args: object) -> None:
        logger.debug(f"IceEngine({self.__iceTransport.role}) {msg}", *args)

    def __maybeConnect(self) -> None:
        if (
            not self.__closed
            and self.__connectTask is None
            and self.__localDescription is not None
            and self.__remoteDescription is not None
            and self.__iceTransport.gatheringState == "complete"
            and self.__iceTransport.getRemoteCandidates()
        ):
            self.__connectTask = asyncio.ensure_future(self.__iceTransport.start())

    def __onIceStateChange(self) -> None:
        self.__setIceConnectionState(self.__iceTransport.state)

    def __onLocalCandidate(self, candidate: RTCIceCandidate) -> None:
        # bundled on the first media section
        candidate.sdpMid = self.__localDescription.media[0].mid
        candidate.sdpMLineIndex = 0
        self.__log_debug("icecandidate(%s)", sdp.candidate_to_sdp(candidate))
        self.emit("icecandidate", candidate)

    def __parse(self, description: RTCSessionDescription) -> sdp.SessionDescription:
        try:
            parsed = sdp.SessionDescription.parse(description.sdp)
        except (IndexError, KeyError, ValueError) as exc:
            raise ValueError(f"Malformed session description: {exc}") from exc
        parsed.type = description.type
        return parsed

    def __setIceConnectionState(self, state: str) -> None:
        if state != self.__iceConnectionState:
            self.__log_debug(
                "iceConnectionState %s -> %s", self.__iceConnectionState, state
            )
            self.__iceConnectionState = state
            self.emit("iceconnectionstatechange", state)

    def __validate(self, description: sdp.SessionDescription, is_local: bool) -> None:
        if not description.media:
            raise ValueError("Description does not contain any media section")

        for media in description.media:
            # check ICE credentials were provided
            if not media.ice.usernameFragment or not media.ice.password:
                raise ValueError("ICE username fragment or password is missing")

            # check a certificate fingerprint was provided
            if not media.fingerprints:
                raise ValueError("DTLS fingerprint is missing")

            # check DTLS role is allowed
            if description.type == "answer" and media.setup not in [
                "client",
                "server",
            ]:
                raise ValueError(
                    "DTLS setup attribute must be 'active' or 'passive' for an answer"
                )

            # check RTCP mux is used
            if media.kind in MEDIA_KINDS and not media.rtcp_mux:
                raise ValueError("RTCP mux is not enabled")

        # check the number of media section matches
        if description.type == "answer":
            offer = self.__remoteDescription if is_local else self.__localDescription
            if offer is None:
                raise ValueError("Cannot handle an answer without an offer")
            offer_media = [(media.kind, media.mid) for media in offer.media]
            answer_media = [(media.kind, media.mid) for media in description.media]
            if answer_media != offer_media:
                raise ValueError("Media sections in answer do not match offer")
