import functools
import logging
import time
from typing import Callable, Optional

from pyee.asyncio import AsyncIOEventEmitter

from .endpoint import ConnectionEndpoint, IceConnectionState, Role, SignalingState
from .engine import IceEngine, TransportEngine
from .exceptions import (
    CandidateApplyError,
    DescriptionApplyError,
    InvalidStateError,
    UnknownEndpointError,
)
from .mediastreams import MediaStream
from .rtcconfiguration import RTCConfiguration, RTCOfferOptions
from .rtcicetransport import RTCIceCandidate
from .sdp import candidate_to_sdp

CONNECTED_STATES = [IceConnectionState.CONNECTED, IceConnectionState.COMPLETED]

EngineFactory = Callable[[Optional[RTCConfiguration]], TransportEngine]

logger = logging.getLogger(__name__)


class NegotiationCoordinator(AsyncIOEventEmitter):
    """
    The :class:`NegotiationCoordinator` connects two :class:`ConnectionEndpoint`
    living in the same process.

    It runs a single offer/answer round from the `local` endpoint (the
    offerer) to the `remote` endpoint (the answerer), relays the candidates
    each endpoint discovers to the other one and measures how long the
    connection took to come up.

    It emits the following events:

    - `"iceconnectionstatechange"` with the endpoint and its new
      :class:`IceConnectionState`.
    - `"stream"` with each :class:`MediaStream` received by the answerer.
    - `"setuptime"` with the call setup time in seconds, at most once per call.
    - `"candidateerror"` with the endpoint and the :class:`CandidateApplyError`
      when a relayed candidate was rejected.

    :param configuration: An optional :class:`RTCConfiguration` handed to
        each engine.
    :param engineFactory: A callable which creates a :class:`TransportEngine`
        from the configuration, :class:`IceEngine` by default.
    :param offerOptions: Optional :class:`RTCOfferOptions` for the offer.
    """

    def __init__(
        self,
        configuration: Optional[RTCConfiguration] = None,
        engineFactory: Optional[EngineFactory] = None,
        offerOptions: Optional[RTCOfferOptions] = None,
    ) -> None:
        super().__init__()
        if engineFactory is None:
            engineFactory = IceEngine
        self.__offerOptions = offerOptions

        self.__local: Optional[ConnectionEndpoint] = ConnectionEndpoint(
            Role.OFFERER, engineFactory(configuration)
        )
        self.__remote: Optional[ConnectionEndpoint] = ConnectionEndpoint(
            Role.ANSWERER, engineFactory(configuration)
        )
        for endpoint in [self.__local, self.__remote]:
            endpoint.on(
                "icecandidate", functools.partial(self.__relayCandidate, endpoint)
            )
            endpoint.on(
                "iceconnectionstatechange",
                functools.partial(self.__iceStateChanged, endpoint),
            )
            endpoint.on(
                "candidateerror", functools.partial(self.__candidateFailed, endpoint)
            )
        self.__remote.on("stream", self.__streamReceived)

        self.__isClosed = False
        self.__negotiating = False
        self.__negotiationStart: Optional[float] = None
        self.__setupTime: Optional[float] = None

    @property
    def local(self) -> Optional[ConnectionEndpoint]:
        """
        The offering endpoint, or `None` once the call is hung up.
        """
        return self.__local

    @property
    def negotiationStart(self) -> Optional[float]:
        """
        The :func:`time.monotonic` timestamp at which :meth:`call` started,
        cleared once the connection is up.
        """
        return self.__negotiationStart

    @property
    def remote(self) -> Optional[ConnectionEndpoint]:
        """
        The answering endpoint, or `None` once the call is hung up.
        """
        return self.__remote

    @property
    def setupTime(self) -> Optional[float]:
        """
        The time in seconds between :meth:`call` and the connection coming up.
        """
        return self.__setupTime

    def addStream(self, stream: MediaStream) -> None:
        """
        Hand the local :class:`MediaStream` to the offering endpoint.
        """
        self.__assertNotClosed()
        self.__local.addStream(stream)

    async def call(self) -> None:
        """
        Run the offer/answer exchange between both endpoints.

        Failures abort the exchange and are re-raised, both endpoints are left
        open until :meth:`hangUp` is called.
        """
        self.__assertNotClosed()
        if self.__negotiating:
            raise InvalidStateError("Negotiation is already in progress")
        local, remote = self.__local, self.__remote
        for endpoint in [local, remote]:
            if endpoint.signalingState != SignalingState.NEW:
                raise InvalidStateError(
                    f"Cannot call, {self.getPeerName(endpoint)} endpoint is in "
                    f'signaling state "{endpoint.signalingState.value}"'
                )
        if local.localStream is None:
            raise InvalidStateError("Cannot call without a local stream")

        logger.debug("Starting call")
        self.__negotiating = True
        self.__negotiationStart = time.monotonic()
        try:
            logger.debug("local createOffer start")
            offer = await local.createOffer(self.__offerOptions)
            await local.setLocalDescription(offer)
            logger.debug("local setLocalDescription complete")

            await remote.setRemoteDescription(offer)
            logger.debug("remote setRemoteDescription complete")

            logger.debug("remote createAnswer start")
            answer = await remote.createAnswer()
            await remote.setLocalDescription(answer)
            logger.debug("remote setLocalDescription complete")

            await local.setRemoteDescription(answer)
            logger.debug("local setRemoteDescription complete")
        except (DescriptionApplyError, InvalidStateError) as exc:
            logger.warning("Negotiation failed: %s", exc)
            self.__negotiationStart = None
            raise
        finally:
            self.__negotiating = False

    def getOtherPeer(self, endpoint: ConnectionEndpoint) -> ConnectionEndpoint:
        """
        Return the endpoint facing `endpoint`.
        """
        if endpoint is not None:
            if endpoint is self.__local:
                return self.__remote
            elif endpoint is self.__remote:
                return self.__local
        raise UnknownEndpointError(f"Endpoint {endpoint!r} is not part of this call")

    def getPeerName(self, endpoint: ConnectionEndpoint) -> str:
        return "local" if endpoint.role == Role.OFFERER else "remote"

    async def hangUp(self) -> None:
        """
        Close both endpoints.

        Hanging up an already hung up call does nothing.
        """
        if self.__isClosed:
            return
        self.__isClosed = True
        self.__negotiationStart = None
        logger.debug("Ending call")

        local, remote = self.__local, self.__remote
        self.__local = None
        self.__remote = None
        await local.close()
        await remote.close()

        # no more events will be emitted, so remove all event listeners
        # to facilitate garbage collection.
        self.remove_all_listeners()

    def __assertNotClosed(self) -> None:
        if self.__isClosed:
            raise InvalidStateError("NegotiationCoordinator is hung up")

    def __candidateFailed(
        self, endpoint: ConnectionEndpoint, exc: CandidateApplyError
    ) -> None:
        logger.warning(
            "%s failed to add ICE candidate: %s", self.getPeerName(endpoint), exc
        )
        self.emit("candidateerror", endpoint, exc)

    def __iceStateChanged(
        self, endpoint: ConnectionEndpoint, state: IceConnectionState
    ) -> None:
        logger.debug("%s ICE state: %s", self.getPeerName(endpoint), state.value)
        if state in CONNECTED_STATES and self.__negotiationStart is not None:
            self.__setupTime = time.monotonic() - self.__negotiationStart
            self.__negotiationStart = None
            logger.info("Setup time: %.3fms", self.__setupTime * 1000)
            self.emit("setuptime", self.__setupTime)
        self.emit("iceconnectionstatechange", endpoint, state)

    async def __relayCandidate(
        self, endpoint: ConnectionEndpoint, candidate: RTCIceCandidate
    ) -> None:
        if self.__isClosed:
            return
        other = self.getOtherPeer(endpoint)
        try:
            await other.addRemoteCandidate(candidate)
        except CandidateApplyError as exc:
            self.__candidateFailed(other, exc)
        except InvalidStateError as exc:
            # the call was hung up while the candidate was in flight
            logger.debug("Dropped ICE candidate: %s", exc)
        else:
            logger.debug(
                "%s ICE candidate: %s",
                self.getPeerName(other),
                candidate_to_sdp(candidate),
            )

    def __streamReceived(self, stream: MediaStream) -> None:
        logger.debug("remote stream received: %s", stream.id)
        self.emit("stream", stream)
