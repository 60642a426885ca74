import enum
import logging
from typing import Optional

from pyee.asyncio import AsyncIOEventEmitter

from .coordinator import CONNECTED_STATES, EngineFactory, NegotiationCoordinator
from .endpoint import ConnectionEndpoint, IceConnectionState
from .exceptions import InvalidStateError
from .mediastreams import MediaStream
from .rtcconfiguration import RTCConfiguration, RTCOfferOptions

logger = logging.getLogger(__name__)


class CallState(enum.Enum):
    IDLE = "idle"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"


class CallSession(AsyncIOEventEmitter):
    """
    A :class:`CallSession` places a call between two endpoints in the same
    process, from acquiring the local stream to hanging up.

    A typical session is `start()`, `call()`, `hangUp()` and finally
    `stop()`. Once hung up, `call()` may be invoked again to place a new call
    with the same stream.

    It emits a `"statechange"` event with the new :class:`CallState`.

    :param configuration: An optional :class:`RTCConfiguration`.
    :param engineFactory: An optional factory for the transport engines.
    :param offerOptions: Optional :class:`RTCOfferOptions` for the offer.
    """

    def __init__(
        self,
        configuration: Optional[RTCConfiguration] = None,
        engineFactory: Optional[EngineFactory] = None,
        offerOptions: Optional[RTCOfferOptions] = None,
    ) -> None:
        super().__init__()
        self.__configuration = configuration
        self.__coordinator: Optional[NegotiationCoordinator] = None
        self.__engineFactory = engineFactory
        self.__localStream: Optional[MediaStream] = None
        self.__offerOptions = offerOptions
        self.__remoteStream: Optional[MediaStream] = None
        self.__setupTime: Optional[float] = None
        self.__state = CallState.IDLE

    @property
    def coordinator(self) -> Optional[NegotiationCoordinator]:
        """
        The :class:`NegotiationCoordinator` of the current or last call.
        """
        return self.__coordinator

    @property
    def localStream(self) -> Optional[MediaStream]:
        return self.__localStream

    @property
    def remoteStream(self) -> Optional[MediaStream]:
        """
        The last :class:`MediaStream` received by the answering endpoint.
        """
        return self.__remoteStream

    @property
    def setupTime(self) -> Optional[float]:
        """
        The setup time of the last connected call, in seconds.
        """
        return self.__setupTime

    @property
    def state(self) -> CallState:
        return self.__state

    def start(self, stream: MediaStream) -> None:
        """
        Use `stream` as the local media for the following calls.
        """
        if self.__state in [CallState.NEGOTIATING, CallState.CONNECTED]:
            raise InvalidStateError("Cannot change the local stream during a call")

        logger.debug("Received local stream")
        for track in stream.getVideoTracks():
            logger.info("Using video device: %s", track.label)
        for track in stream.getAudioTracks():
            logger.info("Using audio device: %s", track.label)
        self.__localStream = stream

    async def call(self) -> None:
        """
        Place a call, returning once the offer/answer exchange is complete.
        """
        if self.__state not in [CallState.IDLE, CallState.CLOSED]:
            raise InvalidStateError(f'Cannot call in state "{self.__state.value}"')
        if self.__localStream is None:
            raise InvalidStateError("Cannot call before a local stream is started")

        coordinator = NegotiationCoordinator(
            configuration=self.__configuration,
            engineFactory=self.__engineFactory,
            offerOptions=self.__offerOptions,
        )
        coordinator.on("iceconnectionstatechange", self.__onIceConnectionStateChange)
        coordinator.on("setuptime", self.__onSetupTime)
        coordinator.on("stream", self.__onStream)
        coordinator.addStream(self.__localStream)
        self.__coordinator = coordinator
        self.__remoteStream = None

        self.__setState(CallState.NEGOTIATING)
        await coordinator.call()

    async def hangUp(self) -> None:
        """
        Hang up the current call, if any.
        """
        if self.__state in [CallState.IDLE, CallState.CLOSED]:
            return
        self.__setState(CallState.CLOSED)
        await self.__coordinator.hangUp()

    def stop(self) -> None:
        """
        Stop all local tracks and release the local stream.
        """
        if self.__localStream is not None:
            for track in self.__localStream.getTracks():
                track.stop()
            self.__localStream = None

    def __onIceConnectionStateChange(
        self, endpoint: ConnectionEndpoint, state: IceConnectionState
    ) -> None:
        if state in CONNECTED_STATES and self.__state == CallState.NEGOTIATING:
            self.__setState(CallState.CONNECTED)

    def __onSetupTime(self, setupTime: float) -> None:
        self.__setupTime = setupTime

    def __onStream(self, stream: MediaStream) -> None:
        logger.debug("Received remote stream %s", stream.id)
        self.__remoteStream = stream

    def __setState(self, state: CallState) -> None:
        logger.debug("CallSession() state %s -> %s", self.__state.value, state.value)
        self.__state = state
        self.emit("statechange", state)
