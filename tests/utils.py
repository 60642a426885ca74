import asyncio
import functools
import logging
import os
import unittest
from collections.abc import Callable, Coroutine
from typing import Optional, ParamSpec, TypeVar, cast

from aiopair.engine import TransportEngine
from aiopair.events import RTCTrackEvent
from aiopair.mediastreams import (
    MediaStream,
    MediaStreamTrack,
    RemoteStreamTrack,
)
from aiopair.rtcconfiguration import RTCConfiguration, RTCOfferOptions
from aiopair.rtcicetransport import RTCIceCandidate
from aiopair.rtcsessiondescription import RTCSessionDescription
from aiopair.sdp import SessionDescription

P = ParamSpec("P")
T = TypeVar("T")


def lf2crlf(x: str) -> str:
    return x.replace("\n", "\r\n")


class DummyEngine(TransportEngine):
    """
    A deterministic :class:`TransportEngine` which moves no packets.

    Descriptions list one m-line per local track, local candidates are
    emitted when the local description is applied and ICE states are driven
    by the test through :meth:`setIceState`.
    """

    def __init__(self, configuration: Optional[RTCConfiguration] = None) -> None:
        super().__init__()
        self.closeCount = 0
        self.configuration = configuration
        self.localCandidates: list[RTCIceCandidate] = []
        self.localDescription: Optional[RTCSessionDescription] = None
        self.rejectCreate = False
        self.rejectDescriptions = False
        self.rejectedAddresses: list[str] = []
        self.remoteCandidates: list[RTCIceCandidate] = []
        self.remoteDescription: Optional[RTCSessionDescription] = None
        self.tracks: list[tuple[MediaStreamTrack, Optional[MediaStream]]] = []

    def addTrack(
        self, track: MediaStreamTrack, stream: Optional[MediaStream] = None
    ) -> None:
        self.tracks.append((track, stream))

    async def addIceCandidate(self, candidate: RTCIceCandidate) -> None:
        await asyncio.sleep(0)
        if candidate.ip in self.rejectedAddresses:
            raise ValueError(f'Candidate address "{candidate.ip}" is unreachable')
        self.remoteCandidates.append(candidate)

    async def close(self) -> None:
        self.closeCount += 1
        await asyncio.sleep(0)

    async def createAnswer(self) -> RTCSessionDescription:
        return await self.__create("answer")

    async def createOffer(
        self, options: Optional[RTCOfferOptions] = None
    ) -> RTCSessionDescription:
        return await self.__create("offer")

    async def setLocalDescription(self, description: RTCSessionDescription) -> None:
        await asyncio.sleep(0)
        if self.rejectDescriptions:
            raise ValueError("Description rejected")
        self.localDescription = description
        for candidate in self.localCandidates:
            self.emit("icecandidate", candidate)
        await asyncio.sleep(0)

    async def setRemoteDescription(self, description: RTCSessionDescription) -> None:
        await asyncio.sleep(0)
        if self.rejectDescriptions:
            raise ValueError("Description rejected")
        self.remoteDescription = description

        streams: dict[str, MediaStream] = {}
        for media in SessionDescription.parse(description.sdp).media:
            if media.msid:
                stream_id, track_id = media.msid.split()
                stream = streams.setdefault(stream_id, MediaStream(id=stream_id))
                track = RemoteStreamTrack(kind=media.kind, id=track_id)
                stream.addTrack(track)
                self.emit("track", RTCTrackEvent(track=track, streams=[stream]))
        await asyncio.sleep(0)

    def setIceState(self, state: str) -> None:
        self.emit("iceconnectionstatechange", state)

    async def __create(self, type: str) -> RTCSessionDescription:
        await asyncio.sleep(0)
        if self.rejectCreate:
            raise ValueError("No common codecs")

        lines = ["v=0", "o=- 0 0 IN IP4 0.0.0.0", "s=-", "t=0 0"]
        for i, (track, stream) in enumerate(self.tracks):
            lines += [f"m={track.kind} 9 UDP/TLS/RTP/SAVPF 0", f"a=mid:{i}"]
            if stream is not None:
                lines += [f"a=msid:{stream.id} {track.id}"]
        return RTCSessionDescription(sdp="\r\n".join(lines) + "\r\n", type=type)


class TestCase(unittest.TestCase):
    def ensureIsInstance(self, obj: object, cls: type[T]) -> T:
        self.assertIsInstance(obj, cls)
        return cast(T, obj)


def asynctest(
    coro: Callable[P, Coroutine[None, None, None]],
) -> Callable[P, None]:
    @functools.wraps(coro)
    def wrap(*args: P.args, **kwargs: P.kwargs) -> None:
        asyncio.run(coro(*args, **kwargs))

    return wrap


def dummy_candidate(ip: str, port: int = 1234) -> RTCIceCandidate:
    return RTCIceCandidate(
        component=1,
        foundation=f"{ip}-{port}",
        ip=ip,
        port=port,
        priority=2130706431,
        protocol="udp",
        type="host",
        sdpMid="0",
        sdpMLineIndex=0,
    )


async def flush_tasks() -> None:
    """
    Let pending event handler tasks run.
    """
    for i in range(100):
        await asyncio.sleep(0)


if os.environ.get("AIOPAIR_DEBUG"):
    logging.basicConfig(level=logging.DEBUG)
