import uuid
from typing import Optional

from pyee.asyncio import AsyncIOEventEmitter

MEDIA_KINDS = ["audio", "video"]


class MediaStreamTrack(AsyncIOEventEmitter):
    """
    A single media track within a stream.

    Tracks only describe the media which is negotiated: capturing and
    rendering frames is left to the application.
    """

    kind = "unknown"

    def __init__(self, label: str = "", id: Optional[str] = None) -> None:
        super().__init__()
        self.__ended = False
        self._id = id or str(uuid.uuid4())
        self.label = label

    @property
    def id(self) -> str:
        """
        An automatically generated globally unique ID.
        """
        return self._id

    @property
    def readyState(self) -> str:
        return "ended" if self.__ended else "live"

    def stop(self) -> None:
        if not self.__ended:
            self.__ended = True
            self.emit("ended")

            # no more events will be emitted, so remove all event listeners
            # to facilitate garbage collection.
            self.remove_all_listeners()


class AudioStreamTrack(MediaStreamTrack):
    kind = "audio"


class VideoStreamTrack(MediaStreamTrack):
    kind = "video"


class RemoteStreamTrack(MediaStreamTrack):
    def __init__(self, kind: str, id: Optional[str] = None) -> None:
        super().__init__(id=id)
        self.kind = kind


class MediaStream:
    """
    A group of :class:`MediaStreamTrack` which are rendered together.
    """

    def __init__(
        self, tracks: Optional[list[MediaStreamTrack]] = None, id: Optional[str] = None
    ) -> None:
        self.__tracks: list[MediaStreamTrack] = []
        self.id = id or str(uuid.uuid4())
        for track in tracks or []:
            self.addTrack(track)

    @property
    def active(self) -> bool:
        return any(track.readyState == "live" for track in self.__tracks)

    def addTrack(self, track: MediaStreamTrack) -> None:
        if track not in self.__tracks:
            self.__tracks.append(track)

    def getTracks(self) -> list[MediaStreamTrack]:
        return list(self.__tracks)

    def getAudioTracks(self) -> list[MediaStreamTrack]:
        return [t for t in self.__tracks if t.kind == "audio"]

    def getVideoTracks(self) -> list[MediaStreamTrack]:
        return [t for t in self.__tracks if t.kind == "video"]
