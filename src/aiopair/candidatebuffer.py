from collections import deque
from collections.abc import Iterator

from .rtcicetransport import RTCIceCandidate


class CandidateBuffer:
    """
    An ordered queue of :class:`RTCIceCandidate` awaiting delivery.

    Candidates come out in the order they were pushed, nothing is ever
    dropped except by :meth:`clear`.
    """

    def __init__(self) -> None:
        self.__candidates: deque[RTCIceCandidate] = deque()

    def __iter__(self) -> Iterator[RTCIceCandidate]:
        return iter(list(self.__candidates))

    def __len__(self) -> int:
        return len(self.__candidates)

    def clear(self) -> None:
        self.__candidates.clear()

    def drain(self) -> list[RTCIceCandidate]:
        """
        Remove and return all buffered candidates, oldest first.
        """
        candidates = list(self.__candidates)
        self.__candidates.clear()
        return candidates

    def push(self, candidate: RTCIceCandidate) -> None:
        self.__candidates.append(candidate)
