import argparse
import asyncio
import logging

from aiopair import (
    AudioStreamTrack,
    CallSession,
    CallState,
    MediaStream,
    RTCConfiguration,
    RTCIceServer,
    VideoStreamTrack,
)


async def run(session: CallSession, stream: MediaStream, timeout: float) -> None:
    connected = asyncio.Event()

    @session.on("statechange")
    def on_statechange(state: CallState) -> None:
        print("Call is %s" % state.value)
        if state == CallState.CONNECTED:
            connected.set()

    # "Start"
    session.start(stream)

    # "Call"
    await session.call()
    try:
        await asyncio.wait_for(connected.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        print("Call did not connect within %.1f seconds" % timeout)
    else:
        print("Setup time: %.3fms" % (session.setupTime * 1000))
        remote = session.remoteStream
        if remote is not None:
            print(
                "Received stream %s (%s)"
                % (remote.id, ", ".join(t.kind for t in remote.getTracks()))
            )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Place a call between two endpoints in the same process"
    )
    parser.add_argument("--audio", action="store_true", help="Send an audio track.")
    parser.add_argument("--video", action="store_true", help="Send a video track.")
    parser.add_argument("--stun-server", help="STUN server, e.g. stun:stun.l.google.com:19302")
    parser.add_argument(
        "--timeout", type=float, default=10, help="Seconds to wait for the connection."
    )
    parser.add_argument("--verbose", "-v", action="count")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.INFO)

    # create media source
    tracks = []
    if args.audio or not args.video:
        tracks.append(AudioStreamTrack(label="Synthetic audio"))
    if args.video:
        tracks.append(VideoStreamTrack(label="Synthetic video"))
    stream = MediaStream(tracks)

    # create call session
    if args.stun_server:
        configuration = RTCConfiguration(iceServers=[RTCIceServer(args.stun_server)])
    else:
        configuration = None
    session = CallSession(configuration=configuration)

    async def main() -> None:
        try:
            await run(session=session, stream=stream, timeout=args.timeout)
        finally:
            # "Hang Up"
            await session.hangUp()
            session.stop()

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
