import asyncio
from typing import Optional

from aiopair import (
    AudioStreamTrack,
    CandidateApplyError,
    ConnectionEndpoint,
    DescriptionApplyError,
    IceConnectionState,
    InvalidStateError,
    MediaStream,
    Role,
    RTCSessionDescription,
    SignalingState,
    VideoStreamTrack,
)

from .utils import DummyEngine, TestCase, asynctest, dummy_candidate


def create_endpoint(
    role: Role, stream: Optional[MediaStream] = None
) -> tuple[ConnectionEndpoint, DummyEngine]:
    engine = DummyEngine()
    endpoint = ConnectionEndpoint(role, engine)
    if stream is not None:
        endpoint.addStream(stream)
    return endpoint, engine


def track_events(endpoint: ConnectionEndpoint) -> dict[str, list]:
    events: dict[str, list] = {
        "candidateerror": [],
        "icecandidate": [],
        "iceconnectionstatechange": [],
        "signalingstatechange": [],
        "stream": [],
    }
    for name, values in events.items():
        endpoint.on(name, values.append)
    return events


async def negotiate(offerer: ConnectionEndpoint, answerer: ConnectionEndpoint) -> None:
    offer = await offerer.createOffer()
    await offerer.setLocalDescription(offer)
    await answerer.setRemoteDescription(offer)
    answer = await answerer.createAnswer()
    await answerer.setLocalDescription(answer)
    await offerer.setRemoteDescription(answer)


class ConnectionEndpointTest(TestCase):
    @asynctest
    async def test_add_stream(self) -> None:
        audio = AudioStreamTrack()
        video = VideoStreamTrack()
        stream = MediaStream([audio, video])
        endpoint, engine = create_endpoint(Role.OFFERER, stream)

        self.assertEqual(endpoint.localStream, stream)
        self.assertEqual(engine.tracks, [(audio, stream), (video, stream)])

        await endpoint.close()
        with self.assertRaises(InvalidStateError):
            endpoint.addStream(stream)

    @asynctest
    async def test_negotiate(self) -> None:
        offerer, offerer_engine = create_endpoint(
            Role.OFFERER, MediaStream([AudioStreamTrack()])
        )
        answerer, answerer_engine = create_endpoint(Role.ANSWERER)
        offerer_events = track_events(offerer)
        answerer_events = track_events(answerer)
        self.assertEqual(offerer.role, Role.OFFERER)
        self.assertEqual(offerer.signalingState, SignalingState.NEW)
        self.assertEqual(offerer.iceConnectionState, IceConnectionState.NEW)
        self.assertIsNone(offerer.localDescription)
        self.assertIsNone(offerer.remoteDescription)

        offer = await offerer.createOffer()
        self.assertEqual(offer.type, "offer")
        self.assertEqual(offerer.signalingState, SignalingState.NEW)

        await offerer.setLocalDescription(offer)
        self.assertEqual(offerer.localDescription, offer)
        self.assertEqual(offerer_engine.localDescription, offer)

        await answerer.setRemoteDescription(offer)
        self.assertEqual(answerer.remoteDescription, offer)
        self.assertEqual(len(answerer_events["stream"]), 1)

        answer = await answerer.createAnswer()
        self.assertEqual(answer.type, "answer")
        await answerer.setLocalDescription(answer)
        await offerer.setRemoteDescription(answer)

        self.assertEqual(
            offerer_events["signalingstatechange"],
            [SignalingState.HAVE_LOCAL_OFFER, SignalingState.STABLE],
        )
        self.assertEqual(
            answerer_events["signalingstatechange"],
            [SignalingState.HAVE_REMOTE_OFFER, SignalingState.STABLE],
        )
        self.assertEqual(offerer_events["stream"], [])

        await offerer.close()
        await answerer.close()

    @asynctest
    async def test_create_answer_in_new(self) -> None:
        endpoint, engine = create_endpoint(Role.ANSWERER)

        with self.assertRaises(InvalidStateError) as cm:
            await endpoint.createAnswer()
        self.assertEqual(
            str(cm.exception), 'Cannot create answer in signaling state "new"'
        )
        self.assertEqual(endpoint.signalingState, SignalingState.NEW)

    @asynctest
    async def test_create_offer_as_answerer(self) -> None:
        endpoint, engine = create_endpoint(Role.ANSWERER)

        with self.assertRaises(InvalidStateError) as cm:
            await endpoint.createOffer()
        self.assertEqual(str(cm.exception), "Cannot create offer as answerer")

    @asynctest
    async def test_create_offer_twice(self) -> None:
        endpoint, engine = create_endpoint(
            Role.OFFERER, MediaStream([AudioStreamTrack()])
        )
        await endpoint.setLocalDescription(await endpoint.createOffer())

        with self.assertRaises(InvalidStateError) as cm:
            await endpoint.createOffer()
        self.assertEqual(
            str(cm.exception),
            'Cannot create offer in signaling state "have-local-offer"',
        )

    @asynctest
    async def test_create_offer_rejected(self) -> None:
        endpoint, engine = create_endpoint(Role.OFFERER)
        engine.rejectCreate = True

        with self.assertRaises(DescriptionApplyError) as cm:
            await endpoint.createOffer()
        self.assertEqual(
            str(cm.exception), "Failed to create offer: No common codecs"
        )
        self.assertEqual(endpoint.signalingState, SignalingState.NEW)

    @asynctest
    async def test_set_description_wrong_role(self) -> None:
        offerer, _ = create_endpoint(Role.OFFERER)
        answerer, _ = create_endpoint(Role.ANSWERER)
        offer = RTCSessionDescription(sdp="v=0\r\n", type="offer")
        answer = RTCSessionDescription(sdp="v=0\r\n", type="answer")

        with self.assertRaises(InvalidStateError) as cm:
            await offerer.setRemoteDescription(offer)
        self.assertEqual(str(cm.exception), "Cannot set remote offer as offerer")

        with self.assertRaises(InvalidStateError) as cm:
            await answerer.setLocalDescription(offer)
        self.assertEqual(str(cm.exception), "Cannot set local offer as answerer")

        with self.assertRaises(InvalidStateError) as cm:
            await answerer.setLocalDescription(answer)
        self.assertEqual(
            str(cm.exception), 'Cannot handle local answer in signaling state "new"'
        )

        with self.assertRaises(InvalidStateError) as cm:
            await offerer.setRemoteDescription(answer)
        self.assertEqual(
            str(cm.exception), 'Cannot handle remote answer in signaling state "new"'
        )

        self.assertEqual(offerer.signalingState, SignalingState.NEW)
        self.assertEqual(answerer.signalingState, SignalingState.NEW)

    @asynctest
    async def test_set_description_rejected(self) -> None:
        offerer, offerer_engine = create_endpoint(
            Role.OFFERER, MediaStream([AudioStreamTrack()])
        )
        answerer, answerer_engine = create_endpoint(Role.ANSWERER)
        answerer_engine.rejectDescriptions = True
        offer = await offerer.createOffer()
        await offerer.setLocalDescription(offer)

        with self.assertRaises(DescriptionApplyError) as cm:
            await answerer.setRemoteDescription(offer)
        self.assertEqual(
            str(cm.exception), "Failed to set remote offer: Description rejected"
        )
        self.assertEqual(answerer.signalingState, SignalingState.NEW)
        self.assertIsNone(answerer.remoteDescription)

        # the endpoint is still usable
        answerer_engine.rejectDescriptions = False
        await answerer.setRemoteDescription(offer)
        self.assertEqual(answerer.signalingState, SignalingState.HAVE_REMOTE_OFFER)

    @asynctest
    async def test_add_remote_candidate_buffered(self) -> None:
        offerer, _ = create_endpoint(Role.OFFERER, MediaStream([AudioStreamTrack()]))
        answerer, answerer_engine = create_endpoint(Role.ANSWERER)
        candidates = [dummy_candidate(f"192.168.0.{i}") for i in range(1, 4)]

        for candidate in candidates:
            await answerer.addRemoteCandidate(candidate)
        self.assertEqual(list(answerer.pendingCandidates), candidates)
        self.assertEqual(answerer_engine.remoteCandidates, [])

        offer = await offerer.createOffer()
        await answerer.setRemoteDescription(offer)
        self.assertEqual(len(answerer.pendingCandidates), 0)
        self.assertEqual(answerer_engine.remoteCandidates, candidates)

        # later candidates are applied immediately
        late = dummy_candidate("192.168.0.4")
        await answerer.addRemoteCandidate(late)
        self.assertEqual(answerer_engine.remoteCandidates, candidates + [late])

    @asynctest
    async def test_add_remote_candidate_concurrent(self) -> None:
        offerer, _ = create_endpoint(Role.OFFERER, MediaStream([AudioStreamTrack()]))
        answerer, answerer_engine = create_endpoint(Role.ANSWERER)
        early = [dummy_candidate(f"192.168.0.{i}") for i in range(1, 4)]
        late = [dummy_candidate(f"192.168.0.{i}") for i in range(4, 7)]
        for candidate in early:
            await answerer.addRemoteCandidate(candidate)

        # late candidates race with the flush of the early ones
        offer = await offerer.createOffer()
        await asyncio.gather(
            answerer.setRemoteDescription(offer),
            *[answerer.addRemoteCandidate(c) for c in late],
        )
        self.assertEqual(answerer_engine.remoteCandidates, early + late)

    @asynctest
    async def test_add_remote_candidate_rejected(self) -> None:
        offerer, _ = create_endpoint(Role.OFFERER, MediaStream([AudioStreamTrack()]))
        answerer, answerer_engine = create_endpoint(Role.ANSWERER)
        answerer_engine.rejectedAddresses = ["10.0.0.1"]
        events = track_events(answerer)
        await answerer.setRemoteDescription(await offerer.createOffer())

        with self.assertRaises(CandidateApplyError) as cm:
            await answerer.addRemoteCandidate(dummy_candidate("10.0.0.1"))
        self.assertEqual(
            str(cm.exception),
            "Failed to add candidate '10.0.0.1-1234 1 udp 2130706431 10.0.0.1 1234 "
            "typ host': Candidate address \"10.0.0.1\" is unreachable",
        )
        self.assertEqual(events["candidateerror"], [])

        # the endpoint carries on
        good = dummy_candidate("192.168.0.1")
        await answerer.addRemoteCandidate(good)
        self.assertEqual(answerer_engine.remoteCandidates, [good])

    @asynctest
    async def test_add_remote_candidate_rejected_while_buffered(self) -> None:
        offerer, _ = create_endpoint(Role.OFFERER, MediaStream([AudioStreamTrack()]))
        answerer, answerer_engine = create_endpoint(Role.ANSWERER)
        answerer_engine.rejectedAddresses = ["10.0.0.1"]
        events = track_events(answerer)
        bad = dummy_candidate("10.0.0.1")
        good = dummy_candidate("192.168.0.1")

        await answerer.addRemoteCandidate(bad)
        await answerer.addRemoteCandidate(good)
        await answerer.setRemoteDescription(await offerer.createOffer())

        self.assertEqual(len(events["candidateerror"]), 1)
        self.assertIsInstance(events["candidateerror"][0], CandidateApplyError)
        self.assertEqual(answerer_engine.remoteCandidates, [good])
        self.assertEqual(answerer.signalingState, SignalingState.HAVE_REMOTE_OFFER)

    @asynctest
    async def test_add_remote_candidate_when_closed(self) -> None:
        endpoint, _ = create_endpoint(Role.ANSWERER)
        await endpoint.close()

        with self.assertRaises(InvalidStateError) as cm:
            await endpoint.addRemoteCandidate(dummy_candidate("192.168.0.1"))
        self.assertEqual(str(cm.exception), "ConnectionEndpoint is closed")

    @asynctest
    async def test_add_remote_candidate_queued_when_closed(self) -> None:
        offerer, _ = create_endpoint(Role.OFFERER, MediaStream([AudioStreamTrack()]))
        answerer, answerer_engine = create_endpoint(Role.ANSWERER)
        await answerer.setRemoteDescription(await offerer.createOffer())

        # the second candidate waits for the first one to be applied
        first = dummy_candidate("192.168.0.1")
        second = dummy_candidate("192.168.0.2")
        results = asyncio.gather(
            answerer.addRemoteCandidate(first),
            answerer.addRemoteCandidate(second),
            return_exceptions=True,
        )
        await asyncio.sleep(0)
        await answerer.close()

        first_result, second_result = await results
        self.assertIsNone(first_result)
        self.assertIsInstance(second_result, InvalidStateError)
        self.assertEqual(str(second_result), "ConnectionEndpoint is closed")
        self.assertEqual(answerer_engine.remoteCandidates, [first])
        self.assertEqual(len(answerer.pendingCandidates), 0)

    @asynctest
    async def test_close(self) -> None:
        endpoint, engine = create_endpoint(Role.ANSWERER)
        await endpoint.addRemoteCandidate(dummy_candidate("192.168.0.1"))
        events = track_events(endpoint)

        # close once
        await endpoint.close()
        self.assertEqual(endpoint.signalingState, SignalingState.CLOSED)
        self.assertEqual(endpoint.iceConnectionState, IceConnectionState.CLOSED)
        self.assertEqual(len(endpoint.pendingCandidates), 0)
        self.assertEqual(engine.closeCount, 1)

        # close twice
        await endpoint.close()
        self.assertEqual(engine.closeCount, 1)

        self.assertEqual(events["signalingstatechange"], [SignalingState.CLOSED])
        self.assertEqual(
            events["iceconnectionstatechange"], [IceConnectionState.CLOSED]
        )

    @asynctest
    async def test_close_during_set_remote_description(self) -> None:
        offerer, _ = create_endpoint(Role.OFFERER, MediaStream([AudioStreamTrack()]))
        answerer, _ = create_endpoint(Role.ANSWERER)
        offer = await offerer.createOffer()

        task = asyncio.ensure_future(answerer.setRemoteDescription(offer))
        await asyncio.sleep(0)
        await answerer.close()

        with self.assertRaises(InvalidStateError):
            await task
        self.assertEqual(answerer.signalingState, SignalingState.CLOSED)
        self.assertIsNone(answerer.remoteDescription)

    @asynctest
    async def test_no_events_after_close(self) -> None:
        endpoint, engine = create_endpoint(Role.OFFERER)
        await endpoint.close()

        events = track_events(endpoint)
        engine.emit("icecandidate", dummy_candidate("192.168.0.1"))
        engine.setIceState("connected")
        self.assertEqual(events["icecandidate"], [])
        self.assertEqual(events["iceconnectionstatechange"], [])
        self.assertEqual(endpoint.iceConnectionState, IceConnectionState.CLOSED)

    @asynctest
    async def test_ice_connection_state(self) -> None:
        endpoint, engine = create_endpoint(Role.OFFERER)
        events = track_events(endpoint)

        engine.setIceState("checking")
        engine.setIceState("connected")
        engine.setIceState("connected")
        engine.setIceState("completed")
        self.assertEqual(
            events["iceconnectionstatechange"],
            [
                IceConnectionState.CHECKING,
                IceConnectionState.CONNECTED,
                IceConnectionState.COMPLETED,
            ],
        )
        self.assertEqual(endpoint.iceConnectionState, IceConnectionState.COMPLETED)

    @asynctest
    async def test_local_candidates_forwarded(self) -> None:
        endpoint, engine = create_endpoint(
            Role.OFFERER, MediaStream([AudioStreamTrack()])
        )
        engine.localCandidates = [
            dummy_candidate("192.168.0.1"),
            dummy_candidate("192.168.0.2"),
        ]
        events = track_events(endpoint)

        await endpoint.setLocalDescription(await endpoint.createOffer())
        self.assertEqual(events["icecandidate"], engine.localCandidates)

    @asynctest
    async def test_stream_emitted_once(self) -> None:
        stream = MediaStream([AudioStreamTrack(), VideoStreamTrack()])
        offerer, _ = create_endpoint(Role.OFFERER, stream)
        answerer, _ = create_endpoint(Role.ANSWERER)
        events = track_events(answerer)

        await negotiate(offerer, answerer)

        self.assertEqual(len(events["stream"]), 1)
        remote_stream = events["stream"][0]
        self.assertEqual(remote_stream.id, stream.id)
        self.assertEqual(
            [t.kind for t in remote_stream.getTracks()], ["audio", "video"]
        )
        self.assertEqual(
            [t.id for t in remote_stream.getTracks()],
            [t.id for t in stream.getTracks()],
        )
