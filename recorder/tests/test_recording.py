"""
Tests for RecordingCoordinator (start-record / stop-record orchestration).
"""

import asyncio

import pytest

from recorder.errors import PortExhaustedError, ProcessSpawnError, RecordingStateError
from recorder.ports import PortAllocator
from recorder.session.peer import PeerState
from recorder.session.recording import RecordingCoordinator, consumer_rtp_capabilities
from recorder.session.registry import SessionRegistry
from recorder.tests.test_doubles import FakeProducer, FakeSupervisor, make_config


def peer_with_producers(registry, *kinds):
    peer = registry.create_peer()
    for index, kind in enumerate(kinds):
        registry.add_producer(peer.session_id, FakeProducer(f"producer-{index}", kind))
    return peer


class TestStartRecord:

    @pytest.mark.timeout(5)
    def test_publishes_every_producer(self, registry, recorder, engine, supervisor, ports):
        peer = peer_with_producers(registry, "audio", "video")

        async def scenario():
            task = await recorder.start_record(peer.session_id)
            await task

        asyncio.run(scenario())

        plain = engine.plain_transports()
        assert len(plain) == 2
        assert [t.connect_params["ip"] for t in plain] == ["127.0.0.1", "127.0.0.1"]
        assert [t.connect_params["port"] for t in plain] == [40000, 40001]
        assert all(t.connect_params["rtcp_port"] is None for t in plain)

        descriptor = supervisor.descriptors[0]
        assert descriptor.file_name.isdigit()
        assert [s.kind for s in descriptor.streams] == ["audio", "video"]
        assert [s.remote_rtp_port for s in descriptor.streams] == [40000, 40001]

        assert peer.state == PeerState.RECORDING
        assert peer.process is supervisor.processes[0]
        assert sorted(peer.ports) == [40000, 40001]
        assert ports.leased_count == 2

    @pytest.mark.timeout(5)
    def test_consumers_paused_until_settle_delay(self, registry, engine, supervisor, router):
        config = make_config(settle_delay_ms=50)
        recorder = RecordingCoordinator(registry, supervisor, engine, router, config)
        peer = peer_with_producers(registry, "video")

        async def scenario():
            task = await recorder.start_record(peer.session_id)
            consumer = engine.plain_transports()[0].consumers[0]
            assert consumer.paused
            assert consumer.key_frame_requests == 0
            await task
            return consumer

        consumer = asyncio.run(scenario())
        assert not consumer.paused
        assert consumer.key_frame_requests == 1

    @pytest.mark.timeout(5)
    def test_consumer_uses_router_codec_of_same_kind(self, registry, recorder, engine, router):
        peer = peer_with_producers(registry, "audio")

        async def scenario():
            await (await recorder.start_record(peer.session_id))

        asyncio.run(scenario())

        consumer = engine.plain_transports()[0].consumers[0]
        assert consumer.rtp_capabilities["rtcpFeedback"] == []
        assert [c["mimeType"] for c in consumer.rtp_capabilities["codecs"]] == ["audio/opus"]
        assert consumer_rtp_capabilities(router, "video")["codecs"][0]["mimeType"] == "video/VP8"

    @pytest.mark.timeout(5)
    def test_each_transport_gets_its_own_options(self, registry, recorder, engine):
        peer = peer_with_producers(registry, "audio", "video")

        async def scenario():
            await (await recorder.start_record(peer.session_id))

        asyncio.run(scenario())

        first, second = engine.plain_transports()
        assert first.options == second.options
        assert first.options is not second.options

    @pytest.mark.timeout(5)
    def test_separate_rtcp_ports_without_rtcp_mux(self, registry, engine, supervisor, router, ports):
        config = make_config(rtcp_mux=False)
        recorder = RecordingCoordinator(registry, supervisor, engine, router, config)
        peer = peer_with_producers(registry, "video")

        async def scenario():
            await (await recorder.start_record(peer.session_id))

        asyncio.run(scenario())

        transport = engine.plain_transports()[0]
        assert transport.connect_params == {"ip": "127.0.0.1", "port": 40000, "rtcp_port": 40001}
        stream = supervisor.descriptors[0].streams[0]
        assert stream.remote_rtcp_port == 40001
        assert stream.local_rtcp_port == 50001
        assert ports.leased_count == 2

    def test_zero_producers_records_without_resources(self, registry, recorder, supervisor, ports):
        peer = registry.create_peer()

        async def scenario():
            task = await recorder.start_record(peer.session_id)
            assert task is None
            assert peer.state == PeerState.RECORDING
            await recorder.stop_record(peer.session_id)

        asyncio.run(scenario())

        assert ports.leased_count == 0
        assert supervisor.descriptors == []
        assert peer.state == PeerState.NEGOTIATING

    def test_start_twice_rejected(self, registry, recorder):
        peer = registry.create_peer()

        async def scenario():
            await recorder.start_record(peer.session_id)
            await recorder.start_record(peer.session_id)

        with pytest.raises(RecordingStateError):
            asyncio.run(scenario())


class TestStartRecordRollback:

    def test_spawn_failure_rolls_back(self, registry, engine, router, ports):
        config = make_config()
        supervisor = FakeSupervisor(fail=ProcessSpawnError("ffmpeg not found"))
        recorder = RecordingCoordinator(registry, supervisor, engine, router, config)
        peer = peer_with_producers(registry, "audio", "video")

        with pytest.raises(ProcessSpawnError):
            asyncio.run(recorder.start_record(peer.session_id))

        assert ports.leased_count == 0
        assert peer.ports == []
        assert all(t.close_count == 1 for t in engine.plain_transports())
        assert peer.state == PeerState.NEGOTIATING
        assert peer.process is None

    def test_port_exhaustion_rolls_back(self, engine, router, supervisor):
        config = make_config(rtp_port_min=40000, rtp_port_max=40000)
        allocator = PortAllocator(config.rtp_port_min, config.rtp_port_max)
        registry = SessionRegistry(allocator)
        recorder = RecordingCoordinator(registry, supervisor, engine, router, config)
        peer = peer_with_producers(registry, "audio", "video")

        with pytest.raises(PortExhaustedError):
            asyncio.run(recorder.start_record(peer.session_id))

        assert allocator.leased_count == 0
        assert len(engine.plain_transports()) == 2
        assert all(t.closed for t in engine.plain_transports())
        assert supervisor.descriptors == []
        assert peer.state == PeerState.NEGOTIATING

    def test_engine_failure_rolls_back(self, registry, recorder, engine, ports):
        peer = peer_with_producers(registry, "video")
        original = engine.create_transport

        async def failing_consume_transport(kind, router, options=None):
            transport = await original(kind, router, options)
            transport.fail_consume = True
            return transport

        engine.create_transport = failing_consume_transport

        with pytest.raises(RuntimeError):
            asyncio.run(recorder.start_record(peer.session_id))

        assert ports.leased_count == 0
        assert engine.plain_transports()[0].closed
        assert peer.state == PeerState.NEGOTIATING


class TestStopRecord:

    @pytest.mark.timeout(5)
    def test_stop_releases_ports_and_kills_process(self, registry, recorder, engine, supervisor, ports):
        peer = peer_with_producers(registry, "audio", "video")

        async def scenario():
            await (await recorder.start_record(peer.session_id))
            await recorder.stop_record(peer.session_id)

        asyncio.run(scenario())

        assert supervisor.processes[0].stop_calls == 1
        assert ports.leased_count == 0
        assert all(t.close_count == 1 for t in engine.plain_transports())
        assert peer.state == PeerState.NEGOTIATING

    def test_stop_without_recording_rejected(self, registry, recorder):
        peer = registry.create_peer()
        with pytest.raises(RecordingStateError):
            asyncio.run(recorder.stop_record(peer.session_id))
