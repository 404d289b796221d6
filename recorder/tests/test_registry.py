"""
Tests for SessionRegistry.

Covers: peer lifecycle, lookups, recording teardown, exactly-once release of
ports/transports/processes under repeated and concurrent destroy.
"""

import asyncio
from unittest.mock import Mock

import pytest

from recorder.errors import PeerNotFoundError, RecordingStateError, TransportNotFoundError
from recorder.session.peer import PeerState
from recorder.tests.test_doubles import FakeConsumer, FakeProcess, FakeProducer, FakeTransport


def start_fake_recording(registry, session_id, port_count=2):
    """Put a peer into RECORDING with leased ports, a plain transport and a process."""
    ports = [registry.acquire_port(session_id) for _ in range(port_count)]
    registry.begin_recording(session_id)
    plain = FakeTransport("plain-1", "plain", {"rtcpMux": True})
    consumer = FakeConsumer("consumer-1", "producer-1", "video", {
        "codecs": [{"kind": "video", "mimeType": "video/VP8", "clockRate": 90000}],
    })
    process = FakeProcess()
    registry.attach_recording(session_id, process, [plain], [consumer])
    return ports, plain, process


class TestPeerLifecycle:

    def test_create_peer_assigns_unique_session_ids(self, registry):
        ids = {registry.create_peer().session_id for _ in range(20)}
        assert len(ids) == 20
        assert len(registry) == 20

    def test_get_unknown_peer_raises(self, registry):
        with pytest.raises(PeerNotFoundError):
            registry.get_peer("nope")
        assert not registry.has_peer("nope")

    def test_transport_lookup(self, registry):
        peer = registry.create_peer()
        transport = FakeTransport("t1", "webrtc")
        registry.add_transport(peer.session_id, transport)

        assert registry.get_transport(peer.session_id, "t1") is transport
        assert peer.state == PeerState.NEGOTIATING
        with pytest.raises(TransportNotFoundError):
            registry.get_transport(peer.session_id, "t2")

    def test_producers_are_kept_in_order(self, registry):
        peer = registry.create_peer()
        audio = FakeProducer("p1", "audio")
        video = FakeProducer("p2", "video")
        registry.add_producer(peer.session_id, audio)
        registry.add_producer(peer.session_id, video)
        assert registry.producers(peer.session_id) == [audio, video]

    def test_acquire_port_records_lease_on_peer(self, registry, ports):
        peer = registry.create_peer()
        port = registry.acquire_port(peer.session_id)
        assert peer.ports == [port]
        assert ports.is_leased(port)


class TestStopRecording:

    def test_stop_recording_releases_everything(self, registry, ports):
        peer = registry.create_peer()
        client = FakeTransport("client", "webrtc")
        registry.add_transport(peer.session_id, client)
        leased, plain, process = start_fake_recording(registry, peer.session_id)

        asyncio.run(registry.stop_recording(peer.session_id))

        assert process.stop_calls == 1
        assert all(not ports.is_leased(port) for port in leased)
        assert plain.close_count == 1
        assert client.close_count == 0
        assert peer.state == PeerState.NEGOTIATING
        assert peer.process is None
        assert peer.ports == []
        assert peer.consumers == []
        assert list(peer.transports) == ["client"]

    def test_stop_when_not_recording_raises(self, registry):
        peer = registry.create_peer()
        with pytest.raises(RecordingStateError):
            asyncio.run(registry.stop_recording(peer.session_id))

    def test_begin_recording_twice_raises(self, registry):
        peer = registry.create_peer()
        registry.begin_recording(peer.session_id)
        with pytest.raises(RecordingStateError):
            registry.begin_recording(peer.session_id)

    def test_recording_can_restart_after_stop(self, registry, ports):
        peer = registry.create_peer()
        first_ports, _, _ = start_fake_recording(registry, peer.session_id)
        asyncio.run(registry.stop_recording(peer.session_id))

        second_ports, _, _ = start_fake_recording(registry, peer.session_id)
        assert second_ports == first_ports
        assert peer.state == PeerState.RECORDING


class TestDestroyPeer:

    def test_destroy_twice_releases_once(self, registry, ports):
        peer = registry.create_peer()
        client = FakeTransport("client", "webrtc")
        registry.add_transport(peer.session_id, client)
        leased, plain, process = start_fake_recording(registry, peer.session_id)
        ports.release = Mock(wraps=ports.release)

        asyncio.run(registry.destroy_peer(peer.session_id))
        asyncio.run(registry.destroy_peer(peer.session_id))

        assert sorted(call.args[0] for call in ports.release.call_args_list) == sorted(leased)
        assert process.stop_calls == 1
        assert plain.close_count == 1
        assert client.close_count == 1
        assert peer.state == PeerState.CLOSED
        assert not registry.has_peer(peer.session_id)
        assert ports.leased_count == 0

    @pytest.mark.timeout(5)
    def test_concurrent_destroy_releases_once(self, registry, ports):
        peer = registry.create_peer()
        leased, plain, process = start_fake_recording(registry, peer.session_id, port_count=4)
        ports.release = Mock(wraps=ports.release)

        async def destroy_concurrently():
            await asyncio.gather(*(registry.destroy_peer(peer.session_id) for _ in range(5)))

        asyncio.run(destroy_concurrently())

        assert ports.release.call_count == len(leased)
        assert process.kill_calls == 1
        assert plain.close_count == 1

    def test_stop_then_destroy_does_not_double_release(self, registry, ports):
        peer = registry.create_peer()
        leased, plain, process = start_fake_recording(registry, peer.session_id)
        ports.release = Mock(wraps=ports.release)

        async def stop_and_destroy():
            await asyncio.gather(
                registry.stop_recording(peer.session_id),
                registry.destroy_peer(peer.session_id),
            )

        asyncio.run(stop_and_destroy())

        assert ports.release.call_count == len(leased)
        assert process.stop_calls == 1
        assert plain.close_count == 1

    def test_destroy_idle_peer(self, registry):
        peer = registry.create_peer()
        client = FakeTransport("client", "webrtc")
        registry.add_transport(peer.session_id, client)

        asyncio.run(registry.destroy_peer(peer.session_id))

        assert client.close_count == 1
        assert len(registry) == 0

    def test_close_destroys_all_peers(self, registry, ports):
        peers = [registry.create_peer() for _ in range(3)]
        for peer in peers:
            start_fake_recording(registry, peer.session_id, port_count=1)

        asyncio.run(registry.close())

        assert len(registry) == 0
        assert ports.leased_count == 0
        assert all(peer.state == PeerState.CLOSED for peer in peers)

    def test_release_ports_skips_ports_already_torn_down(self, registry, ports):
        peer = registry.create_peer()
        leased, _, _ = start_fake_recording(registry, peer.session_id)
        asyncio.run(registry.destroy_peer(peer.session_id))

        registry.release_ports(peer.session_id, leased)
        assert ports.leased_count == 0
