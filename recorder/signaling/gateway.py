"""
SignalingGateway - per-connection JSON protocol.

Protocol (JSON text messages, camelCase fields):
- server → client on connect: router-rtp-capabilities (with sessionId)
- create-transport  → {action, id, iceParameters, iceCandidates, dtlsParameters}
- connect-transport → {action}
- produce           → {action, id, kind}
- start-record      → no response
- stop-record       → {action}

Messages of one connection are handled strictly in arrival order. A failing
message is logged and never closes the connection.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from websockets.exceptions import ConnectionClosed

from recorder.config import RecorderConfig
from recorder.engine.base import TRANSPORT_KIND_WEBRTC, MediaEngine, Router
from recorder.errors import ProtocolError, RecorderError
from recorder.session.recording import RecordingCoordinator
from recorder.session.registry import SessionRegistry

logger = logging.getLogger(__name__)

# Close code for "server could not set up the session"
CLOSE_INTERNAL_ERROR = 1011

Response = Optional[Dict[str, Any]]


def parse_message(raw: Any) -> Dict[str, Any]:
    """
    Decode one client message.

    Raises:
        ProtocolError: If the message is not a JSON object with a string action
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Message is not valid UTF-8: {e}")
    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Malformed JSON message: {e}")
    if not isinstance(message, dict):
        raise ProtocolError(f"Message must be a JSON object, got {type(message).__name__}")
    if not isinstance(message.get("action"), str):
        raise ProtocolError("Message has no action")
    return message


class ConnectionContext:
    """State the gateway keeps for one open connection."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        # Pending settle-delay tasks, by the session they resume
        self.settle_tasks: Dict[str, Set[asyncio.Task]] = {}

    def track(self, session_id: str, task: asyncio.Task) -> None:
        tasks = self.settle_tasks.setdefault(session_id, set())
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    def cancel_tasks(self, session_id: Optional[str] = None) -> None:
        """Cancel the settle tasks of one session, or of every session."""
        if session_id is None:
            groups = list(self.settle_tasks.values())
            self.settle_tasks.clear()
        else:
            groups = [self.settle_tasks.pop(session_id, set())]
        for tasks in groups:
            for task in list(tasks):
                task.cancel()


class SignalingGateway:

    def __init__(
        self,
        registry: SessionRegistry,
        engine: MediaEngine,
        router: Router,
        recorder: RecordingCoordinator,
        config: RecorderConfig,
    ):
        self.registry = registry
        self.engine = engine
        self.router = router
        self.recorder = recorder
        self.config = config

        self._handlers: Dict[str, Callable[[Dict[str, Any], ConnectionContext], Awaitable[Response]]] = {
            "create-transport": self._handle_create_transport,
            "connect-transport": self._handle_connect_transport,
            "produce": self._handle_produce,
            "start-record": self._handle_start_record,
            "stop-record": self._handle_stop_record,
        }

    async def handle_connection(self, websocket) -> None:
        """websockets connection handler: one call per client connection."""
        remote = getattr(websocket, "remote_address", None)
        logger.info(f"New signaling connection from {remote}")

        session_id = None
        try:
            peer = self.registry.create_peer()
            session_id = peer.session_id
            await websocket.send(json.dumps({
                "action": "router-rtp-capabilities",
                "routerRtpCapabilities": self.router.rtp_capabilities,
                "sessionId": session_id,
            }))
        except Exception as e:
            logger.error(f"Failed to create new peer: {e}", exc_info=True)
            if session_id is not None:
                await self.registry.destroy_peer(session_id)
            await websocket.close(code=CLOSE_INTERNAL_ERROR, reason="peer setup failed")
            return

        context = ConnectionContext(session_id)
        try:
            async for raw in websocket:
                response = await self.handle_message(raw, context)
                if response is not None:
                    logger.debug(f"Sending response {response}")
                    await websocket.send(json.dumps(response))
        except ConnectionClosed as e:
            logger.info(f"Connection for peer {session_id} closed: {e}")
        finally:
            logger.info(f"Connection for peer {session_id} ended")
            context.cancel_tasks()
            await self.registry.destroy_peer(session_id)

    async def handle_message(self, raw: Any, context: ConnectionContext) -> Response:
        """Handle one client message; returns the response to send, if any."""
        try:
            message = parse_message(raw)
        except ProtocolError as e:
            logger.warning(f"Ignoring message from peer {context.session_id}: {e}")
            return None

        action = message["action"]
        handler = self._handlers.get(action)
        if handler is None:
            logger.warning(f"Unknown action {action!r} from peer {context.session_id}")
            return None

        logger.debug(f"Peer {context.session_id} -> {action}")
        try:
            return await handler(message, context)
        except RecorderError as e:
            logger.error(f"Failed to handle {action} for peer {context.session_id}: {e}")
            return self._error_response(action, e.code, str(e))
        except Exception as e:
            logger.error(f"Failed to handle {action} for peer {context.session_id}: {e}", exc_info=True)
            return self._error_response(action, "engine-error", str(e))

    def _error_response(self, action: str, code: str, message: str) -> Response:
        if not self.config.error_responses:
            return None
        return {"action": action, "error": {"code": code, "message": message}}

    @staticmethod
    def _session_id(message: Dict[str, Any], context: ConnectionContext) -> str:
        return message.get("sessionId") or context.session_id

    async def _handle_create_transport(self, message, context) -> Response:
        session_id = self._session_id(message, context)
        self.registry.get_peer(session_id)

        transport = await self.engine.create_transport(TRANSPORT_KIND_WEBRTC, self.router)
        dtls_parameters = dict(transport.dtls_parameters or {})
        dtls_parameters["role"] = "client"
        transport.dtls_parameters = dtls_parameters

        self.registry.add_transport(session_id, transport)
        logger.info(f"Peer {session_id} created transport {transport.id}")

        return {
            "action": "create-transport",
            "id": transport.id,
            "iceParameters": transport.ice_parameters,
            "iceCandidates": transport.ice_candidates,
            "dtlsParameters": transport.dtls_parameters,
        }

    async def _handle_connect_transport(self, message, context) -> Response:
        session_id = self._session_id(message, context)
        transport = self.registry.get_transport(session_id, message.get("transportId"))
        await transport.connect(dtls_parameters=message.get("dtlsParameters"))
        logger.info(f"Peer {session_id} connected transport {transport.id}")
        return {"action": "connect-transport"}

    async def _handle_produce(self, message, context) -> Response:
        session_id = self._session_id(message, context)
        transport = self.registry.get_transport(session_id, message.get("transportId"))
        producer = await transport.produce(
            kind=message.get("kind"),
            rtp_parameters=message.get("rtpParameters"),
        )
        self.registry.add_producer(session_id, producer)
        logger.info(f"Peer {session_id} new producer [id:{producer.id}, kind:{producer.kind}]")
        return {"action": "produce", "id": producer.id, "kind": producer.kind}

    async def _handle_start_record(self, message, context) -> Response:
        session_id = self._session_id(message, context)
        task = await self.recorder.start_record(session_id)
        if task is not None:
            context.track(session_id, task)
        logger.info(f"Peer {session_id} started recording")
        return None

    async def _handle_stop_record(self, message, context) -> Response:
        session_id = self._session_id(message, context)
        await self.recorder.stop_record(session_id)
        context.cancel_tasks(session_id)
        return {"action": "stop-record"}
