"""
Supervision of the per-recording process chain.

A recording runs one transcoder (ffmpeg) that reads its session description
from stdin. In serial sink mode a sink writer process follows it, reading the
transcoder's stdout through an OS pipe and writing framed chunks to the
serial device.

Rules:
- stderr (and the sink writer's stdout) are drained by daemon threads
- if the transcoder exits for any reason, the sink writer gets SIGINT
- kill() sends SIGINT to both processes regardless of state
- stop(timeout) waits for exit and escalates to SIGKILL
"""

import enum
import logging
import os
import signal
import subprocess
import threading
import time
from typing import IO, List, Optional, Set

from recorder.config import RecorderConfig
from recorder.errors import ProcessSpawnError
from recorder.process.commands import (
    build_sink_writer_cmd,
    build_transcoder_cmd,
    uses_sink_writer,
)
from recorder.process.sdp import MediaDescriptor, create_sdp_text

logger = logging.getLogger(__name__)


class ProcessState(enum.Enum):
    STARTING = "starting"
    RUNNING = "running"
    CLOSING = "closing"
    CLOSED = "closed"


class SupervisedProcess:
    """
    Handle for one transcoder and its optional sink writer.

    Created by ProcessSupervisor.start(); owned by exactly one Peer.
    """

    def __init__(self, transcoder_cmd: List[str], sink_writer_cmd: Optional[List[str]] = None):
        self.transcoder_cmd = transcoder_cmd
        self.sink_writer_cmd = sink_writer_cmd
        self.transcoder: Optional[subprocess.Popen] = None
        self.sink_writer: Optional[subprocess.Popen] = None

        self._state = ProcessState.STARTING
        self._state_lock = threading.Lock()
        self._threads: List[threading.Thread] = []
        self._exited = threading.Event()

    @property
    def state(self) -> ProcessState:
        with self._state_lock:
            return self._state

    def _set_state(self, new_state: ProcessState) -> None:
        with self._state_lock:
            if self._state == ProcessState.CLOSED:
                return
            old_state = self._state
            self._state = new_state
        if old_state != new_state:
            logger.debug(f"Process state {old_state.value} -> {new_state.value}")

    @property
    def processes(self) -> List[subprocess.Popen]:
        return [p for p in (self.transcoder, self.sink_writer) if p is not None]

    def start(self, sdp_text: str) -> None:
        """
        Spawn the chain and deliver the session description.

        Raises:
            ProcessSpawnError: If a process cannot be spawned; anything
                already started is killed first
        """
        try:
            self.transcoder = subprocess.Popen(
                self.transcoder_cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE if self.sink_writer_cmd else subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
            logger.info(f"Started transcoder PID={self.transcoder.pid}")

            if self.sink_writer_cmd:
                self.sink_writer = subprocess.Popen(
                    self.sink_writer_cmd,
                    stdin=self.transcoder.stdout,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
                # The sink writer holds the read end now
                self.transcoder.stdout.close()
                logger.info(f"Started sink writer PID={self.sink_writer.pid}")
        except (OSError, ValueError) as e:
            logger.error(f"Failed to spawn recording process: {e}")
            self.kill()
            for proc in self.processes:
                try:
                    proc.wait(timeout=1.0)
                except subprocess.TimeoutExpired:
                    proc.kill()
            self._set_state(ProcessState.CLOSED)
            self._exited.set()
            raise ProcessSpawnError(f"Failed to spawn recording process: {e}") from e

        self._start_drain(self.transcoder.stderr, "[transcoder]")
        if self.sink_writer is not None:
            self._start_drain(self.sink_writer.stderr, "[sink-writer]")
            self._start_drain(self.sink_writer.stdout, "[sink-writer]")

        self._write_sdp(sdp_text)
        self._set_state(ProcessState.RUNNING)

        watch = threading.Thread(target=self._watch, daemon=True, name="process-watch")
        watch.start()
        self._threads.append(watch)

    def _write_sdp(self, sdp_text: str) -> None:
        stdin = self.transcoder.stdin
        if stdin is None:
            return
        try:
            stdin.write(sdp_text.encode("utf-8"))
            stdin.flush()
        except BrokenPipeError:
            logger.warning("Transcoder closed stdin before the session description was written")
        finally:
            try:
                stdin.close()
            except BrokenPipeError:
                pass

    def _start_drain(self, stream: Optional[IO[bytes]], prefix: str) -> None:
        if stream is None:
            return
        thread = threading.Thread(
            target=self._drain,
            args=(stream, prefix),
            daemon=True,
            name=f"drain{prefix}",
        )
        thread.start()
        self._threads.append(thread)

    @staticmethod
    def _drain(stream: IO[bytes], prefix: str) -> None:
        try:
            for line in iter(stream.readline, b""):
                text = line.decode(errors="ignore").rstrip()
                if text:
                    logger.info(f"{prefix} {text}")
        except (OSError, ValueError) as e:
            logger.debug(f"{prefix} stream closed: {e}")
        logger.debug(f"{prefix} drain thread exiting")

    def _watch(self) -> None:
        """Wait for the transcoder and bring the sink writer down with it."""
        code = self.transcoder.wait()
        if code != 0 and self.state != ProcessState.CLOSING:
            logger.warning(f"Transcoder exited with code {code}")
        else:
            logger.info(f"Transcoder exited with code {code}")

        if self.sink_writer is not None:
            self._signal(self.sink_writer, "sink writer")
            writer_code = self.sink_writer.wait()
            if writer_code != 0:
                logger.warning(f"Sink writer exited with code {writer_code}")

        self._set_state(ProcessState.CLOSED)
        self._exited.set()

    @staticmethod
    def _signal(proc: subprocess.Popen, name: str) -> None:
        try:
            proc.send_signal(signal.SIGINT)
        except ProcessLookupError:
            logger.debug(f"{name} already exited")

    def kill(self) -> None:
        """Send SIGINT to every process of the chain."""
        self._set_state(ProcessState.CLOSING)
        if self.transcoder is not None:
            self._signal(self.transcoder, "transcoder")
        if self.sink_writer is not None:
            self._signal(self.sink_writer, "sink writer")

    def stop(self, timeout: float = 2.0) -> None:
        """
        Kill the chain and wait until every process has exited.

        Processes still alive after timeout seconds are sent SIGKILL.
        """
        self.kill()
        deadline = time.monotonic() + timeout
        for proc in self.processes:
            remaining = max(0.0, deadline - time.monotonic())
            try:
                proc.wait(timeout=remaining)
            except subprocess.TimeoutExpired:
                logger.warning(f"Process PID={proc.pid} did not exit within {timeout}s, killing")
                proc.kill()
                proc.wait()
        self._set_state(ProcessState.CLOSED)
        self._exited.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the chain is closed; returns False on timeout."""
        return self._exited.wait(timeout)

    @property
    def is_alive(self) -> bool:
        return self.state in (ProcessState.STARTING, ProcessState.RUNNING)


class ProcessSupervisor:
    """Spawns and tracks the process chains of all recordings."""

    def __init__(self, config: RecorderConfig):
        self.config = config
        self._lock = threading.Lock()
        self._handles: Set[SupervisedProcess] = set()

    def start(self, descriptor: MediaDescriptor) -> SupervisedProcess:
        """
        Spawn the process chain for a recording.

        Raises:
            ProcessSpawnError: If the chain cannot be described or spawned
        """
        try:
            sdp_text = create_sdp_text(descriptor)
            transcoder_cmd = build_transcoder_cmd(self.config, descriptor)
        except (KeyError, ValueError) as e:
            raise ProcessSpawnError(f"Cannot describe recording {descriptor.file_name}: {e}") from e

        sink_writer_cmd = build_sink_writer_cmd(self.config) if uses_sink_writer(self.config) else None

        if self.config.sink_mode == "file":
            os.makedirs(self.config.record_dir, exist_ok=True)

        logger.debug(f"Transcoder command: {' '.join(transcoder_cmd)}")
        logger.debug(f"Session description:\n{sdp_text}")

        handle = SupervisedProcess(transcoder_cmd, sink_writer_cmd)
        handle.start(sdp_text)

        with self._lock:
            self._prune()
            self._handles.add(handle)

        logger.info(f"Recording {descriptor.file_name} started ({', '.join(descriptor.kinds)})")
        return handle

    def kill(self, handle: SupervisedProcess) -> None:
        handle.kill()

    def stop(self, handle: SupervisedProcess, timeout: Optional[float] = None) -> None:
        """Kill handle and wait for exit (bounded by the configured stop timeout)."""
        if timeout is None:
            timeout = self.config.process_stop_timeout_sec
        handle.stop(timeout)
        with self._lock:
            self._handles.discard(handle)

    def _prune(self) -> None:
        # Handles stopped directly (peer teardown) are closed already
        self._handles = {h for h in self._handles if h.state != ProcessState.CLOSED}

    def stop_all(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            self._prune()
            handles = list(self._handles)
            self._handles.clear()
        if handles:
            logger.info(f"Stopping {len(handles)} recording process(es)")
        for handle in handles:
            handle.stop(self.config.process_stop_timeout_sec if timeout is None else timeout)

    def __len__(self) -> int:
        with self._lock:
            self._prune()
            return len(self._handles)
