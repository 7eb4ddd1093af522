import socket
import threading
import time

from fake_engine import STDERR, STDOUT, frame
from magic_server.app.workspaces.runtime import DockerExecStream


def _stream(inspect=None):
    near, far = socket.socketpair()
    stream = DockerExecStream(near, "exec-1", inspect or (lambda: {"Running": False, "ExitCode": 0}))
    return stream, far


def test_frames_from_both_channels_in_arrival_order():
    stream, far = _stream(lambda: {"Running": False, "ExitCode": 3})
    far.sendall(frame(STDOUT, b"out\n") + frame(STDERR, b"err\n") + frame(STDOUT, b"more\n"))
    far.close()

    chunks = []
    while True:
        chunk = stream.read_chunk()
        if chunk is None:
            break
        chunks.append(chunk)
    assert b"".join(chunks) == b"out\nerr\nmore\n"
    assert stream.exit_code() == 3
    stream.close()
    assert stream.closed


def test_close_unblocks_pending_read():
    stream, far = _stream()
    result = {}

    def _reader():
        result["chunk"] = stream.read_chunk()

    t = threading.Thread(target=_reader, daemon=True)
    t.start()
    time.sleep(0.1)
    stream.close()
    t.join(timeout=2)
    assert not t.is_alive()
    assert result["chunk"] is None
    far.close()


def test_read_after_close_returns_none():
    stream, far = _stream()
    stream.close()
    stream.close()
    assert stream.read_chunk() is None
    far.close()


def test_exit_code_is_none_while_running():
    stream, far = _stream(lambda: {"Running": True, "ExitCode": 0})
    assert stream.exit_code() is None
    stream.close()
    far.close()


def test_exit_code_waits_for_engine_to_settle():
    states = iter([{"Running": True}, {"Running": True}, {"Running": False, "ExitCode": 7}])
    stream, far = _stream(lambda: next(states))
    assert stream.exit_code() == 7
    stream.close()
    far.close()
