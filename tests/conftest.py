import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest


class ReplayTargetHandler(BaseHTTPRequestHandler):
    """
    Test target.

    /status/<code> answers with that code, /slow/<ms> waits before
    answering 200, /drip/<bytes>/<ms> sends its body one byte every <ms>,
    anything else answers 200 with a small body.
    """
    protocol_version = 'HTTP/1.1'

    def _handle(self):
        length = int(self.headers.get('Content-Length') or 0)
        body = self.rfile.read(length) if length else b''
        self.server.seen.append({
            'method': self.command,
            'path': self.path,
            'headers': dict(self.headers),
            'body': body,
            'client_port': self.client_address[1],
        })

        status = 200
        parts = self.path.split('?')[0].strip('/').split('/')
        if parts[0] == 'status' and len(parts) > 1:
            status = int(parts[1])
        elif parts[0] == 'slow' and len(parts) > 1:
            time.sleep(int(parts[1]) / 1000)
        elif parts[0] == 'drip' and len(parts) > 2:
            self._drip(int(parts[1]), int(parts[2]) / 1000)
            return

        payload = b'ok' * 100
        self.send_response(status)
        self.send_header('Content-Length', str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def _drip(self, size, interval):
        self.send_response(200)
        self.send_header('Content-Length', str(size))
        self.end_headers()
        self.wfile.flush()
        try:
            for _ in range(size):
                time.sleep(interval)
                self.wfile.write(b'x')
                self.wfile.flush()
        except (BrokenPipeError, ConnectionResetError):
            self.close_connection = True

    do_GET = do_POST = do_PUT = do_DELETE = _handle

    def log_message(self, format, *args):
        pass


@pytest.fixture
def http_target():
    """Run a local HTTP server; yields (prefix, list of seen requests)."""
    server = ThreadingHTTPServer(('127.0.0.1', 0), ReplayTargetHandler)
    server.daemon_threads = True
    server.seen = []
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    yield f'http://127.0.0.1:{server.server_address[1]}', server.seen

    server.shutdown()
    server.server_close()


@pytest.fixture
def dead_prefix():
    """A prefix on a local port nothing listens on."""
    sock = socket.socket()
    sock.bind(('127.0.0.1', 0))
    port = sock.getsockname()[1]
    sock.close()
    return f'http://127.0.0.1:{port}'
