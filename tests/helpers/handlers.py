"""Request handlers importable by spawned worker processes in tests."""

import os
import socketserver


class EchoHandler(socketserver.BaseRequestHandler):
    """Echo one message back, prefixed with the serving process id."""

    def handle(self):
        data = self.request.recv(1024)
        self.request.sendall(f"{os.getpid()}:".encode() + data)


class NotAHandler:
    pass
