import socket
import ssl
import threading
from pathlib import Path

import pytest

DATA_DIR = Path(__file__).parent / "data"

LEAF_SHA256 = "039d61fdcdf2f730c943a90721a881b2ff1dd859e005599316e0fbd38fe6fcfb"
INTER_SHA256 = "2e7b8e83a413cc850763d35fe6748d95146cd9b4b40fa7ed12121eeb08d546ae"
ROOT_SHA256 = "05d2b566862d47df401ad1152690677b40694b354138c9282b428b613134c285"


@pytest.fixture(scope="session")
def data_dir():
    return DATA_DIR


@pytest.fixture
def read_data():
    def read(name):
        return (DATA_DIR / name).read_bytes()
    return read


@pytest.fixture(scope="session")
def tls_server():
    """Tiny TLS server on 127.0.0.1 presenting leaf, intermediate and root.

    Completes one handshake per connection and hangs up; yields (host, port).
    """
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.load_cert_chain(certfile=str(DATA_DIR / "chain.pem"), keyfile=str(DATA_DIR / "leaf.key"))

    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(5)

    def serve():
        while True:
            try:
                client, _ = listener.accept()
            except OSError:
                return
            try:
                with ctx.wrap_socket(client, server_side=True):
                    pass
            except (ssl.SSLError, OSError):
                client.close()

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()

    yield listener.getsockname()

    listener.close()
