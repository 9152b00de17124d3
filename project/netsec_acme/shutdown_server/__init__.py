import threading

from netsec_acme.config import SHUTDOWN_SERVER_PORT
from netsec_acme.shutdown_server import server


def start_thread(port: int = SHUTDOWN_SERVER_PORT):
    """Await the /shutdown request in a separate thread. The main thread waits
    on server.shutdown_requested."""
    shutdown_thread = threading.Thread(
        target=lambda: server.app.run(host="0.0.0.0", port=port, debug=False),
        daemon=True,
    )
    shutdown_thread.start()
