import logging
import threading
from pathlib import Path

from netsec_acme.config import HTTP_CHALLENGE_SERVER_PORT
from netsec_acme.http_challenge_server import server

logger = logging.getLogger(__name__)


def start_thread(root_dir: Path, port: int = HTTP_CHALLENGE_SERVER_PORT):
    """Start the HTTP Challenge Server in another thread.

    Parameters
    ----------
    root_dir : Path
        The directory the http-01 executor writes the key authorizations to.
    port : int
        The TCP port to listen on.
    """
    server.root_dir = Path(root_dir)
    logger.debug(f"server.root_dir = {server.root_dir}")

    # Run the server in a separate thread, while we signal to the ACME server
    # and poll its responses.
    http_challenge_thread = threading.Thread(
        target=lambda: server.app.run(host="0.0.0.0", port=port, debug=False),
        daemon=True,
    )
    http_challenge_thread.start()
