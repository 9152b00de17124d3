import logging
import socketserver
import threading
from pathlib import Path

from netsec_acme.config import DNS_SERVER_PORT
from netsec_acme.dns_challenge_server import server

logger = logging.getLogger(__name__)

server_ready = threading.Event()


def start_thread(root_dir: Path, a_record: str, port: int = DNS_SERVER_PORT):
    """Start the DNS Challenge Server in a separate thread.

    Parameters
    ----------
    root_dir : Path
        The directory the dns-01 executor writes the TXT record values to.
    a_record : str
        The value to respond with for any A record queries.
    port : int
        The UDP port to listen on.
    """
    server.root_dir = Path(root_dir)
    server.a_record = a_record

    logger.debug(f"server.root_dir = {server.root_dir}, server.a_record = {a_record}")

    udp_server = socketserver.UDPServer(("", port), server.DNSServer)
    dns_challenge_thread = threading.Thread(
        target=udp_server.serve_forever,
        daemon=True,
    )
    dns_challenge_thread.start()
    server_ready.set()
