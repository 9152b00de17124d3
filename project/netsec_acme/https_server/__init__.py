import threading
from pathlib import Path

from netsec_acme.config import HTTPS_SERVER_PORT
from netsec_acme.https_server import server


def start_thread(cert_pem_path: Path, key_pem_path: Path, port: int = HTTPS_SERVER_PORT):
    """Start the main HTTPS server using the specified SSL certificate files.

    Parameters
    ----------
    cert_pem_path : Path
        Path to the PEM encoded certificate chain.
    key_pem_path : Path
        Path to the PEM encoded private key for the certificate.
    port : int
        The TCP port to listen on.
    """
    server.cert_chain_path = Path(cert_pem_path)
    main_server_thread = threading.Thread(
        target=lambda: server.app.run(
            host="0.0.0.0",
            port=port,
            debug=False,
            ssl_context=(str(cert_pem_path), str(key_pem_path)),
        ),
        daemon=True,
    )
    main_server_thread.start()
