import logging
from pathlib import Path

from flask import Flask
from flask import Response
from flask import abort

logger = logging.getLogger(__name__)

app = Flask(__name__)
cert_chain_path: Path = Path("resources/https/cert_chain.pem")


@app.route("/", methods=["GET"])
def certificate_chain() -> Response:
    if not cert_chain_path.is_file():
        abort(404)
    logger.debug(f"Serving certificate chain {cert_chain_path}")
    return Response(
        cert_chain_path.read_bytes(), mimetype="application/pem-certificate-chain"
    )
