import logging
from pathlib import Path

from flask import Flask
from flask import Response
from flask import abort
from flask import request
from werkzeug.security import safe_join

from netsec_acme.paths import HTTP01_CHALLENGE_DIR

logger = logging.getLogger(__name__)

app = Flask(__name__)
root_dir: Path = Path("resources/http01")


# Flask answers HEAD and OPTIONS on its own for every GET route, so they are
# registered explicitly and refused below.
@app.route(
    "/.well-known/acme-challenge/<requested_token>",
    methods=["GET", "HEAD", "OPTIONS"],
    provide_automatic_options=False,
)
def http_challenge(requested_token: str) -> Response:
    """The http-01 ACME Identifier Challenge endpoint. Returns the key
    authorization the client wrote for the token, byte for byte.

    Parameters
    ----------
    requested_token : str
        The token that the ACME Server (or someone else) tried to visit.

    Returns
    -------
    Response
        The stored key authorization as application/octet-stream. Unknown
        tokens get a 404, other methods than GET a 405.
    """
    if request.method != "GET":
        abort(405)

    challenge_path = safe_join(str(root_dir / HTTP01_CHALLENGE_DIR), requested_token)
    if challenge_path is None or not Path(challenge_path).is_file():
        logger.warning(f"Challenge not found for token {requested_token}")
        abort(404)

    challenge = Path(challenge_path).read_bytes()
    logger.info(f"Serving {len(challenge)}-byte challenge for token {requested_token}")
    return Response(challenge, status=200, mimetype="application/octet-stream")
