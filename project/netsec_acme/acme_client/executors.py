"""Challenge executors write the proof for every pending authorization where
the matching challenge responder serves it from, and collect the challenge
URLs to confirm afterwards.

The responders run independently and read the files as soon as the ACME
server probes them, so every file is written to a temporary sibling first and
renamed into place.
"""
import logging
import os
import re
import tempfile
from abc import ABC
from abc import abstractmethod
from pathlib import Path
from typing import Union

from cryptography.hazmat.primitives.asymmetric import ec

from netsec_acme.acme_client.authorization import Authorization
from netsec_acme.acme_client.challenge import ChallengeResponseEndpoint
from netsec_acme.config import DNS01
from netsec_acme.config import HTTP01
from netsec_acme.config import ClientConfig
from netsec_acme.errors import EncodingError
from netsec_acme.errors import FilesystemError
from netsec_acme.errors import TransportError
from netsec_acme.jws import create_dns01_txt_value
from netsec_acme.jws import create_jwk_thumbprint
from netsec_acme.paths import dns01_challenge_dir
from netsec_acme.paths import http01_challenge_path

logger = logging.getLogger(__name__)

# RFC 8555 Section 8.1: tokens only use the base64url alphabet
TOKEN_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


def write_file_atomically(path: Path, content: Union[str, bytes], mode: int = 0o644) -> None:
    """Write `content` to `path` so that readers never observe a partial file.
    Text is written as ASCII. The file gets the permission bits `mode`.

    Raises
    ------
    FilesystemError
        When the directory or the file could not be created.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            data = content.encode("ASCII") if isinstance(content, str) else content
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.chmod(tmp_name, mode)
            os.replace(tmp_name, path)
        except BaseException:
            os.unlink(tmp_name)
            raise
    except OSError as e:
        raise FilesystemError(f"Could not write {path}: {e}") from e


class ChallengeExecutor(ABC):
    challenge_type: str

    def __init__(self, root_dir: Path):
        self.root_dir = Path(root_dir)

    @abstractmethod
    def compute_proof(self, token: str, thumbprint: str) -> str:
        """Return the content the responder has to serve for `token`."""

    @abstractmethod
    def materialize(self, proof: str, token: str, domain: str) -> Path:
        """Write the proof where the responder serves it from, and return the
        path of the written file."""

    def execute(
        self,
        authorizations: list[Authorization],
        account_key: ec.EllipticCurvePublicKey,
    ) -> list[ChallengeResponseEndpoint]:
        """Fulfil the challenge of this executor's type in every pending
        authorization.

        Parameters
        ----------
        authorizations : list[Authorization]
            The authorizations of the order. Those that are not pending are
            skipped, since the server has nothing left to validate.
        account_key : ec.EllipticCurvePublicKey
            The account public key, whose thumbprint goes into every key
            authorization.

        Returns
        -------
        list[ChallengeResponseEndpoint]
            The URLs to POST to so that the server starts validating.

        Raises
        ------
        TransportError
            When a pending authorization offers no challenge of this type.
        EncodingError
            When a token contains characters outside the base64url alphabet.
        FilesystemError
            When a proof could not be written.
        """
        thumbprint = create_jwk_thumbprint(account_key)
        respond_urls = []

        for auth in authorizations:
            if auth.status != "pending":
                logger.debug(f"Skipping {auth.status} authorization for {auth.domain}")
                continue

            challenge = auth.find_challenge(self.challenge_type)
            if challenge is None or challenge.token is None:
                raise TransportError(
                    f"Authorization for {auth.domain} offers no {self.challenge_type} challenge",
                    body=str(auth),
                )
            if not TOKEN_PATTERN.fullmatch(challenge.token):
                raise EncodingError(
                    f"Refusing {self.challenge_type} token {challenge.token!r} for {auth.domain}, "
                    "it is not base64url"
                )

            proof = self.compute_proof(challenge.token, thumbprint)
            path = self.materialize(proof, challenge.token, auth.domain)
            logger.info(f"Wrote {self.challenge_type} proof for {auth.domain} to {path}")

            respond_urls.append(challenge.respond_url)

        return respond_urls


class Http01ChallengeExecutor(ChallengeExecutor):
    challenge_type = HTTP01

    def compute_proof(self, token: str, thumbprint: str) -> str:
        # RFC 8555 Section 8.3: the body is the key authorization itself
        return token + "." + thumbprint

    def materialize(self, proof: str, token: str, domain: str) -> Path:
        path = http01_challenge_path(self.root_dir, token)
        write_file_atomically(path, proof)
        return path


class Dns01ChallengeExecutor(ChallengeExecutor):
    challenge_type = DNS01

    def compute_proof(self, token: str, thumbprint: str) -> str:
        # RFC 8555 Section 8.4: the TXT record holds the digest
        return create_dns01_txt_value(token + "." + thumbprint)

    def materialize(self, proof: str, token: str, domain: str) -> Path:
        # One file per token, so that a wildcard and a plain identifier for the
        # same name each get their own TXT answer.
        path = dns01_challenge_dir(self.root_dir, domain) / token
        write_file_atomically(path, proof)
        return path


def create_executor(config: ClientConfig) -> ChallengeExecutor:
    if config.challenge_type == HTTP01:
        return Http01ChallengeExecutor(config.http01_root)
    elif config.challenge_type == DNS01:
        return Dns01ChallengeExecutor(config.dns01_root)
    raise ValueError(f"Unsupported challenge type {config.challenge_type}")
