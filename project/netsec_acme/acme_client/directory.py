from dataclasses import dataclass
from typing import Any
from typing import ClassVar

from netsec_acme.acme_client.account import NewAccountEndpoint
from netsec_acme.acme_client.certificate import RevokeCertEndpoint
from netsec_acme.acme_client.endpoint import Endpoint
from netsec_acme.acme_client.order import NewOrderEndpoint
from netsec_acme.errors import TransportError


@dataclass
class DirectoryEndpoint(Endpoint):
    method: ClassVar[str] = "GET"
    requires_kid: ClassVar[bool] = False


@dataclass
class NewNonceEndpoint(Endpoint):
    # RFC 8555 Section 7.2 allows both HEAD and GET, HEAD answers with 200
    method: ClassVar[str] = "HEAD"
    requires_kid: ClassVar[bool] = False


@dataclass(frozen=True)
class Directory:
    # RFC Section 7.1.1
    new_nonce_endpoint: NewNonceEndpoint
    new_account_endpoint: NewAccountEndpoint
    new_order_endpoint: NewOrderEndpoint
    revoke_cert_endpoint: RevokeCertEndpoint

    @staticmethod
    def from_json(dir_dict: dict[str, Any]) -> "Directory":
        try:
            return Directory(
                new_nonce_endpoint=NewNonceEndpoint(dir_dict["newNonce"]),
                new_account_endpoint=NewAccountEndpoint(dir_dict["newAccount"]),
                new_order_endpoint=NewOrderEndpoint(dir_dict["newOrder"]),
                revoke_cert_endpoint=RevokeCertEndpoint(dir_dict["revokeCert"]),
            )
        except KeyError as e:
            raise TransportError(
                f"Directory is missing the {e.args[0]} endpoint",
                status_code=200,
                headers={},
                body=str(dir_dict),
            ) from e
