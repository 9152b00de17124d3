from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import ClassVar
from typing import Optional

from netsec_acme.acme_client.endpoint import Endpoint


@dataclass
class Account:
    # RFC Section 7.1.2
    url: str
    status: str

    @staticmethod
    def from_json(url: str, response_json: dict[str, Any]) -> "Account":
        return Account(
            url=url,
            status=response_json["status"],
        )


@dataclass
class AccountStub:
    # RFC Section 7.3, for requesting a new account or updating it
    status: Optional[str] = field(default=None)
    tos_agreed: Optional[bool] = field(default=None)

    def to_json(self) -> dict[str, Any]:
        fields = {
            "status": self.status,
            "termsOfServiceAgreed": self.tos_agreed,
        }
        # Omit unset fields, the server would reject a null status
        return {k: v for k, v in fields.items() if v is not None}


@dataclass
class NewAccountEndpoint(Endpoint):
    # The account URL doesn't exist yet, so the request carries the "jwk"
    requires_kid: ClassVar[bool] = False


@dataclass
class AccountEndpoint(Endpoint):
    pass
