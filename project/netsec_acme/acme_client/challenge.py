from dataclasses import dataclass
from typing import Any
from typing import Optional

from netsec_acme.acme_client.endpoint import Endpoint


@dataclass
class ChallengeResponseEndpoint(Endpoint):
    pass


@dataclass
class Challenge:
    type: str
    respond_url: ChallengeResponseEndpoint
    status: str
    token: Optional[str]
    # RFC 8555 Section 8: the problem document of a failed validation
    error: Optional[dict[str, Any]]

    @staticmethod
    def from_json(response_json: dict[str, Any]) -> "Challenge":
        return Challenge(
            type=response_json["type"],
            respond_url=ChallengeResponseEndpoint(response_json["url"]),
            status=response_json["status"],
            token=response_json.get("token", None),
            error=response_json.get("error", None),
        )
