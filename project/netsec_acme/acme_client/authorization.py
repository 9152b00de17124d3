from dataclasses import dataclass
from typing import Any
from typing import Optional

from netsec_acme.acme_client.challenge import Challenge
from netsec_acme.acme_client.endpoint import Endpoint


@dataclass
class GetAuthorizationEndpoint(Endpoint):
    pass


@dataclass
class Authorization:
    identifier: dict[str, str]
    status: str
    challenges: list[Challenge]

    @property
    def domain(self) -> str:
        return self.identifier["value"]

    def find_challenge(self, challenge_type: str) -> Optional[Challenge]:
        for challenge in self.challenges:
            if challenge.type == challenge_type:
                return challenge
        return None

    @staticmethod
    def from_json(response_json: dict[str, Any]) -> "Authorization":
        return Authorization(
            identifier=response_json["identifier"],
            status=response_json["status"],
            challenges=list(map(Challenge.from_json, response_json["challenges"])),
        )
