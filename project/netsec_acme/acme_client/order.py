from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Optional

from netsec_acme.acme_client.authorization import GetAuthorizationEndpoint
from netsec_acme.acme_client.certificate import GetCertificateEndpoint
from netsec_acme.acme_client.endpoint import Endpoint


@dataclass
class NewOrderEndpoint(Endpoint):
    pass


@dataclass
class GetOrderEndpoint(Endpoint):
    pass


@dataclass
class FinalizeOrderEndpoint(Endpoint):
    pass


@dataclass
class Order:
    status: str
    identifiers: list[dict[str, str]]
    authorization_urls: list[GetAuthorizationEndpoint]
    finalize: FinalizeOrderEndpoint
    certificate: Optional[GetCertificateEndpoint]

    @property
    def domains(self) -> list[str]:
        return [identifier["value"] for identifier in self.identifiers]

    @staticmethod
    def from_json(response_json: dict[str, Any]) -> "Order":
        return Order(
            status=response_json["status"],
            identifiers=response_json["identifiers"],
            authorization_urls=list(
                map(GetAuthorizationEndpoint, response_json["authorizations"])
            ),
            finalize=FinalizeOrderEndpoint(response_json["finalize"]),
            certificate=GetCertificateEndpoint(response_json["certificate"])
            if "certificate" in response_json
            else None,
        )


@dataclass
class OrderStub:
    # RFC Section 7.4, for creating a new order
    identifiers: list[dict[str, str]] = field(default_factory=list)

    @staticmethod
    def for_domains(domains: list[str]) -> "OrderStub":
        return OrderStub(identifiers=[{"type": "dns", "value": d} for d in domains])

    def to_json(self) -> dict[str, Any]:
        return {"identifiers": self.identifiers}
