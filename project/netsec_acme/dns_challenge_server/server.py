import logging
import socketserver
from pathlib import Path

from dnslib import QTYPE
from dnslib import RR
from dnslib import TXT
from dnslib import A
from dnslib import DNSError
from dnslib import DNSRecord

from netsec_acme.errors import EncodingError
from netsec_acme.paths import DNS01_CHALLENGE_LABEL
from netsec_acme.paths import dns01_challenge_dir

logger = logging.getLogger(__name__)

DEFAULT_RECORD_TTL = 300

root_dir: Path = Path("resources/dns01")
a_record: str = "127.0.0.1"


def read_txt_records(qname: str) -> list[str]:
    """Return the content of every proof file the dns-01 executor wrote for
    the name queried as `_acme-challenge.<domain>`."""
    domain = qname.rstrip(".")[len(DNS01_CHALLENGE_LABEL) + 1 :]
    try:
        challenge_dir = dns01_challenge_dir(root_dir, domain)
    except EncodingError:
        return []
    if not challenge_dir.is_dir():
        return []

    return [
        path.read_text(encoding="ASCII")
        for path in sorted(challenge_dir.iterdir())
        # Skip directories and files the executor is still writing
        if path.is_file() and not path.name.startswith(".")
    ]


class DNSServer(socketserver.BaseRequestHandler):
    def handle(self):
        data: bytes = self.request[0]
        logger.debug(f"Received {len(data)} bytes")
        try:
            query_record: DNSRecord = DNSRecord.parse(data)
            response_record = self._create_response(query_record)
            logger.debug(f"response_record = \n{response_record}")
            self.request[1].sendto(response_record.pack(), self.client_address)
        except DNSError:
            logger.exception("Failed parsing DNS request record: " + data.hex(" "))

    def _create_response(self, query_record: DNSRecord) -> DNSRecord:
        reply = query_record.reply()
        # DNS names compare case-insensitively (RFC 4343)
        qname = str(query_record.q.qname).lower()

        if query_record.q.qtype == QTYPE.A:
            # Unconditionally return the global a_record value for all A record
            # queries, copying the request name as-is into the response.
            reply.add_answer(
                RR(rname=query_record.q.qname, rtype=QTYPE.A, rdata=A(a_record), ttl=DEFAULT_RECORD_TTL),
            )

        elif query_record.q.qtype == QTYPE.TXT and qname.startswith(
            DNS01_CHALLENGE_LABEL + "."
        ):
            for txt_value in read_txt_records(qname):
                reply.add_answer(
                    RR(
                        rname=query_record.q.qname,
                        rtype=QTYPE.TXT,
                        rdata=TXT(txt_value),
                        ttl=DEFAULT_RECORD_TTL,
                    ),
                )
            logger.info(f"Answered TXT query for {qname} with {len(reply.rr)} records")
        else:
            logger.debug(
                f"Ignoring query_record.q.qtype == {QTYPE[query_record.q.qtype]}"
            )

        return reply
