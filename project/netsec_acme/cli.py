# -*- coding: utf-8 -*-
"""This module contains the CLI functionality, and the flow invoking the various
other components of this project.

The main components of this project are:
    netsec_acme.acme_client - The ACME client driving the issuance pipeline
    netsec_acme.dns_challenge_server - The DNS server answering A and dns-01 TXT queries
    netsec_acme.http_challenge_server - The HTTP server to respond to http-01
    netsec_acme.https_server - The HTTPS server to serve the acquired certificate
    netsec_acme.shutdown_server - The server to respond to /shutdown

The client and the servers only share the files under the resources directory.
"""
import argparse
import logging
import os
import shutil
from typing import Optional

from netsec_acme import dns_challenge_server
from netsec_acme import http_challenge_server
from netsec_acme import https_server
from netsec_acme import shutdown_server
from netsec_acme.acme_client.client import ACMEClient
from netsec_acme.config import CHALLENGE_TYPES
from netsec_acme.config import HTTP01
from netsec_acme.config import ClientConfig
from netsec_acme.errors import ACMEError
from netsec_acme.shutdown_server import server as shutdown

logger = logging.getLogger(__name__)

parser = argparse.ArgumentParser(
    prog="netsec_acme",
    description=f"""
ACME client obtaining a certificate for the given domains.
Version: 1.0.0
Path: {os.path.abspath(os.path.dirname(__file__))}
""",
    formatter_class=argparse.RawTextHelpFormatter,
)
parser.add_argument(
    "challenge_type",
    choices=sorted(CHALLENGE_TYPES),
    help="The ACME challenge type that the client should perform. Valid values are http01 and dns01 for http-01 and dns-01 respectively.",
)
parser.add_argument(
    "--dir",
    required=True,
    help="Directory URL of the ACME server that should be used",
)
parser.add_argument(
    "--record",
    required=True,
    help="IPv4 address which must be returned by the DNS server for all A-record queries",
)
parser.add_argument(
    "--domain",
    action="append",
    required=True,
    help="Domain for which to request the certificate. If multiple are present, a single certificate for multiple domains will be requested. Wildcard domains have no special flag and should be denoted by e.g. *.example.net",
)
parser.add_argument(
    "--revoke",
    action="store_true",
    help="If present, immediately revoke the certificate after obtaining it. Regardless, the HTTPS server will start and use the obtained certificate.",
)
parser.add_argument(
    "--ca-bundle",
    default="./pebble.minica.pem",
    help="CA bundle used to verify the ACME server's TLS certificate",
)
parser.add_argument(
    "--resources",
    default="resources",
    help="Directory shared with the challenge responders and the HTTPS server",
)
parser.add_argument(
    "--log",
    default="debug",
    choices=["debug", "info", "warning", "error", "critical"],
    help="The logging level to assign to the default standard output handler",
)


def config_from_args(args: argparse.Namespace) -> ClientConfig:
    return ClientConfig(
        directory_url=args.dir,
        challenge_type=CHALLENGE_TYPES[args.challenge_type],
        resources_dir=args.resources,
        verify=args.ca_bundle,
    )


def main(argv: Optional[list[str]] = None) -> int:
    args = parser.parse_args(argv)

    # Change the root log level
    logging.getLogger().setLevel(args.log.upper())
    logger.info(f"Log level set to {args.log.upper()}")

    config = config_from_args(args)

    # Start from an empty resources directory, so that the responders never
    # serve proofs or certificates left over from an earlier run.
    shutil.rmtree(config.resources_dir, ignore_errors=True)

    # Start the DNS server regardless of the challenge type, since Pebble needs
    # to resolve the DNS even for the http-01 challenge.
    dns_challenge_server.start_thread(config.dns01_root, args.record)
    dns_challenge_server.server_ready.wait()

    if config.challenge_type == HTTP01:
        http_challenge_server.start_thread(config.http01_root)

    # Await the /shutdown request in a separate thread, while in the main thread
    # we wait for the event that the shutdown was requested.
    shutdown_server.start_thread()

    with ACMEClient(config) as client:
        try:
            client.run(args.domain, revoke=args.revoke)
        except ACMEError as e:
            logger.critical(f"Could not obtain a certificate, stage {e.stage} failed: {e}")
            return 1

        # Start the main server in a separate thread. This allows us to wait for
        # the shutdown in the main thread and close the entire program together
        # with all child threads when the shutdown event is set.
        https_server.start_thread(config.cert_chain_path, config.cert_key_path)

        # Block and wait until shutdown is requested
        shutdown.shutdown_requested.wait()

        # Deactivate the ACME Server account just in case to prevent polluting
        # the account database.
        try:
            client.deactivate_account()
        except ACMEError as e:
            logger.warning(f"Could not deactivate the account: {e}")

    return 0
