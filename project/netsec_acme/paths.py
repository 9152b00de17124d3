"""Path conventions shared by the challenge executors and the responders that
serve what they write."""
from pathlib import Path

from netsec_acme.errors import EncodingError

HTTP01_CHALLENGE_DIR = Path(".well-known") / "acme-challenge"
DNS01_CHALLENGE_LABEL = "_acme-challenge"


def reverse_domain_path(domain: str) -> Path:
    """Turn ``Example.com`` into the relative path ``com/example``."""
    labels = [label.lower() for label in domain.rstrip(".").split(".") if label]
    if not labels or any("/" in label or "\\" in label for label in labels):
        raise EncodingError(f"Cannot build a path from domain {domain!r}")
    return Path(*reversed(labels))


def http01_challenge_path(root: Path, token: str) -> Path:
    return Path(root) / HTTP01_CHALLENGE_DIR / token


def dns01_challenge_dir(root: Path, domain: str) -> Path:
    # The responder looks up "_acme-challenge.example.com", which reverses to
    # exactly this directory.
    return Path(root) / reverse_domain_path(domain) / DNS01_CHALLENGE_LABEL
