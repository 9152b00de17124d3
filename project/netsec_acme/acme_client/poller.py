import logging
from time import sleep
from typing import Any
from typing import Callable
from typing import Collection

from netsec_acme.errors import ValidationTimeoutError

logger = logging.getLogger(__name__)


def poll_until_status(
    retrieve: Callable[[], dict[str, Any]],
    resource: str,
    status: str,
    max_retries: int,
    delay: float,
    fail_statuses: Collection[str] = (),
) -> dict[str, Any]:
    """Poll a resource until its "status" field reaches `status`.

    The ACME server validates challenges and issues certificates
    asynchronously, so each attempt first sleeps for `delay` seconds and only
    then fetches the resource.

    Parameters
    ----------
    retrieve : Callable[[], dict[str, Any]]
        Performs one POST-as-GET on the resource and returns its JSON.
    resource : str
        The resource URL, used in log messages and errors.
    status : str
        The status to wait for.
    max_retries : int
        The maximum number of fetches.
    delay : float
        Seconds to sleep before every fetch.
    fail_statuses : Collection[str]
        Terminal statuses after which polling is pointless.

    Returns
    -------
    dict[str, Any]
        The resource as returned by the successful fetch.

    Raises
    ------
    ValidationTimeoutError
        When the status was not reached within `max_retries` fetches, or a
        status in `fail_statuses` was observed.
    """
    last_status = None
    for attempt in range(1, max_retries + 1):
        logger.debug(f"Attempt {attempt}/{max_retries} for {resource}, sleeping {delay}s")
        sleep(delay)

        resource_json = retrieve()
        last_status = resource_json.get("status")

        if last_status == status:
            logger.info(f"{resource} is {status}")
            return resource_json

        if last_status in fail_statuses:
            logger.error(f"{resource} is {last_status}: {resource_json}")
            break

        logger.debug(f"{resource} is still {last_status}, retrying")

    raise ValidationTimeoutError(resource, status, last_status)
