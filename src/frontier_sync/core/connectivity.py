import logging
from typing import Protocol

import requests

from ..config_schema import RemoteConfig

logger = logging.getLogger(__name__)


class Connectivity(Protocol):
    def is_online(self) -> bool: ...


class ConnectivityChecker:
    """Probe the git host and the backing API before network operations.

    The host is probed with ``HEAD`` and the API with ``GET``; each counts
    as reachable only on HTTP 200.  Blocking: call through ``run_sync``.
    """

    def __init__(
        self,
        config: RemoteConfig,
        session: requests.Session | None = None,
    ):
        self.config = config
        self._session = session or requests.Session()

    def _probe(self, method: str, url: str) -> bool:
        try:
            response = self._session.request(
                method,
                url,
                timeout=self.config.connectivity_timeout,
                headers={"Cache-Control": "no-store"},
                allow_redirects=True,
            )
        except requests.RequestException as e:
            logger.debug("%s %s failed: %s", method, url, e)
            return False
        if response.status_code != 200:
            logger.debug("%s %s returned %d", method, url, response.status_code)
            return False
        return True

    def host_reachable(self) -> bool:
        return self._probe("HEAD", self.config.host_url)

    def api_reachable(self) -> bool:
        if self.config.api_url is None:
            return True
        return self._probe("GET", self.config.api_url)

    def is_online(self) -> bool:
        """Return True when both the host and the API respond."""
        if not self.config.check_connectivity:
            return True

        host_ok = self.host_reachable()
        api_ok = self.api_reachable()
        if not host_ok:
            logger.warning(
                "You are offline. Connect to the internet to sync changes."
            )
        if not api_ok:
            logger.warning(
                "The API is offline. Local changes are saved and will sync "
                "when it is back online."
            )
        return host_ok and api_ok
