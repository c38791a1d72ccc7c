"""mDNS advertising of a Roomcast server as a _roomcast._tcp service."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from zeroconf import InterfaceChoice, IPVersion, NonUniqueNameException
from zeroconf.asyncio import AsyncServiceInfo, AsyncZeroconf

from aioroomcast.util import get_local_ip

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_roomcast._tcp.local."


class MdnsAdvertiser:
    """Publishes one service record while the server is running."""

    _zc: AsyncZeroconf | None
    _service: AsyncServiceInfo | None

    def __init__(self, instance_id: str, properties: Mapping[str, str]) -> None:
        """
        Initialize the advertiser.

        Args:
            instance_id: Instance name of the record, also used as its host name.
            properties: TXT record entries.
        """
        self._instance_id = instance_id
        self._properties = dict(properties)
        self._zc = None
        self._service = None

    @property
    def service(self) -> AsyncServiceInfo | None:
        """The registered service record, None while nothing is advertised."""
        return self._service

    async def start(
        self, port: int, addresses: list[str] | None = None, interface: str | None = None
    ) -> None:
        """
        Start advertising the server.

        :param port: Port the server listens on.
        :param addresses: Addresses put in the record, the local IP address is
            detected if None.
        :param interface: Only answer queries on this address, all default
            interfaces if None.
        """
        if addresses is None:
            local_ip = get_local_ip()
            addresses = [local_ip] if local_ip else []
        if not addresses:
            logger.warning(
                "Could not detect a local IP address, mDNS advertising skipped. "
                "Pass advertise_addresses to advertise the server."
            )
            return

        if self._zc is None:
            self._zc = AsyncZeroconf(
                ip_version=IPVersion.V4Only,
                interfaces=[interface] if interface else InterfaceChoice.Default,
            )
        elif self._service is not None:
            await self._zc.async_unregister_service(self._service)
            self._service = None

        info = AsyncServiceInfo(
            type_=SERVICE_TYPE,
            name=f"{self._instance_id}.{SERVICE_TYPE}",
            server=f"{self._instance_id}.local.",
            parsed_addresses=addresses,
            port=port,
            properties=self._properties,
        )
        try:
            await self._zc.async_register_service(info)
        except NonUniqueNameException:
            logger.error("Roomcast server with identical name present in the local network!")
            return
        self._service = info
        logger.debug("mDNS advertising %s on %s port %d", info.name, addresses, port)

    async def stop(self) -> None:
        """Withdraw the record and close the mDNS responder."""
        if self._zc is None:
            return
        try:
            if self._service is not None:
                await self._zc.async_unregister_service(self._service)
        finally:
            await self._zc.async_close()
            self._zc = None
            self._service = None
