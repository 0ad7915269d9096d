"""Config-data upload (device attributes requested by the server)."""

import logging
from typing import Any, Mapping, Optional

from ddiclient.config import ClientConfig
from ddiclient.errors import TransportError
from ddiclient.models.feedback import ConfigDataPayload
from ddiclient.models.status import ConfigDataMode
from ddiclient.services.transport import DDITransport


class ConfigDataService:
    """Stateless push of device attributes; unrelated to the action slot."""

    def __init__(self, transport: DDITransport, config: ClientConfig):
        self.logger = logging.getLogger("ddiclient.config_data")
        self.transport = transport
        self.attributes = dict(config.attributes)
        self.policy = config.feedback_policy()

    async def upload(
        self,
        url: str,
        attributes: Optional[Mapping[str, Any]] = None,
        mode: Optional[ConfigDataMode] = None,
    ) -> bool:
        """PUT the attributes to the configData link.

        Args:
            url: configData href from the poll reply
            attributes: Attributes to send (defaults to the configured ones)
            mode: Server-side merge mode, None lets the server decide

        Returns:
            True on success; failures are logged and retried on a later poll
        """
        data = dict(self.attributes if attributes is None else attributes)
        body = ConfigDataPayload(mode=mode, data=data).to_wire()

        try:
            await self.policy.run(
                lambda: self.transport.put_json(url, body),
                retry_on=(TransportError,),
                description="Config data upload",
                logger=self.logger,
            )
        except TransportError as e:
            self.logger.warning(f"Config data upload failed: {e}")
            return False

        self.logger.info(f"Uploaded {len(data)} config attributes")
        return True
