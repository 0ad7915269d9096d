"""Poll reply model and the operations it offers."""

from dataclasses import dataclass
from typing import Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field

from ddiclient.errors import ProtocolError


class Link(BaseModel):
    href: str


class Polling(BaseModel):
    sleep: str = Field(..., description="Suggested poll interval as HH:MM:SS")


class PollConfig(BaseModel):
    polling: Polling


class PollLinks(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    deployment_base: Optional[Link] = Field(None, alias="deploymentBase")
    cancel_action: Optional[Link] = Field(None, alias="cancelAction")
    config_data: Optional[Link] = Field(None, alias="configData")


class PollResponse(BaseModel):
    """GET <controller base> reply.

    Example:
        {
            "config": {"polling": {"sleep": "00:05:00"}},
            "_links": {
                "deploymentBase": {"href": ".../deploymentBase/42?c=-2129030598"},
                "configData": {"href": ".../configData"}
            }
        }
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    config: PollConfig
    links: Optional[PollLinks] = Field(None, alias="_links")


def parse_sleep(value: str) -> float:
    """Convert the server's ``HH:MM:SS`` sleep string to seconds.

    Raises:
        ProtocolError: If the value does not have exactly three fields
    """
    fields = value.split(":")
    if len(fields) != 3:
        raise ProtocolError(f"Invalid polling sleep: {value!r}")
    try:
        hours, minutes, seconds = (int(f) for f in fields)
    except ValueError:
        # Non numeric fields mean "poll again right away"
        return 0.0
    return float(hours * 3600 + minutes * 60 + seconds)


def action_id_from_href(href: str) -> str:
    """Last path segment of a deploymentBase / cancelAction link."""
    segments = [s for s in httpx.URL(href).path.split("/") if s]
    if not segments:
        raise ProtocolError(f"Cannot extract action id from link: {href}")
    return segments[-1]


@dataclass(frozen=True)
class CancelRequested:
    action_id: str
    url: str


@dataclass(frozen=True)
class DeploymentAvailable:
    action_id: str
    url: str


@dataclass(frozen=True)
class ConfigDataRequested:
    url: str


PollOperation = Union[CancelRequested, DeploymentAvailable, ConfigDataRequested]


@dataclass(frozen=True)
class PollResult:
    """Operations offered by one poll reply plus the next poll interval."""

    next_poll_interval: float
    cancel: Optional[CancelRequested] = None
    deployment: Optional[DeploymentAvailable] = None
    config_data: Optional[ConfigDataRequested] = None

    @classmethod
    def from_response(cls, response: PollResponse) -> "PollResult":
        links = response.links or PollLinks()
        cancel = deployment = config_data = None
        if links.cancel_action is not None:
            href = links.cancel_action.href
            cancel = CancelRequested(action_id_from_href(href), href)
        if links.deployment_base is not None:
            href = links.deployment_base.href
            deployment = DeploymentAvailable(action_id_from_href(href), href)
        if links.config_data is not None:
            config_data = ConfigDataRequested(links.config_data.href)
        return cls(
            next_poll_interval=parse_sleep(response.config.polling.sleep),
            cancel=cancel,
            deployment=deployment,
            config_data=config_data,
        )

    def operations(self) -> list[PollOperation]:
        """Offered operations in dispatch priority order.

        Cancellation wins over a deployment; config data is independent.
        """
        ops: list[PollOperation] = []
        if self.cancel is not None:
            ops.append(self.cancel)
        elif self.deployment is not None:
            ops.append(self.deployment)
        if self.config_data is not None:
            ops.append(self.config_data)
        return ops
