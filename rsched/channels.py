"""Alert delivery channels over HTTP."""

from __future__ import annotations

import abc

import httpx

from rsched.payload import AlertPayload


class AlertError(Exception):
    """Failure while delivering an alert."""


class SmtpNotConfiguredError(AlertError):
    """E-mail delivery was asked for but no SMTP settings are present."""

    def __init__(self) -> None:
        super().__init__(
            "smtp not configured: set RSCHED_SMTP_HOST/USER/PASS/FROM env vars"
        )


class Channel(abc.ABC):
    """An alert delivery target."""

    @abc.abstractmethod
    async def deliver(self, payload: AlertPayload) -> None:
        """Deliver one payload, raising AlertError on failure."""


def slack_text(payload: AlertPayload) -> str:
    """The message text posted to Slack for ``payload``."""
    suffix = f" — {payload.message}" if payload.message is not None else ""
    return (
        f":rotating_light: *{payload.event.label}* — job `{payload.job_name}` "
        f"(attempt {payload.attempt}) state `{payload.state.label}`{suffix}"
    )


async def _post_json(url: str, body: object) -> None:
    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(url, json=body)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        raise AlertError(f"http: {exc}") from exc


class SlackChannel(Channel):
    """Slack incoming-webhook channel."""

    def __init__(self, webhook_url: str) -> None:
        self.webhook_url = webhook_url

    async def deliver(self, payload: AlertPayload) -> None:
        """Post the alert as Slack message text."""
        await _post_json(self.webhook_url, {"text": slack_text(payload)})


class WebhookChannel(Channel):
    """Generic webhook channel posting the payload as JSON."""

    def __init__(self, url: str) -> None:
        self.url = url

    async def deliver(self, payload: AlertPayload) -> None:
        """Post the payload's JSON form."""
        await _post_json(self.url, payload.to_dict())