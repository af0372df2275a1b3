"""Outbound webhook action.

Calls an external HTTP endpoint with the configured method, headers and
body. Timeouts, connection failures, 429 and 5xx responses are transient
and retried by the engine; other 4xx responses fail the run.
"""

import ipaddress
import json
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx

from actions.base_action import ActionResult, BaseAction
from automation.context import ActionContext
from automation.templating import render
from core.exceptions import ActionConfigurationError, ActionError, TransientActionError
from core.webhook_signing import sign_webhook_payload

ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
FORBIDDEN_PORTS = (5432, 6379)  # postgres, redis
DEFAULT_TIMEOUT = 10.0


def _is_private_ip(ip_str: str) -> bool:
    try:
        ip = ipaddress.ip_address(ip_str)
        return ip.is_private or ip.is_loopback or ip.is_reserved or ip.is_link_local
    except ValueError:
        return False


def validate_url_safety(url: str) -> None:
    """Reject URLs that would let a graph author reach internal services.

    Blocks non-HTTP(S) schemes, localhost, private/loopback IP literals
    and internal service ports.

    Raises:
        ActionConfigurationError: If the URL is unsafe
    """
    parsed = urlparse(url)

    if parsed.scheme.lower() not in ("http", "https"):
        raise ActionConfigurationError(f"Unsupported scheme: {parsed.scheme!r}. Only HTTP and HTTPS allowed.")

    hostname = parsed.hostname
    if not hostname:
        raise ActionConfigurationError("URL must have a valid hostname")

    if hostname.lower() in ("localhost", "127.0.0.1", "::1"):
        raise ActionConfigurationError("Connections to localhost are not allowed")

    # Domain names are not resolved here; only IP literals are checked
    if _is_private_ip(hostname):
        raise ActionConfigurationError(f"Connections to private IP {hostname} are not allowed")

    try:
        port = parsed.port
    except ValueError:
        raise ActionConfigurationError(f"Invalid port in URL: {url}")
    if port in FORBIDDEN_PORTS:
        raise ActionConfigurationError(f"Connections to internal port {port} are not allowed")


def _render_body(body: Any, context: ActionContext) -> Any:
    if isinstance(body, str):
        return render(body, context)
    if isinstance(body, dict):
        return {k: _render_body(v, context) for k, v in body.items()}
    if isinstance(body, list):
        return [_render_body(v, context) for v in body]
    return body


class CallWebhookAction(BaseAction):
    """Call an external HTTP endpoint.

    Config:
        url: Target URL (required, template variables allowed)
        method: GET, POST, PUT, PATCH, DELETE (default: POST)
        headers: Dict of HTTP headers
        body: JSON body; string values support template variables.
              Defaults to the run, lead and trigger payload.
        timeout: Per-call timeout in seconds (default: 10)

    When a signing secret is configured the request carries
    X-Automation-Signature headers whose delivery id is stable across
    replays of the same node visit.
    """

    action_type = "call_webhook"
    display_name = "Call webhook"
    description = "Send an HTTP request to an external service"
    requires_subject = False

    async def execute(self, config: Dict[str, Any], context: ActionContext) -> ActionResult:
        url = render(str(self.require(config, "url", "webhook_url")), context)
        validate_url_safety(url)

        method = str(config.get("method", "POST")).upper()
        if method not in ALLOWED_METHODS:
            raise ActionConfigurationError(f"Unsupported HTTP method: {method}")

        try:
            timeout = float(config.get("timeout", DEFAULT_TIMEOUT))
        except (TypeError, ValueError):
            raise ActionConfigurationError(f"timeout must be a number, got {config.get('timeout')!r}")

        headers = {str(k): str(v) for k, v in (config.get("headers") or {}).items()}
        content: Optional[bytes] = None
        if method != "GET":
            body = _render_body(config["body"], context) if "body" in config else self._default_body(context)
            content = json.dumps(body, default=str).encode()
            headers.setdefault("Content-Type", "application/json")

        if self.deps.signing_secret:
            headers.update(
                sign_webhook_payload(
                    content or b"",
                    self.deps.signing_secret,
                    delivery_id=f"{context.run_id}:{context.node_id}:{context.attempt}",
                )
            )

        response = await self._send(method, url, headers, content, timeout)

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientActionError(f"Webhook returned HTTP {response.status_code}", node_id=context.node_id)
        if response.status_code >= 400:
            raise ActionError(f"Webhook returned HTTP {response.status_code}", node_id=context.node_id)

        try:
            data = response.json()
        except ValueError:
            data = response.text[:2000]

        return ActionResult(output={"status_code": response.status_code, "url": url, "data": data})

    async def _send(self, method, url, headers, content, timeout) -> httpx.Response:
        try:
            if self.deps.http_client is not None:
                return await self.deps.http_client.request(
                    method, url, headers=headers, content=content, timeout=timeout
                )
            async with httpx.AsyncClient() as client:
                return await client.request(method, url, headers=headers, content=content, timeout=timeout)
        except httpx.TimeoutException:
            raise TransientActionError(f"Webhook timed out after {timeout}s")
        except httpx.TransportError as e:
            raise TransientActionError(f"Webhook connection failed: {e}")

    @staticmethod
    def _default_body(context: ActionContext) -> dict:
        subject = context.subject
        return {
            "run_id": context.run_id,
            "graph_id": context.graph_id,
            "node_id": context.node_id,
            "lead": (
                {
                    "id": subject.id,
                    "name": subject.name,
                    "phone": subject.phone,
                    "email": subject.email,
                    "stage_id": subject.stage_id,
                }
                if subject
                else None
            ),
            "trigger": dict(context.trigger),
        }

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        return {
            "type": "object",
            "required": ["url"],
            "properties": {
                "url": {"type": "string", "description": "Target URL"},
                "method": {"type": "string", "enum": list(ALLOWED_METHODS)},
                "headers": {"type": "object"},
                "body": {"description": "JSON request body"},
                "timeout": {"type": "number", "default": DEFAULT_TIMEOUT},
            },
        }


WEBHOOK_ACTION_TYPES = {
    "call_webhook": CallWebhookAction,
}
