"""Formatter service for markdown output."""

import json
from datetime import UTC, datetime
from http import HTTPStatus

from xapi_relay.models.output import FormatOptions
from xapi_relay.models.requests import RequestFailure, RequestResult, RequestSpec
from xapi_relay.models.tunnel import TunnelStatus, WebhookDelivery

SENSITIVE_HEADERS = ("authorization", "x-api-key", "cookie", "set-cookie")


class FormatterService:
    """Service for formatting results, deliveries and tunnel status as markdown."""

    def format_result(
        self,
        spec: RequestSpec,
        result: RequestResult,
        options: FormatOptions,
    ) -> str:
        """Format the outcome of an executed request.

        Args:
            spec: The request that was sent
            result: The normalized result
            options: Formatting options

        Returns:
            Markdown formatted string
        """
        lines: list[str] = []

        lines.append(f"## {spec.method.upper()} {spec.url}")
        lines.append(f"**Status:** {self._format_status(result.status)}")
        if isinstance(result, RequestFailure):
            lines.append(f"**Error:** {result.message}")
        lines.append("")

        if options.show_headers and spec.headers:
            lines.append("### Request Headers")
            lines.extend(self._format_headers(spec.headers, options.headers_filter))
            lines.append("")

        if options.show_headers and result.headers:
            lines.append("### Response Headers")
            lines.extend(self._format_headers(result.headers, options.headers_filter))
            lines.append("")

        if result.body:
            content_type = self._get_content_type(result.headers or {})
            lines.append("### Response Body")
            lines.append(f"```{self._get_code_block_lang(content_type)}")
            lines.append(self._format_body(result.body, content_type, options))
            lines.append("```")
            lines.append("")

        return "\n".join(lines)

    def format_delivery(
        self,
        delivery: WebhookDelivery,
        options: FormatOptions,
        received_at: datetime | None = None,
    ) -> str:
        """Format a received webhook delivery.

        Args:
            delivery: The delivery to format
            options: Formatting options
            received_at: When the delivery arrived, defaults to now

        Returns:
            Markdown formatted string
        """
        lines: list[str] = []
        body = delivery.decoded_body()

        lines.append(f"## {delivery.method} {delivery.uri}")
        lines.append(f"**Received:** {self._format_timestamp(received_at or datetime.now(UTC))}")
        lines.append(f"**Size:** {len(body)} bytes")
        lines.append("")

        if options.show_headers:
            lines.append("### Headers")
            lines.extend(self._format_headers(delivery.headers, options.headers_filter))
            lines.append("")

        if body:
            content_type = self._get_content_type(delivery.headers)
            lines.append("### Body")
            lines.append(f"```{self._get_code_block_lang(content_type)}")
            lines.append(self._format_body(body.decode("utf-8", errors="replace"),
                                           content_type, options))
            lines.append("```")
            lines.append("")

        return "\n".join(lines)

    def format_status(self, status: TunnelStatus | None) -> str:
        """Format a tunnel status snapshot."""
        if status is None:
            return "**Tunnel:** not started"

        lines = [
            f"**Tunnel:** {'active' if status.is_active else 'inactive'}",
            f"**URL:** {status.public_url or '-'}",
        ]
        if status.log:
            lines.append("")
            lines.append("### Log")
            lines.extend(f"- {entry}" for entry in status.log)
        return "\n".join(lines)

    def build_separator(self, label: str, width: int = 80) -> str:
        """Build a visual separator line with a centered label.

        Args:
            label: The label to center in the separator
            width: Total width of the separator line

        Returns:
            Separator string like "******** POST /webhook ********"
        """
        label_with_spaces = f" {label} "
        remaining = width - len(label_with_spaces)
        if remaining < 2:
            return f"* {label} *"
        left = remaining // 2
        right = remaining - left
        return f"{'*' * left}{label_with_spaces}{'*' * right}"

    def _format_status(self, status: int) -> str:
        if status == 0:
            return "0 (no response)"
        try:
            return f"{status} {HTTPStatus(status).phrase}"
        except ValueError:
            return str(status)

    def _format_body(self, body: str, content_type: str, options: FormatOptions) -> str:
        """Format a body string according to options.

        Args:
            body: The body string
            content_type: The content type
            options: Formatting options

        Returns:
            Formatted body string
        """
        result = body

        if options.pretty_print and "json" in content_type.lower():
            try:
                result = json.dumps(json.loads(body), indent=2)
            except json.JSONDecodeError:
                pass  # Keep original if not valid JSON

        if options.truncate is not None and len(result) > options.truncate:
            result = result[: options.truncate] + f"\n... (truncated, {len(body)} total chars)"

        return result

    def _format_headers(
        self,
        headers: dict[str, str],
        filter_list: list[str] | None,
    ) -> list[str]:
        lines: list[str] = []
        for name, value in headers.items():
            if filter_list is not None and not any(f.lower() == name.lower() for f in filter_list):
                continue
            if name.lower() in SENSITIVE_HEADERS:
                value = "***"
            lines.append(f"{name}: {value}")
        return lines

    def _format_timestamp(self, dt: datetime) -> str:
        return dt.isoformat()

    def _get_content_type(self, headers: dict[str, str]) -> str:
        for name, value in headers.items():
            if name.lower() == "content-type":
                return value
        return ""

    def _get_code_block_lang(self, content_type: str) -> str:
        """Get the appropriate code block language for a content type."""
        ct = content_type.lower()
        if "json" in ct:
            return "json"
        if "xml" in ct:
            return "xml"
        if "html" in ct:
            return "html"
        if "javascript" in ct:
            return "javascript"
        return ""
