from __future__ import annotations

import html
import logging
import os
from dataclasses import dataclass, field
from typing import Protocol

from property_alerts.core.mailer import DeliveryError, MailTransport
from property_alerts.core.models import Alert, DispatchReceipt, PropertyRecord, RunMode


LOGGER = logging.getLogger(__name__)

DEFAULT_SITE_URL = "https://irishpropertydata.com"
DRY_RUN_MESSAGE_ID = "dry-run"


class RecipientNotFound(LookupError):
    """The alert owner has no deliverable address."""


class UserStore(Protocol):
    def get_user_email(self, user_id: str) -> str | None: ...


@dataclass(slots=True)
class AlertDigest:
    location_name: str
    radius_km: float
    total_count: int
    new_listings: list[PropertyRecord] = field(default_factory=list)
    new_rentals: list[PropertyRecord] = field(default_factory=list)
    new_sales: list[PropertyRecord] = field(default_factory=list)
    price_drops: list[PropertyRecord] = field(default_factory=list)

    def bucket_counts(self) -> dict[str, int]:
        return {
            "new_listings": len(self.new_listings),
            "new_rentals": len(self.new_rentals),
            "new_sales": len(self.new_sales),
            "price_drops": len(self.price_drops),
        }


def build_digest(alert: Alert, properties: list[PropertyRecord]) -> AlertDigest:
    return AlertDigest(
        location_name=alert.location_name,
        radius_km=alert.search_radius_km,
        total_count=len(properties),
        new_listings=[p for p in properties if p.is_listing and not p.is_rental],
        new_rentals=[p for p in properties if p.is_rental],
        new_sales=[p for p in properties if p.sold_date],
        price_drops=[p for p in properties if len(p.price_history) > 1],
    )


def digest_subject(digest: AlertDigest) -> str:
    noun = "property" if digest.total_count == 1 else "properties"
    return f"{digest.total_count} new {noun} in {digest.location_name}"


class NotificationDispatcher:
    def __init__(
        self,
        users: UserStore,
        transport: MailTransport | None,
        mode: RunMode = RunMode.LIVE,
        site_url: str | None = None,
    ) -> None:
        if mode is RunMode.LIVE and transport is None:
            raise ValueError("A mail transport is required outside dry-run mode.")
        self.users = users
        self.transport = transport
        self.mode = mode
        self.site_url = (site_url or os.environ.get("SITE_URL") or DEFAULT_SITE_URL).rstrip("/")

    def dispatch(self, alert: Alert, properties: list[PropertyRecord]) -> DispatchReceipt:
        """
        Send the digest for one alert.

        Raises RecipientNotFound or DeliveryError; the caller must then leave
        the alert's cursor untouched so the same properties are retried.
        """
        recipient = self.users.get_user_email(alert.user_id)
        if not recipient:
            raise RecipientNotFound(f"No email for user={alert.user_id} (alert={alert.id})")

        digest = build_digest(alert, properties)
        subject = digest_subject(digest)
        html_body = render_html(digest, self.site_url)
        text_body = render_text(digest, self.site_url)

        if self.mode is RunMode.DRY_RUN:
            LOGGER.info(
                "DRY RUN: would send email to %s with %s properties (alert=%s)",
                recipient,
                digest.total_count,
                alert.id,
            )
            return DispatchReceipt(
                recipient=recipient,
                subject=subject,
                property_count=digest.total_count,
                message_id=DRY_RUN_MESSAGE_ID,
                simulated=True,
            )

        if self.transport is None:
            raise DeliveryError(f"No mail transport configured (alert={alert.id})")
        message_id = self.transport.send(recipient, subject, html_body, text_body)
        LOGGER.info("Email sent to %s: %s (alert=%s)", recipient, message_id, alert.id)
        return DispatchReceipt(
            recipient=recipient,
            subject=subject,
            property_count=digest.total_count,
            message_id=message_id,
        )


def format_price(record: PropertyRecord) -> str:
    if record.asking_price:
        return f"€{record.asking_price:,.0f}"
    if record.sold_price:
        return f"€{record.sold_price:,.0f}"
    if record.monthly_rent:
        return f"€{record.monthly_rent:,.0f}/month"
    return "Price TBA"


def format_details(record: PropertyRecord) -> str:
    parts = []
    if record.beds:
        parts.append(f"{record.beds} bed")
    if record.baths:
        parts.append(f"{record.baths} bath")
    if record.area_sqm:
        parts.append(f"{record.area_sqm:g}m²")
    return ", ".join(parts)


_SECTIONS = (
    ("new_listings", "New Listings"),
    ("new_rentals", "New Rentals"),
    ("new_sales", "Recent Sales"),
    ("price_drops", "Price Changes"),
)


def render_html(digest: AlertDigest, site_url: str = DEFAULT_SITE_URL) -> str:
    location = html.escape(digest.location_name)
    noun = "property" if digest.total_count == 1 else "properties"
    parts = [
        "<!DOCTYPE html>",
        '<html><head><meta charset="utf-8">',
        f"<title>Property Alert - {location}</title></head>",
        '<body style="font-family: Arial, sans-serif; background-color: #f8fafc;">',
        '<div style="max-width: 600px; margin: 0 auto; background: white;">',
        '<div style="background: #1e293b; color: white; padding: 20px; text-align: center;">',
        "<h1>Property Alert</h1>",
        f"<p>{digest.total_count} new {noun} in {location}</p>",
        "</div>",
        '<div style="padding: 20px;">',
        "<p>Hello,</p>",
        f"<p>We found {digest.total_count} new {noun} matching your alert criteria in {location}:</p>",
    ]
    for attr, title in _SECTIONS:
        records: list[PropertyRecord] = getattr(digest, attr)
        if not records:
            continue
        parts.append(f"<h3>{title} ({len(records)})</h3>")
        parts.extend(_render_card(record) for record in records)

    parts.extend(
        [
            '<p style="text-align: center; margin: 30px 0;">',
            f'<a href="{site_url}/saved">View Saved Properties</a><br>',
            "All properties from this alert have been automatically saved to your account",
            "</p>",
            f'<p><a href="{site_url}/alerts">Manage Your Alerts</a> | '
            f'<a href="{site_url}/alerts">Unsubscribe</a></p>',
            "</div>",
            '<div style="background: #f1f5f9; padding: 20px; text-align: center; color: #64748b;">',
            f"You're receiving this because you have an alert set up for {location}.",
            "</div>",
            "</div></body></html>",
        ]
    )
    return "\n".join(parts)


def render_text(digest: AlertDigest, site_url: str = DEFAULT_SITE_URL) -> str:
    lines = [digest_subject(digest), ""]
    for attr, title in _SECTIONS:
        records: list[PropertyRecord] = getattr(digest, attr)
        if not records:
            continue
        lines.append(f"{title} ({len(records)})")
        for record in records:
            details = format_details(record)
            suffix = f" ({details})" if details else ""
            lines.append(f"- {record.address or 'Unknown address'}: {format_price(record)}{suffix}")
        lines.append("")
    lines.append(f"View saved properties: {site_url}/saved")
    lines.append(f"Manage your alerts: {site_url}/alerts")
    return "\n".join(lines)


def _render_card(record: PropertyRecord) -> str:
    details = format_details(record)
    details_html = f'<div style="color: #64748b; font-size: 14px;">{html.escape(details)}</div>' if details else ""
    return (
        '<div style="border: 1px solid #e2e8f0; border-radius: 8px; margin: 10px 0; padding: 15px;">'
        f'<div style="font-weight: 600; color: #1e293b;">{html.escape(record.address or "Unknown address")}</div>'
        f'<div style="color: #059669; font-weight: 600; font-size: 18px;">{html.escape(format_price(record))}</div>'
        f"{details_html}"
        "</div>"
    )

