"""Renders transactional email subjects and HTML bodies from an order snapshot."""

import html
import json
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from . import config


class NotificationKind(str, Enum):
    PROCESSING = "processing"
    CONFIRMATION = "confirmation"
    PAYMENT_FAILED = "payment_failed"
    MERCHANT_NOTIFICATION = "merchant_notification"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RenderedMessage:
    to: str
    subject: str
    html: str


_ADDRESS_FIELDS = ("line1", "line2", "city", "state", "postal_code", "country")

_CSS = """
  body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; }
  .header { padding: 30px; text-align: center; border-radius: 8px 8px 0 0; color: #fff; }
  .content { background: #f9fafb; padding: 30px; border-radius: 0 0 8px 8px; }
  .panel { background: #fff; padding: 20px; border-radius: 8px; margin: 20px 0; }
  .notice { background: #fef3c7; color: #92400e; padding: 15px; border-radius: 8px; border-left: 4px solid #f59e0b; }
  table { width: 100%; border-collapse: collapse; }
  th { text-align: left; padding: 12px; background: #f3f4f6; }
  td { padding: 12px; border-bottom: 1px solid #e5e7eb; }
  td.num, th.num { text-align: right; }
  .footer { color: #6b7280; font-size: 14px; text-align: center; margin-top: 30px; }
"""

_HEADER_COLOURS = {
    NotificationKind.PROCESSING: "#f59e0b",
    NotificationKind.CONFIRMATION: "#10b981",
    NotificationKind.PAYMENT_FAILED: "#ef4444",
    NotificationKind.MERCHANT_NOTIFICATION: "#3b82f6",
    NotificationKind.OUT_FOR_DELIVERY: "#8b5cf6",
    NotificationKind.DELIVERED: "#10b981",
    NotificationKind.CANCELLED: "#6b7280",
}


def format_address(address, separator: str = "<br>", escape: bool = True) -> str:
    """
    Normalizes a structured address, a JSON-encoded address, or a free-form
    string into a display string. Output is HTML-escaped unless ``escape`` is False.
    """
    quote = html.escape if escape else str
    if not address:
        return "Address not provided"

    if isinstance(address, str):
        try:
            parsed = json.loads(address)
        except ValueError:
            return quote(address)
        if isinstance(parsed, dict):
            return format_address(parsed, separator, escape)
        return quote(address)

    if isinstance(address, dict):
        parts = [quote(str(address[field])) for field in _ADDRESS_FIELDS if address.get(field)]
        return separator.join(parts) if parts else "Address not provided"

    return "Address not provided"


def format_money(amount) -> str:
    return f"£{Decimal(str(amount or 0)):.2f}"


def _items_table(order) -> str:
    rows = "".join(
        f"""<tr>
          <td>{html.escape(item.product_name)}</td>
          <td class="num">{item.quantity}</td>
          <td class="num">{format_money(item.unit_price)}</td>
          <td class="num">{format_money(item.total_price)}</td>
        </tr>"""
        for item in order.line_items
    )
    return f"""
    <table>
      <thead><tr><th>Product</th><th class="num">Qty</th><th class="num">Price</th><th class="num">Total</th></tr></thead>
      <tbody>{rows}</tbody>
    </table>"""


def _totals(order) -> str:
    subtotal = sum((Decimal(str(item.total_price)) for item in order.line_items), Decimal("0"))
    discount = ""
    if order.discount_amount:
        discount = f"<p><strong>Discount:</strong> -{format_money(order.discount_amount)}</p>"
    return f"""
    <p><strong>Subtotal:</strong> {format_money(subtotal)}</p>
    <p><strong>Shipping:</strong> {format_money(order.shipping_amount)}</p>
    <p><strong>Tax:</strong> {format_money(order.tax_amount)}</p>
    {discount}
    <p style="font-size: 18px;"><strong>Total:</strong> {format_money(order.total_amount)}</p>"""


def _delivery_note(order, for_merchant: bool) -> str:
    distance = order.delivery_distance_miles
    distance_text = f" ({Decimal(str(distance)):.1f} miles away)" if distance is not None else ""
    radius = f"{config.DELIVERY_RADIUS_MILES:g}-mile"
    if order.delivery_quote_required:
        if for_merchant:
            return (f'<div class="notice">Customer is outside the {radius} radius{distance_text}. '
                    f'Please contact the customer to arrange delivery and provide a quote.</div>')
        return (f'<div class="notice"><strong>Note:</strong> Your delivery address is outside our standard '
                f'{radius} radius{distance_text}. We\'ll contact you shortly to arrange delivery and provide a quote.</div>')
    if for_merchant:
        return f"<p>Within {radius} delivery radius - standard delivery applies.</p>"
    return f"<p>Free delivery within {config.DELIVERY_RADIUS_MILES:g} miles.</p>"


def _order_details(order) -> str:
    return f"""
    <div class="panel">
      <h2>Order Details</h2>
      <p><strong>Order Number:</strong> {html.escape(order.order_number)}</p>
      {_items_table(order)}
      {_totals(order)}
    </div>
    <div class="panel">
      <h3>Delivery Address</h3>
      <p>{format_address(order.shipping_address)}</p>
    </div>"""


def _page(kind: NotificationKind, title: str, subtitle: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{html.escape(title)}</title>
    <style>{_CSS}</style>
  </head>
  <body>
    <div class="header" style="background: {_HEADER_COLOURS[kind]};">
      <h1>{html.escape(title)}</h1>
      <p>{html.escape(subtitle)}</p>
    </div>
    <div class="content">
      {body}
      <div class="footer">
        <p>Questions about your order? Reply to this email or contact {html.escape(config.CLIENT_EMAIL)}.</p>
      </div>
    </div>
  </body>
</html>"""


def _greeting(order) -> str:
    return f"<p>Dear {html.escape(order.customer_name)},</p>"


def render(kind: NotificationKind, order, message: str = "") -> RenderedMessage:
    number = order.order_number
    note = f"<p>{html.escape(message)}</p>" if message else ""

    if kind is NotificationKind.PROCESSING:
        body = (_greeting(order)
                + "<p>Thank you for your order! We've received your payment request and it's currently being processed. "
                  "You'll receive a confirmation email once your payment has been processed.</p>"
                + _order_details(order))
        return RenderedMessage(order.customer_email, f"Payment Processing - {number}",
                               _page(kind, "Payment Processing", "We're processing your payment", body))

    if kind is NotificationKind.CONFIRMATION:
        body = (_greeting(order)
                + "<p>Your payment has been received and your order is confirmed.</p>"
                + _order_details(order)
                + _delivery_note(order, for_merchant=False))
        return RenderedMessage(order.customer_email, f"Order Confirmation - {number}",
                               _page(kind, "Order Confirmed", "Thank you for your purchase", body))

    if kind is NotificationKind.PAYMENT_FAILED:
        body = (_greeting(order)
                + "<p>Unfortunately your payment could not be processed and your order has been cancelled. "
                  "No money has been taken.</p>"
                + _order_details(order)
                + f'<p><a href="{html.escape(config.SITE_URL)}/products">Try again - visit the shop</a></p>')
        return RenderedMessage(order.customer_email, f"Payment Failed - {number}",
                               _page(kind, "Payment Failed", "Your order could not be completed", body))

    if kind is NotificationKind.MERCHANT_NOTIFICATION:
        customer = (f"<p><strong>Name:</strong> {html.escape(order.customer_name)}</p>"
                    f"<p><strong>Email:</strong> {html.escape(order.customer_email or '')}</p>"
                    f"<p><strong>Phone:</strong> {html.escape(order.customer_phone or 'Not provided')}</p>")
        body = (f'<div class="panel"><h2>Customer</h2>{customer}</div>'
                + _order_details(order)
                + f'<div class="panel"><h3>Billing Address</h3><p>{format_address(order.billing_address or order.shipping_address)}</p></div>'
                + _delivery_note(order, for_merchant=True))
        return RenderedMessage(config.CLIENT_EMAIL, f"New Order: {number} - {format_money(order.total_amount)}",
                               _page(kind, "New Order Received", number, body))

    if kind is NotificationKind.OUT_FOR_DELIVERY:
        body = (_greeting(order)
                + f"<p>Great news! Your order <strong>{html.escape(number)}</strong> is now out for delivery.</p>"
                + note
                + _order_details(order))
        return RenderedMessage(order.customer_email, f"Your Order is Out for Delivery - {number}",
                               _page(kind, "Out for Delivery", "Your order is on its way", body))

    if kind is NotificationKind.DELIVERED:
        body = (_greeting(order)
                + f"<p>Your order <strong>{html.escape(number)}</strong> has been delivered. We hope you enjoy it.</p>"
                + _order_details(order))
        return RenderedMessage(order.customer_email, f"Order Delivered - {number}",
                               _page(kind, "Order Delivered", "Thank you for shopping with us", body))

    if kind is NotificationKind.CANCELLED:
        body = (_greeting(order)
                + f"<p>Your order <strong>{html.escape(number)}</strong> has been cancelled.</p>"
                + note
                + _order_details(order))
        return RenderedMessage(order.customer_email, f"Order Cancelled - {number}",
                               _page(kind, "Order Cancelled", "Your order has been cancelled", body))

    raise ValueError(f"Unknown notification kind: {kind}")
