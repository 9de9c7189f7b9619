"""Landing pages the buyer's browser is redirected to after the hosted checkout.

These pages are UX only. A redirect to the success URL proves nothing about
the payment, so the success page only reports "paid" when the webhook has
already marked the order paid.
"""
from typing import Optional

from fastapi.responses import HTMLResponse
from jinja2 import DictLoader, Environment, select_autoescape

from . import money

SHOP_URL = "file:///android_asset/groceries.html"
TROLLEY_URL = "file:///android_asset/trolley.html"

COLORS = {"success": "#4CAF50", "info": "#007bff", "warning": "#ff9800", "error": "#f44336"}

TEMPLATES = {
    "status.html": r"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{{ title }}</title>
  <style>
    body{font-family:Arial,sans-serif;margin:0;padding:20px;display:flex;flex-direction:column;align-items:center;justify-content:center;min-height:90vh;background-color:#f4f6f9;color:#333;text-align:center}
    .container{max-width:600px;background:#fff;padding:30px;border-radius:8px;box-shadow:0 4px 12px rgba(0,0,0,0.1);margin-top:20px}
    h1{color:{{ color }};margin-bottom:20px}
    p{margin-bottom:20px;line-height:1.6}
    a.button{display:inline-block;padding:12px 25px;background-color:#007bff;color:white;text-decoration:none;border-radius:5px;font-weight:bold}
    .footer-text{font-size:12px;color:#777;margin-top:30px}
  </style>
</head>
<body>
  <div class="container">
    <h1>{{ title }}</h1>
    <p>{{ message }}</p>
    {% if order %}
    <p><b>Order Reference:</b> {{ order.reference }}<br>
       <b>Amount:</b> {{ amount }}<br>
       <b>Order Status:</b> {{ order.status.value }}
       {% if order.provider_payment_id %}<br><b>Payment ID:</b> {{ order.provider_payment_id }}{% endif %}
    </p>
    {% endif %}
    {% if provider_status %}<p class="footer-text">Payment provider status: {{ provider_status }}</p>{% endif %}
    <p><a href="{{ link_href }}" class="button">{{ link_text }}</a></p>
    <p class="footer-text">If not redirected, click above.</p>
  </div>
  {% if clear_trolley %}
  <script>
    try {
      if (window.AndroidBridge && typeof window.AndroidBridge.clearTrolleyData === 'function') {
        window.AndroidBridge.clearTrolleyData();
      } else {
        localStorage.removeItem('trolley');
      }
    } catch (e) {
      console.error("Error clearing trolley data:", e);
    }
  </script>
  {% endif %}
</body>
</html>
""",
}

env = Environment(loader=DictLoader(TEMPLATES), autoescape=select_autoescape(["html"]))


def render_template(name: str, status_code: int = 200, **ctx) -> HTMLResponse:
    tpl = env.get_template(name)
    return HTMLResponse(tpl.render(**ctx), status_code=status_code)


def _page(title, message, kind, link_href, link_text, order=None, provider_status=None,
          clear_trolley=False, status_code=200) -> HTMLResponse:
    return render_template(
        "status.html",
        status_code=status_code,
        title=title,
        message=message,
        color=COLORS[kind],
        link_href=link_href,
        link_text=link_text,
        order=order,
        amount=money.format_minor_units(order.amount, order.currency) if order else None,
        provider_status=provider_status,
        clear_trolley=clear_trolley,
    )


def success_page(order=None, provider_status: Optional[str] = None) -> HTMLResponse:
    if order is not None and order.status.value == "paid":
        title, message = "Payment Successful", "Your payment has been confirmed. Thank you for your order!"
    else:
        title = "Payment Initiated"
        message = (
            "Thank you! Your payment is being processed. We will confirm your order "
            "details shortly via the app. Your trolley will now be cleared."
        )
    return _page(title, message, "success", SHOP_URL, "Continue Shopping",
                 order=order, provider_status=provider_status, clear_trolley=True)


def cancel_page(order=None, provider_status: Optional[str] = None) -> HTMLResponse:
    return _page("Payment Cancelled", "Your payment was cancelled. Your items are still in your trolley.",
                 "warning", TROLLEY_URL, "Return to Trolley", order=order, provider_status=provider_status)


def failure_page(order=None, provider_status: Optional[str] = None) -> HTMLResponse:
    return _page("Payment Failed", "Payment could not be processed. Please try again. Items are in trolley.",
                 "error", TROLLEY_URL, "Return to Trolley & Try Again",
                 order=order, provider_status=provider_status, status_code=400)


PAGES = {"success": success_page, "cancel": cancel_page, "failure": failure_page}
