"""PayPal service — all PayPal REST API calls.

Responsible for:
- OAuth client-credentials token exchange
- Creating / fetching / cancelling / suspending / reactivating subscriptions
- Webhook signature verification
- Catalog products and billing plans (used by the admin plan sync)

PayPalClient is a Flask extension: the provider mode (sandbox | live), the
credentials for that mode and the API host are fixed in init_app() from the
app config, so nothing here reads the environment at call time.
"""

import json
import logging

import requests

logger = logging.getLogger(__name__)

API_BASES = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}

# Headers PayPal signs each webhook delivery with
TRANSMISSION_HEADERS = {
    "transmission_id": "PAYPAL-TRANSMISSION-ID",
    "transmission_time": "PAYPAL-TRANSMISSION-TIME",
    "cert_url": "PAYPAL-CERT-URL",
    "auth_algo": "PAYPAL-AUTH-ALGO",
    "transmission_sig": "PAYPAL-TRANSMISSION-SIG",
}


class PayPalError(Exception):
    """A PayPal API call failed (transport error or non-2xx response)."""

    def __init__(self, message, status_code=None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PayPalClient:
    """Thin wrapper around the PayPal REST API."""

    def __init__(self, app=None, mode="sandbox", client_id=None,
                 client_secret=None, timeout=15, brand_name="", currency="CAD"):
        self.mode = mode
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.brand_name = brand_name
        self.currency = currency
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        mode = app.config.get("PAYPAL_MODE", "sandbox")
        if mode not in API_BASES:
            raise RuntimeError(f"Unknown PAYPAL_MODE '{mode}'")

        prefix = "PAYPAL_SANDBOX" if mode == "sandbox" else "PAYPAL_LIVE"
        self.mode = mode
        self.client_id = app.config.get(f"{prefix}_CLIENT_ID")
        self.client_secret = app.config.get(f"{prefix}_CLIENT_SECRET")
        self.timeout = app.config.get("PAYPAL_HTTP_TIMEOUT", 15)
        self.brand_name = app.config.get("PAYPAL_BRAND_NAME", "")
        self.currency = app.config.get("PAYPAL_CURRENCY", "CAD")

        app.extensions["paypal"] = self

    @property
    def api_base(self):
        return API_BASES[self.mode]

    def is_configured(self):
        return bool(self.client_id and self.client_secret)

    # ──────────────────────────────────────────────
    # Transport
    # ──────────────────────────────────────────────

    def get_access_token(self):
        """Exchange client credentials for a bearer token.

        Raises PayPalError when credentials are missing or PayPal refuses.
        """
        if not self.is_configured():
            raise PayPalError("PayPal client id or secret not configured")

        try:
            resp = requests.post(
                f"{self.api_base}/v1/oauth2/token",
                auth=(self.client_id, self.client_secret),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                data={"grant_type": "client_credentials"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise PayPalError(f"Token request failed: {e}") from e

        if not resp.ok:
            raise PayPalError(
                "Failed to get access token", resp.status_code, resp.text
            )
        return resp.json()["access_token"]

    def _request(self, method, path, payload=None, raw_body=None,
                 prefer_representation=False):
        """Make an authenticated call and return the response.

        raw_body (a str) is sent as-is instead of JSON-encoding payload.
        """
        token = self.get_access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        if prefer_representation:
            headers["Prefer"] = "return=representation"

        kwargs = {"headers": headers, "timeout": self.timeout}
        if raw_body is not None:
            kwargs["data"] = raw_body.encode("utf-8")
        elif payload is not None:
            kwargs["json"] = payload

        try:
            resp = requests.request(method, f"{self.api_base}{path}", **kwargs)
        except requests.RequestException as e:
            raise PayPalError(f"{method} {path} failed: {e}") from e

        if not resp.ok:
            raise PayPalError(
                f"{method} {path} returned {resp.status_code}",
                resp.status_code,
                resp.text,
            )
        return resp

    # ──────────────────────────────────────────────
    # Subscriptions
    # ──────────────────────────────────────────────

    def create_subscription(self, plan_id, return_url, cancel_url, custom_id=None):
        """Create a subscription awaiting buyer approval.

        Returns (subscription_id, approval_url).
        """
        body = {
            "plan_id": plan_id,
            "application_context": {
                "brand_name": self.brand_name,
                "locale": "en-US",
                "shipping_preference": "NO_SHIPPING",
                "user_action": "SUBSCRIBE_NOW",
                "payment_method": {
                    "payer_selected": "PAYPAL",
                    "payee_preferred": "IMMEDIATE_PAYMENT_REQUIRED",
                },
                "return_url": return_url,
                "cancel_url": cancel_url,
            },
        }
        if custom_id:
            body["custom_id"] = custom_id

        subscription = self._request(
            "POST", "/v1/billing/subscriptions", body,
            prefer_representation=True,
        ).json()

        approval_url = next(
            (link["href"] for link in subscription.get("links", [])
             if link.get("rel") == "approve"),
            None,
        )
        if not approval_url:
            raise PayPalError("No approval link in subscription response")

        return subscription["id"], approval_url

    def get_subscription(self, subscription_id):
        """Fetch live subscription details, flattened to the fields we use."""
        data = self._request(
            "GET", f"/v1/billing/subscriptions/{subscription_id}"
        ).json()

        billing_info = data.get("billing_info") or {}
        last_payment = billing_info.get("last_payment")
        subscriber = data.get("subscriber")

        return {
            "id": data.get("id"),
            # APPROVAL_PENDING | APPROVED | ACTIVE | SUSPENDED | CANCELLED | EXPIRED
            "status": data.get("status"),
            "plan_id": data.get("plan_id"),
            "start_time": data.get("start_time"),
            "next_billing_time": billing_info.get("next_billing_time"),
            "last_payment": {
                "amount": last_payment.get("amount"),
                "time": last_payment.get("time"),
            } if last_payment else None,
            "subscriber": {
                "email_address": subscriber.get("email_address"),
                "payer_id": subscriber.get("payer_id"),
            } if subscriber else None,
            "custom_id": data.get("custom_id"),
        }

    def cancel_subscription(self, subscription_id, reason="Cancelled by user"):
        self._request(
            "POST", f"/v1/billing/subscriptions/{subscription_id}/cancel",
            {"reason": reason},
        )

    def suspend_subscription(self, subscription_id, reason="Suspended by admin"):
        self._request(
            "POST", f"/v1/billing/subscriptions/{subscription_id}/suspend",
            {"reason": reason},
        )

    def reactivate_subscription(self, subscription_id, reason="Reactivated by admin"):
        self._request(
            "POST", f"/v1/billing/subscriptions/{subscription_id}/activate",
            {"reason": reason},
        )

    # ──────────────────────────────────────────────
    # Webhook verification
    # ──────────────────────────────────────────────

    def verify_webhook_signature(self, webhook_id, headers, raw_event):
        """Ask PayPal whether a webhook delivery is authentic.

        headers: dict keyed like TRANSMISSION_HEADERS.
        raw_event: the request body exactly as received. It is spliced into
        the verification request untouched; re-serializing the parsed event
        can change the bytes PayPal signed.

        Returns True only on verification_status == "SUCCESS".
        """
        fields = {
            "auth_algo": headers.get("auth_algo", ""),
            "cert_url": headers.get("cert_url", ""),
            "transmission_id": headers.get("transmission_id", ""),
            "transmission_sig": headers.get("transmission_sig", ""),
            "transmission_time": headers.get("transmission_time", ""),
            "webhook_id": webhook_id,
        }
        if isinstance(raw_event, bytes):
            try:
                raw_event = raw_event.decode("utf-8")
            except UnicodeDecodeError:
                logger.error("[PayPal] Webhook body is not UTF-8, cannot verify")
                return False
        body = json.dumps(fields)[:-1] + f', "webhook_event": {raw_event}}}'

        try:
            result = self._request(
                "POST", "/v1/notifications/verify-webhook-signature",
                raw_body=body,
            ).json()
        except PayPalError as e:
            logger.error(f"[PayPal] Webhook verification call failed: {e}")
            return False

        return result.get("verification_status") == "SUCCESS"

    # ──────────────────────────────────────────────
    # Catalog (admin plan sync)
    # ──────────────────────────────────────────────

    def create_product(self, name, description):
        product = self._request(
            "POST", "/v1/catalogs/products",
            {
                "name": name,
                "description": description,
                "type": "SERVICE",
                "category": "SOFTWARE",
            },
            prefer_representation=True,
        ).json()
        return {"id": product["id"], "name": product.get("name")}

    def list_products(self):
        data = self._request("GET", "/v1/catalogs/products?page_size=20").json()
        return data.get("products") or []

    def create_plan(self, product_id, name, description, price, interval):
        """Create an ACTIVE plan billed every interval (MONTH | YEAR) forever."""
        plan = self._request(
            "POST", "/v1/billing/plans",
            {
                "product_id": product_id,
                "name": name,
                "description": description,
                "status": "ACTIVE",
                "billing_cycles": [
                    {
                        "frequency": {
                            "interval_unit": interval,
                            "interval_count": 1,
                        },
                        "tenure_type": "REGULAR",
                        "sequence": 1,
                        "total_cycles": 0,  # 0 = until cancelled
                        "pricing_scheme": {
                            "fixed_price": {
                                "value": price,
                                "currency_code": self.currency,
                            },
                        },
                    },
                ],
                "payment_preferences": {
                    "auto_bill_outstanding": True,
                    "setup_fee_failure_action": "CONTINUE",
                    "payment_failure_threshold": 3,
                },
            },
            prefer_representation=True,
        ).json()
        return {"id": plan["id"], "name": plan.get("name"), "status": plan.get("status")}
