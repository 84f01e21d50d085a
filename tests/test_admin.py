"""Tests for admin billing routes and the plan sync service."""

from unittest.mock import patch

from app.extensions import db, paypal
from app.models.audit import AuditEvent
from app.models.billing import BusinessSubscription
from app.models.plan import SubscriptionPlan
from app.models.site_setting import SiteSetting
from app.services.paypal_service import PayPalError


def _add_subscription(app, status="active", sub_id="I-SUB0001"):
    with app.app_context():
        sub = BusinessSubscription(
            business_id=42, status=status, billing_cycle="monthly",
            paypal_subscription_id=sub_id,
        )
        db.session.add(sub)
        db.session.commit()
        return sub.id


def _fresh_plans(app, seed_data):
    """Clear the sandbox plan ids so the sync has something to create."""
    with app.app_context():
        for key in ("standard_plan_id", "premium_plan_id"):
            plan = db.session.get(SubscriptionPlan, seed_data[key])
            plan.paypal_plan_id_monthly_sandbox = None
            plan.paypal_plan_id_yearly_sandbox = None
        db.session.commit()


class TestAdminAccess:
    def test_anonymous_rejected(self, client, seed_data):
        assert client.post("/admin/subscription-plans/sync-paypal").status_code == 401

    def test_non_admin_forbidden(self, client, seed_data, login):
        login("owner")
        resp = client.post("/admin/subscription-plans/sync-paypal")
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "Forbidden"


class TestSyncPlans:
    def test_creates_missing_plans(self, client, seed_data, login, app):
        _fresh_plans(app, seed_data)
        login("admin")
        created = iter(["P-STD-M", "P-STD-Y", "P-PRE-M", "P-PRE-Y"])

        with patch.object(paypal, "list_products", return_value=[]), \
                patch.object(paypal, "create_product", return_value={"id": "PROD-1"}), \
                patch.object(paypal, "create_plan",
                             side_effect=lambda *a, **kw: {"id": next(created)}) as mock_plan:
            resp = client.post("/admin/subscription-plans/sync-paypal")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["success"] is True
        assert data["mode"] == "sandbox"
        assert data["productId"] == "PROD-1"
        assert [r["planName"] for r in data["results"]] == ["Free", "Standard", "Premium"]
        assert data["results"][0]["action"] == "skipped (free plan)"
        assert mock_plan.call_count == 4

        first = mock_plan.call_args_list[0][0]
        assert first == ("PROD-1", "Standard - Monthly", first[2], "15.00", "MONTH")

        with app.app_context():
            standard = db.session.get(SubscriptionPlan, seed_data["standard_plan_id"])
            assert standard.paypal_plan_id_monthly_sandbox == "P-STD-M"
            assert standard.paypal_plan_id_yearly_sandbox == "P-STD-Y"
            # live slots untouched in sandbox mode
            assert standard.paypal_plan_id_monthly == "P_LIVE_MONTHLY_1"
            assert SiteSetting.get_value("paypal_sandbox_product_id") == "PROD-1"

    def test_existing_plans_left_alone(self, client, seed_data, login):
        login("admin")

        with patch.object(paypal, "list_products", return_value=[]), \
                patch.object(paypal, "create_product", return_value={"id": "PROD-1"}), \
                patch.object(paypal, "create_plan") as mock_plan:
            resp = client.post("/admin/subscription-plans/sync-paypal")

        assert resp.status_code == 200
        mock_plan.assert_not_called()
        standard = resp.get_json()["results"][1]
        assert standard["paypalPlanIdMonthly"] == "P_MONTHLY_1"
        assert standard["action"] == "monthly plan exists, yearly plan exists"

    def test_reuses_product_by_name(self, client, seed_data, login, app):
        login("admin")

        with patch.object(paypal, "list_products", return_value=[
            {"id": "PROD-OTHER", "name": "Something else"},
            {"id": "PROD-EXISTING", "name": app.config["PAYPAL_PRODUCT_NAME"]},
        ]), patch.object(paypal, "create_product") as mock_product:
            resp = client.post("/admin/subscription-plans/sync-paypal")

        assert resp.get_json()["productId"] == "PROD-EXISTING"
        mock_product.assert_not_called()

    def test_stored_product_id_skips_lookup(self, client, seed_data, login, app):
        with app.app_context():
            SiteSetting.set_value("paypal_sandbox_product_id", "PROD-STORED")
            db.session.commit()
        login("admin")

        with patch.object(paypal, "list_products") as mock_list:
            resp = client.post("/admin/subscription-plans/sync-paypal")

        assert resp.get_json()["productId"] == "PROD-STORED"
        mock_list.assert_not_called()

    def test_one_plan_failing_does_not_stop_the_rest(self, client, seed_data, login, app):
        _fresh_plans(app, seed_data)
        login("admin")

        def _create(product_id, name, description, price, interval):
            if name.startswith("Standard"):
                raise PayPalError("plan rejected", 422)
            return {"id": f"P-{interval}"}

        with patch.object(paypal, "list_products", return_value=[]), \
                patch.object(paypal, "create_product", return_value={"id": "PROD-1"}), \
                patch.object(paypal, "create_plan", side_effect=_create):
            resp = client.post("/admin/subscription-plans/sync-paypal")

        results = resp.get_json()["results"]
        assert results[1]["action"] == "error"
        assert "plan rejected" in results[1]["error"]
        assert results[2]["paypalPlanIdMonthly"] == "P-MONTH"
        assert results[2]["paypalPlanIdYearly"] == "P-YEAR"

    def test_product_failure_is_502(self, client, seed_data, login):
        login("admin")

        with patch.object(paypal, "list_products", side_effect=PayPalError("down", 503)):
            resp = client.post("/admin/subscription-plans/sync-paypal")

        assert resp.status_code == 502

    def test_not_configured(self, client, seed_data, login):
        login("admin")

        with patch.object(paypal, "is_configured", return_value=False):
            resp = client.post("/admin/subscription-plans/sync-paypal")

        assert resp.status_code == 400


class TestSubscriptionOverrides:
    def test_suspend(self, client, seed_data, login, app):
        sub_id = _add_subscription(app)
        login("admin")

        with patch.object(paypal, "suspend_subscription") as mock_suspend:
            resp = client.post(f"/admin/subscriptions/{sub_id}/suspend", json={"reason": "Chargeback"})

        assert resp.status_code == 200
        assert resp.get_json()["subscription"]["status"] == "suspended"
        mock_suspend.assert_called_once_with("I-SUB0001", "Chargeback")

        with app.app_context():
            assert db.session.get(BusinessSubscription, sub_id).status == "suspended"
            audit = AuditEvent.query.filter_by(action="admin.subscription_suspend").one()
            assert audit.actor_user_id == seed_data["admin_id"]

    def test_reactivate(self, client, seed_data, login, app):
        sub_id = _add_subscription(app, status="suspended")
        login("admin")

        with patch.object(paypal, "reactivate_subscription") as mock_reactivate:
            resp = client.post(f"/admin/subscriptions/{sub_id}/reactivate")

        assert resp.status_code == 200
        mock_reactivate.assert_called_once_with("I-SUB0001", "Reactivated by admin")
        with app.app_context():
            assert db.session.get(BusinessSubscription, sub_id).status == "active"

    def test_paypal_failure_leaves_status(self, client, seed_data, login, app):
        sub_id = _add_subscription(app)
        login("admin")

        with patch.object(paypal, "suspend_subscription", side_effect=PayPalError("no", 422)):
            resp = client.post(f"/admin/subscriptions/{sub_id}/suspend")

        assert resp.status_code == 502
        with app.app_context():
            assert db.session.get(BusinessSubscription, sub_id).status == "active"

    def test_unknown_subscription(self, client, seed_data, login):
        login("admin")
        assert client.post("/admin/subscriptions/999/suspend").status_code == 404

    def test_subscription_without_paypal_id(self, client, seed_data, login, app):
        with app.app_context():
            sub = BusinessSubscription(business_id=42, status="pending", billing_cycle="monthly")
            db.session.add(sub)
            db.session.commit()
            sub_id = sub.id
        login("admin")

        assert client.post(f"/admin/subscriptions/{sub_id}/suspend").status_code == 400

    def test_owner_forbidden(self, client, seed_data, login, app):
        sub_id = _add_subscription(app)
        login("owner")

        with patch.object(paypal, "suspend_subscription") as mock_suspend:
            resp = client.post(f"/admin/subscriptions/{sub_id}/suspend")

        assert resp.status_code == 403
        mock_suspend.assert_not_called()


class TestCliCommands:
    def test_seed_plans_is_idempotent(self, app):
        runner = app.test_cli_runner()

        first = runner.invoke(args=["seed-plans", "--admin-email", "boss@frumtoronto.local"])
        second = runner.invoke(args=["seed-plans", "--admin-email", "boss@frumtoronto.local"])

        assert "Created plan: free" in first.output
        assert "Plan already exists: free" in second.output
        with app.app_context():
            assert SubscriptionPlan.query.count() == 3
            from app.models.user import User
            admin = User.query.filter_by(email="boss@frumtoronto.local").one()
            assert admin.is_admin

    def test_sync_command_reports_results(self, app, seed_data):
        runner = app.test_cli_runner()

        with patch.object(paypal, "list_products", return_value=[]), \
                patch.object(paypal, "create_product", return_value={"id": "PROD-CLI"}):
            result = runner.invoke(args=["sync-paypal-plans"])

        assert "Product:     PROD-CLI" in result.output
        assert "Standard: monthly plan exists, yearly plan exists" in result.output
