# tests/test_payment_rail.py
"""
Tests for HttpPaymentRail against a local aiohttp server.

Run:
    pytest tests/test_payment_rail.py -v
"""
import asyncio

import pytest
from aiohttp import web
from aiohttp import test_utils

from config import ConfigurationError
from phase_engine.gateway.payment_rail import HttpPaymentRail, PaymentRailError


def run_against(app: web.Application, call):
    """Start app on a free port, run call(rail), return its result."""

    async def _run():
        server = test_utils.TestServer(app)
        await server.start_server()
        try:
            rail = HttpPaymentRail(str(server.make_url("/v1")), api_key="secret", timeout=5)
            return await call(rail)
        finally:
            await server.close()

    return asyncio.run(_run())


def payout_app(status: int, body=None, seen=None):
    async def payouts(request):
        if seen is not None:
            seen.append((request.headers.get("Authorization"), await request.json()))
        if body is None:
            return web.Response(status=status, text="declined")
        if isinstance(body, str):
            return web.Response(status=status, text=body)
        return web.json_response(body, status=status)

    async def accounts(request):
        return web.Response(status=status)

    app = web.Application()
    app.router.add_post("/v1/payouts", payouts)
    app.router.add_delete("/v1/accounts/{accountId}", accounts)
    return app


class TestHttpPaymentRail:

    def test_accepted_payout(self):
        seen = []
        app = payout_app(201, {"id": "po_77"}, seen)

        result = run_against(app, lambda rail: rail.disburse(5, "acct_1", 1200, "key-1"))

        assert result.success
        assert result.externalReference == "po_77"
        assert seen == [(
            "Bearer secret",
            {"memberId": 5, "accountId": "acct_1", "amountCents": 1200, "idempotencyKey": "key-1"}
        )]

    def test_rejected_payout(self):
        result = run_against(payout_app(422), lambda rail: rail.disburse(5, "acct_1", 1200))

        assert not result.success
        assert "422" in result.error

    def test_server_error_raises(self):
        with pytest.raises(PaymentRailError):
            run_against(payout_app(503), lambda rail: rail.disburse(5, "acct_1", 1200))

    def test_response_without_reference_raises(self):
        with pytest.raises(PaymentRailError):
            run_against(payout_app(200, {"status": "ok"}), lambda rail: rail.disburse(5, "acct_1", 1200))

    @pytest.mark.parametrize("body", ["<html>gateway hiccup</html>", ["po_1"], ""])
    def test_unusable_success_body_raises(self, body):
        with pytest.raises(PaymentRailError):
            run_against(payout_app(200, body), lambda rail: rail.disburse(5, "acct_1", 1200))

    @pytest.mark.parametrize("status", [204, 404])
    def test_disconnect_confirmed(self, status):
        assert run_against(payout_app(status), lambda rail: rail.disconnect(5, "acct_1")) is True

    def test_disconnect_failure_raises(self):
        with pytest.raises(PaymentRailError):
            run_against(payout_app(500), lambda rail: rail.disconnect(5, "acct_1"))

    def test_unreachable_provider(self):
        rail = HttpPaymentRail("http://127.0.0.1:9", api_key="x", timeout=2)

        with pytest.raises(PaymentRailError):
            asyncio.run(rail.disburse(5, "acct_1", 100))

    def test_from_config_requires_url(self, test_config):
        test_config.set(test_config.PAYMENT_RAIL_URL, None)

        with pytest.raises(ConfigurationError):
            HttpPaymentRail.from_config()

    def test_from_config(self, test_config):
        test_config.set(test_config.PAYMENT_RAIL_URL, "https://payouts.example.com/v1/")
        test_config.set(test_config.PAYMENT_RAIL_API_KEY, "k")

        rail = HttpPaymentRail.from_config()

        assert rail.base_url == "https://payouts.example.com/v1"
        assert rail.timeout == 5
