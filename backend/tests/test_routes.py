# Overview: Pytest coverage for the HTTP API: tenant context, error mapping and main flows.

"""
API Route Tests

Test Coverage:
- Health and version endpoints
- Tenant context: missing/unknown X-Org-Id is rejected, foreign ids are 404
- Wallet, gift card, price rule, drawer and reconciliation flows over HTTP
- Domain errors map to their code and status
"""

import io

from studio_ledger.extensions import db


class TestSystem:
    """Unauthenticated system endpoints."""

    def test_health(self, client, db_session):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.json['status'] == 'healthy'
        assert response.json['checks']['database']['status'] == 'healthy'
        assert response.json['timestamp'].endswith('Z')

    def test_version(self, client):
        response = client.get('/version')

        assert response.status_code == 200
        assert response.json['api_version']


class TestTenantContext:
    """X-Org-Id handling."""

    def test_missing_org_header(self, client, db_session):
        response = client.get('/api/cash-drawers')

        assert response.status_code == 401
        assert response.json['code'] == 'TENANT_CONTEXT_INVALID'

    def test_unknown_org(self, client, db_session):
        response = client.get('/api/cash-drawers', headers={'X-Org-Id': '999'})

        assert response.status_code == 401

    def test_non_numeric_org(self, client, db_session):
        response = client.get('/api/cash-drawers', headers={'X-Org-Id': 'acme'})

        assert response.status_code == 401

    def test_inactive_org(self, client, db_session, org_a, headers_a):
        org_a.is_active = False
        db.session.commit()

        response = client.get('/api/cash-drawers', headers=headers_a)

        assert response.status_code == 401

    def test_foreign_wallet_is_not_found(self, client, db_session, headers_a, headers_b):
        created = client.post('/api/wallets', json={'customer_id': 7}, headers=headers_a)
        wallet_id = created.json['wallet']['id']

        response = client.get(f'/api/wallets/{wallet_id}', headers=headers_b)

        assert response.status_code == 404
        assert response.json['code'] == 'NOT_FOUND'


class TestWalletApi:
    """Wallet flows over HTTP."""

    def test_credit_and_consume(self, client, db_session, headers_a):
        wallet_id = client.post('/api/wallets', json={'customer_id': 7}, headers=headers_a).json['wallet']['id']

        added = client.post(f'/api/wallets/{wallet_id}/credits', json={
            'credit_type': 'class',
            'quantity': 5,
            'reference_type': 'order',
            'reference_id': 'ORD-1',
        }, headers=headers_a)
        assert added.status_code == 201
        assert added.json['lots'][0]['remaining_quantity'] == 5

        consumed = client.post(f'/api/wallets/{wallet_id}/consume', json={
            'credit_type': 'class',
            'quantity': 2,
            'reference_type': 'booking',
            'reference_id': 'B-1',
        }, headers=headers_a)
        assert consumed.status_code == 200
        assert consumed.json['allocations'][0]['remaining_after'] == 3
        assert consumed.json['entry']['actor'] == 'anna'

        wallet = client.get(f'/api/wallets/{wallet_id}', headers=headers_a)
        assert wallet.json['credits'] == {'class': 3}

    def test_insufficient_credits_is_422(self, client, db_session, headers_a):
        wallet_id = client.post('/api/wallets', json={'customer_id': 7}, headers=headers_a).json['wallet']['id']

        response = client.post(f'/api/wallets/{wallet_id}/consume', json={
            'credit_type': 'class',
            'quantity': 1,
            'reference_type': 'booking',
            'reference_id': 'B-1',
        }, headers=headers_a)

        assert response.status_code == 422
        assert response.json['code'] == 'INSUFFICIENT_CREDITS'
        assert response.json['details']['available'] == 0

    def test_top_up_with_decimal_amount_and_history(self, client, db_session, headers_a):
        wallet_id = client.post('/api/wallets', json={'customer_id': 7}, headers=headers_a).json['wallet']['id']

        client.post(f'/api/wallets/{wallet_id}/top-up', json={'amount': '45.50'}, headers=headers_a)
        client.post(f'/api/wallets/{wallet_id}/debit', json={'amount_cents': 1050}, headers=headers_a)
        history = client.get(f'/api/wallets/{wallet_id}/history', headers=headers_a)

        assert [e['amount_delta_cents'] for e in history.json['entries']] == [4550, -1050]
        assert history.json['entries'][-1]['balance_after_cents'] == 3500

    def test_frozen_wallet_rejects_debit(self, client, db_session, headers_a):
        wallet_id = client.post('/api/wallets', json={'customer_id': 7}, headers=headers_a).json['wallet']['id']
        client.post(f'/api/wallets/{wallet_id}/top-up', json={'amount_cents': 2000}, headers=headers_a)

        frozen = client.post(f'/api/wallets/{wallet_id}/status', json={'status': 'frozen'}, headers=headers_a)
        response = client.post(f'/api/wallets/{wallet_id}/debit', json={'amount_cents': 500}, headers=headers_a)

        assert frozen.status_code == 200
        assert frozen.json['wallet']['status'] == 'frozen'
        assert response.status_code == 409
        assert response.json['code'] == 'WALLET_INACTIVE'

    def test_invalid_customer_id(self, client, db_session, headers_a):
        response = client.post('/api/wallets', json={'customer_id': '1e3'}, headers=headers_a)

        assert response.status_code == 400
        assert response.json['code'] == 'VALIDATION_ERROR'


class TestGiftCardApi:
    """Gift card flows over HTTP."""

    def test_issue_and_redeem(self, client, db_session, headers_a):
        issued = client.post('/api/gift-cards', json={'amount_cents': 5000}, headers=headers_a)
        assert issued.status_code == 201
        display_code = issued.json['gift_card']['display_code']
        assert len(display_code) == 14

        redeemed = client.post(
            f'/api/gift-cards/{display_code.lower()}/redeem',
            json={'amount_cents': 500, 'order_ref': 'ORD-1'},
            headers=headers_a,
        )
        assert redeemed.status_code == 200
        assert redeemed.json['remaining_cents'] == 4500

        too_much = client.post(
            f'/api/gift-cards/{display_code}/redeem',
            json={'amount_cents': 5000, 'order_ref': 'ORD-2'},
            headers=headers_a,
        )
        assert too_much.status_code == 422
        assert too_much.json['code'] == 'INSUFFICIENT_GIFT_CARD_BALANCE'

        card = client.get(f'/api/gift-cards/{display_code}', headers=headers_a)
        assert card.json['gift_card']['balance_cents'] == 4500
        assert len(card.json['history']) == 2

    def test_unknown_card(self, client, db_session, headers_a):
        response = client.get('/api/gift-cards/AAAA-BBBB-CCCC', headers=headers_a)

        assert response.status_code == 404

    def test_liability(self, client, db_session, headers_a):
        client.post('/api/gift-cards', json={'amount_cents': 5000}, headers=headers_a)

        response = client.get('/api/gift-cards/liability', headers=headers_a)

        assert response.status_code == 200
        assert response.json['gift_card_outstanding_cents'] == 5000


class TestPromotionsApi:
    """Price rules and order discounts over HTTP."""

    def test_evaluate_and_commit(self, client, db_session, headers_a):
        rule = client.post('/api/price-rules', json={
            'name': 'Spring coupon',
            'kind': 'coupon',
            'payload': {'code': 'SPRING20', 'discount_type': 'fixed', 'amount_cents': 2000},
            'usage_limit': 1,
        }, headers=headers_a)
        assert rule.status_code == 201
        rule_id = rule.json['rule']['id']

        evaluation = client.post('/api/orders/ORD-1/discounts', json={
            'items': [{'ref': 'pack-10', 'quantity': 1, 'unit_price_cents': 20000}],
            'coupon_code': 'spring20',
        }, headers=headers_a)
        assert evaluation.status_code == 200
        assert evaluation.json['total_discount_cents'] == 2000

        committed = client.post('/api/orders/ORD-1/commit-discounts', json={
            'discounts': [{'rule_id': rule_id, 'amount_cents': 2000}],
        }, headers=headers_a)
        assert committed.status_code == 200

        exhausted = client.post('/api/orders/ORD-2/discounts', json={
            'items': [{'ref': 'pack-10', 'quantity': 1, 'unit_price_cents': 20000}],
            'coupon_code': 'SPRING20',
        }, headers=headers_a)
        assert exhausted.status_code == 409
        assert exhausted.json['code'] == 'RULE_USAGE_EXCEEDED'

    def test_kind_cannot_change(self, client, db_session, headers_a):
        rule_id = client.post('/api/price-rules', json={
            'name': 'Big basket',
            'kind': 'auto_discount',
            'payload': {'min_subtotal_cents': 15000, 'percent_bps': 1000},
        }, headers=headers_a).json['rule']['id']

        response = client.patch(f'/api/price-rules/{rule_id}', json={'kind': 'coupon'}, headers=headers_a)

        assert response.status_code == 400


class TestCashDrawerApi:
    """Drawer sessions over HTTP."""

    def test_shift(self, client, db_session, headers_a):
        drawer_id = client.post('/api/cash-drawers', json={
            'location': 'Zurich', 'name': 'Front desk',
        }, headers=headers_a).json['drawer']['id']

        opened = client.post(f'/api/cash-drawers/{drawer_id}/open', json={'amount': '200.00'}, headers=headers_a)
        assert opened.status_code == 201
        session_id = opened.json['session']['id']

        txn = client.post(f'/api/cash-drawers/sessions/{session_id}/transactions', json={
            'kind': 'sale', 'amount_cents': 1234,
        }, headers=headers_a)
        assert txn.status_code == 201
        assert txn.json['running_total_cents'] == 21235

        assert client.post(f'/api/cash-drawers/{drawer_id}/close', headers=headers_a).status_code == 200
        counted = client.post(f'/api/cash-drawers/{drawer_id}/count', json={
            'denominations': {'200': 1, '10': 1, '2': 1, '0.20': 1, '0.10': 1, '0.05': 1},
        }, headers=headers_a)
        assert counted.status_code == 200
        assert counted.json['outcome'] == 'balanced'

        again = client.post(f'/api/cash-drawers/{drawer_id}/count', json={
            'denominations': {'200': 1},
        }, headers=headers_a)
        assert again.status_code == 409

        report = client.get(f'/api/cash-drawers/sessions/{session_id}/z-report', headers=headers_a)
        assert report.json['rounding_adjustment_cents'] == 1

    def test_second_open_at_location_conflicts(self, client, db_session, headers_a):
        first = client.post('/api/cash-drawers', json={'location': 'Zurich', 'name': 'A'}, headers=headers_a)
        second = client.post('/api/cash-drawers', json={'location': 'Zurich', 'name': 'B'}, headers=headers_a)
        opened = client.post(f"/api/cash-drawers/{first.json['drawer']['id']}/open", json={'opening_float_cents': 0}, headers=headers_a)
        assert opened.status_code == 201

        response = client.post(
            f"/api/cash-drawers/{second.json['drawer']['id']}/open", json={'opening_float_cents': 0}, headers=headers_a
        )

        assert response.status_code == 409
        assert response.json['code'] == 'DRAWER_ALREADY_OPEN'


class TestReconciliationApi:
    """Statement import and matching over HTTP."""

    def test_import_match_and_confirm(self, client, db_session, headers_a):
        statement = (
            "Date;Amount;Currency;Description;Reference\n"
            "04.03.2025;2762.07;CHF;Stripe payout;STRIPE-PO-123456\n"
        ).encode('utf-8')

        imported = client.post(
            '/api/reconciliation/import',
            data={'file': (io.BytesIO(statement), 'march.csv')},
            content_type='multipart/form-data',
            headers=headers_a,
        )
        assert imported.status_code == 201
        assert imported.json['new_line_count'] == 1
        line_id = imported.json['lines'][0]['id']

        payout = client.post('/api/reconciliation/payouts', json={
            'provider': 'stripe',
            'provider_payout_id': 'po_123456',
            'reference': 'STRIPE-PO-123456',
            'expected_arrival': '2025-03-03',
            'items': [
                {'item_type': 'charge', 'amount_cents': 285000},
                {'item_type': 'refund', 'amount_cents': 4500},
                {'item_type': 'fee', 'amount_cents': 4293},
            ],
        }, headers=headers_a)
        assert payout.status_code == 201
        assert payout.json['payout']['net_amount_cents'] == 276207

        matched = client.post('/api/reconciliation/match', headers=headers_a)
        assert matched.status_code == 200
        assert matched.json['results'][0]['status'] == 'auto_matched'

        confirmed = client.post(f'/api/reconciliation/lines/{line_id}/confirm', headers=headers_a)
        assert confirmed.status_code == 200
        assert confirmed.json['result']['status'] == 'confirmed'

        results = client.get('/api/reconciliation/results?status=confirmed', headers=headers_a)
        assert len(results.json['results']) == 1

    def test_empty_import_rejected(self, client, db_session, headers_a):
        response = client.post('/api/reconciliation/import', headers=headers_a)

        assert response.status_code == 400

    def test_reimport_over_http_skips_lines(self, client, db_session, headers_a):
        body = "Date;Amount\n04.03.2025;10.00\n05.03.2025;20.00\n".encode('utf-8')

        client.post('/api/reconciliation/import?file_name=a.csv', data=body, headers=headers_a)
        again = client.post('/api/reconciliation/import?file_name=a.csv', data=body, headers=headers_a)

        assert again.status_code == 201
        assert again.json['skipped_count'] == 2
