# Overview: Pytest coverage for the HTTP surface (identity headers, status codes, access control).

from storefront.models import AbandonedCart, Order, PromoCode
from storefront.services import checkout_service, order_service

from conftest import admin_headers, guest_headers, line


class TestSystemRoutes:
    def test_health(self, client, db_session):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.json['checks']['database']['status'] == 'healthy'

    def test_ledger_requires_admin(self, client, db_session):
        assert client.get('/api/ledger').status_code == 401
        assert client.get('/api/ledger', headers={'Authorization': 'Bearer wrong'}).status_code == 403
        assert client.get('/api/ledger', headers=admin_headers()).status_code == 200


class TestCartRoutes:
    def test_identity_required(self, client, db_session):
        response = client.get('/api/cart')
        assert response.status_code == 400
        assert response.json['error'] == "Session ID or account required"

    def test_malformed_user_header(self, client, db_session):
        response = client.get('/api/cart', headers={'X-User-Id': 'abc'})
        assert response.status_code == 400

    def test_put_then_get(self, client, make_product):
        shirt = make_product(price_cents=1200)
        response = client.put('/api/cart', json={'items': [line(shirt, 2)]}, headers=guest_headers())
        assert response.status_code == 200
        assert response.json['cart']['subtotal_cents'] == 2400

        response = client.get('/api/cart', headers=guest_headers())
        assert response.json['cart']['item_count'] == 2

    def test_put_invalid_items(self, client, db_session):
        response = client.put(
            '/api/cart',
            json={'items': [{'product_id': 1, 'quantity': 'two'}]},
            headers=guest_headers(),
        )
        assert response.status_code == 400
        assert len(response.json['errors']) == 2

    def test_put_unknown_product(self, client, db_session):
        response = client.put(
            '/api/cart',
            json={'items': [{'product_id': 404, 'variant_id': 1, 'quantity': 1}]},
            headers=guest_headers(),
        )
        assert response.status_code == 404

    def test_delete(self, client, make_product):
        shirt = make_product()
        client.put('/api/cart', json={'items': [line(shirt)]}, headers=guest_headers())

        response = client.delete('/api/cart', headers=guest_headers())
        assert response.json == {'cleared': True}
        assert client.get('/api/cart', headers=guest_headers()).json['cart']['exists'] is False

    def test_merge(self, client, make_product):
        shirt = make_product()
        client.put('/api/cart', json={'items': [line(shirt, 1)]}, headers=guest_headers())
        client.put('/api/cart', json={'items': [line(shirt, 2)]}, headers={'X-User-Id': '8'})

        response = client.post('/api/cart/merge', headers={'X-User-Id': '8', 'X-Session-Id': 'guest-session-1'})

        assert response.status_code == 200
        assert response.json['cart']['item_count'] == 3

    def test_merge_requires_account(self, client, db_session):
        response = client.post('/api/cart/merge', headers=guest_headers())
        assert response.status_code == 401

    def test_checkout_started(self, client, make_product, db_session):
        shirt = make_product()
        client.put('/api/cart', json={'items': [line(shirt)]}, headers=guest_headers())

        response = client.post(
            '/api/cart/checkout-started',
            json={'checkoutInfo': {'name': 'Ada', 'contact': '01712345678'}},
            headers=guest_headers(),
        )

        assert response.status_code == 200
        assert response.json['tracking']['stage'] == AbandonedCart.STAGE_CHECKOUT_INFO_FILLED

    def test_checkout_started_without_cart(self, client, db_session):
        response = client.post('/api/cart/checkout-started', headers=guest_headers())
        assert response.status_code == 404

    def test_abandoned_dashboard_is_admin_only(self, client, db_session):
        assert client.get('/api/cart/abandoned').status_code == 401
        response = client.get('/api/cart/abandoned', headers=admin_headers())
        assert response.status_code == 200
        assert response.json['count'] == 0


class TestOrderRoutes:
    def test_create_order(self, client, make_product, db_session):
        shirt = make_product(price_cents=1000, stock=2)
        response = client.post(
            '/api/orders',
            json={'items': [line(shirt, 2)], 'email': 'ada@example.com', 'total': 1},
            headers=guest_headers(),
        )

        assert response.status_code == 201
        assert response.json['order']['total_cents'] == 2000
        assert response.json['order']['order_number'].startswith('ORD')

    def test_create_order_out_of_stock(self, client, make_product, db_session):
        shirt = make_product(stock=1)
        response = client.post('/api/orders', json={'items': [line(shirt, 3)]}, headers=guest_headers())

        assert response.status_code == 409
        assert response.json['details']['items'][0]['available'] == 1
        assert db_session.query(Order).count() == 0

    def test_create_order_empty(self, client, db_session):
        response = client.post('/api/orders', json={'items': []}, headers=guest_headers())
        assert response.status_code == 400

    def test_get_and_track(self, client, make_product):
        shirt = make_product(stock=2)
        created = client.post(
            '/api/orders',
            json={'items': [line(shirt)], 'contact': '01712345678'},
            headers=guest_headers(),
        ).json['order']

        assert client.get(f"/api/orders/{created['order_number']}").status_code == 200
        assert client.get('/api/orders/ORD19990101').status_code == 404

        tracked = client.get('/api/orders/track/01712345678')
        assert tracked.status_code == 200
        assert tracked.json['orders'][0]['order_number'] == created['order_number']
        assert client.get('/api/orders/track/123').status_code == 400

    def test_status_update(self, client, make_product):
        shirt = make_product(stock=2)
        order_id = client.post('/api/orders', json={'items': [line(shirt)]}, headers=guest_headers()).json['order']['id']

        assert client.patch('/api/orders/status', json={'orderIds': [order_id], 'status': 'SHIPPED'},
                            headers=admin_headers()).status_code == 409
        response = client.patch('/api/orders/status', json={'orderIds': [order_id], 'status': 'PROCESSING'},
                                headers=admin_headers())
        assert response.status_code == 200
        assert response.json['orders'][0]['status'] == 'PROCESSING'

    def test_admin_routes_reject_shoppers(self, client, db_session):
        assert client.get('/api/orders', headers=guest_headers()).status_code == 401
        assert client.post('/api/orders/cancel', json={'orderIds': [1]}).status_code == 401

    def test_courier(self, client, make_product):
        shirt = make_product(stock=2)
        order_id = client.post('/api/orders', json={'items': [line(shirt)]}, headers=guest_headers()).json['order']['id']

        response = client.put(f'/api/orders/{order_id}/courier', json={'tracking_code': 'TRK1'},
                              headers=admin_headers())
        assert response.status_code == 200
        assert response.json['order']['courier_info'] == {'tracking_code': 'TRK1'}

    def test_unexpected_quote_error_is_a_logged_500(self, client, db_session, monkeypatch):
        def boom(payload):
            raise RuntimeError("db gone")

        monkeypatch.setattr(checkout_service, 'quote', boom)
        response = client.post('/api/orders/quote', json={'items': []}, headers=guest_headers())

        assert response.status_code == 500
        assert response.json == {'error': 'Internal server error'}

    def test_unexpected_courier_error_is_a_logged_500(self, client, db_session, monkeypatch):
        def boom(order_id, data):
            raise RuntimeError("db gone")

        monkeypatch.setattr(order_service, 'update_courier_info', boom)
        response = client.put('/api/orders/1/courier', json={'tracking_code': 'T'}, headers=admin_headers())

        assert response.status_code == 500


class TestPromoRoutes:
    def test_validate(self, client, make_promo):
        make_promo(code='SAVE10', discount_value=1000)
        response = client.post('/api/promo/validate', json={'code': 'save10', 'orderTotal': 5000})

        assert response.status_code == 200
        assert response.json['discount_cents'] == 500
        assert response.json['new_total_cents'] == 4500

    def test_validate_reports_all_errors(self, client, make_promo):
        make_promo(code='MIN', min_order_amount_cents=10000, applicable_categories=['shoes'])
        response = client.post('/api/promo/validate', json={'code': 'MIN', 'orderTotal': 100, 'category': 'hats'})

        assert response.status_code == 400
        assert response.json['valid'] is False
        assert len(response.json['errors']) == 2

    def test_validate_unknown(self, client, db_session):
        response = client.post('/api/promo/validate', json={'code': 'NOPE', 'orderTotal': 100})
        assert response.status_code == 404

    def test_apply_does_not_consume_the_code(self, client, make_promo, db_session):
        make_promo(code='ONCE', usage_limit=1)

        for _ in range(2):
            response = client.post('/api/promo/apply', json={'code': 'once', 'orderTotal': 5000})
            assert response.status_code == 200
            assert response.json['discount_cents'] == 500

        promo = db_session.query(PromoCode).filter_by(code='ONCE').one()
        db_session.refresh(promo)
        assert promo.used_count == 0

    def test_admin_crud(self, client, db_session):
        created = client.post('/api/promo', json={
            'code': 'fall25',
            'discount_type': 'FIXED',
            'discount_value': 500,
            'valid_until': '2099-01-01T00:00:00Z',
        }, headers=admin_headers())
        assert created.status_code == 201
        promo_id = created.json['promo']['id']

        assert client.post('/api/promo', json={
            'code': 'FALL25', 'discount_value': 1, 'valid_until': '2099-01-01T00:00:00Z',
        }, headers=admin_headers()).status_code == 409

        toggled = client.post(f'/api/promo/{promo_id}/toggle', headers=admin_headers())
        assert toggled.json['promo']['is_active'] is False

        assert client.delete(f'/api/promo/{promo_id}', headers=admin_headers()).status_code == 200
        assert client.delete(f'/api/promo/{promo_id}', headers=admin_headers()).status_code == 404


class TestCronRoutes:
    def test_process_abandoned(self, client, db_session):
        response = client.post('/api/cron/process-abandoned')
        assert response.status_code == 200
        assert response.json == {'success': True, 'marked_abandoned': 0}

    def test_cron_secret_enforced_when_set(self, app, client, db_session, monkeypatch):
        monkeypatch.setitem(app.config, 'CRON_SECRET', 's3cret')

        assert client.post('/api/cron/purge-guest-carts').status_code == 401
        response = client.post('/api/cron/purge-guest-carts', headers={'Authorization': 'Bearer s3cret'})
        assert response.status_code == 200
