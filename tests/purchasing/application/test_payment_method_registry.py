"""Tests for saved payment methods and default resolution."""

import pytest

from purchasing.errors import NotFoundError


@pytest.fixture()
def customer_id(directory):
    return directory.ensure_buyer("user-1")


class TestResolveDefault:
    def test_gateway_default_is_cached(self, registry, directory, gateway, customer_id):
        method = gateway.add_payment_method(customer_id, make_default=True)

        assert registry.resolve_default("user-1", customer_id) == method.id
        assert directory.get_link("user-1").default_payment_method_id == method.id

    def test_cached_default_wins(self, registry, gateway, store, settings, customer_id):
        gateway.add_payment_method(customer_id, make_default=True)
        store.set(settings.user_doc("user-1"), {"defaultPaymentMethodId": "pm_cached"})

        assert registry.resolve_default("user-1", customer_id) == "pm_cached"

    def test_earliest_saved_method_is_fallback(self, registry, gateway, customer_id, store, settings):
        first = gateway.add_payment_method(customer_id)
        second = gateway.add_payment_method(customer_id)
        registry.attach("user-1", second)
        registry.attach("user-1", first)
        store.set(settings.payment_doc("user-1", first.id), {"addedAt": "2026-01-01T00:00:00+00:00"})
        store.set(settings.payment_doc("user-1", second.id), {"addedAt": "2026-02-01T00:00:00+00:00"})

        assert registry.resolve_default("user-1", customer_id) == first.id

    def test_nothing_to_resolve(self, registry, customer_id):
        with pytest.raises(NotFoundError, match="payment method"):
            registry.resolve_default("user-1", customer_id)


class TestSync:
    def test_sync_mirrors_gateway_cards(self, registry, gateway, store, settings, customer_id):
        method = gateway.add_payment_method(customer_id, brand="visa", last4="4242", make_default=True)

        assert registry.sync("user-1", customer_id) == [method.id]

        doc = store.get(settings.payment_doc("user-1", method.id))
        assert doc.get("brand") == "visa"
        assert doc.get("last4") == "4242"
        assert doc.get("default") is True
        assert doc.get("addedAt") is not None

    def test_sync_promotes_first_card_when_gateway_has_no_default(self, registry, directory, gateway, customer_id):
        method = gateway.add_payment_method(customer_id)

        registry.sync("user-1", customer_id)

        assert gateway.customers[customer_id].default_payment_method_id == method.id
        assert directory.get_link("user-1").default_payment_method_id == method.id

    def test_sync_removes_detached_cards(self, registry, directory, gateway, store, settings, customer_id):
        method = gateway.add_payment_method(customer_id, make_default=True)
        registry.sync("user-1", customer_id)
        gateway.detach_payment_method(method.id)

        assert registry.sync("user-1", customer_id) == []
        assert store.list_collection(settings.payment_collection("user-1")) == []
        assert directory.get_link("user-1").default_payment_method_id is None


class TestSetDefaultAndDetach:
    def test_set_default(self, registry, directory, gateway, store, settings, customer_id):
        first = gateway.add_payment_method(customer_id, make_default=True)
        second = gateway.add_payment_method(customer_id)
        registry.sync("user-1", customer_id)

        assert registry.set_default("user-1", second.id) == {"success": True}

        assert gateway.customers[customer_id].default_payment_method_id == second.id
        assert directory.get_link("user-1").default_payment_method_id == second.id
        assert store.get(settings.payment_doc("user-1", second.id)).get("default") is True
        assert store.get(settings.payment_doc("user-1", first.id)).get("default") is False

    def test_set_default_unchanged_skips_cache_write(self, registry, gateway, store, customer_id):
        method = gateway.add_payment_method(customer_id, make_default=True)
        registry.sync("user-1", customer_id)
        writes = len(store.writes)

        registry.set_default("user-1", method.id)
        assert len(store.writes) == writes

    def test_set_default_requires_saved_method(self, registry, customer_id):
        with pytest.raises(NotFoundError, match="not registered"):
            registry.set_default("user-1", "pm_unknown")

    def test_detach_default_is_not_replaced(self, registry, directory, gateway, store, settings, customer_id):
        first = gateway.add_payment_method(customer_id, make_default=True)
        gateway.add_payment_method(customer_id)
        registry.sync("user-1", customer_id)

        assert registry.detach("user-1", first.id) == {"success": True}

        assert store.get(settings.payment_doc("user-1", first.id)) is None
        assert directory.get_link("user-1").default_payment_method_id is None
        assert gateway.payment_methods[first.id].customer_id is None

    def test_detach_unknown_method(self, registry, customer_id):
        with pytest.raises(NotFoundError):
            registry.detach("user-1", "pm_unknown")
