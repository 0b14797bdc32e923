"""Tests for buyer and seller account management."""

import pytest

from purchasing.account.directory import country_from_locale
from purchasing.errors import NotFoundError

REFRESH_URL = "https://shop.example.com/seller/refresh"
RETURN_URL = "https://shop.example.com/seller/return"


class TestCountryFromLocale:
    def test_underscore_locale(self):
        assert country_from_locale("en_US") == "US"

    def test_dash_locale(self):
        assert country_from_locale("ja-JP") == "JP"

    def test_language_only_defaults_to_japan(self):
        assert country_from_locale("en") == "JP"
        assert country_from_locale(None) == "JP"


class TestBuyer:
    def test_ensure_buyer_creates_customer_once(self, directory, gateway, store, settings):
        store.set(settings.identity_doc("user-1"), {"email": "user@example.com"})

        first = directory.ensure_buyer("user-1")
        second = directory.ensure_buyer("user-1")

        assert first == second
        assert len(gateway.calls_to("create_customer")) == 1
        link = directory.get_link("user-1")
        assert link.customer_id == first
        assert link.email == "user@example.com"
        assert store.get(settings.user_doc("user-1")).get("createdTime") is not None

    def test_create_customer_and_payment_returns_setup_page(self, directory):
        result = directory.create_customer_and_payment("user-1", "https://ok", "https://cancel")
        assert result["endpoint"].startswith("https://checkout.fake-gateway.test/setup/")
        assert result["customerId"] == directory.get_link("user-1").customer_id

    def test_delete_buyer_clears_link_and_saved_methods(self, directory, registry, gateway, store, settings):
        customer_id = directory.ensure_buyer("user-1")
        gateway.add_payment_method(customer_id, make_default=True)
        registry.sync("user-1", customer_id)

        assert directory.delete_buyer("user-1") == {"success": True}

        link = directory.get_link("user-1")
        assert link.customer_id is None
        assert link.default_payment_method_id is None
        assert link.exists is True
        assert store.list_collection(settings.payment_collection("user-1")) == []
        assert customer_id not in gateway.customers

    def test_delete_unknown_buyer(self, directory):
        with pytest.raises(NotFoundError):
            directory.delete_buyer("nobody")

    def test_lookup_email_prefers_identity(self, directory, store, settings):
        store.set(settings.user_doc("user-1"), {"email": "link@example.com"})
        assert directory.lookup_email("user-1") == "link@example.com"

        store.set(settings.identity_doc("user-1"), {"email": "identity@example.com"})
        assert directory.lookup_email("user-1") == "identity@example.com"


class TestSeller:
    def test_first_call_registers_account(self, directory, gateway):
        result = directory.ensure_seller("seller-1", "en_US", REFRESH_URL, RETURN_URL)

        assert result["next"] == "registration"
        assert result["endpoint"].startswith("https://connect.fake-gateway.test/setup/")
        assert gateway.accounts[result["accountId"]].country == "US"
        assert directory.get_link("seller-1").payable_account_id == result["accountId"]

    def test_unfinished_onboarding_issues_new_link(self, directory, gateway):
        first = directory.ensure_seller("seller-1", "ja_JP", REFRESH_URL, RETURN_URL)
        second = directory.ensure_seller("seller-1", "ja_JP", REFRESH_URL, RETURN_URL)

        assert second["next"] == "registration"
        assert second["accountId"] == first["accountId"]
        assert len(gateway.calls_to("create_account")) == 1

    def test_finished_onboarding_is_cached(self, directory, gateway):
        first = directory.ensure_seller("seller-1", "ja_JP", REFRESH_URL, RETURN_URL)
        gateway.activate_transfers(first["accountId"])

        assert directory.ensure_seller("seller-1", "ja_JP", REFRESH_URL, RETURN_URL)["next"] == "none"
        assert directory.get_link("seller-1").payable_capability_active is True

        gateway.accounts.clear()
        # cached capability means no gateway lookup
        assert directory.ensure_seller("seller-1", "ja_JP", REFRESH_URL, RETURN_URL)["next"] == "none"

    def test_get_seller_and_dashboard(self, directory, seller):
        account = directory.get_seller(seller["user_id"])
        assert account["accountId"] == seller["account_id"]
        assert account["payoutsEnabled"] is True

        dashboard = directory.seller_dashboard(seller["user_id"])
        assert dashboard["endpoint"].endswith(seller["account_id"])

    def test_unregistered_seller(self, directory):
        with pytest.raises(NotFoundError):
            directory.seller_dashboard("nobody")

    def test_delete_seller(self, directory, seller, gateway):
        assert directory.delete_seller(seller["user_id"]) == {"success": True}

        link = directory.get_link(seller["user_id"])
        assert link.payable_account_id is None
        assert link.payable_capability_active is False
        assert seller["account_id"] not in gateway.accounts

    def test_update_capabilities_for_unknown_account(self, directory, gateway):
        account = gateway.create_account(email=None, country="JP")
        assert directory.update_capabilities(account) is False
