import pytest

from purchasing.account.directory import AccountDirectory
from purchasing.payment_method.registry import PaymentMethodRegistry
from purchasing.purchase.machine import PurchaseStateMachine
from purchasing.purchase.repository import PurchaseRepository

BUYER_ID = "buyer-001"
BUYER_EMAIL = "buyer@example.com"
SELLER_ID = "seller-001"
RETURN_URL = "https://shop.example.com/purchase/return"


@pytest.fixture()
def directory(store, gateway, settings):
    return AccountDirectory(store, gateway, settings)


@pytest.fixture()
def registry(store, gateway, settings, directory):
    return PaymentMethodRegistry(store, gateway, settings, directory)


@pytest.fixture()
def repository(store, settings):
    return PurchaseRepository(store, settings)


@pytest.fixture()
def machine(store, gateway, settings, notifier, directory, registry):
    return PurchaseStateMachine(
        store,
        gateway,
        settings,
        notifier=notifier,
        directory=directory,
        registry=registry,
    )


@pytest.fixture()
def buyer(store, gateway, settings, directory):
    """A buyer with a gateway customer and one default card."""
    store.set(settings.identity_doc(BUYER_ID), {"email": BUYER_EMAIL})
    customer_id = directory.ensure_buyer(BUYER_ID)
    method = gateway.add_payment_method(customer_id, make_default=True)
    return {"user_id": BUYER_ID, "customer_id": customer_id, "payment_method_id": method.id}


@pytest.fixture()
def seller(gateway, directory):
    """A seller whose connected account has finished onboarding."""
    result = directory.ensure_seller(SELLER_ID, "ja_JP", "https://shop.example.com/refresh", RETURN_URL)
    gateway.activate_transfers(result["accountId"])
    directory.ensure_seller(SELLER_ID, "ja_JP", "https://shop.example.com/refresh", RETURN_URL)
    return {"user_id": SELLER_ID, "account_id": result["accountId"]}


@pytest.fixture()
def created(machine, buyer):
    """A purchase of 1000 usd created for the buyer."""
    result = machine.create_purchase(BUYER_ID, "order-001", 1000, currency="USD", description="Test order")
    return {"order_id": "order-001", "purchase_id": result["purchaseId"]}


@pytest.fixture()
def confirmed(machine, created):
    machine.confirm_purchase(BUYER_ID, created["order_id"], RETURN_URL, online=True)
    return created


@pytest.fixture()
def captured(machine, confirmed):
    machine.capture_purchase(BUYER_ID, confirmed["order_id"])
    return confirmed
