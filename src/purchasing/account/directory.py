"""Account Directory: maps users to their gateway customer and seller account.

A buyer needs a gateway customer before any purchase; a seller needs a
connected account whose ``transfers`` capability is active before it can
receive split payments. Both ids live on the user's Account Link document:

    {userPath}/{userId}
        gatewayCustomerId        buyer side
        gatewayPayableAccountId  seller side
        payableCapabilityActive  cached once onboarding finishes
        defaultPaymentMethodId   cached default card (see PaymentMethodRegistry)

Links are created lazily and their fields are cleared (never the document)
when the gateway object is deleted.
"""

import structlog

from purchasing.account.link import AccountLink
from purchasing.config import Settings, get_settings
from purchasing.errors import NotFoundError
from purchasing.gateway.port import GatewayAccount, PaymentGateway
from purchasing.store.port import DELETE_FIELD, DocumentStore
from purchasing.utils.clock import timestamp

logger = structlog.get_logger(__name__)

DEFAULT_COUNTRY = "JP"


def country_from_locale(locale: str | None) -> str:
    """``ja_JP`` / ``en-US`` -> ``JP`` / ``US``."""
    if not locale:
        return DEFAULT_COUNTRY
    parts = locale.replace("-", "_").split("_")
    if len(parts) < 2 or len(parts[-1]) != 2:
        return DEFAULT_COUNTRY
    return parts[-1].upper()


class AccountDirectory:
    def __init__(self, store: DocumentStore, gateway: PaymentGateway, settings: Settings | None = None) -> None:
        self.store = store
        self.gateway = gateway
        self.settings = settings or get_settings()

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_link(self, user_id: str) -> AccountLink:
        return AccountLink.from_document(user_id, self.store.get(self.settings.user_doc(user_id)))

    def lookup_email(self, user_id: str) -> str | None:
        """Buyer email from the identity record, falling back to the link."""
        identity = self.store.get(self.settings.identity_doc(user_id))
        if identity is not None and identity.get("email"):
            return identity.get("email")
        return self.get_link(user_id).email

    def require_customer(self, user_id: str) -> str:
        link = self.get_link(user_id)
        if not link.customer_id:
            raise NotFoundError("The customer id is not found.", field="userId")
        return link.customer_id

    def require_payable_account(self, user_id: str) -> str:
        link = self.get_link(user_id)
        if not link.payable_account_id:
            raise NotFoundError("The seller account is not registered.", field="targetUserId")
        return link.payable_account_id

    def find_by_customer(self, customer_id: str) -> AccountLink | None:
        docs = self.store.find(self.settings.user_path, "gatewayCustomerId", customer_id)
        return AccountLink.from_document(docs[0].id, docs[0]) if docs else None

    def find_by_account(self, account_id: str) -> AccountLink | None:
        docs = self.store.find(self.settings.user_path, "gatewayPayableAccountId", account_id)
        return AccountLink.from_document(docs[0].id, docs[0]) if docs else None

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    def _write(self, link: AccountLink, changes: dict) -> None:
        data = {"userId": link.user_id, "updatedTime": timestamp(), **changes}
        if not link.exists:
            data["createdTime"] = data["updatedTime"]
        self.store.set(self.settings.user_doc(link.user_id), data, merge=True)

    def ensure_buyer(self, user_id: str) -> str:
        """Return the user's gateway customer id, creating the customer if needed.

        Two concurrent first calls may both create a customer; the last
        write wins and the other customer is orphaned at the gateway.
        """
        link = self.get_link(user_id)
        if link.customer_id:
            return link.customer_id

        email = self.lookup_email(user_id)
        customer = self.gateway.create_customer(email=email, metadata={"user_id": user_id})
        changes = {"gatewayCustomerId": customer.id}
        if email:
            changes["email"] = email
        self._write(link, changes)
        logger.info("buyer_registered", user_id=user_id, customer_id=customer.id)
        return customer.id

    def create_customer_and_payment(self, user_id: str, success_url: str, cancel_url: str) -> dict:
        """Ensure a customer and open a hosted page where the buyer saves a card."""
        customer_id = self.ensure_buyer(user_id)
        session = self.gateway.create_setup_session(customer_id, success_url=success_url, cancel_url=cancel_url)
        return {"endpoint": session.url, "customerId": customer_id}

    def ensure_seller(self, user_id: str, locale: str | None, refresh_url: str, return_url: str) -> dict:
        """Walk a seller through onboarding.

        Returns ``{"next": "registration", "endpoint": ...}`` while the
        seller still has to finish the hosted onboarding, and
        ``{"next": "none"}`` once transfers are active.
        """
        link = self.get_link(user_id)

        if not link.payable_account_id:
            account = self.gateway.create_account(email=self.lookup_email(user_id), country=country_from_locale(locale))
            self._write(
                link,
                {"gatewayPayableAccountId": account.id, "payableCapabilityActive": account.transfers_active},
            )
            endpoint = self.gateway.create_account_onboarding_link(account.id, refresh_url, return_url)
            logger.info("seller_registered", user_id=user_id, account_id=account.id)
            return {"next": "registration", "endpoint": endpoint, "accountId": account.id}

        if link.payable_capability_active:
            return {"next": "none", "accountId": link.payable_account_id}

        account = self.gateway.retrieve_account(link.payable_account_id)
        if account.transfers_active:
            self._write(
                link,
                {"payableCapabilityActive": True, "cardPaymentsActive": account.card_payments_active},
            )
            logger.info("seller_capability_active", user_id=user_id, account_id=account.id)
            return {"next": "none", "accountId": account.id}

        endpoint = self.gateway.create_account_onboarding_link(account.id, refresh_url, return_url)
        return {"next": "registration", "endpoint": endpoint, "accountId": account.id}

    def get_seller(self, user_id: str) -> dict:
        account = self.gateway.retrieve_account(self.require_payable_account(user_id))
        return {
            "accountId": account.id,
            "email": account.email,
            "country": account.country,
            "chargesEnabled": account.charges_enabled,
            "payoutsEnabled": account.payouts_enabled,
            "detailsSubmitted": account.details_submitted,
            "capabilities": account.capabilities,
        }

    def seller_dashboard(self, user_id: str) -> dict:
        account_id = self.require_payable_account(user_id)
        return {"endpoint": self.gateway.create_login_link(account_id)}

    def update_capabilities(self, account: GatewayAccount) -> bool:
        """Persist capability flags reported for a connected account.

        Returns False when no user is linked to the account.
        """
        link = self.find_by_account(account.id)
        if link is None:
            logger.warning("unknown_connected_account", account_id=account.id)
            return False
        self._write(
            link,
            {
                "payableCapabilityActive": account.transfers_active,
                "cardPaymentsActive": account.card_payments_active,
            },
        )
        return True

    def delete_seller(self, user_id: str) -> dict:
        link = self.get_link(user_id)
        account_id = self.require_payable_account(user_id)
        self.gateway.delete_account(account_id)
        self._write(
            link,
            {
                "gatewayPayableAccountId": DELETE_FIELD,
                "payableCapabilityActive": DELETE_FIELD,
                "cardPaymentsActive": DELETE_FIELD,
            },
        )
        logger.info("seller_deleted", user_id=user_id, account_id=account_id)
        return {"success": True}

    def delete_buyer(self, user_id: str) -> dict:
        link = self.get_link(user_id)
        customer_id = self.require_customer(user_id)
        self.gateway.delete_customer(customer_id)
        for doc in self.store.list_collection(self.settings.payment_collection(user_id)):
            self.store.delete(doc.path)
        self._write(
            link,
            {
                "gatewayCustomerId": DELETE_FIELD,
                "defaultPaymentMethodId": DELETE_FIELD,
                "setupIntentId": DELETE_FIELD,
            },
        )
        logger.info("buyer_deleted", user_id=user_id, customer_id=customer_id)
        return {"success": True}
