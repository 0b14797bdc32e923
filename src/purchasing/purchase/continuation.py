"""Signed continuation links for offline 3-D Secure.

When the purchaser is offline the gateway's return URL carries a signed
``token`` naming the order and where to send the user afterwards. The
continuation endpoint verifies it, re-reads the intent and redirects to the
success or failure URL.
"""

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from purchasing.config import Settings, get_settings
from purchasing.errors import InvalidArgumentError

SALT = "purchase-continuation"


class ContinuationSigner:
    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.serializer = URLSafeTimedSerializer(self.settings.signing_secret, salt=SALT)

    def dumps(self, user_id: str, order_id: str, success_url: str, failure_url: str) -> str:
        return self.serializer.dumps(
            {"userId": user_id, "orderId": order_id, "successUrl": success_url, "failureUrl": failure_url}
        )

    def loads(self, token: str) -> dict:
        try:
            return self.serializer.loads(token, max_age=self.settings.continuation_max_age)
        except SignatureExpired as exc:
            raise InvalidArgumentError("The continuation link has expired.", field="token") from exc
        except BadSignature as exc:
            raise InvalidArgumentError("The continuation link is invalid.", field="token") from exc

    def append_token(self, return_url: str, user_id: str, order_id: str, success_url: str, failure_url: str) -> str:
        token = self.dumps(user_id, order_id, success_url, failure_url)
        parts = urlsplit(return_url)
        query = parse_qsl(parts.query, keep_blank_values=True)
        query.append(("token", token))
        return urlunsplit(parts._replace(query=urlencode(query)))
