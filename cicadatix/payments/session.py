from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from ..errors import InvalidPayload
from ..helpers import positive_int

# event types that complete a checkout session and trigger issuance
COMPLETION_TYPES = frozenset({
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
})
# same purchase seen from the charge side; the checkout event does the work
SHADOW_TYPES = frozenset({
    "payment_intent.succeeded",
    "charge.succeeded",
    "charge.updated",
})


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class PaymentSession:
    id: str
    payment_status: str
    status: str
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    payment_intent: Optional[str] = None
    metadata: Mapping[str, str] = field(default_factory=dict)
    line_item_quantities: Tuple[int, ...] = ()

    @property
    def is_settled(self) -> bool:
        return self.payment_status == "paid" and self.status == "complete"

    @property
    def event_ref(self) -> Optional[str]:
        return _opt_str(self.metadata.get("event_id"))

    def quantity(self) -> int:
        """metadata quantity, else the line items' sum, else 1."""
        n = positive_int(self.metadata.get("quantity"))
        if n is not None:
            return n
        if self.line_item_quantities:
            total = sum(self.line_item_quantities)
            if total > 0:
                return total
        return 1

    @classmethod
    def from_object(cls, obj: Any) -> "PaymentSession":
        if not isinstance(obj, Mapping):
            raise InvalidPayload("session object must be a mapping")
        sid = _opt_str(obj.get("id"))
        if not sid:
            raise InvalidPayload("session object has no id")
        payment_status = _opt_str(obj.get("payment_status"))
        status = _opt_str(obj.get("status"))
        if payment_status is None or status is None:
            raise InvalidPayload(
                "session object needs payment_status and status",
                session_id=sid,
            )

        details = obj.get("customer_details") or {}
        if not isinstance(details, Mapping):
            details = {}
        email = _opt_str(details.get("email")) or _opt_str(
            obj.get("customer_email")
        )

        intent = obj.get("payment_intent")
        if isinstance(intent, Mapping):
            intent = intent.get("id")

        raw_meta = obj.get("metadata") or {}
        if not isinstance(raw_meta, Mapping):
            raise InvalidPayload("metadata must be a mapping", session_id=sid)
        metadata = {
            str(k): str(v) for k, v in raw_meta.items() if v is not None
        }

        quantities: Tuple[int, ...] = ()
        line_items = obj.get("line_items")
        if isinstance(line_items, Mapping) and isinstance(
            line_items.get("data"), list
        ):
            quantities = tuple(
                positive_int(item.get("quantity")) or 1
                for item in line_items["data"]
                if isinstance(item, Mapping)
            )

        return cls(
            id=sid,
            payment_status=payment_status,
            status=status,
            customer_email=email,
            customer_name=_opt_str(details.get("name")),
            payment_intent=_opt_str(intent),
            metadata=metadata,
            line_item_quantities=quantities,
        )


@dataclass(frozen=True)
class WebhookEvent:
    id: Optional[str]
    type: str
    obj: Dict[str, Any]

    @property
    def is_completion(self) -> bool:
        return self.type in COMPLETION_TYPES

    @property
    def is_shadow(self) -> bool:
        return self.type in SHADOW_TYPES

    def session(self) -> PaymentSession:
        return PaymentSession.from_object(self.obj)

    @classmethod
    def from_envelope(cls, envelope: Any) -> "WebhookEvent":
        if not isinstance(envelope, Mapping):
            raise InvalidPayload("event envelope must be an object")
        etype = _opt_str(envelope.get("type"))
        if etype is None:
            raise InvalidPayload("event envelope has no type")
        data = envelope.get("data")
        obj = data.get("object") if isinstance(data, Mapping) else None
        if not isinstance(obj, Mapping):
            raise InvalidPayload("event envelope has no data.object")
        return cls(id=_opt_str(envelope.get("id")), type=etype, obj=dict(obj))
