"""Webhook body parsing for WooCommerce order deliveries.

The store normally posts JSON, but some setups post ``application/x-www-form-urlencoded`` bodies using PHP bracket
notation (``billing[email]=...``, ``line_items[0][product_id]=...``). Both
are folded into the same ``WooOrderPayload`` so the rest of the pipeline
never sees the difference.

When a webhook is saved, WooCommerce sends a one-off ping (``webhook_id=N``,
form encoded) to check the URL answers. It is recognized as ``WebhookPing``
rather than rejected as a malformed order.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple, Union
from urllib.parse import parse_qsl

from pydantic import ValidationError

from app.schemas.woocommerce import WooOrderPayload

logger = logging.getLogger(__name__)

FORMAT_JSON = "json"
FORMAT_FORM = "form"

CUSTOMER_EMAIL_META_KEY = "_customer_email"
PING_FIELD = "webhook_id"

_FIELD_NAME = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])*)$")
_FIELD_SEGMENT = re.compile(r"\[([^\[\]]*)\]")


@dataclass(frozen=True)
class ParsedOrder:
    """A body that decoded and validated as an order"""
    order: WooOrderPayload
    raw: Dict[str, Any]
    wire_format: str


@dataclass(frozen=True)
class WebhookPing:
    """Delivery check sent when the webhook is created; carries no order"""
    webhook_id: str
    wire_format: str


@dataclass(frozen=True)
class ParseError:
    """A body that could not be turned into an order"""
    reason: str
    wire_format: Optional[str] = None


ParseResult = Union[ParsedOrder, WebhookPing, ParseError]


def unflatten_form_fields(pairs: Iterable[Tuple[str, str]]) -> Dict[str, Any]:
    """Fold bracket-notation form fields into nested dicts and lists.

    ``a[b][0][c]=1`` becomes ``{"a": {"b": [{"c": "1"}]}}``. Objects whose keys
    are all integers become lists ordered by index; ``a[]`` appends.
    """
    root: Dict[str, Any] = {}
    for name, value in pairs:
        match = _FIELD_NAME.match(name)
        if not match:
            raise ValueError(f"Malformed form field name: {name!r}")
        path = [match.group(1)] + _FIELD_SEGMENT.findall(match.group(2))

        node = root
        for depth, segment in enumerate(path):
            if segment == "":
                segment = str(len(node))
            if depth == len(path) - 1:
                node[segment] = value
                break
            child = node.get(segment)
            if not isinstance(child, dict):
                child = {}
                node[segment] = child
            node = child

    return _listify(root)


def _listify(node):
    if not isinstance(node, dict):
        return node
    converted = {key: _listify(value) for key, value in node.items()}
    if converted and all(key.isdigit() for key in converted):
        return [converted[key] for key in sorted(converted, key=int)]
    return converted


def parse_form_body(text: str) -> Dict[str, Any]:
    """Parse a URL-encoded body, raising ValueError when it is not one"""
    pairs = parse_qsl(text.strip(), keep_blank_values=True, strict_parsing=True)
    if not pairs:
        raise ValueError("No form fields found")
    return unflatten_form_fields(pairs)


def _summarize_validation_error(error: ValidationError, limit: int = 5) -> str:
    problems = []
    for detail in error.errors()[:limit]:
        location = ".".join(str(part) for part in detail["loc"]) or "body"
        problems.append(f"{location}: {detail['msg']}")
    if error.error_count() > limit:
        problems.append(f"... {error.error_count() - limit} more")
    return "; ".join(problems)


def parse_order_payload(body: Union[bytes, str]) -> ParseResult:
    """Turn a raw webhook body into a ParsedOrder, a WebhookPing or a ParseError.

    JSON is tried first; only when the body is not JSON at all is it read as
    URL-encoded form data. A body that decodes but is not a valid order is a
    ParseError as well.
    """
    if isinstance(body, bytes):
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            return ParseError("Could not read payload: body is not valid UTF-8")
    else:
        text = body

    if not text or not text.strip():
        return ParseError("Could not read payload: body is empty")

    try:
        raw = json.loads(text)
        wire_format = FORMAT_JSON
    except json.JSONDecodeError as json_error:
        logger.debug(f"Payload is not JSON ({json_error}), trying URL-encoded form data")
        try:
            raw = parse_form_body(text)
            wire_format = FORMAT_FORM
        except ValueError as form_error:
            logger.debug(f"Payload is not URL-encoded form data either: {form_error}")
            return ParseError("Invalid payload format: Could not parse as JSON or URL-encoded data")

    if not isinstance(raw, dict):
        return ParseError(
            f"Invalid payload format: expected an object, got {type(raw).__name__}",
            wire_format
        )

    if set(raw) == {PING_FIELD}:
        return WebhookPing(webhook_id=str(raw[PING_FIELD]), wire_format=wire_format)

    try:
        order = WooOrderPayload.model_validate(raw)
    except ValidationError as e:
        return ParseError(f"Invalid order payload: {_summarize_validation_error(e)}", wire_format)

    return ParsedOrder(order=order, raw=raw, wire_format=wire_format)


def resolve_customer_email(order: WooOrderPayload) -> Optional[str]:
    """Billing email, or the ``_customer_email`` order meta entry when billing has none"""
    email = (order.billing.email or "").strip()
    if email:
        return email

    logger.warning(f"Order {order.id} has no billing email, checking order meta")
    entry = order.find_meta(CUSTOMER_EMAIL_META_KEY)
    if entry is not None and isinstance(entry.value, str) and entry.value.strip():
        return entry.value.strip()
    return None
