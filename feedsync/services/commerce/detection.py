from __future__ import annotations

from dataclasses import dataclass, field
import json
import math
import re
from typing import Any

DEFAULT_PRODUCT_URL_TEMPLATE = "https://www.tiktok.com/shop/pdp/{product_id}"

COMMERCE_INDICATOR_FIELDS = (
    "anchors",
    "anchor_info",
    "bottom_products",
    "products_info",
    "right_products",
    "has_commerce_goods",
    "existed_commerce_goods",
    "ecommerce_goods",
    "commerce_info",
)
PRODUCT_LIST_FIELDS = ("bottom_products", "products_info", "right_products")
COMMERCE_FLAG_FIELDS = ("has_commerce_goods", "existed_commerce_goods", "ecommerce_goods")

REASON_ANCHOR_PREFIX = "anchor:"
REASON_ANCHOR = "anchor"
REASON_GOODS_FLAG = "commerce_goods_flag"
REASON_COMMISSION = "commerce_info_commission"
REASON_BRANDED_PREFIX = "commerce_info_branded_type:"

_COMMERCE_ANCHOR_RE = re.compile(r"shop|product|commerce")
# Wide ids must be read from the raw text before JSON decoding touches them.
_EMBEDDED_PRODUCT_ID_RE = re.compile(r'"product_id"\s*:\s*(\d{15,})')
_HTTP_URL_RE = re.compile(r"^https?://.+")

_REASON_LABELS = {
    "anchor:anchor_complex_shop": "product anchor (multi-shop)",
    "anchor:anchor_shop": "product anchor (shop)",
    "anchor:anchor_product": "product anchor (product)",
    "anchor:anchor_commerce": "product anchor (e-commerce)",
    "bottom_products": "bottom product bar",
    "products_info": "product info list",
    "right_products": "side product bar",
    REASON_GOODS_FLAG: "commerce goods flag",
    REASON_COMMISSION: "commission disclosure",
}


@dataclass(frozen=True)
class CommerceProduct:
    product_id: str | None = None
    title: str | None = None
    price: float | None = None
    currency: str | None = None
    link: str | None = None
    source: str | None = None
    ad_label: str | None = None

    @property
    def is_identifiable(self) -> bool:
        return bool(self.product_id or self.title or self.link)


@dataclass(frozen=True)
class CommerceSignal:
    is_commercial: bool = False
    reasons: tuple[str, ...] = ()
    products: tuple[CommerceProduct, ...] = ()
    product_text: str = ""
    has_goods_flag: bool = False
    has_commission: bool = False
    is_branded: bool = False

    @property
    def products_total(self) -> int:
        return len(self.products)

    @property
    def first_product(self) -> CommerceProduct | None:
        return self.products[0] if self.products else None


@dataclass
class _SignalAccumulator:
    reasons: list[str] = field(default_factory=list)
    products: list[CommerceProduct] = field(default_factory=list)


def has_commerce_indicators(item: dict[str, Any]) -> bool:
    return any(item.get(name) is not None for name in COMMERCE_INDICATOR_FIELDS)


def extract_embedded_product_id(raw_json: str) -> str | None:
    match = _EMBEDDED_PRODUCT_ID_RE.search(raw_json)
    return match.group(1) if match else None


def _safe_json_loads(raw: Any) -> Any:
    if not raw or not isinstance(raw, str):
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def _optional_text(value: Any) -> str | None:
    if value is None or value is False or value == "" or value == 0:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, bool):
        return "true"
    return str(value)


def _parse_price(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if math.isfinite(price) else None


def _first_present(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def normalize_product(raw: dict[str, Any]) -> CommerceProduct:
    currency_format = raw.get("currency_format")
    currency_symbol = currency_format.get("currency_symbol") if isinstance(currency_format, dict) else None
    extra = raw.get("extra")
    extra_ad_label = extra.get("ad_label_name") if isinstance(extra, dict) else None
    currency = raw.get("currency")
    ad_label = raw.get("ad_label_name")
    return CommerceProduct(
        product_id=_optional_text(_first_present(raw, "product_id", "id")),
        title=_optional_text(_first_present(raw, "title", "elastic_title", "keyword")),
        price=_parse_price(_first_present(raw, "price", "sale_price", "market_price")),
        currency=_optional_text(currency if currency is not None else currency_symbol),
        link=_optional_text(_first_present(raw, "schema", "detail_url", "final_url", "short_url")),
        source=_optional_text(_first_present(raw, "source", "source_from")),
        ad_label=_optional_text(ad_label if ad_label is not None else extra_ad_label),
    )


def _anchor_payloads(extra: Any) -> list[Any]:
    if isinstance(extra, str):
        parsed = _safe_json_loads(extra)
        if isinstance(parsed, list):
            return parsed
        if isinstance(parsed, dict):
            return [parsed]
        return []
    if isinstance(extra, list):
        return extra
    if isinstance(extra, dict):
        return [extra]
    return []


def parse_anchor_products(anchor: dict[str, Any]) -> list[CommerceProduct]:
    products: list[CommerceProduct] = []
    for payload in _anchor_payloads(anchor.get("extra")):
        if not isinstance(payload, dict):
            continue
        merged = dict(payload)
        nested_extra = payload.get("extra")
        if isinstance(nested_extra, str):
            embedded_id = extract_embedded_product_id(nested_extra)
            nested = _safe_json_loads(nested_extra)
            if isinstance(nested, dict):
                merged = {**nested, **merged}
                if embedded_id:
                    merged["product_id"] = embedded_id
        elif isinstance(nested_extra, dict):
            merged = {**nested_extra, **merged}

        product = normalize_product(merged)
        if product.is_identifiable:
            products.append(product)
    return products


def parse_product_list(value: Any) -> list[CommerceProduct]:
    if not isinstance(value, list):
        return []
    products = []
    for entry in value:
        if not isinstance(entry, dict):
            continue
        product = normalize_product(entry)
        if product.is_identifiable:
            products.append(product)
    return products


def dedupe_products(products: list[CommerceProduct] | tuple[CommerceProduct, ...]) -> list[CommerceProduct]:
    """Keep the first product per id, or per title and position when the id is missing."""
    seen: dict[str, CommerceProduct] = {}
    for index, product in enumerate(products):
        key = product.product_id or f"{product.title or ''}#{index}"
        if key not in seen:
            seen[key] = product
    return list(seen.values())


def pick_product_link(
    product: CommerceProduct,
    *,
    url_template: str = DEFAULT_PRODUCT_URL_TEMPLATE,
) -> str:
    if product.link and _HTTP_URL_RE.match(product.link):
        return product.link
    if product.product_id:
        return url_template.format(product_id=product.product_id)
    return ""


def format_product_summary(product: CommerceProduct, index: int) -> str:
    parts = [f"[{index}]"]
    if product.title:
        parts.append(product.title)
    if product.price is not None and product.price > 0 and product.currency:
        price = int(product.price) if product.price.is_integer() else product.price
        parts.append(f"- {product.currency}{price}")
    if product.source:
        parts.append(f"({product.source})")
    return " ".join(parts)


def translate_commerce_reason(reason: str) -> str:
    if reason.startswith(REASON_BRANDED_PREFIX):
        return "branded content"
    if reason.startswith(REASON_ANCHOR_PREFIX):
        anchor_kind = reason[len(REASON_ANCHOR_PREFIX):]
        return _REASON_LABELS.get(reason, f"product anchor ({anchor_kind})")
    return _REASON_LABELS.get(reason, reason)


def _collect_anchor_signals(item: dict[str, Any], acc: _SignalAccumulator) -> None:
    anchors = item.get("anchors")
    if not isinstance(anchors, list):
        anchors = item.get("anchor_info")
    if not isinstance(anchors, list):
        return
    for anchor in anchors:
        if not isinstance(anchor, dict):
            continue
        component_key = str(anchor.get("component_key") or "")
        if not _COMMERCE_ANCHOR_RE.search(component_key.lower()):
            continue
        acc.products.extend(parse_anchor_products(anchor))
        acc.reasons.append(f"{REASON_ANCHOR_PREFIX}{component_key}" if component_key else REASON_ANCHOR)


def _is_branded(value: Any) -> bool:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value > 0
    return bool(value)


def _branded_reason(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool):
        value = "true"
    return f"{REASON_BRANDED_PREFIX}{value}"


def commerce_from_item(item: dict[str, Any]) -> CommerceSignal:
    """Derive the commercial-intent signal for one raw content item.

    Every contributing source records one cause code. Any cause code at all
    marks the item commercial, products or not.
    """
    acc = _SignalAccumulator()
    _collect_anchor_signals(item, acc)

    for list_field in PRODUCT_LIST_FIELDS:
        listed = parse_product_list(item.get(list_field))
        if listed:
            acc.products.extend(listed)
            acc.reasons.append(list_field)

    has_goods_flag = any(bool(item.get(flag)) for flag in COMMERCE_FLAG_FIELDS)
    if has_goods_flag:
        acc.reasons.append(REASON_GOODS_FLAG)

    commerce_info = item.get("commerce_info")
    if not isinstance(commerce_info, dict):
        commerce_info = {}
    commission_text = str(commerce_info.get("bc_label_test_text") or "").lower()
    has_commission = "commission" in commission_text
    branded_type = commerce_info.get("branded_content_type")
    is_branded = _is_branded(branded_type)

    if has_commission:
        acc.reasons.append(REASON_COMMISSION)
    if is_branded:
        acc.reasons.append(_branded_reason(branded_type))

    products = dedupe_products(acc.products)
    reasons = tuple(dict.fromkeys(acc.reasons))
    is_commercial = bool(products) or has_goods_flag or has_commission or is_branded or bool(reasons)
    product_text = "\n".join(
        format_product_summary(product, index) for index, product in enumerate(products, start=1)
    )
    return CommerceSignal(
        is_commercial=is_commercial,
        reasons=reasons,
        products=tuple(products),
        product_text=product_text,
        has_goods_flag=has_goods_flag,
        has_commission=has_commission,
        is_branded=is_branded,
    )
