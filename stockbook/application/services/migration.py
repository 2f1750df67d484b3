"""Load-time migration of stored documents to the canonical shape.

Older data files carry legacy field names (`costPerUnit`, `quantity` on
container lines), datetime strings in date fields, string ids and list-typed
capital contributions. `migrate_document` folds all of that into one
canonical field per concept so the ledger never sees the old shapes.
"""

import re
from typing import Any, Dict, Iterable, Optional

import structlog

from stockbook.domain.schemas.document import COLLECTIONS, DOCUMENT_VERSION, default_next_ids

logger = structlog.get_logger(__name__)

DATE_FIELDS = ("date", "purchaseDate", "shippingDate", "arrivalDate", "joinDate")
ISO_DATE = re.compile(r"^(\d{4}-\d{2}-\d{2})")

# Counter kind -> (collection, string id prefix or None for numeric ids)
COUNTER_SOURCES = {
    "product": ("products", None),
    "sale": ("sales", None),
    "expense": ("expenses", None),
    "container": ("containers", "C"),
    "partner": ("partners", "P"),
    "withdrawal": ("withdrawals", "W"),
    "cashInjection": ("cashInjections", "CI"),
    "cashFlow": ("cashFlows", "CF"),
}


def _number(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _int_id(value: Any) -> Any:
    """Coerce "12" / 12.0 to 12; leave anything else untouched."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


def _trim_dates(record: Dict[str, Any]) -> None:
    for field in DATE_FIELDS:
        value = record.get(field)
        if value == "":
            record[field] = None
        elif isinstance(value, str):
            match = ISO_DATE.match(value)
            if match:
                record[field] = match.group(1)


def _fold_cost(record: Dict[str, Any]) -> None:
    legacy = record.pop("costPerUnit", None)
    if record.get("costPerKg") is None and legacy is not None:
        record["costPerKg"] = _number(legacy)


def _sequence_number(value: Any, prefix: Optional[str]) -> Optional[int]:
    if prefix is None:
        return value if isinstance(value, int) and not isinstance(value, bool) else None
    if isinstance(value, str):
        match = re.fullmatch(rf"{prefix}(\d+)", value)
        if match:
            return int(match.group(1))
    return None


def max_sequence(records: Iterable[Dict[str, Any]], prefix: Optional[str] = None) -> int:
    """Highest numeric part among the records' ids, 0 if there is none."""
    numbers = [_sequence_number(r.get("id"), prefix) for r in records]
    return max((n for n in numbers if n is not None), default=0)


def _migrate_product(product: Dict[str, Any]) -> None:
    product["id"] = _int_id(product.get("id"))
    _fold_cost(product)
    product["costPerKg"] = _number(product.get("costPerKg"))
    product["currentStock"] = int(_number(product.get("currentStock")))
    product["bagWeight"] = _number(product.get("bagWeight"), 25) or 25
    product.setdefault("category", "General")
    if product.get("description") is None:
        product["description"] = ""
    if product.get("containerId") == "":
        product["containerId"] = None


def _migrate_container(container: Dict[str, Any]) -> None:
    _trim_dates(container)
    if container.get("purchaseDate") is None:
        container["purchaseDate"] = container.get("orderDate") or container.get("arrivalDate")
    container["shippingCost"] = _number(container.get("shippingCost"))
    container["customsCost"] = _number(container.get("customsCost"))

    lines = [dict(line) for line in container.get("products") or [] if isinstance(line, dict)]
    for line in lines:
        line["productId"] = _int_id(line.get("productId"))
        if "bagQuantity" not in line and "quantity" in line:
            line["bagQuantity"] = line.pop("quantity")
        line["bagQuantity"] = int(_number(line.get("bagQuantity")))
        _fold_cost(line)
        line["costPerKg"] = _number(line.get("costPerKg"))
        line["bagWeight"] = _number(line.get("bagWeight"), 25) or 25
    container["products"] = lines

    if container.get("totalCost") is None:
        legacy_total = container.pop("totalInvestment", None)
        if legacy_total is not None:
            container["totalCost"] = _number(legacy_total)
        else:
            container["totalCost"] = sum(
                line["bagQuantity"] * line["bagWeight"] * line["costPerKg"] for line in lines
            ) + container["shippingCost"] + container["customsCost"]


def _migrate_sale(sale: Dict[str, Any]) -> None:
    _trim_dates(sale)
    sale["id"] = _int_id(sale.get("id"))
    sale["productId"] = _int_id(sale.get("productId"))
    quantity = int(_number(sale.get("quantity")))
    price = _number(sale.get("pricePerUnit"))
    cost = _number(sale.get("costPerUnit"))
    sale["quantity"] = quantity
    sale["pricePerUnit"] = price
    sale["costPerUnit"] = cost
    if sale.get("totalAmount") is None:
        sale["totalAmount"] = quantity * price
    if sale.get("profit") is None:
        sale["profit"] = (price - cost) * quantity
    sale.setdefault("productName", "")


def _migrate_expense(expense: Dict[str, Any]) -> None:
    _trim_dates(expense)
    expense["id"] = _int_id(expense.get("id"))
    expense["amount"] = _number(expense.get("amount"))
    if "productId" in expense:
        expense["productId"] = _int_id(expense["productId"])
    if expense.get("containerId") == "":
        expense["containerId"] = None


def _contributions_total(value: Any) -> float:
    if isinstance(value, list):
        return sum(
            _number(item.get("amount")) if isinstance(item, dict) else _number(item)
            for item in value
        )
    return _number(value)


def _migrate_partner(partner: Dict[str, Any]) -> None:
    _trim_dates(partner)
    partner["ownershipPercent"] = _number(partner.get("ownershipPercent"))
    account = dict(partner.get("capitalAccount") or {})
    account.pop("currentEquity", None)  # derived
    account["initialInvestment"] = _number(account.get("initialInvestment"))
    account["additionalContributions"] = _contributions_total(account.get("additionalContributions"))
    account["profitShare"] = _number(account.get("profitShare"))
    account["totalWithdrawn"] = _number(account.get("totalWithdrawn"))
    partner["capitalAccount"] = account


def _migrate_amount_record(record: Dict[str, Any]) -> None:
    _trim_dates(record)
    record["amount"] = _number(record.get("amount"))


def _migrate_cash_flow(flow: Dict[str, Any]) -> None:
    _trim_dates(flow)
    flow["transactions"] = [dict(t) for t in flow.get("transactions") or [] if isinstance(t, dict)]
    for transaction in flow["transactions"]:
        _trim_dates(transaction)


def sync_counters(document: Dict[str, Any]) -> Dict[str, int]:
    """Raise every counter above the highest id already present."""
    next_ids = document["metadata"]["nextIds"]
    for kind, (collection, prefix) in COUNTER_SOURCES.items():
        highest = max_sequence(document.get(collection) or [], prefix)
        if next_ids.get(kind, 1) <= highest:
            next_ids[kind] = highest + 1
    return next_ids


def migrate_document(raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Return a canonical copy of a stored document; the input is not modified."""
    document = {key: value for key, value in (raw or {}).items()}

    metadata = dict(document.get("metadata") or {})
    metadata["version"] = metadata.get("version") or DOCUMENT_VERSION
    metadata["nextIds"] = {**default_next_ids(), **(metadata.get("nextIds") or {})}
    document["metadata"] = metadata

    for name in COLLECTIONS:
        value = document.get(name)
        document[name] = [dict(item) for item in value if isinstance(item, dict)] if isinstance(value, list) else []

    migrators = {
        "products": _migrate_product,
        "containers": _migrate_container,
        "sales": _migrate_sale,
        "expenses": _migrate_expense,
        "partners": _migrate_partner,
        "withdrawals": _migrate_amount_record,
        "cashInjections": _migrate_amount_record,
        "cashFlows": _migrate_cash_flow,
    }
    for name, migrate in migrators.items():
        for record in document[name]:
            migrate(record)

    before = dict(metadata["nextIds"])
    after = sync_counters(document)
    if before != after:
        logger.info("id_counters_raised", before=before, after=after)

    return document
