"""Content fingerprints for orders.

The fingerprint covers an explicit allow-list of search relevant fields.
Fetch bookkeeping (``metadata.*``), the derived ``days_to_due_date`` counter and
carrier tracking timestamps are left out, so refetching an order that did not
change never looks like an update.
"""

import hashlib
import json
from typing import Any

from shared.models.order import Order


def _line_item_fields(order: Order) -> list[dict[str, Any]]:
    return [
        {
            "line_id": item.line_id,
            "asset_sku": item.asset_sku,
            "description": item.description,
            "category": item.category,
            "quantity": item.quantity,
            "unit_price": item.unit_price,
            "total_price": item.total_price,
            "comment": item.comment,
            "status": item.status,
            "process_codes": item.process_codes,
            "materials": item.materials,
        }
        for item in order.line_items
    ]


def _shipment_fields(order: Order) -> list[dict[str, Any]]:
    return [
        {
            "id": shipment.id,
            "title": shipment.title,
            "shipped": shipment.shipped,
            "date_shipped": shipment.date_shipped,
            "tracking_status": shipment.tracking_details.status if shipment.tracking_details else None,
            "tracking_link": shipment.tracking_details.tracking_link if shipment.tracking_details else None,
            "delivery_status": shipment.tracking_details.delivery_status if shipment.tracking_details else None,
            "address": shipment.address.model_dump(),
            "method": shipment.method.label,
        }
        for shipment in order.shipments
    ]


def relevant_fields(order: Order) -> dict[str, Any]:
    """Return the search relevant subset of an order as plain JSON data."""
    return {
        "job_number": order.job_number,
        "order_number": order.order_number,
        "customer": order.customer.company,
        "description": order.description,
        "comments": order.comments,
        "job_quantity": order.job_quantity,
        "status": {
            "master": order.status.master,
            "stock": order.status.stock,
        },
        "dates": {
            "entered": order.dates.date_entered,
            "due": order.dates.date_due,
            "due_factory": order.dates.date_due_factory,
        },
        "location": {
            "code": order.location.code,
            "name": order.location.name,
            "delivery_option": order.location.delivery_option,
        },
        "production": {
            "processes": [[p.code, p.display_code, p.quantity] for p in order.production.processes],
            "gang_codes": order.production.gang_codes,
            "time_sensitive": order.production.time_sensitive,
            "must_date": order.production.must_date,
            "is_reprint": order.production.is_reprint,
        },
        "line_items": _line_item_fields(order),
        "shipments": _shipment_fields(order),
        "files": [[f.file_name, f.file_type, f.category] for f in order.files],
        # tags form a set upstream, their order carries no meaning
        "tags": sorted(tag.tag for tag in order.tags),
    }


def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def fingerprint(order: Order) -> str:
    """Compute the content fingerprint of an order.

    Args:
        order (Order): The order to fingerprint.

    Returns:
        str: 64 character SHA-256 hex digest.
    """
    return hashlib.sha256(canonical_json(relevant_fields(order)).encode("utf-8")).hexdigest()
