"""Renders orders into embedding text and flat index metadata."""

import math
from datetime import datetime

from services.vector_sync.fingerprint import fingerprint
from shared.models.order import Order
from shared.models.sync import ScalarValue, VectorDocument

VECTOR_ID_PREFIX = "job-"
METADATA_LIST_SEPARATOR = ","
TRUNCATION_MARKER = "..."
TRUNCATION_MARGIN = 0.9


def vector_id(identity: str) -> str:
    """Deterministic vector id for an order identity."""
    return f"{VECTOR_ID_PREFIX}{identity}"


def identity_from_vector_id(document_id: str) -> str:
    return document_id[len(VECTOR_ID_PREFIX):] if document_id.startswith(VECTOR_ID_PREFIX) else document_id


def _format_date(value: str | None) -> str | None:
    """Normalise an upstream timestamp to an ISO date (YYYY-MM-DD). Unparseable values are kept as they are."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return value.strip()


def _format_number(value: float | None) -> str:
    if value is None:
        return ""
    return str(int(value)) if float(value).is_integer() else str(value)


def _unique(values) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(value, None)
    return list(seen)


class ContentRenderer:
    """Deterministic order → text / metadata conversion.

    Args:
        max_text_chars (int): Texts above this length are truncated before embedding.
    """

    def __init__(self, max_text_chars: int = 32000) -> None:
        self.max_text_chars = max_text_chars

    ##########################################
    ############## SEARCH TEXT ###############
    ##########################################

    def to_search_text(self, order: Order) -> str:
        """Concatenate the human readable facets of an order in a fixed order.

        Absent facets are skipped. Dates are rendered as ISO dates so the text
        does not depend on the host locale.

        Args:
            order (Order): The order to render.

        Returns:
            str: Newline separated facets.
        """
        parts: list[str] = []

        header = f"Job {order.job_number}"
        if order.order_number:
            header += f" Order {order.order_number}"
        parts.append(header)

        if order.customer.company:
            parts.append(f"Customer: {order.customer.company}")
        if order.description:
            parts.append(f"Description: {order.description}")
        if order.comments:
            parts.append(f"Comments: {order.comments}")

        status = " - ".join(s for s in (order.status.master, order.status.stock) if s)
        if status:
            parts.append(f"Status: {status}")

        if order.production.processes:
            processes = ", ".join(
                f"{p.display_code or p.code} ({_format_number(p.quantity)})" if p.quantity is not None else (p.display_code or p.code)
                for p in order.production.processes
            )
            parts.append(f"Processes: {processes}")
        if order.production.gang_codes:
            parts.append(f"Gang Codes: {', '.join(order.production.gang_codes)}")

        priority = []
        if order.production.time_sensitive:
            priority.append("time sensitive")
        if order.production.must_date:
            priority.append("must date")
        if order.production.is_reprint:
            priority.append("reprint")
        if priority:
            parts.append(f"Priority: {', '.join(priority)}")

        if order.line_items:
            lines = []
            for item in order.line_items:
                line = [item.description] if item.description else []
                if item.category:
                    line.append(f"Category: {item.category}")
                if item.materials:
                    line.append(f"Materials: {', '.join(item.materials)}")
                if item.process_codes:
                    line.append(f"Processes: {', '.join(item.process_codes)}")
                if item.comment:
                    line.append(f"Note: {item.comment}")
                if line:
                    lines.append(" | ".join(line))
            if lines:
                parts.append(f"Line Items: {' ;; '.join(lines)}")

        if order.shipments:
            shipments = []
            for shipment in order.shipments:
                ship = []
                recipient = shipment.address.organisation or shipment.address.contact_name
                if recipient:
                    ship.append(f"Ship to: {recipient}")
                place = ", ".join(p for p in (shipment.address.city, shipment.address.state) if p)
                if place:
                    ship.append(place)
                if shipment.method.label:
                    ship.append(f"Method: {shipment.method.label}")
                if shipment.shipped:
                    ship.append("SHIPPED")
                if shipment.tracking_details and shipment.tracking_details.status:
                    ship.append(f"Status: {shipment.tracking_details.status}")
                if ship:
                    shipments.append(" | ".join(ship))
            if shipments:
                parts.append(f"Shipments: {' ;; '.join(shipments)}")

        if order.files:
            files = ", ".join(f"{f.file_name} ({f.file_type}, {f.category})" for f in order.files)
            parts.append(f"Files: {files}")
        if order.tags:
            parts.append(f"Tags: {', '.join(tag.tag for tag in order.tags)}")

        if order.location.name or order.location.code:
            location = order.location.name
            if order.location.code:
                location = f"{location} ({order.location.code})".strip()
            parts.append(f"Location: {location}")
        if order.location.delivery_option:
            parts.append(f"Delivery: {order.location.delivery_option}")

        due = _format_date(order.dates.date_due)
        if due:
            parts.append(f"Due: {due}")
        entered = _format_date(order.dates.date_entered)
        if entered:
            parts.append(f"Entered: {entered}")

        return "\n".join(parts)

    def truncate(self, text: str) -> str:
        """Cut texts above max_text_chars down to 90% of it and mark the cut."""
        if len(text) <= self.max_text_chars:
            return text
        keep = int(self.max_text_chars * TRUNCATION_MARGIN)
        return text[:keep] + TRUNCATION_MARKER

    def to_embedding_text(self, order: Order) -> str:
        return self.truncate(self.to_search_text(order))

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """Rough token estimate, about four characters per token."""
        return math.ceil(len(text) / 4)

    ##########################################
    ############### METADATA #################
    ##########################################

    def to_metadata(self, order: Order, content_fingerprint: str | None = None) -> dict[str, ScalarValue]:
        """Flatten an order into scalar metadata for the vector index.

        Lists are joined with ",". None and empty values are omitted rather than
        written as null.

        Args:
            order (Order): The order to flatten.
            content_fingerprint (str | None): Precomputed fingerprint, computed when omitted.

        Returns:
            dict[str, ScalarValue]: Flat metadata.
        """
        categories = _unique(item.category for item in order.line_items)
        materials = _unique(m for item in order.line_items for m in item.materials)
        file_types = _unique(f.file_type for f in order.files)
        processes = _unique(p.code for p in order.production.processes)

        core_fields = [
            order.job_number,
            order.order_number,
            order.description,
            order.customer.company,
            order.status.master,
            order.dates.date_entered,
            order.dates.date_due,
        ]
        completeness_score = round(sum(1 for f in core_fields if f) / len(core_fields) * 100)

        description_length = len(order.description)
        comments_length = len(order.comments)
        total_text_length = description_length + comments_length + sum(len(item.description) for item in order.line_items)

        metadata: dict[str, ScalarValue | None] = {
            "job_number": order.job_number,
            "order_number": order.order_number,
            "customer_company": order.customer.company,
            "customer_id": order.customer.id,
            "master_status": order.status.master,
            "master_status_id": order.status.master_status_id,
            "stock_status": order.status.stock,
            "stock_complete": order.status.stock_complete,
            "date_entered": _format_date(order.dates.date_entered),
            "date_due": _format_date(order.dates.date_due),
            "date_due_factory": _format_date(order.dates.date_due_factory),
            "processes": METADATA_LIST_SEPARATOR.join(processes),
            "gang_codes": METADATA_LIST_SEPARATOR.join(order.production.gang_codes),
            "time_sensitive": order.production.time_sensitive,
            "must_date": order.production.must_date,
            "is_reprint": order.production.is_reprint,
            "location_code": order.location.code,
            "location_name": order.location.name,
            "delivery_option": order.location.delivery_option,
            "categories": METADATA_LIST_SEPARATOR.join(categories),
            "materials": METADATA_LIST_SEPARATOR.join(materials),
            "file_types": METADATA_LIST_SEPARATOR.join(file_types),
            "tags": METADATA_LIST_SEPARATOR.join(tag.tag for tag in order.tags),
            "has_line_items": bool(order.line_items),
            "has_shipments": bool(order.shipments),
            "has_files": bool(order.files),
            "line_item_count": len(order.line_items),
            "shipment_count": len(order.shipments),
            "file_count": len(order.files),
            "data_source": order.metadata.data_source,
            "completeness_score": completeness_score,
            "description_length": description_length,
            "comments_length": comments_length,
            "total_text_length": total_text_length,
            "content_hash": content_fingerprint or fingerprint(order),
        }
        # empty strings and None are omitted; False and 0 are real values
        return {key: value for key, value in metadata.items() if value is not None and value != ""}

    def to_vector_document(self, order: Order, embedding: list[float], content_fingerprint: str | None = None) -> VectorDocument:
        return VectorDocument(
            id=vector_id(order.job_number),
            embedding=embedding,
            metadata=self.to_metadata(order, content_fingerprint=content_fingerprint),
        )
