"""Pydantic models for order records as delivered by the order management API.

The upstream API speaks camelCase JSON; every model accepts both the camelCase
aliases and the snake_case field names. Unknown fields are ignored.

Hierarchy:
  Order: one business record, identified by its job number.
  LineItem, Shipment, OrderFile, OrderTag, ...: nested facets of an order.
  OrderMetadata: freshness bookkeeping of the upstream fetch, never search relevant.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class OrderModel(BaseModel):
    """Common configuration for all order models."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Customer(OrderModel):
    id: int | None = None
    company: str = ""
    contact_person: str | None = None
    phone: str | None = None
    email: str | None = None


class OrderStatus(OrderModel):
    master: str = ""
    master_status_id: int | None = None
    stock: str = ""
    stock_complete: int | None = None
    status_line: str | None = None


class OrderDates(OrderModel):
    date_entered: str | None = None
    date_due: str | None = None
    date_due_factory: str | None = None
    days_to_due_date: int | None = None
    date_out: str | None = None


class Location(OrderModel):
    code: str = ""
    name: str = ""
    delivery_option: str = ""


class ProcessStep(OrderModel):
    code: str = ""
    display_code: str = ""
    quantity: float | None = None


class Production(OrderModel):
    processes: list[ProcessStep] = []
    gang_codes: list[str] = []
    time_sensitive: bool = False
    must_date: bool = False
    is_reprint: bool = False


class LineItem(OrderModel):
    line_id: int | None = None
    asset_sku: str | None = Field(default=None, alias="assetSKU")
    description: str = ""
    category: str | None = None
    quantity: float | None = None
    unit_price: float | None = None
    total_price: float | None = None
    comment: str | None = None
    status: str | None = None
    process_codes: list[str] = []
    materials: list[str] = []


class ShipmentAddress(OrderModel):
    contact_name: str = ""
    organisation: str = ""
    street_address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""


class ShipmentMethod(OrderModel):
    label: str = ""
    value: str = ""


class TrackingDetails(OrderModel):
    status: str = ""
    tracking_link: str | None = None
    delivery_status: str | None = None
    last_update: str | None = None


class Shipment(OrderModel):
    id: int | None = None
    title: str = ""
    shipped: bool = False
    date_shipped: str | None = None
    tracking_details: TrackingDetails | None = None
    address: ShipmentAddress = Field(default_factory=ShipmentAddress)
    method: ShipmentMethod = Field(default_factory=ShipmentMethod)


class OrderFile(OrderModel):
    file_name: str = ""
    file_type: str = ""
    category: str = ""
    content_type: str | None = None


class OrderTag(OrderModel):
    tag: str
    entered_by: str | None = None
    date_entered: str | None = None


class Workflow(OrderModel):
    has_scheduleable_job_lines: bool = False
    can_print_job_line_labels: bool = False
    has_job_files: bool = False
    has_proof: bool = False


class OrderMetadata(OrderModel):
    last_api_update: str | None = Field(default=None, alias="lastAPIUpdate")
    data_source: str = "api"
    data_freshness: str | None = None
    sort_key: str | None = None


class Order(OrderModel):
    """A single order record.

    Attributes:
        job_number:   Stable unique identity of the order.
        order_number: Customer facing order number.
        metadata:     Fetch bookkeeping only. Changes here never count as a content change.
    """

    # Core identity
    job_number: str
    order_number: str = ""

    customer: Customer = Field(default_factory=Customer)
    description: str = ""
    comments: str = ""
    job_quantity: float | None = None

    status: OrderStatus = Field(default_factory=OrderStatus)
    dates: OrderDates = Field(default_factory=OrderDates)
    location: Location = Field(default_factory=Location)
    production: Production = Field(default_factory=Production)

    line_items: list[LineItem] = []
    shipments: list[Shipment] = []
    files: list[OrderFile] = []
    tags: list[OrderTag] = []

    workflow: Workflow = Field(default_factory=Workflow)
    metadata: OrderMetadata = Field(default_factory=OrderMetadata)

    @field_validator("job_number", "order_number", mode="before")
    @classmethod
    def _coerce_identifier(cls, value):
        # the API returns numeric job numbers for older orders
        if isinstance(value, (int, float)):
            return str(int(value))
        return value

    @field_validator("job_number")
    @classmethod
    def _require_job_number(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("job_number must not be empty")
        return value
