from abc import abstractmethod

from pydantic import BaseModel, ValidationError

from shared.helper.HelperConfig import HelperConfig
from shared.clients.ClientInterface import ClientInterface
from shared.models.order import Order


class OrdersPage(BaseModel):
    """One page of the upstream order listing."""

    orders: list[dict] = []
    next_page: int | None = None
    total_count: int | None = None


class SourceClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.page_size = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_PAGE_SIZE", default=500))
        # identities of records the last do_fetch_all could not validate
        self.skipped_identities: list[str] = []

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "source"
        """
        return "source"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_orders(self, page: int = 1, page_size: int = 500) -> str:
        """
        Returns the endpoint path for order listing requests.

        Args:
            page (int): The page number for paginated order listing.
            page_size (int): The number of orders per page.

        Returns:
            str: The endpoint path for order listing requests (e.g. "/api/orders?page=1&pageSize=500")
        """
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def _parse_endpoint_orders(self, response: dict | list, page: int) -> OrdersPage:
        """
        Parses the raw JSON of one listing page.

        Args:
            response (dict | list): The decoded response body.
            page (int): The requested page number.

        Returns:
            OrdersPage: The raw order dicts and the next page number, if any.
        """
        pass

    def _parse_order(self, raw: dict) -> Order | None:
        """Validate one raw order. Invalid records are logged, skipped and their identity remembered."""
        try:
            return Order.model_validate(raw)
        except ValidationError as e:
            identity = self._raw_identity(raw)
            if identity:
                self.skipped_identities.append(identity)
            self.logging.warning("Skipping invalid order %s from %s: %s", identity or "?", self._get_engine_name(), e.errors()[:3])
            return None

    @staticmethod
    def _raw_identity(raw: dict) -> str | None:
        if not isinstance(raw, dict):
            return None
        identity = raw.get("jobNumber", raw.get("job_number"))
        if isinstance(identity, (int, float)) and not isinstance(identity, bool):
            return str(int(identity))
        if not isinstance(identity, str):
            return None
        return identity.strip() or None

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_fetch_all(self) -> list[Order]:
        """
        Fetches the complete current set of orders from the source backend.

        Records that fail validation are left out of the result. Their identities,
        where readable, are collected in skipped_identities so callers do not
        mistake them for deleted orders.

        Returns:
            list[Order]: Every valid order the backend currently holds (a full snapshot, not a delta).

        Raises:
            ClientRequestError: If the backend answers with a non-2xx status.
            httpx.TransportError: If the backend cannot be reached.
            ValueError: If a response body is not valid JSON.
        """
        orders: list[Order] = []
        skipped = 0
        self.skipped_identities = []
        page = 1
        while True:
            resp = await self.do_request(
                method="GET",
                endpoint=self._get_endpoint_orders(page=page, page_size=self.page_size),
                raise_on_error=True,
            )
            orders_page = self._parse_endpoint_orders(resp.json(), page=page)
            for raw in orders_page.orders:
                order = self._parse_order(raw)
                if order is None:
                    skipped += 1
                    continue
                orders.append(order)
            self.logging.info("Fetched orders page %d from %s, total orders so far: %d%s", page, self._get_engine_name(), len(orders), f" of {orders_page.total_count}" if orders_page.total_count is not None else "")
            if not orders_page.next_page:
                break
            page = orders_page.next_page
        if skipped:
            self.logging.warning("Skipped %d invalid orders from %s.", skipped, self._get_engine_name())
        return orders
