from shared.clients.source.SourceClientInterface import OrdersPage, SourceClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class SourceClientOms(SourceClientInterface):
    """Client for a JSON order management API.

    The listing endpoint may answer with a plain list of orders (unpaginated) or
    with an object {"orders": [...], "page": n, "totalPages": m, "totalCount": k}.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._orders_path = self.get_config_val("ORDERS_PATH", default="/api/orders", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Oms"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="ORDERS_PATH", val_type="string", default="/api/orders"),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        else:
            return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return f"{self._orders_path}?page=1&pageSize=1"

    def _get_endpoint_orders(self, page: int = 1, page_size: int = 500) -> str:
        plain_url = self._orders_path
        separator = "?"
        if page:
            plain_url += f"{separator}page={page}"
            separator = "&"
        if page_size:
            plain_url += f"{separator}pageSize={page_size}"
        return plain_url

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def _parse_endpoint_orders(self, response: dict | list, page: int) -> OrdersPage:
        if isinstance(response, list):
            return OrdersPage(orders=response, next_page=None, total_count=len(response))
        if not isinstance(response, dict) or not isinstance(response.get("orders"), list):
            raise ValueError(f"Unexpected order listing format from {self._get_engine_name()}: expected a list or an object with 'orders'.")

        total_pages = response.get("totalPages")
        current = response.get("page", page)
        next_page = None
        if isinstance(total_pages, int) and isinstance(current, int) and current < total_pages and response["orders"]:
            next_page = current + 1
        return OrdersPage(
            orders=response["orders"],
            next_page=next_page,
            total_count=response.get("totalCount"),
        )
