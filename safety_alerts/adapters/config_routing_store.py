"""Routing table backed by the ``routes`` section of the YAML config."""

from telegram.helpers import escape_markdown

from safety_alerts.config.logging_config import get_logger
from safety_alerts.domain.models import Destination, RouteConfig

logger = get_logger(__name__)


def build_mention(route: RouteConfig) -> str | None:
    """Driver mention text for a route.

    Precedence: explicit template, then ``@username``, then a Markdown
    user link built from the numeric id.
    """
    if route.mention_template and route.mention_template.strip():
        return route.mention_template.strip()
    if route.driver_username and route.driver_username.strip():
        username = route.driver_username.strip().lstrip("@")
        return f"@{escape_markdown(username, version=1)}"
    if route.driver_user_id:
        return f"[Driver](tg://user?id={route.driver_user_id})"
    return None


def _to_destination(route: RouteConfig) -> Destination:
    return Destination(
        chat_id=route.chat_id,
        name=route.chat_name,
        mention=build_mention(route),
        language=route.language,
    )


class ConfigRoutingStore:
    """Resolve vehicle display names to destination chats."""

    def __init__(self, routes: list[RouteConfig]) -> None:
        self._by_vehicle: dict[str, RouteConfig] = {}
        self._by_chat: dict[int, RouteConfig] = {}
        for route in routes:
            if not route.enabled:
                continue
            self._by_chat.setdefault(route.chat_id, route)
            for vehicle_name in route.vehicles:
                key = vehicle_name.strip().lower()
                if key in self._by_vehicle:
                    logger.warning(
                        "route_duplicate_vehicle",
                        vehicle_name=vehicle_name,
                        kept_chat_id=self._by_vehicle[key].chat_id,
                        ignored_chat_id=route.chat_id,
                    )
                    continue
                self._by_vehicle[key] = route
        logger.info(
            "routing_table_loaded",
            chats=len(self._by_chat),
            vehicles=len(self._by_vehicle),
        )

    def find_destination_by_vehicle_name(self, vehicle_name: str) -> Destination | None:
        route = self._by_vehicle.get(vehicle_name.strip().lower())
        return _to_destination(route) if route else None

    def find_destination_by_id(self, chat_id: int) -> Destination | None:
        route = self._by_chat.get(chat_id)
        return _to_destination(route) if route else None

    def list_destinations(self) -> list[Destination]:
        return [_to_destination(route) for route in self._by_chat.values()]
