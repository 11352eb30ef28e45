from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from servicehub.models import Service, parse_uuid

DEFAULT_CATEGORIES = (
    "Бытовые услуги",
    "Дизайн",
    "Ремонт",
    "Обучение",
    "Консультирование",
    "Программирование",
)

SEARCH_HISTORY_LIMIT = 50

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


class Catalog:
    """Service listings plus the category and search-history lists.

    The catalog knows nothing about users or sessions. Every query returns
    copies so callers cannot mutate stored records.
    """

    def __init__(
        self,
        services: Optional[List[Service]] = None,
        categories: Optional[List[str]] = None,
        search_history: Optional[List[str]] = None,
        search_history_limit: int = SEARCH_HISTORY_LIMIT,
    ) -> None:
        self._services: List[Service] = list(services or [])
        self._categories: List[str] = list(DEFAULT_CATEGORIES if categories is None else categories)
        self._search_history: List[str] = list(search_history or [])
        self.search_history_limit = max(1, search_history_limit)

    def __len__(self) -> int:
        return len(self._services)

    def _index_of(self, service_id: Any) -> int:
        target = parse_uuid(service_id)
        if target is None:
            return -1
        for idx, service in enumerate(self._services):
            if service.id == target:
                return idx
        return -1

    def _ensure_category(self, category: str) -> None:
        cleaned = category.strip()
        if cleaned and cleaned not in self._categories:
            self._categories.append(cleaned)

    def _select(self, predicate: Callable[[Service], bool]) -> List[Service]:
        return [service.model_copy(deep=True) for service in self._services if predicate(service)]

    def add(self, service: Service) -> None:
        stored = service.model_copy(deep=True)
        idx = self._index_of(stored.id)
        if idx >= 0:
            self._services[idx] = stored
        else:
            self._services.append(stored)
        self._ensure_category(stored.category)

    def remove(self, service_id: Any) -> bool:
        idx = self._index_of(service_id)
        if idx < 0:
            return False
        del self._services[idx]
        return True

    def update(self, service: Service) -> bool:
        idx = self._index_of(service.id)
        if idx < 0:
            return False
        self._services[idx] = service.model_copy(deep=True)
        self._ensure_category(service.category)
        return True

    def get(self, service_id: Any) -> Optional[Service]:
        idx = self._index_of(service_id)
        return self._services[idx].model_copy(deep=True) if idx >= 0 else None

    def contains(self, service_id: Any) -> bool:
        return self._index_of(service_id) >= 0

    def all(self) -> List[Service]:
        return self._select(lambda service: True)

    def search_by_name(self, text: str) -> List[Service]:
        query = text.strip().casefold()
        if not query:
            return []
        return self._select(lambda service: query in service.title.casefold())

    def search_by_description(self, text: str) -> List[Service]:
        query = text.strip().casefold()
        if not query:
            return []
        return self._select(lambda service: query in service.description.casefold())

    def filter_by_category(self, category: str) -> List[Service]:
        wanted = category.strip()
        if not wanted:
            return []
        return self._select(lambda service: service.category.strip() == wanted)

    def filter_by_price(self, min_price: float, max_price: float) -> List[Service]:
        if min_price > max_price:
            return []
        return self._select(lambda service: min_price <= service.price <= max_price)

    def filter_by_rating(self, min_rating: float) -> List[Service]:
        return self._select(lambda service: service.rating >= min_rating)

    def active(self) -> List[Service]:
        return self._select(lambda service: service.active)

    def popular(self, count: int = 10) -> List[Service]:
        # sorted() is stable, so equal ratings keep insertion order.
        ranked = sorted(self._services, key=lambda service: service.rating, reverse=True)
        return [service.model_copy(deep=True) for service in ranked[: max(count, 0)]]

    def newest(self, count: int = 10) -> List[Service]:
        ranked = sorted(
            self._services,
            key=lambda service: service.created_at or _OLDEST,
            reverse=True,
        )
        return [service.model_copy(deep=True) for service in ranked[: max(count, 0)]]

    @property
    def categories(self) -> List[str]:
        return list(self._categories)

    @property
    def search_history(self) -> List[str]:
        return list(self._search_history)

    def add_search_history(self, query: str) -> bool:
        cleaned = query.strip()
        if not cleaned:
            return False
        history = [item for item in self._search_history if item != cleaned]
        history.insert(0, cleaned)
        self._search_history = history[: self.search_history_limit]
        return True

    def info(self) -> str:
        return f"Catalog: {len(self._services)} services in {len(self._categories)} categories"

    def full_info(self) -> str:
        return (
            "=== CATALOG ===\n"
            f"Services: {len(self._services)}\n"
            f"Categories: {len(self._categories)}\n"
            f"Search history: {len(self._search_history)}"
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "services": [service.to_json() for service in self._services],
            "categories": list(self._categories),
            "searchHistory": list(self._search_history),
        }

    @classmethod
    def from_json(
        cls,
        data: Mapping[str, Any],
        search_history_limit: int = SEARCH_HISTORY_LIMIT,
    ) -> "Catalog":
        """Rebuild a catalog; missing lists load as empty lists."""
        services = [
            Service.from_json(item)
            for item in _as_list(data.get("services"))
            if isinstance(item, Mapping)
        ]
        categories = [item for item in _as_list(data.get("categories")) if isinstance(item, str)]
        history = [item for item in _as_list(data.get("searchHistory")) if isinstance(item, str)]
        return cls(
            services=services,
            categories=categories,
            search_history=history[: max(1, search_history_limit)],
            search_history_limit=search_history_limit,
        )


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, list) else []
