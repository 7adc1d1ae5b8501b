import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from screener.common.exceptions import InvalidArgumentError, NotFoundError
from screener.screening.models import ScreenerFilter
from screener.screening.presets import PRESETS, FilterPreset

logger = logging.getLogger(__name__)


def describe_validation_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


def parse_filter(definition: Union[ScreenerFilter, Dict[str, Any]]) -> ScreenerFilter:
    """Validate a filter definition, rejecting unknown fields and bad operator/value pairs."""
    if isinstance(definition, ScreenerFilter):
        return definition
    try:
        return ScreenerFilter.model_validate(definition)
    except ValidationError as e:
        raise InvalidArgumentError(describe_validation_error(e)) from e


class FilterRegistry:
    """Resolves filters by id: read-only presets plus ad-hoc registered filters."""

    def __init__(self, presets: Iterable[FilterPreset] = PRESETS) -> None:
        self.presets: Dict[str, FilterPreset] = {p.id: p for p in presets}
        self.filters: Dict[str, ScreenerFilter] = {}

    def register(self, definition: Union[ScreenerFilter, Dict[str, Any]]) -> ScreenerFilter:
        screener_filter = parse_filter(definition)
        if screener_filter.id in self.presets:
            raise InvalidArgumentError(f"filter id '{screener_filter.id}' is a read-only preset")

        replaced = screener_filter.id in self.filters
        self.filters[screener_filter.id] = screener_filter
        logger.info(
            "%s filter %s (%d conditions)",
            "Updated" if replaced else "Registered",
            screener_filter.id,
            len(screener_filter.conditions),
        )
        return screener_filter

    def get(self, filter_id: str) -> Optional[ScreenerFilter]:
        return self.presets.get(filter_id) or self.filters.get(filter_id)

    def resolve(self, filter_id: str) -> ScreenerFilter:
        screener_filter = self.get(filter_id)
        if screener_filter is None:
            raise NotFoundError(f"Filter not found: {filter_id}")
        return screener_filter

    def list_presets(self) -> List[FilterPreset]:
        return list(self.presets.values())
