from typing import List, Dict, Any, Optional, Union, Type, TypeVar, Annotated
from datetime import datetime, timezone
import math

from bson import ObjectId
from beanie import Document
from pydantic import AfterValidator

from .errors import NotFoundError

D = TypeVar("D", bound=Document)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (MongoDB hands back naive UTC values)

    Args:
        value: Datetime that may or may not carry tzinfo

    Returns:
        An aware datetime in UTC
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Datetime field type that always comes back timezone-aware
UTCDateTime = Annotated[datetime, AfterValidator(ensure_utc)]


def round_half_up(value: float, digits: int = 0) -> float:
    """Round the way scores are displayed (0.5 goes up, unlike round())"""
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


async def get_or_raise(model: Type[D], id: str, detail: str = "Item not found") -> D:
    """Get a document by ID or raise NotFoundError

    Args:
        model: The Beanie document model to query
        id: The ID of the document to fetch
        detail: Custom error message

    Returns:
        The found document

    Raises:
        NotFoundError: if the ID is malformed or no document matches
    """
    if not id or not ObjectId.is_valid(str(id)):
        raise NotFoundError(detail)

    item = await model.get(ObjectId(str(id)))
    if not item:
        raise NotFoundError(detail)
    return item


def format_response(
    message: str,
    data: Optional[Union[List[Any], Dict[str, Any]]] = None,
    pagination: Optional[Dict[str, Any]] = None,
    **kwargs
) -> Dict[str, Any]:
    """Format a standardized API response

    Args:
        message: Response message
        data: Optional data to include
        pagination: Optional pagination information
        **kwargs: Additional fields to include in response

    Returns:
        Formatted response dictionary
    """
    response = {"message": message}

    if data is not None:
        # Lists go under "items", single objects under "data"
        if isinstance(data, list):
            response["items"] = data
        else:
            response["data"] = data

    if pagination:
        response["pagination"] = pagination

    response.update(kwargs)

    return response


def add_filter_if_not_none(filters: Dict, field: str, value: Any) -> Dict:
    """Add a filter condition if the value is not None

    Args:
        filters: Existing filter dictionary
        field: Field name to filter on
        value: Value to filter by (only added if not None)

    Returns:
        Updated filter dictionary
    """
    if value is not None:
        filters[field] = value
    return filters


def dedupe_preserving_order(values: List[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result
