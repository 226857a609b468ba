import logging
from typing import Any, Generic, List, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.engine.row import Row

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CustomBaseModel(BaseModel):
    """Custom base model for all response schemas.
    - fields are snake_case in python and camelCase on the wire
    - pre-process the data before init
    - set the default value if the value is invalid
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def __init__(self, **data: Any) -> None:
        for attr, value in data.items():
            attr_type = None
            me = self.__class__
            while attr_type is None and me != CustomBaseModel:
                try:
                    attr_type = me.model_fields[attr].annotation
                except Exception:
                    if me.__base__ is not None:
                        me = me.__base__
                    else:
                        break
                    continue

            # process simple type
            if attr_type in (int, float, str, bool) and value is not None:
                try:  # try to convert the value to the type of the attribute
                    data[attr] = attr_type(value)
                except Exception:
                    logger.warning("Invalid value for key %s on %s, using default", attr, self.__class__.__name__)
                    data[attr] = me.model_fields[attr].default
        super().__init__(**data)

    @classmethod
    def from_record(cls, record: Row[Any] | dict[str, Any]):
        if isinstance(record, Row):
            return cls(**record._asdict())
        elif isinstance(record, dict):
            return cls(**record)
        else:
            raise ValueError(f"Invalid record type: {type(record)}")


class DataResponse(CustomBaseModel, Generic[T]):
    """``{"success": true, "data": ...}`` envelope"""

    success: bool = True
    data: T


class PageResponse(CustomBaseModel, Generic[T]):
    """Envelope for paginated lists"""

    success: bool = True
    data: List[T] = []
    total: int = 0
    page: int = 1
    limit: int = 10
    total_pages: int = 0

    @classmethod
    def from_page(cls, page, convert) -> "PageResponse":
        return cls(
            data=[convert(item) for item in page.items],
            total=page.total,
            page=page.page,
            limit=page.limit,
            total_pages=page.total_pages,
        )


class Message(CustomBaseModel):
    success: bool = True
    message: str = ""
