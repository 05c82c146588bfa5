# marketplace/models/base.py
import uuid

from sqlalchemy import Enum as SAEnum


def generate_id() -> str:
    """Непрозрачные идентификаторы сущностей."""
    return str(uuid.uuid4())


def status_enum(enum_cls, name: str) -> SAEnum:
    """
    Храним значения перечислений ('cancelled:no_payment'), а не имена членов,
    в обычной строковой колонке - без нативного типа ENUM в PostgreSQL.
    """
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )
