from __future__ import annotations

import html
import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Tuple

import bleach

from warranty_admin.models import AssociationType, PriceType

FieldErrors = Dict[str, str]

# Form keys as posted by the admin UI, with the snake_case spelling accepted too.
_FIELD_ALIASES = {
    "name": ("name",),
    "duration_months": ("durationMonths", "duration_months"),
    "price": ("price", "priceValue", "price_value"),
    "price_type": ("priceType", "price_type"),
    "description": ("description",),
    "association_type": ("associationType", "association_type"),
    "associated_product_ids": ("associatedProductIds", "associated_product_ids"),
    "associated_collection_ids": ("associatedCollectionIds", "associated_collection_ids"),
}

NAME_MAX_LENGTH = 255
# 100 years; keeps the value well inside a 32-bit INTEGER column.
MAX_DURATION_MONTHS = 1200
# Applies to both price types, so cents stay far below 64-bit range.
MAX_PRICE = Decimal("1000000")


@dataclass(frozen=True)
class RawDefinitionInput:
    """Untrusted definition payload, parsed once at the HTTP/CLI edge."""

    name: Any = None
    duration_months: Any = None
    price: Any = None
    price_type: Any = None
    description: Any = None
    association_type: Any = None
    associated_product_ids: Any = None
    associated_collection_ids: Any = None

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "RawDefinitionInput":
        data = data or {}
        values: Dict[str, Any] = {}
        for attr, keys in _FIELD_ALIASES.items():
            for key in keys:
                if key in data:
                    values[attr] = data.get(key)
                    break
        return cls(**values)


@dataclass(frozen=True)
class ValidatedDefinitionInput:
    name: str
    duration_months: int
    price: Decimal
    price_type: PriceType
    association_type: AssociationType
    description: Optional[str] = None
    associated_product_ids: Tuple[str, ...] = field(default_factory=tuple)
    associated_collection_ids: Tuple[str, ...] = field(default_factory=tuple)


def validate_definition(raw: RawDefinitionInput) -> Tuple[Optional[ValidatedDefinitionInput], FieldErrors]:
    """
    Validate every field of ``raw`` and collect all problems in one pass.

    Returns ``(validated, {})`` on success or ``(None, errors)`` where
    ``errors`` maps each offending field to a message.
    """
    errors: FieldErrors = {}

    name = _clean_text(raw.name, "name", errors, required=True)
    if name is not None and len(name) > NAME_MAX_LENGTH:
        errors["name"] = f"Name must be at most {NAME_MAX_LENGTH} characters."
    description = _clean_text(raw.description, "description", errors, required=False)
    duration_months = _parse_duration(raw.duration_months, errors)
    price_type = _parse_enum(raw.price_type, PriceType, "priceType", "Price type", errors)
    price = _parse_price(raw.price, errors)

    if _is_blank(raw.association_type):
        association_type: Optional[AssociationType] = AssociationType.ALL_PRODUCTS
    else:
        association_type = _parse_enum(
            raw.association_type, AssociationType, "associationType", "Association type", errors
        )

    product_ids: Tuple[str, ...] = ()
    collection_ids: Tuple[str, ...] = ()
    if association_type == AssociationType.SPECIFIC_PRODUCTS:
        product_ids = _parse_id_list(raw.associated_product_ids, "associatedProductIds", "product", errors)
    elif association_type == AssociationType.SPECIFIC_COLLECTIONS:
        collection_ids = _parse_id_list(raw.associated_collection_ids, "associatedCollectionIds", "collection", errors)
    # Any other association type drops whatever lists were submitted.

    if errors:
        return None, errors

    return (
        ValidatedDefinitionInput(
            name=name,
            duration_months=duration_months,
            price=price,
            price_type=price_type,
            association_type=association_type,
            description=description,
            associated_product_ids=product_ids,
            associated_collection_ids=collection_ids,
        ),
        {},
    )


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _clean_text(value: Any, field_name: str, errors: FieldErrors, required: bool) -> Optional[str]:
    if _is_blank(value):
        if required:
            errors[field_name] = f"{field_name.capitalize()} is required."
        return None
    if not isinstance(value, str):
        errors[field_name] = f"{field_name.capitalize()} must be text."
        return None
    text = value.strip()
    if "<" in text and _contains_markup(text):
        errors[field_name] = "HTML content is not allowed."
        return None
    return text


def _contains_markup(text: str) -> bool:
    # bleach escapes a bare "<" without it being a tag, so compare unescaped text.
    cleaned = bleach.clean(text, tags=[], strip=True)
    return html.unescape(cleaned) != html.unescape(text)


def _parse_duration(value: Any, errors: FieldErrors) -> Optional[int]:
    if _is_blank(value):
        errors["durationMonths"] = "Duration is required."
        return None
    if isinstance(value, bool):
        errors["durationMonths"] = "Duration must be a whole number of months."
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        amount = None
    if amount is None or not amount.is_finite() or amount != amount.to_integral_value():
        errors["durationMonths"] = "Duration must be a whole number of months."
        return None
    if amount <= 0:
        errors["durationMonths"] = "Duration must be a positive number."
        return None
    if amount > MAX_DURATION_MONTHS:
        errors["durationMonths"] = f"Duration must be at most {MAX_DURATION_MONTHS} months."
        return None
    return int(amount)


def _parse_price(value: Any, errors: FieldErrors) -> Optional[Decimal]:
    if _is_blank(value):
        errors["price"] = "Price is required."
        return None
    if isinstance(value, bool):
        errors["price"] = "Price must be a number."
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        errors["price"] = "Price must be a number."
        return None
    if not amount.is_finite():
        errors["price"] = "Price must be a number."
        return None
    if amount < 0:
        errors["price"] = "Price must be a non-negative number."
        return None
    if amount > MAX_PRICE:
        errors["price"] = f"Price must be at most {MAX_PRICE}."
        return None
    return amount


def _parse_enum(value: Any, enum_cls, field_name: str, label: str, errors: FieldErrors):
    if _is_blank(value):
        errors[field_name] = f"{label} is required."
        return None
    try:
        return enum_cls(str(value).strip())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        errors[field_name] = f"Invalid {label.lower()}. Expected one of: {allowed}."
        return None


def _parse_id_list(value: Any, field_name: str, noun: str, errors: FieldErrors) -> Tuple[str, ...]:
    if isinstance(value, str):
        text = value.strip()
        if not text:
            value = []
        else:
            try:
                value = json.loads(text)
            except ValueError:
                errors[field_name] = f"Selected {noun}s must be a JSON list of ids."
                return ()
    if value is None:
        value = []
    if not isinstance(value, (list, tuple)):
        errors[field_name] = f"Selected {noun}s must be a list of ids."
        return ()

    cleaned = []
    for candidate in value:
        if not isinstance(candidate, str) or not candidate.strip():
            errors[field_name] = f"Every selected {noun} id must be a non-empty string."
            return ()
        cleaned.append(candidate.strip())

    if not cleaned:
        errors[field_name] = f"Select at least one {noun}."
        return ()
    return tuple(cleaned)


__all__ = [
    "FieldErrors",
    "RawDefinitionInput",
    "ValidatedDefinitionInput",
    "validate_definition",
]
