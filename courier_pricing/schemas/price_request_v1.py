# courier_pricing/schemas/price_request_v1.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, constr, model_validator

from ..domain.models import Dimensions
from ..engine.context import BulkDiscount, Destination, PriceCalculationRequest
from ..errors import ValidationError


class DestinationV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    country_code: constr(strip_whitespace=True, to_upper=True, pattern=r"^[A-Za-z]{2}$")  # type: ignore
    postal_code: Optional[constr(strip_whitespace=True, max_length=16)] = None  # type: ignore


class DimensionsV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    length_cm: Decimal = Field(gt=0)
    width_cm: Decimal = Field(gt=0)
    height_cm: Decimal = Field(gt=0)


class PriceRequestV1(BaseModel):
    """
    Raw shipment payload. Either destination or zone_code.
    carrier_code is optional here; calculate() requires it, compare ignores it.
    """

    model_config = ConfigDict(extra="forbid")

    carrier_code: Optional[constr(strip_whitespace=True, min_length=1)] = None  # type: ignore
    destination: Optional[DestinationV1] = None
    zone_code: Optional[constr(strip_whitespace=True, min_length=1)] = None  # type: ignore
    weight_kg: Decimal = Field(gt=0)
    dimensions_cm: Optional[DimensionsV1] = None
    service_type: constr(strip_whitespace=True, to_lower=True, min_length=1) = "standard"  # type: ignore
    declared_value: Optional[Decimal] = Field(default=None, ge=0)
    additional_services: List[constr(strip_whitespace=True, min_length=1)] = Field(default_factory=list)  # type: ignore
    customer_id: Optional[str] = None
    customer_group: Optional[str] = None
    promo_code: Optional[constr(strip_whitespace=True, min_length=1)] = None  # type: ignore
    package_count: int = Field(default=1, ge=1)
    at: Optional[datetime] = None

    @model_validator(mode="after")
    def _destination_or_zone(self) -> "PriceRequestV1":
        if self.destination is None and self.zone_code is None:
            raise ValueError("either destination or zone_code is required")
        return self

    def to_request(self) -> PriceCalculationRequest:
        dims = self.dimensions_cm
        return PriceCalculationRequest(
            carrier_code=self.carrier_code,
            destination=None
            if self.destination is None
            else Destination(self.destination.country_code, self.destination.postal_code),
            zone_code=self.zone_code,
            weight_kg=self.weight_kg,
            dimensions_cm=None if dims is None else Dimensions(dims.length_cm, dims.width_cm, dims.height_cm),
            service_type=self.service_type,
            declared_value=self.declared_value,
            additional_service_codes=tuple(self.additional_services),
            customer_id=self.customer_id,
            customer_group=self.customer_group,
            promo_code=self.promo_code,
            package_count=self.package_count,
            at=self.at,
        )


class CompareRequestV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    shipment: PriceRequestV1
    include_carriers: Optional[List[str]] = None
    exclude_carriers: Optional[List[str]] = None


class BulkDiscountV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    threshold: int = Field(ge=1)
    percentage: Decimal = Field(ge=0, le=100)

    def to_bulk_discount(self) -> BulkDiscount:
        return BulkDiscount(threshold=self.threshold, percentage=self.percentage)


class BulkRequestV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    requests: List[PriceRequestV1] = Field(min_length=1)
    bulk_discount: Optional[BulkDiscountV1] = None


def _errors(e: PydanticValidationError) -> List[Dict[str, Any]]:
    return [{"loc": [str(p) for p in err["loc"]], "msg": err["msg"], "type": err["type"]} for err in e.errors()]


def _parse(model, payload: Dict[str, Any]):
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        errors = _errors(e)
        first = errors[0] if errors else {"loc": [], "msg": "invalid"}
        raise ValidationError(
            f"invalid {model.__name__}: {'.'.join(first['loc']) or '<root>'}: {first['msg']}",
            {"errors": errors},
        ) from e


def parse_price_request(payload: Dict[str, Any]) -> PriceCalculationRequest:
    return _parse(PriceRequestV1, payload).to_request()


def parse_compare_request(payload: Dict[str, Any]) -> CompareRequestV1:
    return _parse(CompareRequestV1, payload)


def parse_bulk_request(payload: Dict[str, Any]) -> BulkRequestV1:
    return _parse(BulkRequestV1, payload)
