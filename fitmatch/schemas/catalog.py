"""Read-only records consumed by the fit engine.

Wire payloads from the catalog use camelCase keys (``sleevesLength``, ``numericalSize``,
``inStock``); the models accept both that and snake_case.
"""
from enum import Enum
from typing import Dict, List, Optional, Union
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


CM_PER_INCH = 2.54

RawCell = Union[str, float, None]


class FitType(str, Enum):
    FITTED = "fitted"
    TIGHT = "tight"
    LOOSE = "loose"


class Unit(str, Enum):
    CM = "cm"
    INCH = "inch"


class _CatalogModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Measurement(_CatalogModel):
    value: float
    unit: Unit

    def to_unit(self, unit: Unit) -> float:
        if unit == self.unit:
            return self.value
        if unit == Unit.CM:
            return self.value * CM_PER_INCH
        return self.value / CM_PER_INCH


class UpperBody(_CatalogModel):
    bust: Optional[Measurement] = None
    chest: Optional[Measurement] = None
    band_size: Optional[Measurement] = None
    shoulder_width: Optional[Measurement] = None
    bicep: Optional[Measurement] = None
    sleeves_length: Optional[Measurement] = None
    torso_height: Optional[Measurement] = None


class LowerBody(_CatalogModel):
    waist: Optional[Measurement] = None
    hip: Optional[Measurement] = None
    inseam: Optional[Measurement] = None
    leg_length: Optional[Measurement] = None
    thigh_circumference: Optional[Measurement] = None


class BodyMeasurements(BaseModel):
    """User measurements relevant to chart matching, all in one unit."""

    unit: Unit
    bust: Optional[float] = None
    waist: Optional[float] = None
    hip: Optional[float] = None
    sleeves: Optional[float] = None

    def get(self, attribute: str) -> Optional[float]:
        return getattr(self, attribute, None)


class UserProfile(_CatalogModel):
    user_id: Optional[str] = None
    gender: str
    fit: FitType
    height: Optional[Measurement] = None
    upper_body: UpperBody = Field(default_factory=UpperBody)
    lower_body: LowerBody = Field(default_factory=LowerBody)

    def preferred_unit(self, default: Unit) -> Unit:
        if self.lower_body.waist is not None:
            return self.lower_body.waist.unit
        for m in self._fit_measurements().values():
            if m is not None:
                return m.unit
        return default

    def _fit_measurements(self) -> Dict[str, Optional[Measurement]]:
        return {
            "bust": self.upper_body.bust or self.upper_body.chest,
            "waist": self.lower_body.waist,
            "hip": self.lower_body.hip,
            "sleeves": self.upper_body.sleeves_length,
        }

    def body_measurements(self, default_unit: Unit = Unit.INCH) -> BodyMeasurements:
        unit = self.preferred_unit(default_unit)
        values = {k: m.to_unit(unit) for k, m in self._fit_measurements().items() if m is not None}
        return BodyMeasurements(unit=unit, **values)


class ChartMeasurements(_CatalogModel):
    bust: RawCell = None
    waist: RawCell = None
    hip: RawCell = None
    sleeves: RawCell = None

    @field_validator("bust", "waist", "hip", "sleeves", mode="before")
    @classmethod
    def _keep_ints_numeric(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return float(v)
        return v


class SizeChartEntry(_CatalogModel):
    name: str
    numerical_size: Optional[str] = None
    numerical_value: Optional[str] = None
    measurements: ChartMeasurements = Field(default_factory=ChartMeasurements)

    @field_validator("name", "numerical_size", "numerical_value", mode="before")
    @classmethod
    def _label_as_string(cls, v):
        if v is None or v == "":
            return None
        if isinstance(v, float) and v.is_integer():
            return str(int(v))
        return str(v)

    def labels(self) -> List[str]:
        return [label for label in (self.name, self.numerical_size, self.numerical_value) if label]


class ProductSize(_CatalogModel):
    size: str
    in_stock: bool = True


class ProductImage(_CatalogModel):
    primary: Optional[str] = None
    secondary: List[str] = Field(default_factory=list)


class Product(_CatalogModel):
    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    brand: str
    category: str
    gender: Optional[str] = None
    name: str = ""
    url: Optional[str] = None
    price: Optional[str] = None
    image: Optional[ProductImage] = None
    sizes: List[ProductSize] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_string(cls, v):
        return str(v)

    @field_validator("price", mode="before")
    @classmethod
    def _price_as_string(cls, v):
        return None if v is None else str(v)

    def stocked_sizes(self) -> List[ProductSize]:
        return [s for s in self.sizes if s.in_stock]
