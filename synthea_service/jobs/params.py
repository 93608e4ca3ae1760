"""Generation request envelope and its resolution into job parameters.

``GenerationRequest`` is the lenient wire shape accepted by the submission
endpoint. ``resolve_parameters`` applies defaults, prunes invalid entries and
returns a frozen ``GenerationParameters`` plus the warnings it recorded along
the way. Only out-of-range numbers reject a request outright.
"""

from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from synthea_service.jobs.errors import ParameterValidationError


class OutputFormat(str, Enum):
    FHIR = "fhir"
    CCDA = "ccda"
    CSV = "csv"


class KeepLogic(str, Enum):
    AND = "And"
    OR = "Or"


DEFAULT_OUTPUT_FORMAT = OutputFormat.FHIR
DEFAULT_KEEP_LOGIC = KeepLogic.AND


class GenerationRequest(BaseModel):
    """Raw submission payload (camelCase JSON, unknown keys ignored)."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    population: Optional[int] = None
    state: Optional[str] = None
    city: Optional[str] = None
    gender: Optional[str] = None
    age_min: Optional[int] = Field(default=None, alias="ageMin")
    age_max: Optional[int] = Field(default=None, alias="ageMax")
    seed: Optional[int] = None
    clinician_seed: Optional[int] = Field(default=None, alias="clinicianSeed")
    reference_date: Optional[str] = Field(default=None, alias="referenceDate")
    # Any type: an unusable format or logic is a warning, not a rejected request
    output_format: Optional[Any] = Field(default=None, alias="outputFormat")

    # Entries stay untyped so one malformed criterion does not reject the request
    keep_active_conditions: List[Any] = Field(default_factory=list, alias="keepActiveConditions")
    keep_active_allergies: List[Any] = Field(default_factory=list, alias="keepActiveAllergies")
    keep_active_procedures: List[Any] = Field(default_factory=list, alias="keepActiveProcedures")
    keep_active_medications: List[Any] = Field(default_factory=list, alias="keepActiveMedications")
    keep_logic: Optional[Any] = Field(default=None, alias="keepLogic")

    custom_modules: List[Any] = Field(default_factory=list, alias="customModules")


class KeepCriterion(BaseModel):
    """A clinical code a kept patient must carry."""
    model_config = ConfigDict(frozen=True)

    system: str
    code: str
    display: str = ""


class KeepCriteria(BaseModel):
    model_config = ConfigDict(frozen=True)

    conditions: Tuple[KeepCriterion, ...] = ()
    allergies: Tuple[KeepCriterion, ...] = ()
    procedures: Tuple[KeepCriterion, ...] = ()
    medications: Tuple[KeepCriterion, ...] = ()

    def is_empty(self) -> bool:
        return not (self.conditions or self.allergies or self.procedures or self.medications)


class GenerationParameters(BaseModel):
    """Fully resolved parameters of one generation job. Immutable."""
    model_config = ConfigDict(frozen=True)

    population: int = 1
    state: Optional[str] = None
    city: Optional[str] = None
    gender: Optional[str] = None
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    seed: Optional[int] = None
    clinician_seed: Optional[int] = None
    reference_date: Optional[str] = None
    output_format: OutputFormat = DEFAULT_OUTPUT_FORMAT
    keep_criteria: KeepCriteria = KeepCriteria()
    keep_logic: KeepLogic = DEFAULT_KEEP_LOGIC
    custom_modules: Tuple[str, ...] = ()

    def summary(self) -> str:
        """Short human-readable description, e.g. ``5 patients, Massachusetts, ages 10-20``."""
        parts = [f"{self.population} patient{'s' if self.population != 1 else ''}"]
        if self.state:
            parts.append(f"{self.city}, {self.state}" if self.city else self.state)
        if self.age_min is not None or self.age_max is not None:
            low = "" if self.age_min is None else self.age_min
            high = "" if self.age_max is None else self.age_max
            parts.append(f"ages {low}-{high}")
        if self.gender:
            parts.append(self.gender)
        return ", ".join(parts)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_output_format(value: Any, warnings: List[str]) -> OutputFormat:
    """Map a requested format to a supported one, defaulting to FHIR."""
    if value is not None and not isinstance(value, str):
        warnings.append(
            f"Invalid outputFormat '{value}' requested. Defaulting to '{DEFAULT_OUTPUT_FORMAT.value}'."
        )
        return DEFAULT_OUTPUT_FORMAT
    cleaned = _clean(value)
    if cleaned is None:
        return DEFAULT_OUTPUT_FORMAT
    try:
        return OutputFormat(cleaned.lower())
    except ValueError:
        warnings.append(
            f"Invalid outputFormat '{value}' requested. Defaulting to '{DEFAULT_OUTPUT_FORMAT.value}'."
        )
        return DEFAULT_OUTPUT_FORMAT


def parse_keep_logic(value: Any, warnings: List[str]) -> KeepLogic:
    """Case-insensitive AND/OR; anything else falls back to AND."""
    if value is not None and not isinstance(value, str):
        warnings.append(f"Invalid value for keepLogic '{value}'. Defaulting to 'AND'.")
        return KeepLogic.AND
    cleaned = _clean(value)
    if cleaned is None:
        return DEFAULT_KEEP_LOGIC
    upper = cleaned.upper()
    if upper == "OR":
        return KeepLogic.OR
    if upper != "AND":
        warnings.append(f"Invalid value for keepLogic '{value}'. Defaulting to 'AND'.")
    return KeepLogic.AND


def parse_keep_criteria(entries: List[Any], label: str, warnings: List[str]) -> Tuple[KeepCriterion, ...]:
    """Keep the entries that carry both a system and a code."""
    kept = []
    for index, entry in enumerate(entries or []):
        if not isinstance(entry, dict):
            warnings.append(f"Skipping invalid {label} keep criterion #{index}: not an object")
            continue
        system = entry.get("system")
        code = entry.get("code")
        system = str(system).strip() if system is not None else ""
        code = str(code).strip() if code is not None else ""
        if not system or not code:
            warnings.append(
                f"Skipping invalid {label} keep criterion #{index}: system and code are required"
            )
            continue
        display = entry.get("display")
        kept.append(KeepCriterion(
            system=system,
            code=code,
            display=str(display).strip() if display is not None else "",
        ))
    return tuple(kept)


def resolve_parameters(request: GenerationRequest) -> Tuple[GenerationParameters, List[str]]:
    """Apply defaults and prune invalid entries.

    Raises:
        ParameterValidationError: population or age bounds are out of range.
    """
    warnings: List[str] = []

    population = request.population
    if population is not None and population < 0:
        raise ParameterValidationError("population must be a positive integer")
    if not population:
        population = 1

    for name, age in (("ageMin", request.age_min), ("ageMax", request.age_max)):
        if age is not None and age < 0:
            raise ParameterValidationError(f"{name} must not be negative")
    if request.age_min is not None and request.age_max is not None and request.age_min > request.age_max:
        raise ParameterValidationError("ageMin must not be greater than ageMax")

    state = _clean(request.state)
    city = _clean(request.city)
    if city and not state:
        warnings.append(f"city '{city}' ignored because no state was given")
        city = None

    criteria = KeepCriteria(
        conditions=parse_keep_criteria(request.keep_active_conditions, "Active Condition", warnings),
        allergies=parse_keep_criteria(request.keep_active_allergies, "Active Allergy", warnings),
        procedures=parse_keep_criteria(request.keep_active_procedures, "Procedure", warnings),
        medications=parse_keep_criteria(request.keep_active_medications, "Active Medication", warnings),
    )

    custom_modules = tuple(
        str(module).strip() for module in request.custom_modules
        if module is not None and str(module).strip()
    )

    params = GenerationParameters(
        population=population,
        state=state,
        city=city,
        gender=_clean(request.gender),
        age_min=request.age_min,
        age_max=request.age_max,
        seed=request.seed,
        clinician_seed=request.clinician_seed,
        reference_date=_clean(request.reference_date),
        output_format=parse_output_format(request.output_format, warnings),
        keep_criteria=criteria,
        keep_logic=parse_keep_logic(request.keep_logic, warnings),
        custom_modules=custom_modules,
    )
    return params, warnings
