"""Clinical case records for the anesthesia case library."""

from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class AgeUnit(str, Enum):
    DAYS = "days"
    MONTHS = "months"
    YEARS = "years"


class Urgency(str, Enum):
    ELECTIVE = "elective"
    URGENT = "urgent"
    EMERGENT = "emergent"


class Technique(str, Enum):
    GENERAL = "general"
    REGIONAL = "regional"
    MAC = "MAC"
    COMBINED = "combined"

    @classmethod
    def parse(cls, value: str) -> "Technique":
        """Case-insensitive lookup ("mac" -> MAC)."""
        lowered = value.strip().lower()
        for member in cls:
            if member.value.lower() == lowered:
                return member
        raise ValueError(f"Unknown anesthetic technique: {value!r}")


def format_number(value: Optional[float]) -> str:
    """Render 45.0 as "45" and 2.5 as "2.5"."""
    if value is None:
        return ""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


class _CaseModel(BaseModel):
    # Source records use camelCase keys; unknown keys are kept for text matching.
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class Patient(_CaseModel):
    age: float = Field(ge=0)
    age_unit: AgeUnit = AgeUnit.YEARS
    weight: Optional[float] = None          # kg
    height: Optional[float] = None          # cm
    sex: Optional[str] = None
    asa: int = Field(ge=1, le=6)            # ASA physical status
    comorbidities: Tuple[str, ...] = ()
    allergies: Tuple[str, ...] = ()
    medications: Tuple[str, ...] = ()

    @field_validator("age_unit", mode="before")
    @classmethod
    def _normalize_age_unit(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @property
    def age_in_years(self) -> float:
        if self.age_unit is AgeUnit.DAYS:
            return self.age / 365
        if self.age_unit is AgeUnit.MONTHS:
            return self.age / 12
        return self.age


class Procedure(_CaseModel):
    name: str = Field(min_length=1)
    specialty: str = ""
    urgency: Optional[Urgency] = None
    duration: Optional[float] = None        # minutes
    blood_loss: Optional[float] = None      # ml


class InductionDrug(_CaseModel):
    drug: str
    dose: Optional[float] = None
    unit: str = ""


class RegionalDetails(_CaseModel):
    block_type: str = ""
    local_anesthetic: str = ""
    volume: Optional[float] = None
    additives: Tuple[str, ...] = ()


class Anesthetic(_CaseModel):
    technique: Technique
    airway: str = ""
    induction: Tuple[InductionDrug, ...] = ()
    maintenance: Tuple[str, ...] = ()
    regional_details: Optional[RegionalDetails] = None
    emergence: str = ""
    extubation: Optional[str] = None

    @field_validator("technique", mode="before")
    @classmethod
    def _normalize_technique(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return Technique.parse(value)
            except ValueError:
                return value
        return value


class MedicationGiven(_CaseModel):
    name: str
    dose: Optional[float] = None
    unit: str = ""
    timing: str = ""
    indication: str = ""


class Complication(_CaseModel):
    event: str
    timing: str = ""
    management: str = ""
    outcome: str = ""

    @model_validator(mode="before")
    @classmethod
    def _from_plain_event(cls, data: Any) -> Any:
        # Older records list complications as bare strings.
        if isinstance(data, str):
            return {"event": data}
        return data


class Outcome(_CaseModel):
    critical_incident: bool = False
    icu_days: Optional[float] = None
    hospital_days: Optional[float] = None
    quality_score: Optional[float] = Field(default=None, ge=0, le=10)
    pacu_duration: Optional[float] = None
    admission: Optional[str] = None


class Case(_CaseModel):
    """
    One anonymized anesthesia encounter.

    Instances are immutable; the corpus hands the same objects to the
    keyword scorer and the indexer.
    """
    id: Optional[str] = None
    case_date: Optional[str] = None
    patient: Patient
    procedure: Procedure
    anesthetic: Anesthetic
    medications: Tuple[MedicationGiven, ...] = ()
    complications: Tuple[Complication, ...] = ()
    clinical_pearls: Tuple[str, ...] = ()
    key_takeaways: Tuple[str, ...] = ()
    outcome: Outcome = Field(default_factory=Outcome)

    @model_validator(mode="before")
    @classmethod
    def _derive_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("id"):
            case_date = data.get("caseDate") or data.get("case_date")
            procedure = data.get("procedure")
            name = procedure.get("name") if isinstance(procedure, dict) else None
            if case_date and name:
                data = {**data, "id": f"{case_date}_{name}"}
        return data

    @property
    def title(self) -> str:
        return self.procedure.name

    @property
    def age_in_years(self) -> float:
        return self.patient.age_in_years

    @property
    def age_display(self) -> str:
        return f"{format_number(self.patient.age)} {self.patient.age_unit.value}"

    @property
    def age_short(self) -> str:
        return f"{format_number(self.patient.age)}{self.patient.age_unit.value[0]}"

    @property
    def has_complications(self) -> bool:
        return len(self.complications) > 0

    @property
    def serialized_text(self) -> str:
        """Lower-cased JSON of the whole record, extra keys included."""
        return self.model_dump_json(by_alias=True).lower()

    @property
    def medication_names(self) -> List[str]:
        names = [d.drug for d in self.anesthetic.induction if d.drug]
        names.extend(m for m in self.anesthetic.maintenance if m)
        return names

    @property
    def searchable_text(self) -> str:
        """Labelled multi-line rendering of the case, used for embeddings."""
        p = self.patient
        parts = [
            f"Patient: {self.age_display} {p.sex or ''}".rstrip(),
            f"ASA {p.asa}",
        ]
        if p.comorbidities:
            parts.append(f"Comorbidities: {', '.join(p.comorbidities)}")

        parts.append(f"Procedure: {self.procedure.name}")
        if self.procedure.specialty:
            parts.append(f"Specialty: {self.procedure.specialty}")
        if self.procedure.urgency:
            parts.append(f"Urgency: {self.procedure.urgency.value}")

        parts.append(f"Anesthetic technique: {self.anesthetic.technique.value}")
        if self.anesthetic.airway:
            parts.append(f"Airway: {self.anesthetic.airway}")
        if self.anesthetic.induction:
            drugs = ", ".join(
                f"{d.drug} {format_number(d.dose)}{d.unit}".strip() for d in self.anesthetic.induction
            )
            parts.append(f"Induction: {drugs}")
        details = self.anesthetic.regional_details
        if details and details.block_type:
            parts.append(f"Regional block: {details.block_type}")

        if self.medications:
            meds = ", ".join(
                f"{m.name} {format_number(m.dose)}{m.unit}".strip() for m in self.medications
            )
            parts.append(f"Medications: {meds}")

        for comp in self.complications:
            parts.append(f"Complication: {comp.event}")
            if comp.management:
                parts.append(f"Management: {comp.management}")
            if comp.outcome:
                parts.append(f"Outcome: {comp.outcome}")

        if self.clinical_pearls:
            parts.append(f"Clinical Pearls: {'. '.join(self.clinical_pearls)}")
        if self.key_takeaways:
            parts.append(f"Key Takeaways: {'. '.join(self.key_takeaways)}")

        return "\n".join(parts)

    @property
    def keywords(self) -> List[str]:
        """Search keywords: procedure, technique, drugs, comorbidities, events, age group."""
        keywords = [self.procedure.name.lower()]
        if self.procedure.specialty:
            keywords.append(self.procedure.specialty.lower())
        keywords.append(self.anesthetic.technique.value.lower())
        details = self.anesthetic.regional_details
        if details and details.block_type:
            keywords.append(details.block_type.lower())
        keywords.extend(d.drug.lower() for d in self.anesthetic.induction)
        keywords.extend(c.lower() for c in self.patient.comorbidities)
        keywords.extend(c.event.lower() for c in self.complications)

        age = self.age_in_years
        if age < 1:
            keywords.extend(["infant", "neonate"])
        elif age < 3:
            keywords.append("toddler")
        elif age < 12:
            keywords.extend(["pediatric", "child"])
        elif age < 18:
            keywords.append("adolescent")
        elif age > 65:
            keywords.extend(["elderly", "geriatric"])

        return list(dict.fromkeys(keywords))
