"""Tests for case records and the case corpus."""

import json

import pandas as pd
import pydantic
import pytest

from anesthesia_rag import config
from anesthesia_rag.data.corpus import CaseCorpus, case_metadata, similarity
from anesthesia_rag.errors import ValidationError
from anesthesia_rag.models.case import AgeUnit, Case, Technique, format_number

from conftest import make_record


class TestCaseModel:
    def test_camel_case_aliases(self, osa_record):
        case = Case.model_validate(osa_record)
        assert case.patient.age_unit is AgeUnit.YEARS
        assert case.outcome.critical_incident is True
        assert case.clinical_pearls == ("Monitor OSA patients after neuraxial opioids",)

    def test_snake_case_names_accepted(self):
        case = Case(
            patient={"age": 3, "age_unit": "Months", "asa": 1},
            procedure={"name": "Circumcision"},
            anesthetic={"technique": "general"},
        )
        assert case.patient.age_unit is AgeUnit.MONTHS
        assert case.age_in_years == pytest.approx(0.25)

    @pytest.mark.parametrize("value", ["mac", "MAC", "Mac"])
    def test_technique_case_insensitive(self, value):
        case = Case.model_validate(make_record(technique=value))
        assert case.anesthetic.technique is Technique.MAC

    def test_unknown_technique_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            Case.model_validate(make_record(technique="hypnosis"))

    def test_technique_parse(self):
        assert Technique.parse(" Regional ") is Technique.REGIONAL
        with pytest.raises(ValueError):
            Technique.parse("sedation")

    def test_bare_string_complication(self):
        case = Case.model_validate(make_record(complications=["Hypotension"]))
        assert case.complications[0].event == "Hypotension"
        assert case.complications[0].management == ""
        assert case.has_complications

    def test_frozen(self, osa_record):
        case = Case.model_validate(osa_record)
        with pytest.raises(pydantic.ValidationError):
            case.patient.asa = 1
        with pytest.raises(pydantic.ValidationError):
            case.id = "other"

    @pytest.mark.parametrize("asa", [0, 7])
    def test_asa_bounds(self, asa):
        with pytest.raises(pydantic.ValidationError):
            Case.model_validate(make_record(asa=asa))

    def test_id_derived_from_date_and_procedure(self, osa_record):
        assert Case.model_validate(osa_record).id == "2024-01-10_Knee arthroscopy"
        assert Case.model_validate({**osa_record, "id": "explicit"}).id == "explicit"
        assert Case.model_validate(make_record()).id is None

    def test_age_in_years(self):
        assert Case.model_validate(make_record(age=73, age_unit="days")).age_in_years == pytest.approx(0.2)
        assert Case.model_validate(make_record(age=18, age_unit="months")).age_in_years == pytest.approx(1.5)
        assert Case.model_validate(make_record(age=45)).age_in_years == 45

    def test_age_display(self):
        case = Case.model_validate(make_record(age=6, age_unit="months"))
        assert case.age_display == "6 months"
        assert case.age_short == "6m"
        assert format_number(2.5) == "2.5"
        assert format_number(None) == ""

    def test_keywords(self):
        infant = Case.model_validate(make_record(
            procedure="Pyloromyotomy",
            age=6,
            age_unit="months",
            induction=[{"drug": "Propofol"}],
            comorbidities=["Prematurity"],
        ))
        keywords = infant.keywords
        assert keywords[:3] == ["pyloromyotomy", "general surgery", "general"]
        assert "propofol" in keywords
        assert "prematurity" in keywords
        assert "infant" in keywords and "neonate" in keywords

        elderly = Case.model_validate(make_record(age=80, technique="regional", block_type="Spinal"))
        assert "spinal" in elderly.keywords
        assert "geriatric" in elderly.keywords

    def test_searchable_text(self, sample_records):
        case = Case.model_validate(sample_records[0])
        lines = case.searchable_text.split("\n")
        assert lines[0] == "Patient: 40 years F"
        assert "Induction: Propofol 150mg, Rocuronium 40mg" in lines
        assert "Clinical Pearls: Multimodal PONV prophylaxis" in lines

    def test_serialized_text_keeps_extra_keys(self):
        case = Case.model_validate(make_record(notes="Known Difficult Airway"))
        assert "known difficult airway" in case.serialized_text
        assert case.serialized_text == case.serialized_text.lower()

    def test_medication_names(self):
        record = make_record(induction=[{"drug": "Propofol"}])
        record["anesthetic"]["maintenance"] = ["Sevoflurane"]
        assert Case.model_validate(record).medication_names == ["Propofol", "Sevoflurane"]


class TestCaseCorpus:
    def test_rejects_non_list(self):
        with pytest.raises(ValidationError, match="dict"):
            CaseCorpus.from_records({"cases": []})

    def test_reports_bad_record_index(self, sample_records):
        sample_records[1]["patient"]["asa"] = 9
        with pytest.raises(ValidationError, match=r"cases\[1\]"):
            CaseCorpus.from_records(sample_records)

    def test_fallback_ids(self):
        corpus = CaseCorpus.from_records([make_record(), make_record(case_date="2024-06-01")])
        assert [c.id for c in corpus] == ["case-0", "2024-06-01_Appendectomy"]
        assert corpus.get("case-0") is corpus[0]
        assert corpus.get("nope") is None

    def test_rejects_duplicate_ids(self, osa_record):
        twin = make_record(procedure="Knee arthroscopy", case_date="2024-01-10", age=71)
        with pytest.raises(ValidationError, match=r"cases\[1\] has duplicate id '2024-01-10_Knee arthroscopy'"):
            CaseCorpus.from_records([osa_record, twin])

    def test_rejects_duplicate_case_objects(self, osa_record):
        case = Case.model_validate(osa_record)
        with pytest.raises(ValidationError):
            CaseCorpus([case, case])

    def test_accepts_case_objects(self, osa_record):
        case = Case.model_validate(osa_record)
        corpus = CaseCorpus.from_records([case])
        assert corpus[0] is case

    def test_from_json_file(self, tmp_path, sample_records):
        path = tmp_path / "cases.json"
        path.write_text(json.dumps(sample_records))
        corpus = CaseCorpus.from_json_file(path)
        assert len(corpus) == 5
        assert corpus[2].procedure.name == "Pyloromyotomy"

    def test_from_json_file_rejects_object(self, tmp_path):
        path = tmp_path / "cases.json"
        path.write_text(json.dumps({"patient": {}}))
        with pytest.raises(ValidationError):
            CaseCorpus.from_json_file(path)

    def test_bundled_sample_cases_load(self):
        corpus = CaseCorpus.from_json_file(config.BASE_DIR / "data" / "sample_cases.json")
        assert len(corpus) == 5
        assert len({c.id for c in corpus}) == 5


class TestCorpusSearch:
    def test_filters(self, corpus):
        assert [c.procedure.name for c in corpus.search(asa=[3])] == ["Knee arthroscopy", "Hip hemiarthroplasty"]
        assert [c.procedure.name for c in corpus.search(technique="REGIONAL")] == ["Knee arthroscopy", "Cesarean section"]
        assert len(corpus.search(has_complications=True)) == 2
        assert len(corpus.search(has_complications=False)) == 3
        assert [c.procedure.name for c in corpus.search(age_range=(0, 18))] == ["Pyloromyotomy"]

    def test_text_search(self, corpus):
        assert [c.procedure.name for c in corpus.search(text="OSA")] == ["Knee arthroscopy"]
        assert [c.procedure.name for c in corpus.search(text="infant")] == ["Pyloromyotomy"]
        assert [c.procedure.name for c in corpus.search(text="alkalosis")] == ["Pyloromyotomy"]

    def test_combined_filters(self, corpus):
        results = corpus.search(text="ortho", asa=[3], has_complications=True)
        assert [c.procedure.name for c in results] == ["Knee arthroscopy", "Hip hemiarthroplasty"]

    def test_invalid_technique(self, corpus):
        with pytest.raises(ValidationError):
            corpus.search(technique="hypnosis")

    def test_find_similar(self, corpus):
        reference = corpus[3]  # hip, 82y, ASA 3, general
        similar = corpus.find_similar(reference, limit=2)
        assert similar[0] is reference
        assert similar[1].procedure.name == "Knee arthroscopy"

    def test_similarity_components(self):
        a = Case.model_validate(make_record(age=40, asa=2, comorbidities=["OSA", "HTN"]))
        b = Case.model_validate(make_record(age=45, asa=2, comorbidities=["OSA", "HTN"]))
        # age 10 + asa 20 + procedure 30 + technique 20 + comorbidities 6
        assert similarity(a, b) == 86


class TestStatistics:
    def test_statistics(self, corpus):
        stats = corpus.statistics()
        assert stats["total_cases"] == 5
        assert stats["by_technique"] == {"general": 3, "regional": 2}
        assert stats["by_asa"] == {2: 3, 3: 2}
        assert stats["by_specialty"]["Orthopedics"] == 2
        assert stats["complication_rate"] == pytest.approx(40.0)
        assert stats["critical_incidents"] == 1
        assert stats["average_quality_score"] == pytest.approx(8.0)

    def test_empty_corpus(self):
        stats = CaseCorpus().statistics()
        assert stats["total_cases"] == 0
        assert stats["complication_rate"] == 0.0

    def test_to_frame(self, corpus):
        df = corpus.to_frame()
        assert isinstance(df, pd.DataFrame)
        assert len(df) == 5
        assert df.loc[2, "age_years"] == pytest.approx(0.5)


class TestCaseMetadata:
    def test_keys(self, osa_record):
        case = Case.model_validate(osa_record)
        meta = case_metadata(case)
        assert meta["id"] == case.id
        assert meta["type"] == "case"
        assert meta["patientAge"] == "58 years"
        assert meta["technique"] == "regional"
        assert meta["criticalIncident"] is True
        assert meta["complications"] == [{
            "event": "Respiratory depression",
            "timing": "pacu",
            "management": "Naloxone and CPAP",
            "outcome": "Recovered",
        }]
        assert meta["content"] == case.searchable_text[:1000]
        json.dumps(meta)
