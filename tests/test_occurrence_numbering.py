"""
Occurrence number tests — OCC{yy}-{seq:04d}.

Covers the yearly reset, numeric (not lexical) max over the suffix,
interleaving with other years, and the collision retry in create_occurrence.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from occurrence_tracker.core.exceptions import ConflictError
from occurrence_tracker.models.occurrence import Occurrence
from occurrence_tracker.services import occurrence_service
from occurrence_tracker.services.code_generator import (
    format_occurrence_no,
    generate_occurrence_no,
    max_sequence_for_prefix,
    year_prefix,
)

Y25 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
Y26 = datetime(2026, 1, 2, 8, 0, tzinfo=timezone.utc)


def _create(org, now):
    return occurrence_service.create_occurrence(
        description="Visitor threatened the triage nurse",
        incident_id=org.threats.id,
        location_id=org.location.id,
        occurrence_date=datetime(2025, 1, 1, tzinfo=timezone.utc),
        created_by_id=org.reporter.id,
        now=now,
    )


class TestFormatting:
    def test_year_prefix(self):
        assert year_prefix(Y25) == "OCC25-"
        assert year_prefix(datetime(2009, 3, 1)) == "OCC09-"

    def test_sequence_is_zero_padded(self):
        assert format_occurrence_no("OCC25-", 7) == "OCC25-0007"
        assert format_occurrence_no("OCC25-", 10000) == "OCC25-10000"


class TestGeneration:
    def test_first_number_of_year(self):
        assert generate_occurrence_no(Y25) == "OCC25-0001"

    def test_sequence_scenario_across_year_boundary(self, org):
        assert _create(org, Y25).occurrence_no == "OCC25-0001"
        assert _create(org, Y25).occurrence_no == "OCC25-0002"
        assert _create(org, Y26).occurrence_no == "OCC26-0001"

    def test_interleaved_years_do_not_affect_each_other(self, org, make_occurrence):
        make_occurrence(org.threats, occurrence_no="OCC25-0009")
        make_occurrence(org.threats, occurrence_no="OCC26-0003")
        make_occurrence(org.threats, occurrence_no="OCC24-0042")

        assert generate_occurrence_no(Y25) == "OCC25-0010"
        assert generate_occurrence_no(Y26) == "OCC26-0004"

    def test_deleted_numbers_below_max_are_not_reissued(self, org, make_occurrence, session):
        make_occurrence(org.threats, occurrence_no="OCC25-0001")
        make_occurrence(org.threats, occurrence_no="OCC25-0005")
        session.delete(Occurrence.query.filter_by(occurrence_no="OCC25-0001").one())
        session.commit()

        assert generate_occurrence_no(Y25) == "OCC25-0006"

    def test_max_is_numeric_past_four_digits(self, org, make_occurrence):
        make_occurrence(org.threats, occurrence_no="OCC25-9999")
        make_occurrence(org.threats, occurrence_no="OCC25-10000")

        assert max_sequence_for_prefix("OCC25-") == 10000
        assert generate_occurrence_no(Y25) == "OCC25-10001"

    def test_numbers_strictly_increase_within_year(self, org):
        seqs = [int(_create(org, Y25).occurrence_no.split("-")[1]) for _ in range(5)]
        assert seqs == sorted(seqs)
        assert len(set(seqs)) == 5


class TestCollisionRetry:
    def test_retries_after_unique_violation(self, org, make_occurrence):
        make_occurrence(org.threats, occurrence_no="OCC25-0001")

        with patch.object(occurrence_service, "generate_occurrence_no",
                          side_effect=["OCC25-0001", "OCC25-0002"]):
            occ = _create(org, Y25)

        assert occ.occurrence_no == "OCC25-0002"
        assert Occurrence.query.count() == 2

    def test_gives_up_after_max_attempts(self, org, make_occurrence):
        make_occurrence(org.threats, occurrence_no="OCC25-0001")

        with patch.object(occurrence_service, "generate_occurrence_no",
                          return_value="OCC25-0001"):
            with pytest.raises(ConflictError):
                _create(org, Y25)

        assert Occurrence.query.count() == 1
