"""Tests validating demo seed data is internally consistent."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from scripts.seed_demo import (
    DEMO_CALL_SCRIPT,
    DEMO_PATIENTS,
    DEMO_SETTINGS,
    seed_all,
)
from src.db.settings_store import ClinicSettings
from src.shared.comms import render
from src.shared.lifecycle import is_followup_candidate
from src.shared.validators import validate_phone


class TestDemoData:
    """Seed constants work with the follow-up rules."""

    def test_settings_are_valid(self) -> None:
        """The demo settings pass ClinicSettings validation."""
        settings = ClinicSettings(**DEMO_SETTINGS)
        assert settings.max_followup_calls == 3

    @pytest.mark.parametrize("row", DEMO_PATIENTS, ids=[row[0] for row in DEMO_PATIENTS])
    def test_phones_are_valid(self, row) -> None:
        """Every demo phone has at least 10 digits."""
        assert validate_phone(row[1])

    def test_mix_of_candidates_and_cold_leads(self) -> None:
        """A run finds both candidates and an exhausted patient."""
        limits = (DEMO_SETTINGS["max_followup_calls"], DEMO_SETTINGS["max_followup_messages"])
        candidates = [
            row for row in DEMO_PATIENTS if is_followup_candidate(row[3], row[4], row[5], *limits)
        ]
        exhausted = [
            row for row in DEMO_PATIENTS if row[4] >= limits[0] and row[5] >= limits[1]
        ]
        assert len(candidates) >= 2
        assert exhausted

    def test_call_script_renders(self) -> None:
        """All placeholders in the call script are standard variables."""
        script = render(
            DEMO_CALL_SCRIPT,
            {
                "patient_name": "Eleanor",
                "caller_name": "Mayra",
                "clinic_name": "Riverside",
                "doctor_name": "Lopez",
                "appointment_date": "Tuesday",
            },
        )
        assert "{{" not in script


class TestSeedAll:
    """seed_all against a mock session."""

    async def test_creates_records(self) -> None:
        """Clinic, users, settings, and every patient are written."""
        session = AsyncMock()
        session.add = MagicMock()
        empty = MagicMock()
        empty.scalar_one_or_none.return_value = None
        session.execute.return_value = empty

        with (
            patch(
                "scripts.seed_demo.create_patient",
                new_callable=AsyncMock,
                side_effect=lambda *a, **k: MagicMock(),
            ) as create,
            patch("scripts.seed_demo.upsert_setting", new_callable=AsyncMock) as upsert,
        ):
            result = await seed_all(session)

        assert result["patients"] == len(DEMO_PATIENTS)
        assert result["users"] == 2
        assert create.await_count == len(DEMO_PATIENTS)
        assert upsert.call_args.kwargs["max_followup_calls"] == 3
        assert session.add.call_count == 3
