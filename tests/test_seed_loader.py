"""
Tests for SLA Seed Data

Tests for YAML parsing, validation and writing seed rows.
"""

from pathlib import Path
from datetime import time

import pytest

from agency_sla.core import ConfigurationException
from agency_sla.sla.application import PolicyResolver
from agency_sla.sla.infrastructure import SQLAlchemySeedWriter, YAMLSeedLoader
from agency_sla.sla.infrastructure.models import (
    AgencyBusinessHourModel, EscalationLevelModel, SlaPolicyModel
)

EXAMPLE_SEED = Path(__file__).parent.parent / "sla_seed.example.yaml"

AGENCY_SEED = """
agencies:
  - agency_id: "{agency_id}"
    business_hours:
      - {{ day_of_week: 1, start_time: "08:00", end_time: "17:00" }}
    sla_policies:
      - policy_name: "Basic"
        applies_business_hours: false
        rules:
          - response_time_minutes: 30
            resolution_time_minutes: 300
    escalation_matrices:
      - matrix_name: "Escalate"
        levels:
          - level_number: 2
            escalation_role: "HEAD"
          - level_number: 1
            escalation_role: "SUPERVISOR"
"""


class TestYAMLSeedLoader:
    """Test seed file parsing."""

    def test_example_file_is_valid(self):
        config = YAMLSeedLoader(str(EXAMPLE_SEED)).load()

        agency = config.agencies[0]
        assert len(agency.business_hours) == 5
        assert agency.business_hours[0].end_time == time(17, 0)
        assert agency.sla_policies[0].rules[1].response_time_minutes == 60
        assert [level.level_number for level in agency.escalation_matrices[0].levels] == [1, 2, 3]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationException):
            YAMLSeedLoader(str(tmp_path / "absent.yaml")).load()

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "seed.yaml"
        path.write_text("agencies: [unclosed")

        with pytest.raises(ConfigurationException):
            YAMLSeedLoader(str(path)).load()

    def test_unquoted_time_is_rejected(self, tmp_path, agency_id):
        path = tmp_path / "seed.yaml"
        path.write_text(
            f"agencies:\n"
            f"  - agency_id: \"{agency_id}\"\n"
            f"    business_hours:\n"
            f"      - {{ day_of_week: 1, start_time: 09:00, end_time: 17:00 }}\n"
        )

        with pytest.raises(ConfigurationException):
            YAMLSeedLoader(str(path)).load()

    def test_duplicate_levels_rejected(self, tmp_path, agency_id):
        path = tmp_path / "seed.yaml"
        path.write_text(
            f"agencies:\n"
            f"  - agency_id: \"{agency_id}\"\n"
            f"    escalation_matrices:\n"
            f"      - levels: [{{ level_number: 1 }}, {{ level_number: 1 }}]\n"
        )

        with pytest.raises(ConfigurationException):
            YAMLSeedLoader(str(path)).load()


class TestSeedWriter:
    """Test writing seed rows."""

    @pytest.mark.asyncio
    async def test_apply_and_reapply(self, tmp_path, session_maker, uow_factory, data, agency_id):
        path = tmp_path / "seed.yaml"
        path.write_text(AGENCY_SEED.format(agency_id=agency_id))
        config = YAMLSeedLoader(str(path)).load()

        async with session_maker() as session:
            counts = await SQLAlchemySeedWriter(session).apply(config)
            await session.commit()
        async with session_maker() as session:
            await SQLAlchemySeedWriter(session).apply(config)
            await session.commit()

        assert counts == {
            "business_hours": 1,
            "calendar_overrides": 0,
            "sla_policies": 1,
            "escalation_matrices": 1,
        }
        assert await data.count(SlaPolicyModel) == 1
        assert await data.count(AgencyBusinessHourModel) == 1
        assert await data.count(EscalationLevelModel) == 2

        async with uow_factory() as uow:
            resolved = await PolicyResolver(uow.policies).resolve(agency_id)
            level = await uow.escalations.find_level(agency_id, None, 2)

        assert resolved.rule.resolution_time_minutes == 300
        assert level.escalation_role == "HEAD"
