import pytest

from prospectflow.models import WorkflowStep
from prospectflow.validation import (
    INVALID_TRANSITION,
    REQUIRED_FIELD_MISSING,
    STEP_DEFINITIONS,
    StepValidator,
)


def test_every_step_has_a_definition():
    assert set(STEP_DEFINITIONS) == set(WorkflowStep)
    assert STEP_DEFINITIONS[WorkflowStep.COMPLETED].next_steps == []


def test_missing_required_fields_are_reported():
    validator = StepValidator()
    result = validator.validate_step(
        WorkflowStep.UPLOAD_CSV, {"csv_upload": {"file_name": "leads.csv"}}
    )

    assert result.is_valid is False
    assert result.can_proceed is False
    assert result.missing_requirements == ["file_path", "headers"]
    assert {issue.code for issue in result.errors} == {REQUIRED_FIELD_MISSING}
    assert result.errors[0].message == "Required field 'file_path' is missing"


def test_missing_section_reports_all_required_fields():
    validator = StepValidator()
    result = validator.validate_step(WorkflowStep.CAMPAIGN_SETTINGS, {})
    assert result.missing_requirements == ["campaign_name", "email_subject"]

    result = validator.validate_step(
        WorkflowStep.CAMPAIGN_SETTINGS, {"campaign_settings": "not a mapping"}
    )
    assert result.missing_requirements == ["campaign_name", "email_subject"]


def test_complete_section_is_valid():
    validator = StepValidator()
    result = validator.validate_step(
        WorkflowStep.ENRICHMENT_CONFIG,
        {"enrichment_config": {"selected_services": ["profile"]}},
    )
    assert result.is_valid is True
    assert result.can_proceed is True


@pytest.mark.parametrize("step", [WorkflowStep.EMAIL_GENERATION, WorkflowStep.COMPLETED])
def test_steps_without_required_fields_always_pass(step):
    assert StepValidator().validate_step(step, {}).is_valid is True


def test_transitions_follow_declared_successors():
    validator = StepValidator()
    assert validator.validate_transition(
        WorkflowStep.UPLOAD_CSV, WorkflowStep.CAMPAIGN_SETTINGS
    ).is_valid

    result = validator.validate_transition(WorkflowStep.UPLOAD_CSV, WorkflowStep.COMPLETED)
    assert result.is_valid is False
    assert result.errors[0].code == INVALID_TRANSITION


def test_skippable_steps():
    validator = StepValidator()
    skippable = {step for step in WorkflowStep if validator.can_skip(step)}
    assert skippable == {WorkflowStep.ENRICHMENT_CONFIG, WorkflowStep.EMAIL_GENERATION}
