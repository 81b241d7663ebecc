"""Per-step requirement definitions and transition checks."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from .models import StepDefinition, ValidationIssue, ValidationResult, WorkflowStep

logger = logging.getLogger(__name__)

REQUIRED_FIELD_MISSING = "REQUIRED_FIELD_MISSING"
INVALID_TRANSITION = "INVALID_TRANSITION"

S = WorkflowStep

STEP_DEFINITIONS: dict[WorkflowStep, StepDefinition] = {
    S.UPLOAD_CSV: StepDefinition(
        step=S.UPLOAD_CSV,
        name="Upload CSV File",
        description="Upload and validate CSV file with prospect data",
        config_section="csv_upload",
        required=["file_name", "file_path", "headers"],
        optional=["mapped_fields"],
        estimated_duration=5,
        can_revert=True,
        next_steps=[S.CAMPAIGN_SETTINGS],
    ),
    S.CAMPAIGN_SETTINGS: StepDefinition(
        step=S.CAMPAIGN_SETTINGS,
        name="Campaign Settings",
        description="Configure campaign settings and templates",
        config_section="campaign_settings",
        required=["campaign_name", "email_subject"],
        optional=["prompt", "email_template"],
        estimated_duration=10,
        can_revert=True,
        dependencies=[S.UPLOAD_CSV],
        next_steps=[S.ENRICHMENT_CONFIG],
    ),
    S.ENRICHMENT_CONFIG: StepDefinition(
        step=S.ENRICHMENT_CONFIG,
        name="Enrichment Configuration",
        description="Configure prospect enrichment settings",
        config_section="enrichment_config",
        required=["selected_services"],
        optional=["enrichment_settings", "batch_size", "concurrency"],
        estimated_duration=5,
        can_skip=True,
        can_revert=True,
        dependencies=[S.CAMPAIGN_SETTINGS],
        next_steps=[S.BEGIN_ENRICHMENT],
    ),
    S.BEGIN_ENRICHMENT: StepDefinition(
        step=S.BEGIN_ENRICHMENT,
        name="Begin Enrichment",
        description="Start prospect enrichment process",
        config_section="begin_enrichment",
        required=["batch_id"],
        optional=["job_id"],
        estimated_duration=30,
        dependencies=[S.ENRICHMENT_CONFIG],
        next_steps=[S.EMAIL_GENERATION],
    ),
    S.EMAIL_GENERATION: StepDefinition(
        step=S.EMAIL_GENERATION,
        name="Email Generation",
        description="Generate personalized emails for prospects",
        config_section="email_generation",
        optional=["job_id"],
        estimated_duration=20,
        can_skip=True,
        dependencies=[S.BEGIN_ENRICHMENT],
        next_steps=[S.COMPLETED],
    ),
    S.COMPLETED: StepDefinition(
        step=S.COMPLETED,
        name="Workflow Completed",
        description="All workflow steps have been completed",
        dependencies=[S.EMAIL_GENERATION],
    ),
}

del S


class StepValidator:
    """Checks a configuration bag against the declared step requirements."""

    def __init__(
        self, definitions: Optional[Mapping[WorkflowStep, StepDefinition]] = None
    ) -> None:
        self._definitions = dict(definitions or STEP_DEFINITIONS)

    def get_step_definition(self, step: WorkflowStep) -> StepDefinition:
        return self._definitions[step]

    def step_configuration(
        self, step: WorkflowStep, configuration: Mapping[str, Any]
    ) -> Optional[Mapping[str, Any]]:
        section = self._definitions[step].config_section
        if section is None:
            return {}
        value = configuration.get(section)
        return value if isinstance(value, Mapping) else None

    def validate_step(
        self, step: WorkflowStep, configuration: Mapping[str, Any]
    ) -> ValidationResult:
        definition = self._definitions[step]
        step_config = self.step_configuration(step, configuration)

        missing = [
            field
            for field in definition.required
            if step_config is None or field not in step_config
        ]
        errors = [
            ValidationIssue(
                step=step,
                field=field,
                message=f"Required field '{field}' is missing",
                code=REQUIRED_FIELD_MISSING,
            )
            for field in missing
        ]
        if errors:
            logger.debug(f"Step {step.value} is missing {missing}")

        is_valid = not errors
        return ValidationResult(
            is_valid=is_valid,
            can_proceed=is_valid and not missing,
            errors=errors,
            missing_requirements=missing,
        )

    def validate_transition(
        self, from_step: WorkflowStep, to_step: WorkflowStep
    ) -> ValidationResult:
        if to_step in self._definitions[from_step].next_steps:
            return ValidationResult()
        return ValidationResult(
            is_valid=False,
            can_proceed=False,
            errors=[
                ValidationIssue(
                    step=from_step,
                    message=f"Invalid transition from {from_step.value} to {to_step.value}",
                    code=INVALID_TRANSITION,
                )
            ],
        )

    def can_skip(self, step: WorkflowStep) -> bool:
        return self._definitions[step].can_skip
