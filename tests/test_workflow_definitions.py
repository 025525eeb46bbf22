"""
Tests for the workflow catalog and input validation.
"""

import sys
import os

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))


class TestCatalog:
    """Tests for WORKFLOW_CATALOG lookups."""

    def test_import(self):
        from cpa_panel.workflow.definitions import WORKFLOW_CATALOG
        assert len(WORKFLOW_CATALOG) == 5

    def test_drafts_hidden_by_default(self):
        from cpa_panel.workflow.definitions import list_workflows

        assert "rd-credit" not in [w.id for w in list_workflows()]
        assert "rd-credit" in [w.id for w in list_workflows(include_drafts=True)]

    def test_get_unknown(self):
        from cpa_panel.workflow.definitions import get_workflow
        assert get_workflow("payroll") is None

    def test_defined_steps_are_ordered(self):
        from cpa_panel.workflow.definitions import get_workflow

        steps = get_workflow("sales-tax-study").execution_steps()
        assert [s.order_index for s in steps] == [1, 2, 3, 4, 5, 6]
        assert steps[0].name == "Review revenue data"

    def test_default_steps(self):
        from cpa_panel.workflow.definitions import DEFAULT_STEPS, get_workflow

        steps = get_workflow("1040").execution_steps()
        assert steps == DEFAULT_STEPS
        assert steps is not DEFAULT_STEPS

    def test_to_dict(self):
        from cpa_panel.workflow.definitions import get_workflow

        data = get_workflow("sales-tax-vda").to_dict()
        assert data["slug"] == "sales-tax-vda"
        assert data["status"] == "active"
        assert data["inputs"][0]["type"] == "document_upload"
        assert data["inputs"][0]["multiple"] is False
        assert len(data["steps"]) == 7


class TestValidateInputs:
    """Tests for validate_inputs."""

    def test_complete_inputs(self):
        from cpa_panel.workflow.definitions import get_workflow, validate_inputs

        validate_inputs(get_workflow("sales-tax-vda"), {"client": "Acme", "states": "CA"}, document_count=1)

    def test_documents_answered_by_selection(self):
        from cpa_panel.workflow.definitions import get_workflow, validate_inputs
        from cpa_panel.workflow.exceptions import WorkflowInputError

        with pytest.raises(WorkflowInputError) as exc_info:
            validate_inputs(get_workflow("sales-tax-vda"), {"client": "Acme", "states": "CA"}, document_count=0)

        assert exc_info.value.missing == ["documents"]

    def test_blank_values_are_missing(self):
        from cpa_panel.workflow.definitions import get_workflow, validate_inputs
        from cpa_panel.workflow.exceptions import WorkflowInputError

        with pytest.raises(WorkflowInputError) as exc_info:
            validate_inputs(
                get_workflow("sales-tax-study"),
                {"client": "  ", "business-activities": []},
                document_count=2,
            )

        assert exc_info.value.missing == ["client", "business-activities"]

    def test_optional_inputs_can_be_omitted(self):
        from cpa_panel.workflow.definitions import get_workflow, validate_inputs

        validate_inputs(
            get_workflow("personal-income-tax-review"),
            {"client": "Acme", "review-years": "3"},
            document_count=1,
        )
