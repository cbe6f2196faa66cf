"""Tests for the Workflow Engine."""

from datetime import UTC, date, datetime

import pytest

from signoff.auth.roles import Party
from signoff.core.definitions import WORKFLOWS, ReasonCode, Status, WorkflowType
from signoff.core.workflow import (
    ForbiddenError,
    InvalidTransitionError,
    is_fully_signed,
    mark_overdue,
    on_edit,
    sign,
    signature_status,
    transition,
    validate_workflows,
)
from signoff.models.instance import Signature, WorkflowInstance
from signoff.models.settings import ApprovalAuthority, WorkflowSettings

AT = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def test_declared_workflows_are_valid():
    """Every state is declared, reachable, and terminal states are dead ends."""
    assert validate_workflows() == []


def test_every_workflow_reaches_a_terminal_state():
    for workflow in WORKFLOWS.values():
        targets = {t.to_state for t in workflow.transitions}
        assert workflow.terminal_states & targets, workflow.name


# Validate-then-approve


def test_timesheet_happy_path():
    draft = WorkflowInstance(status="Draft", owner_id="con-1")

    submitted = transition("timesheet", draft, "submit", "contributor", "con-1").unwrap()
    assert submitted.status == Status.SUBMITTED

    validated = transition("timesheet", submitted, "validate", "supplier_pm", "sup-1").unwrap()
    assert validated.status == Status.VALIDATED

    result = transition("timesheet", validated, "approve", "customer_pm", "cus-1")
    assert result.ok
    assert result.instance.status == "Approved"
    assert result.changes() == {"status": "Approved"}
    assert validated.status == "Validated"


def test_reject_and_resubmit():
    submitted = WorkflowInstance(status="Submitted", owner_id="con-1")
    rejected = transition("timesheet", submitted, "reject", "supplier_pm", "sup-1").unwrap()
    assert rejected.status == "Rejected"

    resubmitted = transition("timesheet", rejected, "submit", "contributor", "con-1").unwrap()
    assert resubmitted.status == "Submitted"


def test_revise_is_automatic_only():
    rejected = WorkflowInstance(status="Rejected", owner_id="con-1")
    result = transition("timesheet", rejected, "revise", "contributor", "con-1")

    assert not result.ok
    assert result.error == ReasonCode.INVALID_TRANSITION
    assert result.instance is rejected


def test_on_edit_returns_rejected_to_draft():
    result = on_edit("expense", WorkflowInstance(status="Rejected", owner_id="con-1"))
    assert result.ok
    assert result.instance.status == "Draft"
    assert result.transition is not None
    assert result.transition.automatic


def test_on_edit_elsewhere_changes_nothing():
    draft = WorkflowInstance(status="Draft")
    result = on_edit("timesheet", draft)
    assert result.ok
    assert result.transition is None
    assert result.instance is draft
    assert result.changes() == {}


def test_undeclared_action_or_state():
    draft = WorkflowInstance(status="Draft", owner_id="con-1")
    assert transition("timesheet", draft, "approve", "customer_pm", "cus-1").error == (
        ReasonCode.INVALID_TRANSITION
    )
    assert transition("timesheet", draft, "launch", "supplier_pm", "sup-1").error == (
        ReasonCode.INVALID_TRANSITION
    )
    odd = WorkflowInstance(status="Archived")
    assert transition("timesheet", odd, "submit", "supplier_pm", "sup-1").error == (
        ReasonCode.INVALID_TRANSITION
    )


def test_missing_status_is_not_submittable():
    unset = WorkflowInstance(owner_id="con-1")
    result = transition("timesheet", unset, "submit", "contributor", "con-1")
    assert result.error == ReasonCode.INVALID_TRANSITION


def test_unknown_workflow():
    result = transition("spaceship", WorkflowInstance(status="Draft"), "submit", "supplier_pm", "x")
    assert result.error == ReasonCode.UNKNOWN_ENTITY_OR_ACTION
    with pytest.raises(InvalidTransitionError):
        result.unwrap()


def test_forbidden_leaves_instance_untouched():
    submitted = WorkflowInstance(status="Submitted", owner_id="con-1")
    result = transition("timesheet", submitted, "validate", "customer_pm", "cus-1")

    assert not result.ok
    assert result.error == ReasonCode.FORBIDDEN
    assert result.instance is submitted
    assert result.changes() == {}
    with pytest.raises(ForbiddenError):
        result.unwrap()


def test_unknown_role():
    draft = WorkflowInstance(status="Draft", owner_id="con-1")
    result = transition("timesheet", draft, "submit", "wizard", "con-1")
    assert result.error == ReasonCode.UNKNOWN_ROLE
    with pytest.raises(ForbiddenError):
        result.unwrap()


def test_expense_chargeable_scenario():
    expense = WorkflowInstance(status="Submitted", owner_id="con-1", chargeable_to_customer=True)

    refused = transition("expense", expense, "validate", "supplier_pm", "sup-1")
    assert refused.error == ReasonCode.FORBIDDEN

    validated = transition("expense", expense, "validate", "customer_pm", "cus-1").unwrap()
    assert validated.status == "Validated"


# Settings


def test_disabled_feature():
    settings = WorkflowSettings(features={"timesheets": False})
    draft = WorkflowInstance(status="Draft", owner_id="con-1")
    result = transition("timesheet", draft, "submit", "contributor", "con-1", settings=settings)
    assert result.error == ReasonCode.FEATURE_DISABLED


def test_approval_authority_narrows():
    validated = WorkflowInstance(status="Validated", owner_id="con-1", chargeable_to_customer=True)
    supplier_only = WorkflowSettings(
        approval_authority={"expense": ApprovalAuthority.SUPPLIER_ONLY}
    )
    result = transition(
        "expense", validated, "approve", "customer_pm", "cus-1", settings=supplier_only
    )
    assert result.error == ReasonCode.FORBIDDEN


def test_no_approval_authority_still_completes():
    """With no approval required, the stage holders move the entry to Approved."""
    settings = WorkflowSettings(approval_authority={"timesheet": ApprovalAuthority.NONE})
    instance = WorkflowInstance(status="Submitted", owner_id="con-1")
    instance = transition(
        "timesheet", instance, "validate", "supplier_pm", "sup-1", settings=settings
    ).unwrap()
    instance = transition(
        "timesheet", instance, "approve", "customer_pm", "cus-1", settings=settings
    ).unwrap()
    assert instance.status == Status.APPROVED

    submitted = WorkflowInstance(status="Submitted", owner_id="con-1")
    result = transition("timesheet", submitted, "reject", "supplier_pm", "sup-1", settings=settings)
    assert result.ok
    # The matrix and rules still decide who holds each stage
    result = transition(
        "timesheet", submitted, "validate", "contributor", "con-1", settings=settings
    )
    assert result.error == ReasonCode.FORBIDDEN


def test_either_authority_keeps_matrix_verdict():
    validated = WorkflowInstance(status="Validated", owner_id="con-1")
    settings = WorkflowSettings(approval_authority={"timesheet": ApprovalAuthority.EITHER})
    result = transition(
        "timesheet", validated, "approve", "customer_pm", "cus-1", settings=settings
    )
    assert result.ok


# Single-approval review


def test_deliverable_review_with_rework():
    instance = WorkflowInstance(status="Not Started", owner_id="con-1")
    steps = [
        ("start", "contributor", "con-1", "In Progress"),
        ("submit", "contributor", "con-1", "Awaiting Review"),
        ("request_rework", "customer_pm", "cus-1", "Rework"),
        ("resume", "contributor", "con-1", "In Progress"),
        ("submit", "contributor", "con-1", "Awaiting Review"),
        ("complete_review", "customer_pm", "cus-1", "Review Complete"),
        ("mark_delivered", "supplier_pm", "sup-1", "Delivered"),
    ]
    for action, role, actor_id, expected in steps:
        instance = transition("deliverable", instance, action, role, actor_id).unwrap()
        assert instance.status == expected

    assert WORKFLOWS[WorkflowType.DELIVERABLE].is_terminal(instance.status)


def test_deliverable_review_is_not_for_the_supplier():
    waiting = WorkflowInstance(status="Awaiting Review", owner_id="con-1")
    result = transition("deliverable", waiting, "complete_review", "supplier_pm", "sup-1")
    assert result.error == ReasonCode.FORBIDDEN


# Dual signature


def test_deliverable_sign_off_scenario():
    instance = WorkflowInstance()
    assert signature_status(instance) == Status.NOT_SIGNED

    first = sign("deliverable_sign_off", instance, Party.SUPPLIER, "supplier_pm", "sup-1", at=AT)
    assert first.ok
    assert first.instance.status == "Awaiting Customer"
    assert first.side_effect is None
    assert not is_fully_signed(first.instance)

    second = sign(
        "deliverable_sign_off",
        first.instance,
        Party.CUSTOMER,
        "customer_pm",
        "cus-1",
        signer_name="Casey Customer",
        at=AT,
    )
    assert second.ok
    assert second.instance.status == "Signed"
    assert second.side_effect == "mark_delivered"
    assert is_fully_signed(second.instance)
    assert second.instance.customer_signature.signer_name == "Casey Customer"
    assert second.instance.customer_signature.signed_at == AT.isoformat()


@pytest.mark.parametrize(
    "workflow_type,effect",
    [
        ("deliverable_sign_off", "mark_delivered"),
        ("milestone_baseline", "lock_baseline"),
        ("certificate", "enable_billing"),
    ],
)
def test_signing_order_does_not_matter(workflow_type, effect):
    start = WorkflowInstance()

    a = sign(workflow_type, start, Party.SUPPLIER, "supplier_pm", "sup-1", at=AT).unwrap()
    a_result = sign(workflow_type, a, Party.CUSTOMER, "customer_pm", "cus-1", at=AT)

    b = sign(workflow_type, start, Party.CUSTOMER, "customer_pm", "cus-1", at=AT).unwrap()
    b_result = sign(workflow_type, b, Party.SUPPLIER, "supplier_pm", "sup-1", at=AT)

    assert a_result.instance == b_result.instance
    assert a_result.instance.status == "Signed"
    assert a_result.side_effect == b_result.side_effect == effect


def test_resigning_overwrites_slot():
    first = sign("certificate", WorkflowInstance(), Party.SUPPLIER, "supplier_pm", "sup-1").unwrap()
    again = sign("certificate", first, Party.SUPPLIER, "supplier_pm", "sup-2").unwrap()

    assert again.status == "Awaiting Customer"
    assert again.supplier_signature.signer_id == "sup-2"


def test_signed_is_terminal():
    signed = WorkflowInstance(
        supplier_signature=Signature(signer_id="sup-1"),
        customer_signature=Signature(signer_id="cus-1"),
    )
    result = sign("milestone_baseline", signed, Party.SUPPLIER, "supplier_pm", "sup-1")
    assert result.error == ReasonCode.INVALID_TRANSITION


def test_wrong_party_cannot_sign():
    result = sign("certificate", WorkflowInstance(), Party.CUSTOMER, "supplier_pm", "sup-1")
    assert result.error == ReasonCode.FORBIDDEN
    result = sign("certificate", WorkflowInstance(), Party.SUPPLIER, "contributor", "con-1")
    assert result.error == ReasonCode.FORBIDDEN


def test_signature_needs_signer():
    result = sign("certificate", WorkflowInstance(), Party.SUPPLIER, "supplier_pm", None)
    assert result.error == ReasonCode.FORBIDDEN


# Variations


def test_variation_lifecycle():
    draft = WorkflowInstance(status="Draft")
    submitted = transition("variation", draft, "submit", "supplier_pm", "sup-1").unwrap()
    assert submitted.status == "Submitted"

    customer_signed = transition(
        "variation", submitted, "sign_as_customer", "customer_pm", "cus-1", at=AT
    ).unwrap()
    assert customer_signed.status == "Awaiting Supplier"

    result = transition(
        "variation", customer_signed, "sign_as_supplier", "supplier_pm", "sup-1", at=AT
    )
    assert result.instance.status == "Approved"
    assert result.side_effect == "apply_variation"

    implemented = transition(
        "variation", result.instance, "implement", "supplier_pm", "sup-1"
    ).unwrap()
    assert implemented.status == "Implemented"


def test_variation_reject_clears_signatures_and_revises():
    pending = WorkflowInstance(
        status="Awaiting Supplier", customer_signature=Signature(signer_id="cus-1")
    )
    rejected = transition("variation", pending, "reject", "customer_pm", "cus-1").unwrap()
    assert rejected.status == "Rejected"
    assert rejected.customer_signature is None

    assert on_edit("variation", rejected).instance.status == "Draft"


def test_variation_withdraw():
    submitted = WorkflowInstance(status="Submitted")
    withdrawn = transition("variation", submitted, "withdraw", "supplier_pm", "sup-1").unwrap()
    assert withdrawn.status == "Draft"


# Partner invoices


def test_invoice_payment_path():
    instance = WorkflowInstance(status="Draft")
    for action, expected in [
        ("submit", "Submitted"),
        ("approve", "Approved"),
        ("record_partial_payment", "Partially Paid"),
        ("record_partial_payment", "Partially Paid"),
        ("record_payment", "Paid"),
    ]:
        instance = transition("partner_invoice", instance, action, "supplier_pm", "sup-1").unwrap()
        assert instance.status == expected


def test_invoice_reject_then_revise_by_actor():
    submitted = WorkflowInstance(status="Submitted")
    rejected = transition("partner_invoice", submitted, "reject", "supplier_pm", "sup-1").unwrap()
    draft = transition("partner_invoice", rejected, "revise", "supplier_pm", "sup-1").unwrap()
    assert draft.status == "Draft"


def test_invoice_overdue():
    approved = WorkflowInstance(status="Approved", due_date=date(2026, 1, 31))

    assert mark_overdue(approved, date(2026, 1, 31)).error == ReasonCode.INVALID_TRANSITION
    overdue = mark_overdue(approved, date(2026, 2, 1))
    assert overdue.ok
    assert overdue.instance.status == "Overdue"

    paid = transition("partner_invoice", overdue.instance, "record_payment", "supplier_pm", "s")
    assert paid.instance.status == "Paid"


def test_invoice_overdue_needs_due_date_and_approval():
    assert mark_overdue(WorkflowInstance(status="Approved"), date(2026, 2, 1)).error == (
        ReasonCode.INVALID_TRANSITION
    )
    draft = WorkflowInstance(status="Draft", due_date=date(2026, 1, 1))
    assert mark_overdue(draft, date(2026, 2, 1)).error == ReasonCode.INVALID_TRANSITION


def test_overdue_is_not_actor_initiated():
    approved = WorkflowInstance(status="Approved", due_date=date(2026, 1, 31))
    result = transition("partner_invoice", approved, "mark_overdue", "supplier_pm", "sup-1")
    assert result.error == ReasonCode.INVALID_TRANSITION


def test_customer_cannot_pay_partner_invoice():
    approved = WorkflowInstance(status="Approved")
    result = transition("partner_invoice", approved, "record_payment", "customer_pm", "cus-1")
    assert result.error == ReasonCode.FORBIDDEN
