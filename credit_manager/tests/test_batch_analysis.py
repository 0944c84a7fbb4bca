import pytest

from credit_manager.credit_applications import services
from credit_manager.credit_applications.state_machine import ApplicationAction
from credit_manager.exceptions import AuthorizationError, ScoringUnavailableError
from credit_manager.risk_assessment.schemas import BatchAnalysisFilters, BatchAnalysisRequest
from credit_manager.risk_assessment.scoring import DeterministicScoringEngine
from credit_manager.risk_assessment.services import risk_assessment_service

POISON_LOAN_AMOUNT = 499_500 # -> loan amount feature 0.999


class FlakyEngine(DeterministicScoringEngine):
    """Fails for one specific loan amount."""

    def probability(self, features):
        if abs(features[4] - 0.999) < 1e-9:
            raise ValueError("synthetic scoring failure")
        return super().probability(features)


@pytest.fixture
def submitted_batch(db_session, make_application, admin):
    applications = [
        make_application(),
        make_application(loan={"amount": POISON_LOAN_AMOUNT}),
        make_application(financial={"credit_score": 560, "debt_to_income_ratio": 0.55}),
    ]
    for application in applications:
        services.perform_action(db_session, application.application_id, ApplicationAction.SUBMIT, admin)
    return applications


def test_one_failure_does_not_abort_the_batch(db_session, submitted_batch, underwriter):
    risk_assessment_service.initialize(FlakyEngine())
    good, poisoned, weak = submitted_batch

    response = services.batch_analyze(db_session, underwriter, BatchAnalysisRequest(), max_workers=3)

    assert {r.application_id for r in response.results} == {good.application_id, weak.application_id}
    assert [e.application_id for e in response.errors] == [poisoned.application_id]
    assert "synthetic scoring failure" in response.errors[0].error
    assert response.summary.total_processed == 3
    assert response.summary.successful == 2
    assert response.summary.failed == 1
    assert sum(response.summary.risk_distribution.values()) == 2

    db_session.refresh(poisoned)
    assert poisoned.assessment is None
    assert poisoned.audit_trail[-1].action == "application_submitted"

    db_session.refresh(good)
    assert good.assessment_version == 1
    assert good.audit_trail[-1].action == "ai_batch_analysis"


def test_default_selection_skips_drafts_and_finalized(db_session, make_application, submitted_batch, admin):
    draft = make_application()
    approved = submitted_batch[0]
    services.perform_action(db_session, approved.application_id, ApplicationAction.APPROVE, admin, {})

    response = services.batch_analyze(db_session, admin, BatchAnalysisRequest())
    processed = {r.application_id for r in response.results}
    assert draft.application_id not in processed
    assert approved.application_id not in processed
    assert len(processed) == 2


def test_explicit_ids_report_missing_and_illegal_items(db_session, submitted_batch, admin):
    target = submitted_batch[2]
    finalized = submitted_batch[0]
    services.perform_action(db_session, finalized.application_id, ApplicationAction.DENY, admin, {"reason": "dup"})

    response = services.batch_analyze(db_session, admin, BatchAnalysisRequest(
        application_ids=[target.application_id, "CA-NOPE0000", finalized.application_id],
    ))
    assert [r.application_id for r in response.results] == [target.application_id]
    assert {e.application_id for e in response.errors} == {"CA-NOPE0000", finalized.application_id}


def test_filters_by_assignee(db_session, submitted_batch, underwriter):
    target = submitted_batch[1]
    services.perform_action(db_session, target.application_id, ApplicationAction.ASSIGN, underwriter,
                            {"assignee_id": underwriter.id})

    response = services.batch_analyze(db_session, underwriter, BatchAnalysisRequest(
        filters=BatchAnalysisFilters(assigned_to_id=underwriter.id),
    ))
    assert [r.application_id for r in response.results] == [target.application_id]


def test_batch_requires_reviewer_role(db_session, analyst):
    with pytest.raises(AuthorizationError):
        services.batch_analyze(db_session, analyst, BatchAnalysisRequest())


def test_batch_fails_fast_without_engine(db_session, admin):
    risk_assessment_service.dispose()
    with pytest.raises(ScoringUnavailableError):
        services.batch_analyze(db_session, admin, BatchAnalysisRequest())
