import pytest

from credit_manager.access_control.models import RoleEnum
from credit_manager.credit_applications import schemas, services
from credit_manager.credit_applications.models import ApplicationStatusEnum as Status
from credit_manager.credit_applications.state_machine import ApplicationAction
from credit_manager.exceptions import (
    AuthorizationError, NotFoundError, ScoringUnavailableError, ValidationError,
)
from credit_manager.risk_assessment.schemas import ApplicantData, RiskLevel
from credit_manager.risk_assessment.services import risk_assessment_service


def test_create_requires_create_permission(db_session, underwriter, payload_for):
    with pytest.raises(AuthorizationError):
        services.create_application(db_session, schemas.ApplicationCreate.model_validate(payload_for()), underwriter)


def test_create_reports_every_missing_field(db_session, analyst):
    application_in = schemas.ApplicationCreate.model_validate({
        "applicant": {"first_name": "Jo", "employment": {"employer": "Nowhere"}},
        "loan": {"amount": 5000},
    })
    with pytest.raises(ValidationError) as exc_info:
        services.create_application(db_session, application_in, analyst)
    assert exc_info.value.missing_fields == [
        "applicant.last_name", "applicant.date_of_birth", "applicant.ssn", "applicant.email",
        "applicant.employment.annual_income", "loan.purpose", "loan.term",
    ]


def test_application_id_is_assigned(draft_application):
    assert draft_application.application_id.startswith("CA-")
    assert len(draft_application.application_id) == 11
    assert draft_application.created_at is not None
    assert draft_application.version == 1


def test_lookup_by_either_identifier(db_session, draft_application, viewer):
    by_business_key = services.get_application(db_session, draft_application.application_id, viewer)
    by_internal_id = services.get_application(db_session, str(draft_application.id), viewer)
    assert by_business_key.id == by_internal_id.id == draft_application.id

    with pytest.raises(NotFoundError):
        services.get_application(db_session, "CA-MISSING0", viewer)


def test_list_filters_and_search(db_session, make_application, admin, viewer):
    first = make_application()
    make_application(applicant={"first_name": "Rafael", "email": "rafa@example.com"})
    services.perform_action(db_session, first.application_id, ApplicationAction.SUBMIT, admin)

    items, total = services.list_applications(db_session, viewer, status=Status.SUBMITTED)
    assert total == 1
    assert items[0].id == first.id

    items, total = services.list_applications(db_session, viewer, search="Rafael")
    assert total == 1
    assert items[0].applicant["first_name"] == "Rafael"

    items, total = services.list_applications(db_session, viewer, skip=0, limit=1)
    assert total == 2
    assert len(items) == 1


def test_search_never_matches_sensitive_or_structural_content(db_session, draft_application, viewer):
    # ssn 123-45-6789 and dob 1985-04-12 are in the stored applicant payload
    for term in ("45-6789", "123-45", "1985-04", "employment", "annual_income"):
        items, total = services.list_applications(db_session, viewer, search=term)
        assert total == 0, term
        assert items == []


def test_search_matches_id_name_and_email(db_session, draft_application, viewer):
    for term in (draft_application.application_id.lower(), "jane", "DOE", "jane.doe@example"):
        _, total = services.list_applications(db_session, viewer, search=term)
        assert total == 1, term


def test_search_treats_like_wildcards_literally(db_session, make_application, viewer):
    make_application(applicant={"last_name": "O_Neil", "email": "oneil@example.com"})
    make_application(applicant={"last_name": "Oxneil", "email": "oxneil@example.com"})

    _, total = services.list_applications(db_session, viewer, search="O_Neil")
    assert total == 1
    _, total = services.list_applications(db_session, viewer, search="%")
    assert total == 0


def test_search_fields_follow_updates(db_session, draft_application, analyst, viewer):
    services.perform_action(
        db_session, draft_application.application_id, ApplicationAction.UPDATE, analyst,
        {"applicant": {"last_name": "Whitfield", "email": "jane.whitfield@example.com"}},
    )
    _, total = services.list_applications(db_session, viewer, search="whitfield")
    assert total == 1
    _, total = services.list_applications(db_session, viewer, search="Doe")
    assert total == 0


def test_list_requires_read(db_session, make_user):
    nobody = make_user("nobody", RoleEnum.VIEWER)
    nobody.permissions = []
    db_session.commit()
    with pytest.raises(AuthorizationError):
        services.list_applications(db_session, nobody)


def test_analyze_application_records_assessment(db_session, draft_application, viewer):
    application, assessment = services.analyze_application(db_session, draft_application.application_id, viewer)

    assert application.assessment_version == 1
    assert application.assessment["credit"]["credit_score"] == assessment.credit.credit_score
    assert application.risk_level == assessment.credit.risk_level.value
    entry = application.audit_trail[-1]
    assert entry.action == "ai_analysis_completed"
    assert entry.details["credit_score"] == assessment.credit.credit_score
    assert entry.details["fraud_risk"] == assessment.fraud.risk_level.value


def test_analyze_raw_data(viewer):
    assessment = services.analyze_raw(viewer, ApplicantData(credit_score=750, annual_income=180_000,
                                                            debt_to_income_ratio=0.1))
    assert assessment.credit.credit_score == 788
    assert assessment.credit.risk_level == RiskLevel.LOW
    assert len(assessment.features) == 12


def test_analysis_without_engine(db_session, draft_application, viewer):
    risk_assessment_service.dispose()
    with pytest.raises(ScoringUnavailableError):
        services.analyze_application(db_session, draft_application.application_id, viewer)
    db_session.refresh(draft_application)
    assert draft_application.assessment is None
    assert len(draft_application.audit_trail) == 1


def test_next_steps_follow_risk_and_fraud(viewer):
    assessment = services.analyze_raw(viewer, ApplicantData(
        credit_score=760, annual_income=250_000, employment_length=0.5, time_at_address=2,
        age=20, recent_inquiries=7, debt_to_income_ratio=0.1,
    ))
    steps = risk_assessment_service.next_steps(assessment)
    assert assessment.fraud.fraud_score == 75
    assert [s.action for s in steps][-1] == "fraud_investigation"
    assert steps[-1].priority == "urgent"
