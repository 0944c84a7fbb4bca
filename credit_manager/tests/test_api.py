from credit_manager.access_control.models import RoleEnum


def test_register_and_login(client):
    response = client.post("/api/auth/register", json={
        "username": "new_analyst", "email": "new.analyst@example.com", "password": "s3cure-pass", "role": "analyst",
        "department": "Credit Risk",
    })
    assert response.status_code == 201, response.text
    assert response.json()["user"]["role"] == "analyst"
    assert response.json()["user"]["department"] == "Credit Risk"

    response = client.post("/api/auth/login", data={"username": "new_analyst", "password": "s3cure-pass"})
    assert response.status_code == 200, response.text
    token = response.json()["access_token"]

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json()["username"] == "new_analyst"

    response = client.post("/api/auth/login", data={"username": "new_analyst", "password": "wrong-pass"})
    assert response.status_code == 401


def test_register_requires_department(client):
    response = client.post("/api/auth/register", json={
        "username": "no_dept", "email": "no.dept@example.com", "password": "s3cure-pass",
    })
    assert response.status_code == 422


def test_login_and_register_are_limited_per_ip(client):
    # Ten attempts per window, shared by login and registration from one address
    for _ in range(9):
        response = client.post("/api/auth/login", data={"username": "ghost", "password": "wrong-pass"})
        assert response.status_code == 401
    response = client.post("/api/auth/register", json={
        "username": "late_user", "email": "late.user@example.com", "password": "s3cure-pass",
        "department": "Operations",
    })
    assert response.status_code == 201, response.text

    response = client.post("/api/auth/login", data={"username": "late_user", "password": "s3cure-pass"})
    assert response.status_code == 429
    assert int(response.headers["Retry-After"]) > 0
    response = client.post("/api/auth/register", json={
        "username": "later_user", "email": "later.user@example.com", "password": "s3cure-pass",
        "department": "Operations",
    })
    assert response.status_code == 429


def test_logout(client, analyst, headers_for):
    response = client.post("/api/auth/logout", headers=headers_for(analyst))
    assert response.status_code == 200
    assert response.json() == {"message": "Logged out successfully"}

    assert client.post("/api/auth/logout").status_code == 401


def test_requests_without_token_are_rejected(client):
    assert client.get("/api/credit/applications/").status_code == 401
    assert client.get("/api/credit/applications/", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_application_lifecycle(client, analyst, underwriter, headers_for, payload_for):
    response = client.post("/api/credit/applications/", json=payload_for(), headers=headers_for(analyst))
    assert response.status_code == 201, response.text
    data = response.json()
    ref = data["application_id"]
    assert data["status"] == "draft"
    assert data["applicant"]["ssn"] == "***-**-6789"

    response = client.post(f"/api/credit/applications/{ref}/submit", headers=headers_for(analyst))
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "submitted"

    response = client.post(f"/api/credit/applications/{ref}/assign", json={"assignee_id": underwriter.id},
                           headers=headers_for(analyst))
    assert response.status_code == 403

    response = client.post(f"/api/credit/applications/{ref}/assign", json={"assignee_id": underwriter.id},
                           headers=headers_for(underwriter))
    assert response.status_code == 200
    assert response.json()["status"] == "under_review"

    response = client.post("/api/ai/analyze", json={"application_id": ref}, headers=headers_for(underwriter))
    assert response.status_code == 200, response.text
    analysis = response.json()
    assert analysis["assessment"]["credit"]["risk_level"] in {"LOW", "MEDIUM", "HIGH", "VERY_HIGH"}
    assert analysis["next_steps"]

    response = client.post(f"/api/credit/applications/{ref}/notes",
                           json={"note": "Income verified by phone", "category": "income"},
                           headers=headers_for(underwriter))
    assert response.status_code == 201
    assert response.json()["notes"][0]["category"] == "income"

    response = client.post(f"/api/credit/applications/{ref}/approve",
                           json={"reason": "Strong profile", "conditions": ["Proof of insurance"]},
                           headers=headers_for(underwriter))
    assert response.status_code == 200
    approved = response.json()
    assert approved["status"] == "approved"
    assert approved["completed_at"] is not None
    assert approved["decision_conditions"] == ["Proof of insurance"]

    response = client.put(f"/api/credit/applications/{ref}", json={"loan": {"amount": 1000}},
                          headers=headers_for(underwriter))
    assert response.status_code == 409
    assert "finalized" in response.json()["detail"]

    response = client.get(f"/api/credit/applications/{ref}/audit-trail", headers=headers_for(analyst))
    assert response.status_code == 200
    assert [e["action"] for e in response.json()] == [
        "application_created", "application_submitted", "application_assigned",
        "ai_analysis_completed", "review_note_added", "application_approved",
    ]
    assert response.json()[1]["request_context"]["path"].endswith("/submit")


def test_create_validation_errors(client, analyst, viewer, headers_for, payload_for):
    response = client.post("/api/credit/applications/", json=payload_for(), headers=headers_for(viewer))
    assert response.status_code == 403

    response = client.post("/api/credit/applications/", json={"loan": {"amount": 1000}},
                           headers=headers_for(analyst))
    assert response.status_code == 400
    assert "applicant.first_name" in response.json()["detail"]["missing_fields"]


def test_update_rejects_unknown_fields(client, analyst, headers_for, payload_for):
    ref = client.post("/api/credit/applications/", json=payload_for(), headers=headers_for(analyst)).json()["id"]
    response = client.put(f"/api/credit/applications/{ref}", json={"status": "approved"},
                          headers=headers_for(analyst))
    assert response.status_code == 422

    response = client.get(f"/api/credit/applications/{ref}", headers=headers_for(analyst))
    assert response.json()["status"] == "draft"


def test_list_applications(client, analyst, headers_for, payload_for):
    for _ in range(3):
        client.post("/api/credit/applications/", json=payload_for(), headers=headers_for(analyst))

    response = client.get("/api/credit/applications/?status=draft&limit=2", headers=headers_for(analyst))
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 3
    assert body["size"] == 2
    assert body["page"] == 1


def test_missing_application_is_404(client, viewer, headers_for):
    assert client.get("/api/credit/applications/CA-UNKNOWN0", headers=headers_for(viewer)).status_code == 404


def test_analyze_raw_data_and_fraud_check(client, viewer, headers_for):
    response = client.post("/api/ai/analyze", json={"applicant_data": {
        "credit_score": 750, "annual_income": 180000, "debt_to_income_ratio": 0.1,
    }}, headers=headers_for(viewer))
    assert response.status_code == 200
    assert response.json()["assessment"]["credit"]["credit_score"] == 788
    assert response.json()["next_steps"][0]["action"] == "auto_approve"

    response = client.post("/api/ai/fraud-check", json={
        "annual_income": 250000, "employment_length": 0.5, "recent_inquiries": 6,
    }, headers=headers_for(viewer))
    assert response.json() == {
        "fraud_score": 45,
        "risk_level": "MEDIUM",
        "risk_factors": ["High income with short employment history", "Multiple recent credit inquiries"],
        "recommendation": "AUTOMATED_PROCESSING",
    }

    assert client.post("/api/ai/analyze", json={}, headers=headers_for(viewer)).status_code == 400


def test_batch_analyze_role_gate(client, analyst, admin, headers_for):
    assert client.post("/api/ai/batch-analyze", json={}, headers=headers_for(analyst)).status_code == 403
    response = client.post("/api/ai/batch-analyze", json={}, headers=headers_for(admin))
    assert response.status_code == 200
    assert response.json()["summary"]["total_processed"] == 0


def test_scoring_status(client, viewer, headers_for):
    anonymous = client.get("/api/ai/status").json()
    assert anonymous["model_loaded"] is True
    assert anonymous["features"] == []

    detailed = client.get("/api/ai/status", headers=headers_for(viewer)).json()
    assert detailed["model_version"] == "1.0.0"
    assert len(detailed["features"]) == 12
    assert detailed["health"] == "healthy"


def test_analyze_returns_503_when_engine_is_down(client, viewer, headers_for):
    from credit_manager.risk_assessment.services import risk_assessment_service
    risk_assessment_service.dispose()
    response = client.post("/api/ai/analyze", json={"applicant_data": {}}, headers=headers_for(viewer))
    assert response.status_code == 503


def test_profile_updates_are_throttled(client, make_user, headers_for):
    user = make_user("pat_profile", RoleEnum.ANALYST)
    for name in ("Pat", "Patricia", "Trish"):
        response = client.put("/api/auth/profile", json={"first_name": name}, headers=headers_for(user))
        assert response.status_code == 200, response.text

    response = client.put("/api/auth/profile", json={"first_name": "P"}, headers=headers_for(user))
    assert response.status_code == 429
    assert int(response.headers["Retry-After"]) > 0


def test_health(client):
    body = client.get("/health").json()
    assert body["database"] == "connected"
    assert body["status"] == "ok"
