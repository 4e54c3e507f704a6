def test_full_onboarding_journey(client, backend, auth_headers):
    status_response = client.get("/api/onboarding/status", headers=auth_headers)
    assert status_response.status_code == 200
    assert status_response.json()["needs_onboarding"] is True
    assert status_response.json()["onboarding"] is None

    init_response = client.post("/api/onboarding/initialize", headers=auth_headers)
    assert init_response.status_code == 201
    assert init_response.json()["current_step"] == 1

    early_skip = client.put("/api/onboarding/step/skip", json={"stepId": "user-profile"}, headers=auth_headers)
    assert early_skip.status_code == 400
    assert early_skip.json()["code"] == "REQUIRED_STEP_CANNOT_SKIP"

    profile_response = client.post(
        "/api/onboarding/step/complete",
        json={"stepId": "user-profile", "data": {"first_name": "Ada"}},
        headers=auth_headers,
    )
    assert profile_response.status_code == 200
    assert profile_response.json()["completed_steps"] == ["user-profile"]
    assert profile_response.json()["current_step"] == 2

    business_response = client.post(
        "/api/onboarding/step/complete",
        json={"stepId": "business-profile", "data": {"company": "Acme"}},
        headers={**auth_headers, "idempotency-key": "business-1"},
    )
    assert business_response.status_code == 200
    assert business_response.json()["current_step"] == 3

    skip_response = client.put("/api/onboarding/step/skip", json={"stepId": "data-setup"}, headers=auth_headers)
    assert skip_response.status_code == 200
    assert "data-setup" in skip_response.json()["skipped_steps"]

    late_skip = client.put("/api/onboarding/step/skip", json={"stepId": "user-profile"}, headers=auth_headers)
    assert late_skip.status_code == 400
    assert late_skip.json()["code"] == "REQUIRED_STEP_CANNOT_SKIP"

    progress = client.get("/api/onboarding/status", headers=auth_headers).json()
    assert progress["completed_steps"] == ["user-profile", "business-profile"]
    assert progress["skipped_steps"] == ["data-setup"]
    assert progress["progress_percentage"] == 33
    assert progress["next_step"] == "team"

    complete_response = client.post("/api/onboarding/complete", headers=auth_headers)
    assert complete_response.status_code == 200
    assert complete_response.json()["success"] is True

    final_status = client.get("/api/onboarding/status", headers=auth_headers).json()
    assert final_status["needs_onboarding"] is False
    assert final_status["onboarding"]["is_completed"] is True

    again = client.post("/api/onboarding/complete", headers=auth_headers)
    assert again.status_code == 409
    assert again.json()["code"] == "ONBOARDING_ALREADY_COMPLETED"

    # Required-step skips never reached the backend
    skip_calls = [r for r in backend.requests if r.url.path.endswith("/skip-step")]
    assert len(skip_calls) == 1

    actions = [(row["action"], row["success"]) for row in backend.audit_rows]
    assert ("ONBOARDING_INITIALIZE", True) in actions
    assert actions.count(("ONBOARDING_STEP_SKIP", False)) == 2
    assert ("ONBOARDING_COMPLETE", True) in actions
    assert ("ONBOARDING_COMPLETE", False) in actions
