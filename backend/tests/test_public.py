# backend/tests/test_public.py

def test_web_submission_stores_response(client, survey, db_session):
    r = client.post(f"/submit/{survey.id}", json={
        "respondent_identifier": "tester@demo.com",
        "answers": [
            {"question_id": survey.q["single_choice"], "value": "Mucho"},
            {"question_id": survey.q["multiple_choice"], "value": ["A", "B"]},
            {"question_id": survey.q["number"], "value": 42},
        ],
    })
    assert r.status_code == 201, r.text
    rid = r.json()["data"]["response_id"]

    from models import Response, Answer
    resp = db_session.get(Response, rid)
    assert resp.channel == "web"
    assert resp.respondent_identifier == "tester@demo.com"
    values = {a.question_id: a.value for a in db_session.query(Answer).filter(Answer.response_id == rid)}
    assert values == {
        survey.q["single_choice"]: "Mucho",
        survey.q["multiple_choice"]: "A,B",
        survey.q["number"]: "42",
    }

def test_submission_validation(client, survey, other_tenant):
    assert client.post(f"/submit/{survey.id}", json={"answers": []}).status_code == 400
    assert client.post(f"/submit/{survey.id}", json={}).status_code == 400
    assert client.post("/submit/999999", json={"answers": [{"question_id": 1, "value": "x"}]}).status_code == 404

    foreign = client.post("/surveys", json={"title": "Other", "questions": [{"text": "Q", "type": "text"}]},
                          headers=other_tenant.admin).json()["data"]["questions"][0]["id"]
    r = client.post(f"/submit/{survey.id}", json={"answers": [{"question_id": foreign, "value": "x"}]})
    assert r.status_code == 400

def test_rejected_submission_writes_nothing(client, survey, tenant):
    client.post(f"/submit/{survey.id}", json={"answers": [
        {"question_id": survey.q["text"], "value": "valid"},
        {"question_id": 999999, "value": "invalid"},
    ]})
    report = client.get(f"/reports/{survey.id}", headers=tenant.analyst).json()
    assert report["results"] == []

def test_whatsapp_webhook(client, survey, db_session):
    r = client.post("/webhook/whatsapp", json={
        "from": "+573001234567",
        "survey_id": survey.id,
        "answers": [{"question_id": survey.q["text"], "value": "Excelente"}],
    })
    assert r.status_code == 200, r.text
    j = r.json()
    assert j["status"] == "success"

    from models import Response
    resp = db_session.get(Response, j["response_id"])
    assert resp.channel == "whatsapp"
    assert resp.respondent_identifier == "+573001234567"

def test_whatsapp_webhook_validation(client, survey):
    assert client.post("/webhook/whatsapp", json={"from": "+57", "answers": []}).status_code == 400
    assert client.post("/webhook/whatsapp", json={"from": "+57", "survey_id": survey.id}).status_code == 400
    assert client.post("/webhook/whatsapp", json={
        "from": "+57", "survey_id": 999999, "answers": [{"question_id": 1, "value": "x"}],
    }).status_code == 404

def test_boolean_answers_are_stored_lowercase(client, survey, db_session):
    r = client.post(f"/submit/{survey.id}", json={"answers": [
        {"question_id": survey.q["text"], "value": True},
        {"question_id": survey.q["multiple_choice"], "value": [False, "A"]},
    ]})
    assert r.status_code == 201, r.text
    rid = r.json()["data"]["response_id"]

    from models import Answer
    values = {a.question_id: a.value for a in db_session.query(Answer).filter(Answer.response_id == rid)}
    assert values == {survey.q["text"]: "true", survey.q["multiple_choice"]: "false,A"}
