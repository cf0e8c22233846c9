def test_creator_can_create_survey_analyst_cannot(client, tenant):
    denied = client.post("/surveys", json={"title": "Attempt"}, headers=tenant.analyst)
    assert denied.status_code == 403

    r = client.post("/surveys", json={
        "title": "Encuesta de Prueba",
        "description": "Testing...",
        "start_date": "2025-01-01",
        "end_date": "2025-12-31",
    }, headers=tenant.creator)
    assert r.status_code == 201, r.text
    data = r.json()["data"]
    assert data["company_id"] == tenant.company_id
    assert data["created_by"] == tenant.creator_id
    assert len(data["link_slug"]) == 8
    assert data["links"]["short_link"].endswith(f"/s/{data['link_slug']}")
    assert "qr_code" in data["links"]

def test_admin_can_create_survey(client, tenant):
    assert client.post("/surveys", json={"title": "By admin"}, headers=tenant.admin).status_code == 201

def test_create_survey_with_questions_and_aliases(client, tenant):
    r = client.post("/surveys", json={
        "title": "Aliases",
        "questions": [
            {"text": "Nombre", "type": "texto"},
            {"text": "Color", "type": "seleccion", "options": ["Rojo", {"text": "Azul", "value": "blue"}]},
            {"text": "Nacimiento", "type": "fecha"},
        ],
    }, headers=tenant.creator)
    assert r.status_code == 201, r.text
    qs = r.json()["data"]["questions"]
    assert [q["type"] for q in qs] == ["text", "single_choice", "date"]
    assert [q["order"] for q in qs] == [0, 1, 2]
    assert [(o["text"], o["value"]) for o in qs[1]["options"]] == [("Rojo", "Rojo"), ("Azul", "blue")]

def test_create_survey_validation(client, tenant):
    assert client.post("/surveys", json={"description": "no title"}, headers=tenant.creator).status_code == 400

    bad_type = client.post("/surveys", json={"title": "T", "questions": [{"text": "Q", "type": "essay"}]},
                           headers=tenant.creator)
    assert bad_type.status_code == 400
    assert "#1" in bad_type.json()["detail"]

    no_options = client.post("/surveys", json={"title": "T", "questions": [
        {"text": "Q1", "type": "text"},
        {"text": "Q2", "type": "multiple_choice"},
    ]}, headers=tenant.creator)
    assert no_options.status_code == 400
    assert "#2" in no_options.json()["detail"]

    incomplete = client.post("/surveys", json={"title": "T", "questions": [{"text": "Q"}]}, headers=tenant.creator)
    assert incomplete.status_code == 400

def test_list_and_get_are_tenant_scoped(client, tenant, other_tenant, survey):
    listing = client.get("/surveys", headers=tenant.analyst).json()["data"]
    assert survey.id in [s["id"] for s in listing]
    assert all(s["company_id"] == tenant.company_id for s in listing)
    assert [s for s in listing if s["id"] == survey.id][0]["creator_name"] == "Creator"

    detail = client.get(f"/surveys/{survey.id}", headers=tenant.analyst).json()["data"]
    assert [q["type"] for q in detail["questions"]] == [
        "single_choice", "multiple_choice", "rating", "text", "number"
    ]
    assert [o["text"] for o in detail["questions"][0]["options"]] == ["Sí", "No", "Mucho"]

    assert survey.id not in [s["id"] for s in client.get("/surveys", headers=other_tenant.admin).json()["data"]]
    assert client.get(f"/surveys/{survey.id}", headers=other_tenant.admin).status_code == 404

def test_update_survey(client, tenant, survey):
    r = client.put(f"/surveys/{survey.id}", json={"title": "Encuesta Modificada", "description": "Nueva"},
                   headers=tenant.creator)
    assert r.status_code == 200
    assert r.json()["data"]["title"] == "Encuesta Modificada"
    assert r.json()["data"]["description"] == "Nueva"

    assert client.put(f"/surveys/{survey.id}", json={}, headers=tenant.creator).status_code == 400
    assert client.put(f"/surveys/{survey.id}", json={"title": "  "}, headers=tenant.creator).status_code == 400
    assert client.put(f"/surveys/{survey.id}", json={"title": "x"}, headers=tenant.analyst).status_code == 403

def test_duplicate_survey_copies_questions(client, tenant, survey):
    r = client.post(f"/surveys/{survey.id}/duplicate", json={"title": "Encuesta Duplicada"}, headers=tenant.creator)
    assert r.status_code == 201
    new_id = r.json()["data"]["id"]
    assert new_id != survey.id

    copy = client.get(f"/surveys/{new_id}", headers=tenant.creator).json()["data"]
    original = client.get(f"/surveys/{survey.id}", headers=tenant.creator).json()["data"]
    assert copy["title"] == "Encuesta Duplicada"
    assert copy["link_slug"] != original["link_slug"]
    assert [(q["text"], q["type"], [o["text"] for o in q["options"]]) for q in copy["questions"]] == \
           [(q["text"], q["type"], [o["text"] for o in q["options"]]) for q in original["questions"]]

def test_duplicate_without_body_appends_copia(client, tenant, survey):
    r = client.post(f"/surveys/{survey.id}/duplicate", headers=tenant.creator)
    assert r.status_code == 201
    assert r.json()["data"]["title"] == "Satisfacción 2025 (Copia)"

def test_add_and_delete_question(client, tenant, survey):
    r = client.post(f"/surveys/{survey.id}/questions",
                    json={"text": "¿Recomendarías?", "type": "calificacion", "options": ["1", "2", "3"]},
                    headers=tenant.creator)
    assert r.status_code == 201, r.text
    q = r.json()["data"]
    assert q["type"] == "rating"
    assert q["order"] == 5

    bad = client.post(f"/surveys/{survey.id}/questions", json={"text": "X", "type": "single_choice"},
                      headers=tenant.creator)
    assert bad.status_code == 400

    assert client.delete(f"/surveys/{survey.id}/questions/{q['id']}", headers=tenant.creator).status_code == 200
    assert client.delete(f"/surveys/{survey.id}/questions/{q['id']}", headers=tenant.creator).status_code == 404
    detail = client.get(f"/surveys/{survey.id}", headers=tenant.creator).json()["data"]
    assert q["id"] not in [x["id"] for x in detail["questions"]]

def test_delete_survey_cascades(client, tenant, other_tenant, survey):
    client.post(f"/submit/{survey.id}", json={"answers": [{"question_id": survey.q["text"], "value": "hola"}]})
    assert client.delete(f"/surveys/{survey.id}", headers=other_tenant.admin).status_code == 404
    assert client.delete(f"/surveys/{survey.id}", headers=tenant.creator).status_code == 200
    assert client.get(f"/surveys/{survey.id}", headers=tenant.creator).status_code == 404
    assert client.get(f"/reports/{survey.id}", headers=tenant.analyst).status_code == 404

def test_public_short_link(client, survey):
    r = client.get(f"/s/{survey.slug}")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["id"] == survey.id
    assert len(data["questions"]) == 5
    assert client.get("/s/doesnotexist").status_code == 404
