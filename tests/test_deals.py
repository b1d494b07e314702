"""
Test deal management endpoints
"""

from uuid import uuid4

from fastapi.testclient import TestClient

from crm.app.core.security import create_access_token


def test_requires_bearer_token(client: TestClient):
    response = client.get("/api/v1/deals/")
    assert response.status_code == 401


def test_rejects_bad_token(client: TestClient):
    response = client.get("/api/v1/deals/", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_create_deal_defaults(client: TestClient, create_deal, user_id):
    deal = create_deal(amount=25000, related_meeting_id=str(uuid4()))

    assert deal["stage"] == "Discussions"
    assert deal["currency"] == "USD"
    assert deal["created_by"] == str(user_id)
    assert deal["completion_status"] == "incomplete"
    assert deal["next_stage"] == "Qualified"
    assert deal["stage_requirements"][0] == "Customer need identified"
    assert len(deal["missing_requirements"]) == 4


def test_create_deal_validates_enums(client: TestClient, auth_headers):
    response = client.post(
        "/api/v1/deals/",
        json={"deal_name": "Bad", "customer_agreed_on_need": "Maybe"},
        headers=auth_headers
    )
    assert response.status_code == 422


def test_create_lost_deal_requires_reason(client: TestClient, auth_headers):
    response = client.post(
        "/api/v1/deals/",
        json={"deal_name": "Gone", "stage": "Lost"},
        headers=auth_headers
    )
    assert response.status_code == 422
    assert response.json()["detail"]["missing_requirements"][0]["field"] == "loss_reason"


def test_get_deal(client: TestClient, auth_headers, create_deal):
    deal = create_deal()

    response = client.get(f"/api/v1/deals/{deal['id']}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["deal_name"] == "Acme retrofit"


def test_get_missing_deal(client: TestClient, auth_headers):
    response = client.get(f"/api/v1/deals/{uuid4()}", headers=auth_headers)
    assert response.status_code == 404


def test_update_deal_fields(client: TestClient, auth_headers, create_deal, discussions_complete):
    deal = create_deal()

    response = client.patch(f"/api/v1/deals/{deal['id']}", json=discussions_complete, headers=auth_headers)
    assert response.status_code == 200

    data = response.json()["data"]
    assert data["need_summary"] == "needs X"
    assert data["completion_status"] == "complete"
    assert data["stage"] == "Discussions"


def test_update_cannot_change_stage(client: TestClient, auth_headers, create_deal):
    deal = create_deal()

    response = client.patch(f"/api/v1/deals/{deal['id']}", json={"stage": "Won"}, headers=auth_headers)
    assert response.status_code == 422


def test_update_rejects_null_deal_name(client: TestClient, auth_headers, create_deal):
    deal = create_deal()

    response = client.patch(f"/api/v1/deals/{deal['id']}", json={"deal_name": None}, headers=auth_headers)
    assert response.status_code == 422

    response = client.patch(f"/api/v1/deals/{deal['id']}", json={"deal_name": "   "}, headers=auth_headers)
    assert response.status_code == 422


def test_update_cannot_clear_loss_reason(client: TestClient, auth_headers, create_deal):
    deal = create_deal(stage="Lost", loss_reason="Budget")

    response = client.patch(f"/api/v1/deals/{deal['id']}", json={"loss_reason": None}, headers=auth_headers)
    assert response.status_code == 422
    assert response.json()["detail"]["reason"] == "missing_terminal_reason"
    assert response.json()["detail"]["missing_requirements"][0]["field"] == "loss_reason"

    current = client.get(f"/api/v1/deals/{deal['id']}", headers=auth_headers).json()
    assert current["loss_reason"] == "Budget"

    response = client.patch(f"/api/v1/deals/{deal['id']}", json={"loss_reason": "Timeline"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["data"]["loss_reason"] == "Timeline"


def test_update_cannot_blank_drop_reason(client: TestClient, auth_headers, create_deal):
    deal = create_deal(stage="Dropped", drop_reason="Project cancelled")

    response = client.patch(f"/api/v1/deals/{deal['id']}", json={"drop_reason": "  "}, headers=auth_headers)
    assert response.status_code == 422
    assert response.json()["detail"]["missing_requirements"][0]["field"] == "drop_reason"

    current = client.get(f"/api/v1/deals/{deal['id']}", headers=auth_headers).json()
    assert current["drop_reason"] == "Project cancelled"


def test_scenario_a_move_complete_deal(client: TestClient, auth_headers, create_deal, discussions_complete):
    deal = create_deal(**discussions_complete)

    probe = client.get(f"/api/v1/deals/{deal['id']}/transitions/Qualified", headers=auth_headers)
    assert probe.status_code == 200
    assert probe.json()["allowed"] is True

    response = client.post(
        f"/api/v1/deals/{deal['id']}/move",
        json={"target_stage": "Qualified"},
        headers=auth_headers
    )
    assert response.status_code == 200
    assert response.json()["data"]["stage"] == "Qualified"


def test_scenario_b_move_refused_with_missing_fields(client: TestClient, auth_headers, create_deal, discussions_complete):
    deal = create_deal(**dict(discussions_complete, need_summary=""))

    probe = client.get(f"/api/v1/deals/{deal['id']}/transitions/Qualified", headers=auth_headers)
    assert probe.json()["allowed"] is False
    assert probe.json()["reason"] == "current_stage_incomplete"

    response = client.post(
        f"/api/v1/deals/{deal['id']}/move",
        json={"target_stage": "Qualified"},
        headers=auth_headers
    )
    assert response.status_code == 422

    detail = response.json()["detail"]
    assert detail["reason"] == "current_stage_incomplete"
    assert [req["field"] for req in detail["missing_requirements"]] == ["need_summary"]

    current = client.get(f"/api/v1/deals/{deal['id']}", headers=auth_headers).json()
    assert current["stage"] == "Discussions"


def test_move_with_submitted_form_fields(client: TestClient, auth_headers, create_deal, discussions_complete):
    deal = create_deal()

    response = client.post(
        f"/api/v1/deals/{deal['id']}/move",
        json={"target_stage": "Qualified", "fields": discussions_complete},
        headers=auth_headers
    )
    assert response.status_code == 200

    data = response.json()["data"]
    assert data["stage"] == "Qualified"
    assert data["need_summary"] == "needs X"


def test_refused_move_does_not_apply_fields(client: TestClient, auth_headers, create_deal):
    deal = create_deal()

    response = client.post(
        f"/api/v1/deals/{deal['id']}/move",
        json={"target_stage": "Qualified", "fields": {"need_summary": "partial notes"}},
        headers=auth_headers
    )
    assert response.status_code == 422

    current = client.get(f"/api/v1/deals/{deal['id']}", headers=auth_headers).json()
    assert current["need_summary"] is None


def test_scenario_c_lost_requires_loss_reason(client: TestClient, auth_headers, create_deal, offered_complete):
    deal = create_deal(stage="Offered", **offered_complete)

    probe = client.get(f"/api/v1/deals/{deal['id']}/transitions/Lost", headers=auth_headers).json()
    assert probe["allowed"] is True
    assert [req["field"] for req in probe["commit_requirements"]] == ["loss_reason"]

    response = client.post(
        f"/api/v1/deals/{deal['id']}/move",
        json={"target_stage": "Lost"},
        headers=auth_headers
    )
    assert response.status_code == 422
    assert response.json()["detail"]["reason"] == "missing_terminal_reason"

    response = client.post(
        f"/api/v1/deals/{deal['id']}/move",
        json={"target_stage": "Lost", "fields": {"loss_reason": "Competitor", "lost_to": "Globex"}},
        headers=auth_headers
    )
    assert response.status_code == 200
    assert response.json()["data"]["stage"] == "Lost"
    assert response.json()["data"]["is_closed"] is True


def test_terminal_move_skips_current_stage_check(client: TestClient, auth_headers, create_deal):
    deal = create_deal()

    response = client.post(
        f"/api/v1/deals/{deal['id']}/move",
        json={"target_stage": "Dropped", "fields": {"drop_reason": "Customer paused the project"}},
        headers=auth_headers
    )
    assert response.status_code == 200
    assert response.json()["data"]["stage"] == "Dropped"


def test_repeated_move_is_a_noop(client: TestClient, auth_headers, create_deal):
    deal = create_deal()

    first = client.post(f"/api/v1/deals/{deal['id']}/move", json={"target_stage": "Won"}, headers=auth_headers)
    assert first.status_code == 200

    second = client.post(f"/api/v1/deals/{deal['id']}/move", json={"target_stage": "Won"}, headers=auth_headers)
    assert second.status_code == 409
    assert second.json()["detail"]["reason"] == "same_stage"

    current = client.get(f"/api/v1/deals/{deal['id']}", headers=auth_headers).json()
    assert current["stage"] == "Won"


def test_move_rejects_null_deal_name(client: TestClient, auth_headers, create_deal, discussions_complete):
    deal = create_deal(**discussions_complete)

    response = client.post(
        f"/api/v1/deals/{deal['id']}/move",
        json={"target_stage": "Qualified", "fields": {"deal_name": None}},
        headers=auth_headers
    )
    assert response.status_code == 422

    response = client.post(
        f"/api/v1/deals/{deal['id']}/advance",
        json={"fields": {"deal_name": None}},
        headers=auth_headers
    )
    assert response.status_code == 422

    current = client.get(f"/api/v1/deals/{deal['id']}", headers=auth_headers).json()
    assert current["stage"] == "Discussions"
    assert current["deal_name"] == "Acme retrofit"


def test_move_records_modifier(client: TestClient, create_deal, discussions_complete):
    deal = create_deal(**discussions_complete)
    other_user = str(uuid4())
    headers = {"Authorization": f"Bearer {create_access_token({'sub': other_user})}"}

    response = client.post(f"/api/v1/deals/{deal['id']}/move", json={"target_stage": "Qualified"}, headers=headers)
    assert response.json()["data"]["modified_by"] == other_user


def test_scenario_d_zero_rfq_value_blocks_advance(client: TestClient, auth_headers, create_deal):
    deal = create_deal(
        stage="RFQ",
        rfq_value=0,
        rfq_document_url="https://files.example.com/rfq.pdf",
        product_service_scope="Scope"
    )
    assert deal["completion_status"] == "partial"

    response = client.post(f"/api/v1/deals/{deal['id']}/advance", headers=auth_headers)
    assert response.status_code == 422
    assert response.json()["detail"]["missing_requirements"][0]["field"] == "rfq_value"


def test_advance_walks_the_pipeline(client: TestClient, auth_headers, create_deal, discussions_complete, qualified_complete):
    deal = create_deal(**discussions_complete)

    response = client.post(f"/api/v1/deals/{deal['id']}/advance", headers=auth_headers)
    assert response.json()["data"]["stage"] == "Qualified"

    response = client.post(
        f"/api/v1/deals/{deal['id']}/advance",
        json={"fields": qualified_complete},
        headers=auth_headers
    )
    assert response.status_code == 200
    assert response.json()["data"]["stage"] == "RFQ"


def test_advance_from_terminal_stage_is_refused(client: TestClient, auth_headers, create_deal):
    deal = create_deal(stage="Won", win_reason="Best lead time")

    response = client.post(f"/api/v1/deals/{deal['id']}/advance", headers=auth_headers)
    assert response.status_code == 422
    assert response.json()["detail"]["reason"] == "no_next_stage"


def test_list_deals_filters_and_sorts(client: TestClient, auth_headers, create_deal):
    create_deal(deal_name="Alpha pumps", amount=300, probability=10)
    create_deal(deal_name="Beta valves", amount=100, probability=60)
    create_deal(deal_name="Gamma pumps", probability=90)

    response = client.get("/api/v1/deals/?search=pumps&sort_by=amount&sort_order=asc", headers=auth_headers)
    assert response.status_code == 200
    assert [deal["deal_name"] for deal in response.json()] == ["Alpha pumps", "Gamma pumps"]

    response = client.get("/api/v1/deals/?sort_by=amount&sort_order=desc", headers=auth_headers)
    assert [deal["deal_name"] for deal in response.json()] == ["Gamma pumps", "Alpha pumps", "Beta valves"]

    response = client.get("/api/v1/deals/?min_probability=50", headers=auth_headers)
    assert {deal["deal_name"] for deal in response.json()} == {"Beta valves", "Gamma pumps"}

    response = client.get("/api/v1/deals/?limit=1&offset=1&sort_by=deal_name&sort_order=asc", headers=auth_headers)
    assert [deal["deal_name"] for deal in response.json()] == ["Beta valves"]


def test_list_deals_by_stage(client: TestClient, auth_headers, create_deal):
    create_deal(stage="Qualified")
    create_deal()

    response = client.get("/api/v1/deals/?stage=Qualified", headers=auth_headers)
    assert [deal["stage"] for deal in response.json()] == ["Qualified"]


def test_list_deals_rejects_unknown_sort_column(client: TestClient, auth_headers):
    response = client.get("/api/v1/deals/?sort_by=need_summary", headers=auth_headers)
    assert response.status_code == 400


def test_board(client: TestClient, auth_headers, create_deal, discussions_complete):
    create_deal(amount=1000, **discussions_complete)
    create_deal(amount=500)

    response = client.get("/api/v1/deals/board", headers=auth_headers)
    assert response.status_code == 200

    data = response.json()
    assert data["total_deals"] == 2
    assert len(data["columns"]) == 7

    discussions = data["columns"][0]
    assert discussions["stage"] == "Discussions"
    assert discussions["deal_count"] == 2
    assert discussions["total_value"] == 1500
    assert discussions["readiness_percent"] == 50


def test_stats(client: TestClient, auth_headers, create_deal):
    create_deal(amount=1000)
    create_deal(stage="Won", amount=3000)

    response = client.get("/api/v1/deals/stats", headers=auth_headers)
    assert response.status_code == 200

    data = response.json()
    assert data["total_value"] == 4000
    assert data["won_value"] == 3000
    assert data["win_rate"] == 50
    assert data["by_stage"]["Won"]["count"] == 1


def test_stage_definitions(client: TestClient):
    response = client.get("/api/v1/deals/stages/definitions")
    assert response.status_code == 200

    data = response.json()
    assert [stage["name"] for stage in data["stages"]] == [
        "Discussions", "Qualified", "RFQ", "Offered", "Won", "Lost", "Dropped"
    ]
    assert data["terminal_stages"] == ["Won", "Lost", "Dropped"]
    assert data["stages"][3]["next_stage"] == "Won"
    assert data["stages"][4]["next_stage"] is None


def test_delete_deal(client: TestClient, auth_headers, create_deal):
    deal = create_deal()

    response = client.delete(f"/api/v1/deals/{deal['id']}", headers=auth_headers)
    assert response.status_code == 200

    response = client.delete(f"/api/v1/deals/{deal['id']}", headers=auth_headers)
    assert response.status_code == 404


def test_bulk_delete(client: TestClient, auth_headers, create_deal):
    first = create_deal()
    second = create_deal()
    missing = str(uuid4())

    response = client.post(
        "/api/v1/deals/bulk-delete",
        json={"deal_ids": [first["id"], second["id"], missing]},
        headers=auth_headers
    )
    assert response.status_code == 200

    data = response.json()["data"]
    assert sorted(data["deleted"]) == sorted([first["id"], second["id"]])
    assert data["not_found"] == [missing]

    remaining = client.get("/api/v1/deals/", headers=auth_headers).json()
    assert remaining == []
