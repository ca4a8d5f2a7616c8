from pricewatch.coordinator import RunCoordinator
from pricewatch.errors import ValidationError
from pricewatch.models import PriceHistory, Product, Recommendation
from pricewatch_api.api.deps import get_oracle_factory
from pricewatch_api.main import app


def _product_id(session, name: str) -> str:
    return session.query(Product).filter(Product.name == name).one().id


def _start_run(client, **payload) -> str:
    response = client.post("/v1/admin/ingestion-runs", json=payload or None)
    assert response.status_code == 202
    return response.json()["run_id"]


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_admin_token_required(client):
    response = client.get("/v1/admin/ingestion-runs", headers={"X-Admin-Token": "wrong"})
    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "unauthorized"


def test_start_run_executes_in_background(client):
    run_id = _start_run(client, triggered_by="ana@example.com")

    response = client.get(f"/v1/admin/ingestion-runs/{run_id}")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "completed"
    assert payload["progress"]["total_lookups"] == 8
    assert payload["progress"]["percent"] == 100.0
    assert payload["results_summary"]["success"] == 5
    assert payload["results_summary"]["not_found"] == 3
    assert payload["results_summary"]["products_with_recommendations"] == 2
    assert payload["failure_reason"] is None
    assert payload["results"] is None


def test_run_status_with_results(client):
    run_id = _start_run(client)

    payload = client.get(f"/v1/admin/ingestion-runs/{run_id}", params={"include_results": True}).json()

    assert len(payload["results"]) == 8
    mismatched = [row for row in payload["results"] if row["currency"] == "USD"]
    assert len(mismatched) == 1
    assert mismatched[0]["lookup_status"] == "not_found"
    assert mismatched[0]["price"] is None


def test_start_run_for_unknown_product(client):
    response = client.post("/v1/admin/ingestion-runs", json={"product_id": "missing"})
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "not_found"


def test_run_listing(client, session):
    first = _start_run(client)
    second = _start_run(client, product_id=_product_id(session, "Vitamina C 500mg x 100"))

    listing = client.get("/v1/admin/ingestion-runs", params={"page": 1, "limit": 1}).json()
    assert listing["total"] == 2
    assert [item["id"] for item in listing["items"]] == [second]

    recent = client.get("/v1/admin/ingestion-runs/recent").json()
    assert {item["id"] for item in recent} == {first, second}

    completed = client.get("/v1/admin/ingestion-runs/status/completed").json()
    assert len(completed) == 2
    assert client.get("/v1/admin/ingestion-runs/status/bogus").status_code == 400


def test_unknown_run(client):
    response = client.get("/v1/admin/ingestion-runs/missing")
    assert response.status_code == 404


def test_cancel_pending_run_and_refuse_terminal(client, session):
    run = RunCoordinator(session).create(triggered_by="tester", total_products=0, total_lookups=0)

    response = client.post(f"/v1/admin/ingestion-runs/{run.id}/cancel")
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"

    again = client.post(f"/v1/admin/ingestion-runs/{run.id}/cancel")
    assert again.status_code == 400
    assert again.json()["detail"]["message"] == "Can only cancel pending or running runs"


def test_latest_recommendation_and_accept(client, session):
    run_id = _start_run(client)
    product_id = _product_id(session, "Vitamina C 500mg x 100")

    latest = client.get(f"/v1/admin/recommendations/latest/{product_id}").json()
    assert latest["recommendation"] == "lower"
    assert latest["ingestion_run_id"] == run_id
    assert latest["recommended_price"] == 24900

    accepted = client.post(f"/v1/admin/recommendations/{latest['id']}/accept", json={"actor": "ana@example.com"})
    assert accepted.status_code == 200
    assert accepted.json()["recommendation_status"] == "approved"

    history = client.get(f"/v1/admin/products/{product_id}/price-history").json()
    assert len(history) == 1
    assert history[0]["old_price_inc_tax"] == 28000
    assert history[0]["new_price_inc_tax"] == 24900
    assert history[0]["change_reason"] == "recommendation_accepted"

    rejected = client.post(f"/v1/admin/recommendations/{latest['id']}/reject", json={"actor": "bob"})
    assert rejected.status_code == 400


def test_accept_keep_recommendation_is_rejected(client, session):
    _start_run(client)
    product_id = _product_id(session, "Magnesio Citrato x 60")
    latest = client.get(f"/v1/admin/recommendations/latest/{product_id}").json()

    response = client.post(f"/v1/admin/recommendations/{latest['id']}/accept", json={"actor": "ana"})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "validation_error"
    assert session.query(PriceHistory).count() == 0


def test_reject_recommendation(client, session):
    _start_run(client)
    product_id = _product_id(session, "Omega 3 1000mg x 60")
    latest = client.get(f"/v1/admin/recommendations/latest/{product_id}").json()

    response = client.post(f"/v1/admin/recommendations/{latest['id']}/reject", json={"actor": "bob"})

    assert response.status_code == 200
    assert response.json()["recommendation_status"] == "rejected"
    assert response.json()["approved_by"] == "bob"


def test_bulk_accept(client, session):
    run_id = _start_run(client)
    ids = [row.id for row in session.query(Recommendation).filter_by(ingestion_run_id=run_id).all()]

    response = client.post(
        "/v1/admin/recommendations/bulk-accept",
        json={"recommendation_ids": ids + ["missing"], "actor": "ana"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["successful"] == 2
    assert payload["skipped"] == 2
    assert payload["failed"] == 1
    assert payload["errors"] == [{"recommendation_id": "missing", "error": "Recommendation not found"}]
    assert payload["success"] is False


def test_request_validation_errors(client):
    response = client.post("/v1/admin/recommendations/bulk-accept", json={"recommendation_ids": [], "actor": "ana"})
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"

    response = client.post("/v1/admin/recommendations/some-id/accept", json={})
    assert response.status_code == 422


def test_latest_recommendation_missing(client, session):
    product_id = _product_id(session, "Omega 3 1000mg x 60")
    response = client.get(f"/v1/admin/recommendations/latest/{product_id}")
    assert response.status_code == 404


def test_background_run_fails_when_oracles_cannot_be_built(client):
    def unconfigured(settings):
        raise ValidationError("Live mode needs PRICEWATCH_LOOKUP_ORACLE_URL and PRICEWATCH_RECOMMENDATION_ORACLE_URL")

    app.dependency_overrides[get_oracle_factory] = lambda: unconfigured
    run_id = _start_run(client)

    payload = client.get(f"/v1/admin/ingestion-runs/{run_id}").json()
    assert payload["status"] == "failed"
    assert "Live mode needs" in payload["failure_reason"]
    assert payload["progress"]["completed_lookups"] == 0
