import base64
import datetime as dt

from ledgerly.models.tables import BackgroundJob

from factories import HDFC_CSV, INVOICE_TEXT, add_transaction

API = "/api/v1"


def _category_id(client, slug):
    categories = client.get(f"{API}/categories").json()
    return next(c["id"] for c in categories if c["slug"] == slug)


def _hdfc_template_id(client):
    templates = client.get(f"{API}/bank-templates").json()
    return next(
        t["id"]
        for t in templates
        if t["bank_code"] == "hdfc" and t["account_type"] == "savings" and t["file_format"] == "csv"
    )


def _upload(api, **extra):
    body = {
        "file_name": "sep.csv",
        "content_base64": base64.b64encode(HDFC_CSV).decode(),
        "bank_template_id": _hdfc_template_id(api.client),
        **extra,
    }
    return api.client.post(f"{API}/statements", json=body)


def test_health_and_root(api):
    health = api.client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "healthy"
    assert api.client.head("/health").status_code == 200
    assert "docs" in api.client.get("/").json()


def test_user_header_is_validated(api):
    response = api.client.get(f"{API}/transactions", headers={"X-User-Id": "abc"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid X-User-Id header"
    response = api.client.get(f"{API}/transactions", headers={"X-User-Id": "9999"})
    assert response.status_code == 401


def test_missing_header_falls_back_to_dev_user(api):
    del api.client.headers["X-User-Id"]
    response = api.client.get(f"{API}/transactions")
    assert response.status_code == 200
    assert response.json() == []


def test_domain_errors_share_one_shape(api):
    response = api.client.get(f"{API}/transactions/9999")
    assert response.status_code == 404
    assert response.json() == {"error": "Transaction 9999 not found", "details": None}

    response = api.client.post(
        f"{API}/transactions",
        json={"transaction_date": "2026-09-01", "description": "cash", "amount": -5, "transaction_type": "debit"},
    )
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "Validation error"
    assert body["details"][0]["loc"][-1] == "amount"


def test_upload_and_parse_statement_inline(api, enqueued):
    response = _upload(api, parse_async=False)
    assert response.status_code == 201
    statement = response.json()
    assert statement["status"] == "parsed"
    assert statement["file_type"] == "csv"
    assert statement["job_id"] is None
    assert statement["parsing_progress"]["status"] == "completed"

    summary = api.client.get(f"{API}/statements/{statement['id']}/summary").json()
    assert summary["transaction_count"] == 2
    assert summary["total_debits"] == 450.0
    assert summary["total_credits"] == 85000.0

    transactions = api.client.get(f"{API}/transactions", params={"statement_id": statement["id"]}).json()
    assert [t["transaction_type"] for t in transactions] == ["credit", "debit"]
    assert "metadata" in transactions[0]
    assert "categorize_transactions" in enqueued.names()

    stream = api.client.get(f"{API}/statements/{statement['id']}/progress")
    assert stream.headers["content-type"].startswith("text/event-stream")
    assert "event: complete" in stream.text


def test_upload_queues_parse_by_default(api, enqueued):
    response = _upload(api)
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["job_id"] == "job-1"
    assert enqueued.calls == [("parse_statement", (body["id"],))]


def test_upload_rejects_bad_input(api):
    response = api.client.post(f"{API}/statements", json={"file_name": "sep.txt", "content_base64": "eA=="})
    assert response.status_code == 422
    response = api.client.post(f"{API}/statements", json={"file_name": "sep.csv", "content_base64": "@@@"})
    assert response.status_code == 422
    assert response.json()["detail"] == "content_base64 is not valid base64"
    response = _upload(api, bank_template_id=9999)
    assert response.status_code == 422
    assert response.json()["error"] == "Bank template 9999 does not exist"


def test_missing_statement_is_404(api):
    assert api.client.get(f"{API}/statements/9999").status_code == 404
    assert api.client.get(f"{API}/statements/9999/progress").status_code == 404


def test_manual_transaction_stats_and_feedback(api):
    shopping = _category_id(api.client, "shopping")
    created = api.client.post(
        f"{API}/transactions",
        json={"transaction_date": "2026-09-01", "description": "AMAZON PAY", "amount": 999, "transaction_type": "debit"},
    )
    assert created.status_code == 201
    tx = created.json()
    assert tx["is_reviewed"] is False
    assert tx["signed_amount"] == -999.0

    stats = api.client.get(f"{API}/transactions/stats").json()
    assert stats["total_debits"] == 999.0
    assert stats["by_category"] == {"Uncategorized": 999.0}
    assert stats["analytics"] is None
    detailed = api.client.get(f"{API}/transactions/stats", params={"detailed": True}).json()
    assert detailed["analytics"]["largest_expense"]["amount"] == 999.0

    feedback = api.client.post(f"{API}/transactions/{tx['id']}/feedback", json={"category_id": shopping})
    assert feedback.status_code == 200
    body = feedback.json()
    assert body["transaction"]["category_id"] == shopping
    assert body["transaction"]["is_reviewed"] is True
    assert body["rule_id"] is not None

    rules = api.client.get(f"{API}/user-rules").json()
    assert [r["id"] for r in rules] == [body["rule_id"]]


def test_update_and_delete_transaction(api):
    tx = api.run(lambda db: add_transaction(db, api.user_id, "SWIGGY", 300))
    food = _category_id(api.client, "food")

    response = api.client.patch(f"{API}/transactions/{tx.id}", json={"category_id": food, "tx_kind": "fee"})
    assert response.status_code == 200
    assert response.json()["category_id"] == food
    assert response.json()["tx_kind"] == "fee"

    rejected = api.client.patch(f"{API}/transactions/{tx.id}", json={"tx_kind": "expense"})
    assert rejected.status_code == 422

    assert api.client.delete(f"{API}/transactions/{tx.id}").status_code == 204
    assert api.client.get(f"{API}/transactions/{tx.id}").status_code == 404


def test_categorize_endpoint(api, enqueued):
    tx = api.run(lambda db: add_transaction(db, api.user_id, "SWIGGY BANGALORE", 300))

    response = api.client.post(f"{API}/transactions/categorize", json={"transaction_ids": [tx.id], "enable_llm": False})
    [result] = response.json()
    assert result["transaction_id"] == tx.id
    assert result["category_slug"] == "food"

    queued = api.client.post(f"{API}/transactions/categorize", json={"transaction_ids": [tx.id], "run_async": True})
    assert queued.json()["status"] == "queued"
    assert enqueued.calls[-1] == ("categorize_transactions", ([tx.id], api.user_id, True))


def test_user_rules_crud(api):
    food = _category_id(api.client, "food")
    created = api.client.post(f"{API}/user-rules", json={"pattern": "  Chai Point ", "category_id": food, "priority": 5})
    assert created.status_code == 201
    rule = created.json()
    assert rule["pattern"] == "chai point"
    assert rule["source"] == "manual"

    updated = api.client.put(f"{API}/user-rules/{rule['id']}", json={"is_active": False})
    assert updated.json()["is_active"] is False

    bad = api.client.post(
        f"{API}/user-rules", json={"pattern": "([", "pattern_type": "regex", "category_id": food}
    )
    assert bad.status_code == 422
    bad = api.client.post(
        f"{API}/user-rules", json={"pattern": "x", "category_id": food, "amount_min": 10, "amount_max": 1}
    )
    assert bad.status_code == 422

    assert api.client.delete(f"{API}/user-rules/{rule['id']}").status_code == 204
    assert api.client.get(f"{API}/user-rules/{rule['id']}").status_code == 404


def test_invoice_flow(api, enqueued):
    tx = api.run(lambda db: add_transaction(db, api.user_id, "UPI SWIGGY ORDER", 1180, day=dt.date(2026, 9, 10)))

    created = api.client.post(
        f"{API}/invoices",
        json={"vendor_name": "Swiggy", "invoice_date": "2026-09-10", "total_amount": 1180},
    )
    assert created.status_code == 201
    invoice = created.json()
    assert invoice["status"] == "extracted"
    assert invoice["job_id"] == "job-1"
    assert enqueued.calls == [("match_invoice", (invoice["id"],))]

    suggestions = api.client.get(f"{API}/invoices/{invoice['id']}/suggestions").json()
    assert suggestions[0]["transaction_id"] == tx.id
    assert suggestions[0]["score"] == 100

    matched = api.client.post(f"{API}/invoices/{invoice['id']}/match").json()
    assert matched["matched"] is True
    assert matched["transaction_id"] == tx.id

    assert api.client.get(f"{API}/transactions/{tx.id}").json()["invoice_id"] == invoice["id"]
    unlinked = api.client.delete(f"{API}/transactions/{tx.id}/invoice").json()
    assert unlinked["invoice_id"] is None

    relinked = api.client.post(f"{API}/transactions/{tx.id}/invoice/{invoice['id']}").json()
    assert relinked["matched_by"] == "manual"
    assert api.client.post(f"{API}/invoices/{invoice['id']}/unlink").json()["status"] == "extracted"


def test_invoice_text_is_queued_for_extraction(api, enqueued):
    created = api.client.post(f"{API}/invoices", json={"text": INVOICE_TEXT, "auto_match": False})
    assert created.status_code == 201
    invoice = created.json()
    assert invoice["status"] == "pending"
    assert invoice["total_amount"] is None
    assert invoice["job_id"] == "job-1"
    assert enqueued.calls == [("extract_invoice", (invoice["id"], False))]


def test_invoice_without_amount_is_failed(api, enqueued):
    created = api.client.post(f"{API}/invoices", json={"vendor_name": "Acme"}).json()
    assert created["status"] == "failed"
    assert created["job_id"] is None
    assert enqueued.calls == []

    response = api.client.post(f"{API}/invoices/{created['id']}/match")
    assert response.status_code == 400
    assert response.json()["error"] == "No amount found in invoice"


def test_jobs_are_scoped_to_the_caller(api):
    async def seed(db):
        db.add(BackgroundJob(id="msg-1", job_type="statement_parse", status="completed", user_id=api.user_id))
        db.add(BackgroundJob(id="msg-2", job_type="embeddings", status="failed", user_id=api.user_id))
        db.add(BackgroundJob(id="msg-3", job_type="embeddings", status="failed", user_id=api.user_id + 1))
        await db.commit()

    api.run(seed)
    job = api.client.get(f"{API}/jobs/msg-1").json()
    assert job["job_type"] == "statement_parse"
    assert api.client.get(f"{API}/jobs/msg-3").status_code == 404
    failed = api.client.get(f"{API}/jobs", params={"status": "failed"}).json()
    assert [j["id"] for j in failed] == ["msg-2"]


def test_workflow_endpoints(api, enqueued):
    steps = api.client.get(f"{API}/workflows/step-types").json()
    assert "send_notification" in {s["type"] for s in steps}

    bad = api.client.post(f"{API}/workflows", json={"name": "Nightly", "trigger_type": "schedule"})
    assert bad.status_code == 422
    bad_cron = api.client.post(
        f"{API}/workflows",
        json={"name": "Nightly", "trigger_type": "schedule", "trigger_config": {"cron": "0 9 * * FUNDAY"}},
    )
    assert bad_cron.status_code == 422

    created = api.client.post(
        f"{API}/workflows",
        json={
            "name": "Big spend alert",
            "steps": [
                {
                    "step_type": "send_notification",
                    "position": 1,
                    "config": {"title": "Alert", "message": "Spent {{trigger_data.amount}}"},
                }
            ],
        },
    )
    assert created.status_code == 201
    workflow = created.json()
    assert workflow["status"] == "draft"
    bad_update = api.client.patch(f"{API}/workflows/{workflow['id']}", json={"trigger_config": {"cron": "every day"}})
    assert bad_update.status_code == 422

    not_active = api.client.post(f"{API}/workflows/{workflow['id']}/execute", json={})
    assert not_active.status_code == 409
    assert api.client.post(f"{API}/workflows/{workflow['id']}/activate").json()["status"] == "active"

    queued = api.client.post(f"{API}/workflows/{workflow['id']}/execute", json={"trigger_data": {"amount": 5}})
    assert queued.status_code == 202
    assert queued.json()["status"] == "pending"
    assert enqueued.calls == [("run_workflow_execution", (queued.json()["id"],))]
    cancelled = api.client.post(f"{API}/workflows/{workflow['id']}/executions/{queued.json()['id']}/cancel")
    assert cancelled.json()["status"] == "cancelled"

    ran = api.client.post(
        f"{API}/workflows/{workflow['id']}/execute", json={"trigger_data": {"amount": 5000}, "run_sync": True}
    ).json()
    assert ran["status"] == "completed"
    assert [log["status"] for log in ran["logs"]] == ["completed"]

    notifications = api.client.get(f"{API}/workflows/notifications").json()
    assert [n["message"] for n in notifications] == ["Spent 5000"]
    executions = api.client.get(f"{API}/workflows/{workflow['id']}/executions").json()
    assert len(executions) == 2

    duplicate = api.client.post(f"{API}/workflows/{workflow['id']}/steps", json={"step_type": "delay", "position": 1})
    assert duplicate.status_code == 422
    assert api.client.delete(f"{API}/workflows/{workflow['id']}").status_code == 204
    assert api.client.get(f"{API}/workflows/{workflow['id']}").status_code == 404
