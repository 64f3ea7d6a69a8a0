import asyncio
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from fakes import FakeInference, add_rate_pdf, quotation_json
from quotedesk.app.api import create_app
from quotedesk.store import RateMapping


@pytest.fixture()
def client(ctx) -> TestClient:
    return TestClient(create_app(ctx))


def _seed(ctx):
    add_rate_pdf(ctx.storage, "rates.pdf")
    ctx.rate_index.upsert(RateMapping("rates/rates.pdf", "file-rates", original_name="rates.pdf"))
    ctx.shared_texts.save_instructions("Use 10% margin")


def test_health(client):
    res = client.get("/api/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok", "message": "Server is running"}


def test_instructions_and_terms(client):
    assert client.get("/api/get-instructions").json() == {"hasFile": False, "content": ""}
    assert client.post("/api/save-instructions", json={}).status_code == 400

    res = client.post("/api/save-instructions", json={"instructions": "Use 10% margin"})
    assert res.status_code == 200
    assert client.get("/api/get-instructions").json() == {"hasFile": True, "content": "Use 10% margin"}

    client.post("/api/save-default-terms", json={"defaultTerms": "Net 30"})
    assert client.get("/api/get-default-terms").json()["content"] == "Net 30"


def test_upload_list_view_delete_rates(client, ctx):
    res = client.post(
        "/api/upload-rates",
        files=[
            ("rateFiles", ("prices.pdf", b"%PDF-1.4", "application/pdf")),
            ("rateFiles", ("prices.xlsx", b"xx", "application/vnd.ms-excel")),
        ],
    )
    assert res.status_code == 200
    body = res.json()
    assert body["count"] == 1
    assert body["errors"][0]["filename"] == "prices.xlsx"
    saved = body["filenames"][0]

    current = client.get("/api/current-rates").json()
    assert current == {"hasFiles": True, "filenames": [saved], "count": 1}

    view = client.get("/api/view-rate-file", params={"filename": saved})
    assert view.status_code == 200
    assert view.headers["content-type"] == "application/pdf"
    assert view.content == b"%PDF-1.4"

    assert client.post("/api/delete-rate-file", json={"filename": saved}).status_code == 200
    assert client.post("/api/delete-rate-file", json={"filename": saved}).status_code == 404
    assert ctx.inference.deleted == ["file-1"]


def test_upload_rejects_all_invalid(client):
    res = client.post("/api/upload-rates", files=[("rateFiles", ("a.txt", b"x", "text/plain"))])
    assert res.status_code == 400
    assert res.json()["detail"]["message"] == "All files failed to upload"


def test_generate_quotation(client, ctx):
    _seed(ctx)
    res = client.post(
        "/api/generate-quotation",
        json={"emailContent": "10 mtr 1XH ERW", "instructions": "Use 10% margin"},
    )
    assert res.status_code == 200
    assert res.json()["lineItems"][0]["lineTotal"] == "1100.00"


def test_generate_quotation_validation(client, ctx):
    _seed(ctx)
    res = client.post("/api/generate-quotation", json={"instructions": "x"})
    assert res.status_code == 400
    assert res.json()["detail"] == "No content provided"


def test_generate_quotation_malformed_reply(client, ctx):
    _seed(ctx)
    ctx.inference.responses = ["no json"]
    res = client.post("/api/generate-quotation", json={"emailContent": "e", "instructions": "i"})
    assert res.status_code == 502


def test_generate_quotation_file(client, ctx):
    _seed(ctx)
    res = client.post(
        "/api/generate-quotation-file",
        data={"instructions": "i"},
        files={"enquiryFile": ("enquiry.pdf", b"%PDF", "application/pdf")},
    )
    assert res.status_code == 200
    assert ctx.inference.extract_calls[0]["file_ids"] == ["file-1", "file-rates"]


def test_ai_chat(client, ctx):
    assert client.post("/api/ai-chat", json={"message": " "}).status_code == 400
    res = client.post("/api/ai-chat", json={"message": "why?", "context": "{}"})
    assert res.json() == {"reply": "echo: why?"}


def test_quotations_and_counter(client):
    assert client.get("/api/next-quote-number").json() == {"value": 108}
    assert client.post("/api/save-quotation", json={"quotation": {"name": "x"}}).status_code == 400
    assert client.post("/api/save-quotation", json={"quotation": {"id": 1, "customerName": "A"}}).json() == {
        "success": True
    }
    quotations = client.get("/api/quotations").json()["quotations"]
    assert [q["id"] for q in quotations] == [1]


def test_ingest_requires_secret(client, ctx):
    ctx.ingest_secret = "s3cret"
    res = client.post("/api/ingest-from-gmail", json={"emails": []})
    assert res.status_code == 401
    assert res.json()["error"] == "Unauthorized"

    res = client.post("/api/ingest-from-gmail", json={"emails": []}, headers={"X-Ingest-Secret": "wrong"})
    assert res.status_code == 401

    res = client.post("/api/ingest-from-gmail", json={"emails": []}, headers={"X-Ingest-Secret": "s3cret"})
    assert res.status_code == 200


def test_ingest_rejects_bad_body(client):
    res = client.post("/api/ingest-from-gmail", json={"mails": []})
    assert res.status_code == 400
    assert res.json() == {"error": "Bad request", "message": "Body must contain { emails: [ ... ] }"}

    res = client.post("/api/ingest-from-gmail", content=b"not json", headers={"Content-Type": "application/json"})
    assert res.status_code == 400


def test_ingest_without_quotation_storage(client, ctx):
    ctx.quotations = None
    res = client.post("/api/ingest-from-gmail", json={"emails": []})
    assert res.status_code == 501


def test_ingest_batch(client, ctx):
    _seed(ctx)
    emails = [{"id": "msg-1", "body": "10 mtr 1XH ERW"}, {"id": "msg-2", "body": ""}]
    res = client.post("/api/ingest-from-gmail", json={"emails": emails})
    body = res.json()

    assert res.status_code == 200
    assert body["success"] is True
    assert body["created"] == 1
    assert len(body["ids"]) == 1
    assert body["errors"] == [{"emailId": "msg-2", "error": "Email has no body and no PDF attachment"}]

    again = client.post("/api/ingest-from-gmail", json={"emails": emails[:1]}).json()
    assert again["created"] == 0
    assert again["errors"][0]["error"] == "Already imported (duplicate)"


def test_ingest_omits_empty_errors(client, ctx):
    _seed(ctx)
    body = client.post("/api/ingest-from-gmail", json={"emails": [{"id": "m", "body": "x"}]}).json()
    assert body["created"] == 1
    assert "errors" not in body


class SlowInference(FakeInference):
    def extract(self, prompt_text, instructions, file_ids):
        time.sleep(1.0)
        return super().extract(prompt_text, instructions, file_ids)


def test_ingest_batch_does_not_block_other_requests(ctx):
    _seed(ctx)
    ctx.inference = SlowInference([quotation_json()])
    app = create_app(ctx)

    async def scenario():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            ingest = asyncio.create_task(
                http.post("/api/ingest-from-gmail", json={"emails": [{"id": "slow-1", "body": "10 mtr 1XH ERW"}]})
            )
            await asyncio.sleep(0.1)
            started = time.perf_counter()
            health = await http.get("/api/health")
            latency = time.perf_counter() - started
            return health, latency, await ingest

    health, latency, ingest = asyncio.run(scenario())

    assert health.status_code == 200
    assert latency < 0.3
    assert ingest.json()["created"] == 1


def test_upload_handlers_run_off_the_event_loop():
    import inspect

    from quotedesk.app import api

    assert not inspect.iscoroutinefunction(api.upload_rates)
    assert not inspect.iscoroutinefunction(api.generate_quotation_file)
