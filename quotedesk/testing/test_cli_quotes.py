import json

import yaml

from fakes import add_rate_pdf
from quotedesk.cli import quotes_cli
from quotedesk.store import RateMapping


def test_next_quote_number(ctx, capsys):
    assert quotes_cli.main(["next-quote-number"], ctx=ctx) == 0
    assert quotes_cli.main(["next-quote-number"], ctx=ctx) == 0
    out = capsys.readouterr().out.split()
    assert out == ["DSC-108", "DSC-109"]


def test_list_and_rebuild_rates(ctx, capsys):
    add_rate_pdf(ctx.storage, "a.pdf")
    assert quotes_cli.main(["list-rates"], ctx=ctx) == 0
    assert "a.pdf" in capsys.readouterr().out

    assert quotes_cli.main(["rebuild-rates"], ctx=ctx) == 0
    assert "1 file(s) registered" in capsys.readouterr().out
    assert [m.inference_file_id for m in ctx.rate_index.load()] == ["file-1"]


def test_rebuild_without_documents_reports_error(ctx, capsys):
    assert quotes_cli.main(["rebuild-rates"], ctx=ctx) == 1
    assert "No rate files uploaded" in capsys.readouterr().err


def test_sync_requires_inference(ctx, capsys):
    ctx.inference = None
    assert quotes_cli.main(["sync-rates"], ctx=ctx) == 1
    assert "disabled" in capsys.readouterr().err


def test_ingest_from_yaml_file(ctx, tmp_path, capsys):
    add_rate_pdf(ctx.storage, "rates.pdf")
    ctx.rate_index.upsert(RateMapping("rates/rates.pdf", "file-rates"))
    ctx.shared_texts.save_instructions("Use 10% margin")
    path = tmp_path / "emails.yaml"
    path.write_text(yaml.safe_dump({"emails": [{"id": "m-1", "body": "10 mtr 1XH ERW"}]}), encoding="utf-8")

    assert quotes_cli.main(["ingest", "--path", str(path)], ctx=ctx) == 0
    result = json.loads(capsys.readouterr().out)
    assert result["created"] == 1
    assert ctx.quotations.find_by_external_id("m-1") is not None


def test_ingest_rejects_unknown_extension(ctx, tmp_path, capsys):
    path = tmp_path / "emails.txt"
    path.write_text("[]", encoding="utf-8")
    assert quotes_cli.main(["ingest", "--path", str(path)], ctx=ctx) == 1
    assert "--format" in capsys.readouterr().err


def test_ingest_rejects_non_list_payload(ctx, tmp_path, capsys):
    path = tmp_path / "emails.json"
    path.write_text(json.dumps({"emails": "nope"}), encoding="utf-8")
    assert quotes_cli.main(["ingest", "--path", str(path)], ctx=ctx) == 1


def test_cleanup_quotations(ctx, capsys):
    ctx.quotations.save({"id": 1})
    assert quotes_cli.main(["cleanup-quotations", "--days", "30"], ctx=ctx) == 0
    assert "Deleted 0 of 1" in capsys.readouterr().out
    assert quotes_cli.main(["cleanup-quotations", "--days", "0"], ctx=ctx) == 1
