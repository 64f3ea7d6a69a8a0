import json
import threading

from quotedesk.store import RateMapping, RateMappingStore, SharedTextStore


def test_load_missing_index_is_empty(storage):
    assert RateMappingStore(storage).load() == []


def test_load_malformed_index_is_empty(storage):
    storage.write(b"{not json", "index.json", "rates")
    assert RateMappingStore(storage).load() == []

    storage.write(b'{"a": 1}', "index.json", "rates")
    assert RateMappingStore(storage).load() == []


def test_load_skips_bad_entries_and_reads_legacy_keys(storage):
    entries = [
        {"s3Key": "rates/a.pdf", "openaiFileId": "file-a", "originalName": "a.pdf", "createdAt": "2026-01-01T00:00:00Z"},
        {"storage_key": "rates/b.pdf"},
        "garbage",
    ]
    storage.write(json.dumps(entries).encode("utf-8"), "index.json", "rates")

    mappings = RateMappingStore(storage).load()

    assert len(mappings) == 1
    assert mappings[0].storage_key == "rates/a.pdf"
    assert mappings[0].inference_file_id == "file-a"
    assert mappings[0].display_name == "a.pdf"


def test_upsert_replaces_entry_for_same_key(storage):
    store = RateMappingStore(storage)
    store.upsert(RateMapping("rates/a.pdf", "file-1"))
    store.upsert(RateMapping("rates/b.pdf", "file-2"))
    store.upsert(RateMapping("rates/a.pdf", "file-3"))

    mappings = {m.storage_key: m.inference_file_id for m in store.load()}
    assert mappings == {"rates/a.pdf": "file-3", "rates/b.pdf": "file-2"}


def test_remove_by_key_is_noop_when_absent(storage):
    store = RateMappingStore(storage)
    store.remove_by_key("rates/missing.pdf")
    assert storage.list("rates") == []

    store.upsert(RateMapping("rates/a.pdf", "file-1"))
    store.remove_by_key("rates/a.pdf")
    assert store.load() == []


def test_find_by_filename(storage):
    store = RateMappingStore(storage)
    store.upsert(RateMapping("rates/price_1.pdf", "file-1", original_name="price.pdf"))
    assert store.find_by_filename("price_1.pdf").inference_file_id == "file-1"
    assert store.find_by_filename("other.pdf") is None


def test_shared_texts_roundtrip(storage):
    texts = SharedTextStore(storage)
    assert texts.get_instructions() is None
    assert texts.get_default_terms() is None

    texts.save_instructions("Use 10% margin")
    texts.save_default_terms("Payment: 30 days")

    assert texts.get_instructions() == "Use 10% margin"
    assert texts.get_default_terms() == "Payment: 30 days"


def _run_threads(target, count=4):
    errors = []

    def runner(worker_id):
        try:
            target(worker_id)
        except Exception as exc:  # collected for the assertion below
            errors.append(repr(exc))

    threads = [threading.Thread(target=runner, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return errors


def test_concurrent_upserts_keep_every_mapping(storage):
    store = RateMappingStore(storage)

    def worker(worker_id):
        for n in range(50):
            store.upsert(RateMapping(f"rates/w{worker_id}-{n}.pdf", f"file-{worker_id}-{n}"))

    assert _run_threads(worker) == []
    assert len(store.load()) == 200
    assert not [f for f in (storage.root / "rates").iterdir() if f.name != "index.json"]


def test_concurrent_writes_of_one_key_leave_a_whole_file(storage):
    payloads = [json.dumps([{"storage_key": f"rates/{i}.pdf", "inference_file_id": f"f{i}"}] * 50).encode("utf-8")
                for i in range(4)]

    def worker(worker_id):
        for _ in range(100):
            storage.write(payloads[worker_id], "index.json", "rates")

    assert _run_threads(worker) == []
    assert storage.read("rates/index.json") in payloads
    assert [f.name for f in storage.list("rates")] == ["index.json"]
