from checkout.infra import document_store

def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"ok": True}
    assert res.headers["X-Frame-Options"] == "DENY"

def test_health_store_memory(client):
    assert client.get("/health/store").json() == {"backend": "memory", "connect_ok": True}

def test_health_store_down(client, monkeypatch):
    class DownStore(document_store.SupabaseDocumentStore):
        def ping(self):
            return False

    monkeypatch.setattr(document_store, "_store", DownStore())
    res = client.get("/health/store")
    assert res.status_code == 503
    assert res.json() == {"backend": "supabase", "connect_ok": False}

def test_health_rate_limit(client):
    info = client.get("/health/rate-limit").json()
    assert info["enabled"] is False
