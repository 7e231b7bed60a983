import json
import sys
from contextlib import contextmanager
from pathlib import Path

# Add project root to sys.path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.models import Listing, Product
from etl import load_to_db

FEED = (
    "product_name,price,product_url,currency\n"
    "Widget X,100,https://www.altex.ro/widget-x,RON\n"
    "Widget Y,,https://www.altex.ro/widget-y,RON\n"
)


def _use_session(monkeypatch, session):
    @contextmanager
    def fake_get_db():
        yield session
        session.commit()

    monkeypatch.setattr(load_to_db, "get_db", fake_get_db)


def test_dry_run_parses_without_writing(tmp_path, monkeypatch, session, capsys):
    _use_session(monkeypatch, session)
    feed = tmp_path / "feed.csv"
    feed.write_text(FEED, encoding="utf-8")

    assert load_to_db.main([str(feed), "--dry-run"]) == 0
    out = capsys.readouterr().out
    assert "Dry run: 1 importable rows of 2" in out
    assert session.query(Product).count() == 0


def test_feed_import(tmp_path, monkeypatch, session, capsys):
    _use_session(monkeypatch, session)
    feed = tmp_path / "feed.csv"
    feed.write_text(FEED, encoding="utf-8")

    assert load_to_db.main([str(feed), "--provider", "profitshare"]) == 0
    assert session.query(Listing).count() == 1
    assert '"listings_created": 1' in capsys.readouterr().out


def test_json_ingest(tmp_path, monkeypatch, session):
    _use_session(monkeypatch, session)
    payload = tmp_path / "products.json"
    payload.write_text(json.dumps({"products": [{"id": "seed-1", "name": "Laptop HP 250 G9"}]}), encoding="utf-8")

    assert load_to_db.main([str(payload), "--json"]) == 0
    assert session.get(Product, "seed-1").category == "Laptops"


def test_structural_error_exits_nonzero(tmp_path, monkeypatch, session):
    _use_session(monkeypatch, session)
    feed = tmp_path / "feed.csv"
    feed.write_text("colour\nred\n", encoding="utf-8")

    assert load_to_db.main([str(feed)]) == 1
