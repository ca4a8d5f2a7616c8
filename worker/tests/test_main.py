from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pricewatch import main
from pricewatch.models import IngestionRun


def test_run_once_seeds_and_prints_summary(monkeypatch, capsys):
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    monkeypatch.setattr(main, "engine", engine)
    monkeypatch.setattr(main, "SessionLocal", TestingSessionLocal)

    main.run_once(mode="fixture", triggered_by="cli-test", seed=True)

    output = capsys.readouterr().out
    assert "status=completed" in output
    assert "lookups=8" in output
    with TestingSessionLocal() as db:
        run = db.query(IngestionRun).one()
        assert run.triggered_by == "cli-test"
