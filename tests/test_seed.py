import logging

from app import seed
from app.models.user import User


def test_seed_creates_demo_residents_once(db):
    seed.run(db)
    seed.run(db)
    emails = sorted(u.email for u in db.query(User).all())
    assert emails == sorted(email for email, _, _ in seed.DEMO_RESIDENTS)


def test_seed_never_logs_tokens(db, monkeypatch, caplog, capsys):
    monkeypatch.setattr(seed.settings, "ENV", "local")
    with caplog.at_level(logging.DEBUG, logger="app.seed"):
        seed.run(db)
    assert "token" not in caplog.text
    assert capsys.readouterr().out == ""


def test_seed_prints_dev_tokens_when_asked(db, monkeypatch, capsys):
    monkeypatch.setattr(seed.settings, "ENV", "local")
    seed.run(db, show_tokens=True)
    lines = capsys.readouterr().out.splitlines()
    assert [line.split(": ")[0] for line in lines] == [email for email, _, _ in seed.DEMO_RESIDENTS]
