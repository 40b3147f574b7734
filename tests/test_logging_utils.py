import json
import logging

import pytest

from worldstate_bot.config import Settings
from worldstate_bot.logging_utils import JsonFormatter, PlainFormatter, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in root.handlers:
        h.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(msg="delivery_failed subscription=%s", args=(7,), **extra):
    rec = logging.LogRecord("reconciler", logging.WARNING, __file__, 1, msg, args, None)
    rec.__dict__.update(extra)
    return rec


def test_json_formatter_includes_extras():
    line = JsonFormatter().format(_record(feed="baro", obj=object()))
    data = json.loads(line)
    assert data["level"] == "WARNING"
    assert data["name"] == "reconciler"
    assert data["msg"] == "delivery_failed subscription=7"
    assert data["feed"] == "baro"
    assert data["obj"].startswith("<object")


def test_plain_formatter_single_line():
    line = PlainFormatter().format(_record(feed="baro"))
    assert "reconciler: delivery_failed subscription=7" in line
    assert "feed=baro" in line
    assert "\n" not in line


def test_setup_logging_writes_rotating_files(tmp_path, restore_root_logger):
    settings = Settings(data_dir=tmp_path, log_plain=True)
    setup_logging("debug", settings=settings)

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    logging.getLogger("scheduler").warning("pass_failed feed=baro stage=fetch")
    logging.getLogger("scheduler").info("scheduler_started feed=baro")
    for h in root.handlers:
        h.flush()

    events = (tmp_path / "logs" / "bot.jsonl").read_text(encoding="utf-8").splitlines()
    errors = (tmp_path / "logs" / "errors.log").read_text(encoding="utf-8").splitlines()
    assert len(events) == 2
    assert len(errors) == 1
    assert json.loads(errors[0])["msg"] == "pass_failed feed=baro stage=fetch"
