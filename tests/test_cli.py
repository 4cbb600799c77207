import os

from anpr_stream import cli
from anpr_stream.log_store import BasicLogStore, EnrichedLogStore
from anpr_stream.lookup import MockVehicleLookup

CONFIG = """
lookup:
  mode: mock
  mock_delay: 0
batch:
  request_delay: 0
"""


def write_config(tmp_path, text=CONFIG):
    folder = tmp_path / "config"
    folder.mkdir()
    path = folder / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_lookup_command_appends_one_row(tmp_path, capsys):
    log = str(tmp_path / "api_test.csv")
    code = cli.main(["--config", write_config(tmp_path), "lookup", "mh12ab1234", "--log", log])

    assert code == 0
    records = EnrichedLogStore(log).read_records()
    assert [r.plate_text for r in records] == ["MH12AB1234"]
    assert records[0].owner_name == MockVehicleLookup.DEMO.owner_name
    assert "[Lookup] Saved to" in capsys.readouterr().out


def test_enrich_command(tmp_path):
    path = write_config(tmp_path)
    basic = BasicLogStore(os.path.join(str(tmp_path), "outputs", "detection_log.csv"))
    basic.append("KA01MP4321")

    assert cli.main(["--config", path, "enrich"]) == 0
    assert not basic.exists()
    enriched = EnrichedLogStore(os.path.join(str(tmp_path), "outputs", "enriched_detection_log.csv"))
    assert [r.plate_text for r in enriched.read_records()] == ["KA01MP4321"]


def test_enrich_with_empty_log(tmp_path):
    assert cli.main(["--config", write_config(tmp_path), "enrich"]) == 0


def test_missing_config_exits_nonzero(tmp_path, capsys):
    code = cli.main(["--config", str(tmp_path / "missing.yaml"), "enrich"])
    assert code == 2
    assert "[Config]" in capsys.readouterr().err


def test_watch_requires_camera_and_model(tmp_path, capsys):
    code = cli.main(["--config", write_config(tmp_path), "watch", "--duration", "0.1"])
    assert code == 2
    assert "camera.url" in capsys.readouterr().err


WATCH_CONFIG = CONFIG + """
camera:
  url: "rtsp://cam.local/stream"
models:
  plate_detector: "models/plate.pt"
"""


def test_watch_headless_skips_preview(tmp_path, monkeypatch, capsys, make_runner):
    import cv2
    from anpr_stream import config as config_mod
    from anpr_stream import pipeline_builder

    def no_window(*args):
        raise AssertionError("preview window opened")

    runner = make_runner()
    monkeypatch.setattr(config_mod, "HEADLESS", True)
    monkeypatch.setattr(config_mod, "print_gpu_info", lambda: None)
    monkeypatch.setattr(pipeline_builder, "build_runner", lambda cfg: runner)
    monkeypatch.setattr(cv2, "imshow", no_window)

    code = cli.main(["--config", write_config(tmp_path, WATCH_CONFIG), "watch", "--show", "--duration", "0.1"])

    assert code == 0
    out = capsys.readouterr().out
    assert "preview window disabled" in out
    assert "Session:" in out
    assert not runner.live_running
