from threading import Thread

import pytest

from anpr_stream.stabilization import StabilizationEngine

BUCKET = (11, 14, 21, 17)


def test_majority_wins():
    engine = StabilizationEngine(history_size=10)
    for text in ["MH12AB1234", "MH12AB1234", "MH1ZAB1234"]:
        engine.observe(BUCKET, text)
    assert engine.stable_text(BUCKET) == "MH12AB1234"


def test_history_is_bounded_oldest_evicted():
    engine = StabilizationEngine(history_size=3)
    for text in ["A", "B", "C", "D"]:
        engine.observe(BUCKET, text)
    assert engine.history(BUCKET) == ["B", "C", "D"]


def test_vote_follows_new_evidence():
    engine = StabilizationEngine(history_size=3)
    for text in ["OLD", "OLD", "OLD", "NEW", "NEW"]:
        engine.observe(BUCKET, text)
    assert engine.stable_text(BUCKET) == "NEW"


def test_tie_goes_to_first_seen():
    engine = StabilizationEngine(history_size=4)
    for text in ["X", "Y", "Y", "X"]:
        engine.observe(BUCKET, text)
    assert engine.stable_text(BUCKET) == "X"


def test_empty_text_not_recorded():
    engine = StabilizationEngine()
    engine.observe(BUCKET, "")
    assert engine.stable_text(BUCKET) == ""
    assert engine.bucket_count() == 0


def test_observe_and_vote_keeps_state_on_empty_reading():
    engine = StabilizationEngine()
    assert engine.observe_and_vote(BUCKET, "KA01MP4321") == "KA01MP4321"
    assert engine.observe_and_vote(BUCKET, "") == "KA01MP4321"
    assert engine.history(BUCKET) == ["KA01MP4321"]


def test_buckets_are_independent():
    engine = StabilizationEngine()
    engine.observe((0, 0, 1, 1), "AAA")
    engine.observe((5, 5, 6, 6), "BBB")
    assert engine.stable_text((0, 0, 1, 1)) == "AAA"
    assert engine.stable_text((5, 5, 6, 6)) == "BBB"
    assert engine.stable_text((9, 9, 9, 9)) == ""


def test_concurrent_observers_respect_bound():
    engine = StabilizationEngine(history_size=5)

    def feed():
        for _ in range(200):
            engine.observe_and_vote(BUCKET, "MH12AB1234")

    threads = [Thread(target=feed) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(engine.history(BUCKET)) == 5


def test_history_size_must_be_positive():
    with pytest.raises(ValueError):
        StabilizationEngine(history_size=0)
