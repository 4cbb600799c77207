from anpr_stream.status import ConsoleSink, QueueSink, StatusChannel


def test_queue_sink_empty_last_is_none():
    history = QueueSink()
    assert history.last is None
    assert history.recent() == []


def test_channel_fans_out(capsys):
    channel = StatusChannel()
    history = channel.subscribe(QueueSink(maxlen=2))
    channel.subscribe(ConsoleSink())

    channel.publish("Camera", "Connecting...")
    channel.publish("Camera", "Camera connected. Ready to capture.")
    channel.publish("Pipeline", "Lost frame", "warning")

    assert [m.message for m in history.recent()] == ["Camera connected. Ready to capture.", "Lost frame"]
    assert history.last.level == "warning"
    assert "[Camera] Connecting..." in capsys.readouterr().out


def test_broken_sink_does_not_stop_others():
    channel = StatusChannel()

    def broken(msg):
        raise RuntimeError("socket closed")

    channel.subscribe(broken)
    history = channel.subscribe(QueueSink())
    channel.publish("Batch", "[1/2] KA01MP4321")
    assert history.last.message == "[1/2] KA01MP4321"
