from listui.core.events import EventFeed
from listui.models.events import Progress, TrackFailed


def test_typed_listeners_only_see_their_events():
    feed = EventFeed()
    progress, everything = [], []
    feed.on_progress(progress.append)
    feed.subscribe(everything.append)

    feed.emit(Progress(1, 0.5))
    feed.emit(TrackFailed(1, "gone"))

    assert progress == [Progress(1, 0.5)]
    assert everything == [Progress(1, 0.5), TrackFailed(1, "gone")]


def test_failing_listener_does_not_stop_delivery():
    feed = EventFeed()
    received = []

    def broken(event):
        raise RuntimeError("listener bug")

    feed.on_track_failed(broken)
    feed.on_track_failed(received.append)
    feed.emit(TrackFailed(2, "gone"))
    assert received == [TrackFailed(2, "gone")]


def test_unsubscribe():
    feed = EventFeed()
    received = []
    feed.on_progress(received.append)
    feed.subscribe(received.append)
    feed.unsubscribe(received.append)
    feed.emit(Progress(1, 1.0))
    assert received == []
